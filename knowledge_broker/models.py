"""
Knowledge item types using Pydantic models.

Upstream payloads are mapped into these types here, once, so the cache and
callers only ever see typed items.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class QueryKind(str, Enum):
    """Sub-namespace of a knowledge query."""

    DOCUMENTATION = "documentation"
    CODE_EXAMPLE = "code_example"
    BEST_PRACTICE = "best_practice"
    TROUBLESHOOTING = "troubleshooting"


ItemSource = Literal["upstream", "fallback"]


class DocItem(BaseModel):
    """A documentation entry."""

    kind: Literal["documentation"] = "documentation"
    id: str
    title: str
    content: str = ""
    url: str | None = None
    version: str = "latest"
    last_updated: datetime | None = None
    relevance_score: float = 0.8
    source: ItemSource = "upstream"
    degraded: bool = False


class CodeExample(BaseModel):
    """A code snippet for a technology/pattern pair."""

    kind: Literal["code_example"] = "code_example"
    id: str
    title: str
    code: str = ""
    language: str = ""
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    difficulty: Literal["beginner", "intermediate", "advanced"] = "intermediate"
    relevance_score: float = 0.8
    source: ItemSource = "upstream"
    degraded: bool = False


class BestPractice(BaseModel):
    """A best-practice recommendation."""

    kind: Literal["best_practice"] = "best_practice"
    id: str
    title: str
    description: str = ""
    category: str = "general"
    priority: Literal["low", "medium", "high"] = "medium"
    applicable_scenarios: list[str] = Field(default_factory=list)
    benefits: list[str] = Field(default_factory=list)
    relevance_score: float = 0.8
    source: ItemSource = "upstream"
    degraded: bool = False


class Solution(BaseModel):
    """One way to fix a problem."""

    description: str
    steps: list[str] = Field(default_factory=list)
    difficulty: Literal["easy", "medium", "hard"] = "medium"
    success_rate: float = 0.8


class TroubleshootingGuide(BaseModel):
    """Problem plus candidate solutions."""

    kind: Literal["troubleshooting"] = "troubleshooting"
    id: str
    problem: str
    solutions: list[Solution] = Field(default_factory=list)
    related_issues: list[str] = Field(default_factory=list)
    relevance_score: float = 0.8
    source: ItemSource = "upstream"
    degraded: bool = False


KnowledgeItem = Annotated[
    Union[DocItem, CodeExample, BestPractice, TroubleshootingGuide],
    Field(discriminator="kind"),
]

# Used by the cache file codec
knowledge_items_adapter: TypeAdapter[list[KnowledgeItem]] = TypeAdapter(
    list[KnowledgeItem]
)


class KnowledgeBundle(BaseModel):
    """All knowledge kinds gathered for one topic."""

    topic: str
    priority: Literal["low", "medium", "high"] = "medium"
    documentation: list[DocItem] = Field(default_factory=list)
    code_examples: list[CodeExample] = Field(default_factory=list)
    best_practices: list[BestPractice] = Field(default_factory=list)
    troubleshooting_guides: list[TroubleshootingGuide] = Field(default_factory=list)
    summary: str = ""

    @property
    def total_items(self) -> int:
        return (
            len(self.documentation)
            + len(self.code_examples)
            + len(self.best_practices)
            + len(self.troubleshooting_guides)
        )


def _slug(text: str) -> str:
    return "-".join(text.lower().split())


def _raw_entries(raw: dict[str, Any]) -> list[tuple[str, int, dict[str, Any]]]:
    """Flatten snippets and Q&A items into (origin, index, entry) triples."""
    entries: list[tuple[str, int, dict[str, Any]]] = []
    for index, snippet in enumerate(raw.get("snippets") or []):
        if isinstance(snippet, dict):
            entries.append(("snippet", index, snippet))
    for index, qa in enumerate(raw.get("qaItems") or []):
        if isinstance(qa, dict):
            entries.append(("qa", index, qa))
    return entries


def _snippet_code(entry: dict[str, Any]) -> str:
    code_list = entry.get("codeList") or []
    if code_list and isinstance(code_list[0], dict):
        return code_list[0].get("code", "") or ""
    return entry.get("code", "") or ""


def _title(origin: str, entry: dict[str, Any], default: str) -> str:
    if origin == "qa":
        return entry.get("question") or default
    return entry.get("codeTitle") or entry.get("title") or default


def _body(origin: str, entry: dict[str, Any]) -> str:
    if origin == "qa":
        return entry.get("answer") or entry.get("content") or ""
    return (
        entry.get("codeDescription")
        or entry.get("content")
        or entry.get("description")
        or ""
    )


def _score(origin: str, entry: dict[str, Any]) -> float:
    score = entry.get("relevance") or entry.get("relevanceScore") or entry.get("score")
    if isinstance(score, (int, float)):
        return float(score)
    return 0.7 if origin == "qa" else 0.8


def items_from_raw(
    kind: QueryKind,
    subject: str,
    raw: dict[str, Any],
    version: str | None = None,
) -> list[KnowledgeItem]:
    """Map a raw upstream docs payload to typed items for ``kind``."""
    slug = _slug(subject)
    items: list[KnowledgeItem] = []

    for position, (origin, index, entry) in enumerate(_raw_entries(raw)):
        item_id = entry.get("codeId") or entry.get("id") or f"{origin}-{index}"
        score = _score(origin, entry)

        if kind == QueryKind.DOCUMENTATION:
            items.append(
                DocItem(
                    id=str(item_id),
                    title=_title(origin, entry, f"{subject} Documentation"),
                    content=_body(origin, entry) or _snippet_code(entry),
                    url=entry.get("url") or entry.get("link"),
                    version=version or "latest",
                    relevance_score=score,
                )
            )
        elif kind == QueryKind.CODE_EXAMPLE:
            items.append(
                CodeExample(
                    id=f"example-{slug}-{position}",
                    title=_title(origin, entry, f"{subject} Example"),
                    code=_snippet_code(entry) or _body(origin, entry),
                    language=(entry.get("codeLanguage") or subject.split()[0]).lower(),
                    description=_body(origin, entry),
                    tags=subject.lower().split(),
                    relevance_score=score,
                )
            )
        elif kind == QueryKind.BEST_PRACTICE:
            items.append(
                BestPractice(
                    id=f"bp-{slug}-{position}",
                    title=_title(origin, entry, f"{subject} Best Practice"),
                    description=_body(origin, entry),
                    applicable_scenarios=["general development"],
                    benefits=["improved code quality"],
                    relevance_score=score,
                )
            )
        else:
            body = _body(origin, entry)
            items.append(
                TroubleshootingGuide(
                    id=f"guide-{slug}-{position}",
                    problem=subject,
                    solutions=[
                        Solution(
                            description=_title(origin, entry, f"Solution for {subject}"),
                            steps=[line.strip() for line in body.splitlines() if line.strip()],
                        )
                    ],
                    relevance_score=score,
                )
            )

    return items
