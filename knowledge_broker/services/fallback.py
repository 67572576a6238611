"""
FallbackProvider - Static placeholder content for when the upstream is unreachable.

Every item is marked ``source="fallback"`` and ``degraded=True``. Output
depends only on the input: no clock, no randomness, no I/O.
"""

from knowledge_broker.models import (
    BestPractice,
    CodeExample,
    DocItem,
    KnowledgeItem,
    QueryKind,
    Solution,
    TroubleshootingGuide,
)

# Reference homepages for well-known subjects
FALLBACK_REFERENCES: dict[str, str] = {
    "react": "https://react.dev",
    "typescript": "https://www.typescriptlang.org/docs",
    "nodejs": "https://nodejs.org/docs/latest/api",
    "javascript": "https://javascript.info",
    "python": "https://docs.python.org/3",
    "nextjs": "https://nextjs.org/docs",
    "vue": "https://vuejs.org/guide",
    "angular": "https://angular.dev",
}

UNAVAILABLE_NOTE = "External knowledge service unavailable."


def _slug(text: str) -> str:
    return "-".join(text.lower().split())


def _reference_for(subject: str) -> str | None:
    lowered = subject.lower()
    for name, url in FALLBACK_REFERENCES.items():
        if name in lowered:
            return url
    return None


class FallbackProvider:
    """Builds clearly labelled placeholder results keyed by kind and subject."""

    def for_query(
        self,
        kind: QueryKind,
        subject: str,
        version: str | None = None,
    ) -> list[KnowledgeItem]:
        kind = QueryKind(kind)
        if kind == QueryKind.DOCUMENTATION:
            return [self._documentation(subject, version)]
        if kind == QueryKind.CODE_EXAMPLE:
            return [self._code_example(subject)]
        if kind == QueryKind.BEST_PRACTICE:
            return [self._best_practice(subject)]
        return [self._troubleshooting(subject)]

    def _documentation(self, topic: str, version: str | None) -> DocItem:
        return DocItem(
            id=f"fallback-doc-{_slug(topic)}",
            title=f"{topic} Documentation (Fallback)",
            content=f"Basic documentation for {topic}. {UNAVAILABLE_NOTE}",
            url=_reference_for(topic),
            version=version or "unknown",
            relevance_score=0.6,
            source="fallback",
            degraded=True,
        )

    def _code_example(self, subject: str) -> CodeExample:
        words = subject.lower().split()
        language = words[0]
        pattern = " ".join(words[1:]) or "basic"
        return CodeExample(
            id=f"fallback-example-{_slug(subject)}",
            title=f"{pattern} Example (Fallback)",
            code=f"# Basic {pattern} example\n# {UNAVAILABLE_NOTE}",
            language=language,
            description=f"Basic {pattern} example. {UNAVAILABLE_NOTE}",
            tags=[*words, "fallback"],
            difficulty="beginner",
            relevance_score=0.5,
            source="fallback",
            degraded=True,
        )

    def _best_practice(self, domain: str) -> BestPractice:
        return BestPractice(
            id=f"fallback-bp-{_slug(domain)}",
            title=f"{domain} Best Practices (Fallback)",
            description=f"Basic best practices for {domain}. {UNAVAILABLE_NOTE}",
            category="general",
            priority="medium",
            applicable_scenarios=["general development"],
            benefits=["basic improvements"],
            relevance_score=0.5,
            source="fallback",
            degraded=True,
        )

    def _troubleshooting(self, problem: str) -> TroubleshootingGuide:
        return TroubleshootingGuide(
            id=f"fallback-guide-{_slug(problem)}",
            problem=f"{problem} (Fallback)",
            solutions=[
                Solution(
                    description="Basic troubleshooting approach",
                    steps=["Check logs", "Restart service", "Contact support"],
                    difficulty="easy",
                    success_rate=0.6,
                )
            ],
            related_issues=["general issues"],
            relevance_score=0.5,
            source="fallback",
            degraded=True,
        )
