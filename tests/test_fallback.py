"""
Unit tests for FallbackProvider.
"""

import pytest

from knowledge_broker.models import (
    BestPractice,
    CodeExample,
    DocItem,
    QueryKind,
    TroubleshootingGuide,
)
from knowledge_broker.services.fallback import FallbackProvider


@pytest.fixture
def provider():
    return FallbackProvider()


@pytest.mark.unit
class TestFallbackProvider:
    @pytest.mark.parametrize(
        "kind, item_type",
        [
            (QueryKind.DOCUMENTATION, DocItem),
            (QueryKind.CODE_EXAMPLE, CodeExample),
            (QueryKind.BEST_PRACTICE, BestPractice),
            (QueryKind.TROUBLESHOOTING, TroubleshootingGuide),
        ],
    )
    def test_one_degraded_item_per_kind(self, provider, kind, item_type):
        items = provider.for_query(kind, "react hooks")

        assert len(items) == 1
        assert isinstance(items[0], item_type)
        assert items[0].source == "fallback"
        assert items[0].degraded is True

    def test_same_input_same_output(self, provider):
        first = provider.for_query(QueryKind.DOCUMENTATION, "react", "18")
        second = provider.for_query(QueryKind.DOCUMENTATION, "react", "18")

        assert first == second

    def test_documentation_labels(self, provider):
        (doc,) = provider.for_query("documentation", "React")

        assert doc.id == "fallback-doc-react"
        assert doc.title == "React Documentation (Fallback)"
        assert doc.url == "https://react.dev"
        assert doc.version == "unknown"

    def test_code_example_splits_language_and_pattern(self, provider):
        (example,) = provider.for_query(QueryKind.CODE_EXAMPLE, "typescript generics")

        assert example.language == "typescript"
        assert example.title == "generics Example (Fallback)"
        assert "fallback" in example.tags

    def test_unknown_subject_has_no_reference(self, provider):
        (doc,) = provider.for_query(QueryKind.DOCUMENTATION, "cobol")

        assert doc.url is None
