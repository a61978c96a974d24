"""Verification scoring across content, formatting, structure and metadata."""
import pytest

from core.domain import (
    DocumentContent,
    DocumentLink,
    DocumentMetadata,
    DocumentStructure,
    DocumentTable,
    Heading,
    IssueSeverity,
    IssueType,
    VerificationOptions,
)
from services.verification_engine import DocumentSnapshot, VerificationEngine


def snapshot(text="Alpha beta gamma delta", headings=("Intro",), tables=1, title="Plan", **extra) -> DocumentSnapshot:
    content = DocumentContent(
        text=text,
        tables=[DocumentTable(id=f"t{i}", rows=[["a", "b"]]) for i in range(tables)],
        structure=DocumentStructure(headings=[Heading(text=h, level=1) for h in headings]),
        links=extra.pop("links", []),
        fonts=extra.pop("fonts", frozenset()),
    )
    return DocumentSnapshot(content=content, metadata=DocumentMetadata(title=title), **extra)


@pytest.fixture
def engine(verification_engine) -> VerificationEngine:
    return verification_engine


# =========================================================================
# Overall score
# =========================================================================


class TestOverallScore:
    @pytest.mark.parametrize("scores, expected", [
        ((1.0, 1.0, 1.0, 1.0), 1.0),
        ((0.0, 0.0, 0.0, 0.0), 0.0),
        ((1.0, 0.0, 0.0, 0.0), 0.4),
        ((0.0, 1.0, 0.0, 0.0), 0.3),
        ((0.0, 0.0, 1.0, 0.0), 0.2),
        ((0.0, 0.0, 0.0, 1.0), 0.1),
        ((0.5, 0.5, 0.5, 0.5), 0.5),
    ])
    def test_weighted_sum(self, scores, expected):
        assert VerificationEngine.calculate_overall_score(*scores) == pytest.approx(expected)

    def test_all_ones_is_exactly_one(self):
        assert VerificationEngine.calculate_overall_score(1.0, 1.0, 1.0, 1.0) == 1.0


# =========================================================================
# Comparison
# =========================================================================


class TestCompare:
    def test_identical_snapshots_pass(self, engine):
        result = engine.compare(snapshot(), snapshot(), VerificationOptions())
        assert result.success
        assert result.overall_score == 1.0
        assert result.issues == ()

    def test_compare_is_repeatable(self, engine):
        source, converted = snapshot(), snapshot(text="Alpha beta", headings=())
        options = VerificationOptions()
        assert engine.compare(source, converted, options) == engine.compare(source, converted, options)

    def test_text_loss_is_a_content_issue(self, engine):
        result = engine.compare(snapshot(), snapshot(text="Alpha"), VerificationOptions())
        assert result.content_match_score < 1.0
        issue = next(i for i in result.issues if i.type == IssueType.CONTENT_MISMATCH)
        assert issue.severity == IssueSeverity.CRITICAL

    def test_threshold_decides_success(self, engine):
        source, converted = snapshot(), snapshot(title="Other")
        assert engine.compare(source, converted, VerificationOptions(minimum_match_score=0.9)).success
        assert not engine.compare(source, converted, VerificationOptions(minimum_match_score=0.95)).success

    def test_disabled_dimension_scores_one(self, engine):
        result = engine.compare(snapshot(), snapshot(title="Other"), VerificationOptions(verify_metadata=False))
        assert result.metadata_match_score == 1.0
        assert not any(i.type == IssueType.METADATA_MISMATCH for i in result.issues)

    def test_lost_tables_and_headings(self, engine):
        result = engine.compare(snapshot(tables=2), snapshot(tables=1, headings=()), VerificationOptions())
        assert result.structure_match_score < 1.0
        locations = {i.location for i in result.issues if i.type == IssueType.STRUCTURE_MISMATCH}
        assert locations == {"headings", "tables"}

    def test_missing_fonts_and_links(self, engine):
        source = snapshot(
            fonts=frozenset({"Arial", "Georgia"}),
            links=[DocumentLink(text="docs", url="https://example.com")],
        )
        converted = snapshot(fonts=frozenset({"arial"}))
        result = engine.compare(source, converted, VerificationOptions())

        assert result.formatting_match_score == pytest.approx(0.25)
        types = [i.type for i in result.issues]
        assert IssueType.FONT_SUBSTITUTION in types
        assert IssueType.FORMATTING_MISMATCH in types

    def test_metadata_mismatch(self, engine):
        result = engine.compare(snapshot(title="Plan"), snapshot(title=None), VerificationOptions())
        assert result.metadata_match_score == 0.0
        issue = next(i for i in result.issues if i.type == IssueType.METADATA_MISMATCH)
        assert issue.location == "title"

    def test_extraction_error_is_reported(self, engine):
        broken = DocumentSnapshot(DocumentContent(), DocumentMetadata(), extraction_error="bad zip")
        result = engine.compare(snapshot(), broken, VerificationOptions())
        assert not result.success
        assert result.content_match_score == 0.0
        assert any(i.type == IssueType.RESOURCE_MISSING and i.location == "converted" for i in result.issues)

    def test_progress_callback(self, engine):
        seen = []
        engine.compare(snapshot(), snapshot(), VerificationOptions(), seen.append)
        assert seen == [0.25, 0.5, 0.75, 1.0]
