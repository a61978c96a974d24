"""Verification report text and visual comparison images."""
import io
import uuid

import pytest
from PIL import Image

from core.domain import (
    Document,
    DocumentConversionError,
    ErrorCode,
    IssueSeverity,
    IssueType,
    VerificationIssue,
    VerificationResult,
)
from core.formats import get_format
from infrastructure.report_generator import build_report_text
from conftest import make_pdf, png_bytes


def result(success=True, issues=()) -> VerificationResult:
    return VerificationResult(
        success=success,
        overall_score=0.95 if success else 0.42,
        content_match_score=1.0,
        formatting_match_score=0.875,
        structure_match_score=1.0,
        metadata_match_score=0.5,
        issues=tuple(issues),
    )


def document(name: str, size: int = 2048, storage_ref: str = "") -> Document:
    return Document(
        id=str(uuid.uuid4()),
        name=name,
        format=get_format(name.rsplit(".", 1)[1]),
        size=size,
        storage_ref=storage_ref or name,
    )


class TestReportText:
    def test_scores_and_status(self):
        text = build_report_text(document("in.docx"), document("out.pdf"), result())
        lines = text.splitlines()
        assert lines[0] == "Document Conversion Verification Report"
        assert "Source Document: in.docx" in lines
        assert "Converted Document: out.pdf" in lines
        assert "Overall Match Score: 95.0%" in lines
        assert "Formatting Match: 87.5%" in lines
        assert "Verification Status: PASSED" in lines
        assert "No issues found." in lines

    def test_issues_are_numbered(self):
        issues = [
            VerificationIssue(IssueType.METADATA_MISMATCH, "Title differs", IssueSeverity.LOW, "title"),
            VerificationIssue(IssueType.CONTENT_MISMATCH, "Text content differs", IssueSeverity.HIGH),
        ]
        lines = build_report_text(document("in.docx"), document("out.pdf"), result(False, issues)).splitlines()

        assert "1. Title differs" in lines
        assert "   Type: METADATA_MISMATCH" in lines
        assert "   Location: title" in lines
        assert "2. Text content differs" in lines
        assert "   Severity: HIGH" in lines
        assert "Verification Status: FAILED" in lines
        assert "1. Try a different conversion path or format" in lines


@pytest.mark.asyncio
class TestReportGenerator:
    async def test_generate_report(self, report_generator, report_storage, blob_storage):
        ref = await report_generator.generate_report(document("in.docx"), document("out.pdf"), result())

        assert ref.endswith(".txt")
        assert "verification_report_in" in ref
        assert blob_storage.local_path(ref) is None
        text = (await report_storage.read(ref)).decode("utf-8")
        assert "Verification Status: PASSED" in text

    async def test_visual_comparison_of_images(self, report_generator, report_storage, blob_storage):
        left_ref, left_size = await blob_storage.save(png_bytes((40, 30), (255, 0, 0)), "left.png")
        right_ref, right_size = await blob_storage.save(png_bytes((80, 60), (250, 0, 0)), "right.png")

        ref = await report_generator.generate_visual_comparison(
            document("left.png", left_size, left_ref), document("right.png", right_size, right_ref)
        )

        with Image.open(io.BytesIO(await report_storage.read(ref))) as image:
            assert image.format == "PNG"
            assert image.height == 60
            assert image.width > 3 * 60

    async def test_visual_comparison_renders_pdf_pages(self, report_generator, report_storage, blob_storage, tmp_path):
        pdf = make_pdf(tmp_path / "page.pdf", pages=1)
        pdf_ref, pdf_size = await blob_storage.save(pdf.read_bytes(), "page.pdf")
        png_ref, png_size = await blob_storage.save(png_bytes(), "page.png")

        ref = await report_generator.generate_visual_comparison(
            document("page.pdf", pdf_size, pdf_ref), document("page.png", png_size, png_ref)
        )
        assert (await report_storage.read(ref))[:8] == b"\x89PNG\r\n\x1a\n"

    async def test_visual_comparison_needs_renderable_formats(self, report_generator, blob_storage, sample_docx):
        ref, size = await blob_storage.save(sample_docx.read_bytes(), "report.docx")
        docx_document = document("report.docx", size, ref)

        with pytest.raises(DocumentConversionError) as excinfo:
            await report_generator.generate_visual_comparison(docx_document, docx_document)
        assert excinfo.value.error_code == ErrorCode.REPORT_FAILED
