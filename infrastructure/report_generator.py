# infrastructure/report_generator.py
"""Verification artifacts: plain-text report and side-by-side visual comparison"""
import asyncio
import io
import logging
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import List, Optional, Union

from PIL import Image, ImageChops

from config import settings
from core.domain import Document, DocumentConversionError, ErrorCode, VerificationResult
from core.formats import FormatCategory
from core.interfaces import IBlobStorage, IReportGenerator
from infrastructure.file_storage import materialize
from infrastructure.pdf_converters import PyMuPDFRenderer
from utils.common import timestamped_filename

logger = logging.getLogger(settings.LOGGER_NAME)


def _percent(score: float) -> str:
    return f"{score * 100:.1f}%"


def build_report_text(source: Document, converted: Document, result: VerificationResult) -> str:
    lines: List[str] = [
        "Document Conversion Verification Report",
        "=========================================",
        "",
        f"Source Document: {source.name}",
        f"Format: {source.format.name}",
        f"Size: {source.formatted_size()}",
        "",
        f"Converted Document: {converted.name}",
        f"Format: {converted.format.name}",
        f"Size: {converted.formatted_size()}",
        "",
        "Verification Results",
        "--------------------",
        f"Overall Match Score: {_percent(result.overall_score)}",
        f"Content Match: {_percent(result.content_match_score)}",
        f"Formatting Match: {_percent(result.formatting_match_score)}",
        f"Structure Match: {_percent(result.structure_match_score)}",
        f"Metadata Match: {_percent(result.metadata_match_score)}",
        "",
        f"Verification Status: {'PASSED' if result.success else 'FAILED'}",
        "",
    ]

    if result.issues:
        lines += ["Identified Issues", "----------------"]
        for number, issue in enumerate(result.issues, start=1):
            lines.append(f"{number}. {issue.description}")
            lines.append(f"   Type: {issue.type.name}")
            lines.append(f"   Severity: {issue.severity.name}")
            if issue.location:
                lines.append(f"   Location: {issue.location}")
            lines.append("")
    else:
        lines += ["No issues found.", ""]

    lines += ["Recommendations", "--------------"]
    if result.success:
        lines.append("The document conversion has passed verification with high fidelity.")
        lines.append("The converted document preserves the content and formatting of the original.")
        if result.issues:
            lines.append("Minor issues were detected, but they do not significantly affect the document quality.")
    else:
        lines.append("The document conversion did not meet the verification criteria.")
        lines.append("Consider the following actions:")
        lines.append("1. Try a different conversion path or format")
        lines.append("2. Adjust conversion options for better preservation")
        lines.append("3. Review specific issues identified in the report")
    return "\n".join(lines) + "\n"


class ReportGenerator(IReportGenerator):
    """
    Writes reports and comparison images to report storage. Invoked on demand only.
    Source documents are read through blob_storage.
    """

    PANEL_GAP = 16
    MAX_PANEL_HEIGHT = 1200

    def __init__(
        self,
        blob_storage: IBlobStorage,
        report_storage: IBlobStorage,
        temp_dir: Union[str, Path],
        renderer: Optional[PyMuPDFRenderer] = None,
    ):
        self.blob_storage = blob_storage
        self.report_storage = report_storage
        self.temp_dir = Path(temp_dir)
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        self.renderer = renderer or PyMuPDFRenderer()

    async def generate_report(self, source: Document, converted: Document, result: VerificationResult) -> str:
        text = build_report_text(source, converted, result)
        filename = timestamped_filename(f"verification_report_{Path(source.name).stem}", "txt")
        try:
            storage_ref, _ = await self.report_storage.save(text.encode("utf-8"), filename)
        except OSError as e:
            raise DocumentConversionError(f"Could not write report: {e}", ErrorCode.REPORT_FAILED) from e
        logger.info(f"[REPORT] Verification report written: {storage_ref}")
        return storage_ref

    def _render(self, path: Path, document: Document) -> Image.Image:
        if document.format.id == "pdf":
            return self.renderer.render_page(str(path), 0)
        if document.format.category == FormatCategory.IMAGE:
            with Image.open(path) as image:
                return image.convert("RGB")
        raise DocumentConversionError(
            f"Visual comparison is not available for {document.format.name} documents", ErrorCode.REPORT_FAILED
        )

    def _compose(self, source: Image.Image, converted: Image.Image) -> bytes:
        height = min(max(source.height, converted.height), self.MAX_PANEL_HEIGHT)

        def fit(image: Image.Image) -> Image.Image:
            width = max(1, int(image.width * height / image.height))
            return image.resize((width, height), Image.Resampling.LANCZOS)

        left = fit(source)
        middle = fit(converted)
        # difference needs identical sizes
        diff = ImageChops.difference(left, middle.resize(left.size, Image.Resampling.LANCZOS))

        panels = [left, middle, diff]
        canvas = Image.new(
            "RGB",
            (sum(p.width for p in panels) + self.PANEL_GAP * (len(panels) - 1), height),
            (255, 255, 255),
        )
        x = 0
        for panel in panels:
            canvas.paste(panel, (x, 0))
            x += panel.width + self.PANEL_GAP
        buffer = io.BytesIO()
        canvas.save(buffer, format="PNG")
        return buffer.getvalue()

    async def generate_visual_comparison(self, source: Document, converted: Document) -> str:
        with TemporaryDirectory(dir=self.temp_dir, prefix="compare_", ignore_cleanup_errors=True) as workdir:
            source_path = await materialize(self.blob_storage, source, Path(workdir))
            converted_path = await materialize(self.blob_storage, converted, Path(workdir))
            try:
                source_image = await asyncio.to_thread(self._render, source_path, source)
                converted_image = await asyncio.to_thread(self._render, converted_path, converted)
                data = await asyncio.to_thread(self._compose, source_image, converted_image)
            except (OSError, RuntimeError, ValueError) as e:
                raise DocumentConversionError(f"Could not render comparison: {e}", ErrorCode.REPORT_FAILED) from e

        filename = timestamped_filename(f"visual_comparison_{Path(source.name).stem}", "png")
        storage_ref, _ = await self.report_storage.save(data, filename)
        logger.info(f"[REPORT] Visual comparison written: {storage_ref}")
        return storage_ref
