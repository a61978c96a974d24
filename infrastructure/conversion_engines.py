# infrastructure/conversion_engines.py
"""Conversion engines for document, plain-text, markup and spreadsheet formats."""
import json
import logging
import shutil
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

import yaml

from config import settings
from core.domain import (
    ConversionCancelled,
    ConversionOptions,
    DocumentContent,
    DocumentConversionError,
    DocumentMetadata,
    ErrorCode,
    ExtractionOptions,
)
from core.formats import DocumentFormat, FormatCategory
from core.interfaces import IConversionEngine
from core.progress import ConversionMonitor
from infrastructure import readers, text_readers, writers

logger = logging.getLogger(settings.LOGGER_NAME)

Reader = Callable[..., DocumentContent]
MetadataReader = Callable[[Path], DocumentMetadata]
Writer = Callable[..., None]


class BaseConversionEngine(IConversionEngine):
    """
    Read -> DocumentContent -> write pipeline shared by every engine.

    Subclasses fill the tables:
    - READERS: format id -> reader(path, options, password, progress)
    - METADATA_READERS: format id -> metadata reader(path)
    - WRITERS: target id -> writer(content, metadata, output_path, options, progress)
    - DIRECT_ROUTES: (source id, target id) -> method name, for pairs that skip the content model
    """
    category: FormatCategory
    READERS: Dict[str, Reader] = {}
    METADATA_READERS: Dict[str, MetadataReader] = {}
    WRITERS: Dict[str, Writer] = {}
    DIRECT_ROUTES: Dict[Tuple[str, str], str] = {}

    def supports_conversion(self, source_format: DocumentFormat, target_format: DocumentFormat) -> bool:
        if source_format.category != self.category or not target_format.is_output_supported:
            return False
        if source_format.id == target_format.id:
            return True
        if (source_format.id, target_format.id) in self.DIRECT_ROUTES:
            return True
        return source_format.id in self.READERS and target_format.id in self.WRITERS

    def convert(
        self,
        input_path: Path,
        output_path: Path,
        source_format: DocumentFormat,
        target_format: DocumentFormat,
        options: ConversionOptions,
        monitor: Optional[ConversionMonitor] = None,
    ) -> bool:
        monitor = monitor or ConversionMonitor()
        route = f"{source_format.id}->{target_format.id}"
        try:
            if not self.supports_conversion(source_format, target_format):
                raise DocumentConversionError(
                    f"{self.__class__.__name__} cannot convert {route}", ErrorCode.UNSUPPORTED_CONVERSION
                )
            monitor.check()
            logger.info(f"[ENGINE] {self.__class__.__name__} converting {route}")
            input_path, output_path = Path(input_path), Path(output_path)
            self._convert(input_path, output_path, source_format, target_format, options, monitor)

            if not output_path.exists() or (
                output_path.stat().st_size == 0
                and not self._may_be_empty(input_path, source_format, target_format)
            ):
                raise DocumentConversionError("Engine produced no output", ErrorCode.ENGINE_FAILURE)
            return True

        except ConversionCancelled:
            logger.info(f"[ENGINE] Conversion {route} cancelled")
            monitor.fail("cancelled")
            return False
        except DocumentConversionError as e:
            logger.exception(f"[ENGINE] Conversion {route} failed: {e}")
            monitor.fail(e.message)
            return False
        except Exception as e:
            logger.exception(f"[ENGINE] Conversion {route} failed unexpectedly: {e}")
            monitor.fail(str(e))
            return False

    def _convert(
        self,
        input_path: Path,
        output_path: Path,
        source_format: DocumentFormat,
        target_format: DocumentFormat,
        options: ConversionOptions,
        monitor: ConversionMonitor,
    ) -> None:
        if source_format.id == target_format.id:
            self._reencode(input_path, output_path, source_format, options, monitor)
            return

        direct = self.DIRECT_ROUTES.get((source_format.id, target_format.id))
        if direct:
            getattr(self, direct)(input_path, output_path, options, monitor)
            return

        reader = self.READERS[source_format.id]
        content = reader(
            input_path, ExtractionOptions.for_conversion(options),
            password=options.password, progress=monitor.span(0.0, 0.5),
        )
        metadata = self._conversion_metadata(input_path, source_format, options)
        monitor.report(0.5)
        self.WRITERS[target_format.id](content, metadata, output_path, options, monitor.span(0.5, 1.0))

    def _reencode(
        self, input_path: Path, output_path: Path, document_format: DocumentFormat,
        options: ConversionOptions, monitor: ConversionMonitor,
    ) -> None:
        """Same-format conversion keeps the bytes as they are."""
        shutil.copyfile(input_path, output_path)
        monitor.report(0.5)

    @staticmethod
    def _may_be_empty(input_path: Path, source_format: DocumentFormat, target_format: DocumentFormat) -> bool:
        """An empty source re-encoded to its own format stays empty."""
        return source_format.id == target_format.id and input_path.stat().st_size == 0

    def _conversion_metadata(
        self, input_path: Path, document_format: DocumentFormat, options: ConversionOptions
    ) -> DocumentMetadata:
        if not options.preserve_metadata:
            return DocumentMetadata()
        try:
            return self.extract_metadata(input_path, document_format)
        except DocumentConversionError as e:
            logger.warning(f"[ENGINE] Metadata unavailable for {input_path.name}: {e}")
            return DocumentMetadata()

    def extract_content(
        self, input_path: Path, document_format: DocumentFormat, options: ExtractionOptions
    ) -> DocumentContent:
        reader = self.READERS.get(document_format.id)
        if reader is None:
            raise DocumentConversionError(
                f"Content extraction is not available for {document_format.name}", ErrorCode.EXTRACTION_FAILED
            )
        try:
            return reader(Path(input_path), options)
        except DocumentConversionError:
            raise
        except Exception as e:
            raise DocumentConversionError(
                f"Failed to read {document_format.name} document: {e}", ErrorCode.EXTRACTION_FAILED
            ) from e

    def extract_metadata(self, input_path: Path, document_format: DocumentFormat) -> DocumentMetadata:
        reader = self.METADATA_READERS.get(document_format.id)
        if reader is None:
            return DocumentMetadata()
        try:
            return reader(Path(input_path))
        except DocumentConversionError:
            raise
        except Exception as e:
            raise DocumentConversionError(
                f"Failed to read {document_format.name} metadata: {e}", ErrorCode.EXTRACTION_FAILED
            ) from e


# ============= Word-processing documents =============

class DocumentConversionEngine(BaseConversionEngine):
    category = FormatCategory.DOCUMENT
    READERS = {
        "pdf": readers.read_pdf,
        "docx": readers.read_docx,
        "rtf": readers.read_rtf,
        "odt": readers.read_odt,
    }
    METADATA_READERS = {
        "pdf": readers.read_pdf_metadata,
        "docx": readers.read_docx_metadata,
        "rtf": readers.read_rtf_metadata,
        "odt": readers.read_odf_metadata,
    }
    WRITERS = {
        "pdf": writers.write_pdf,
        "docx": writers.write_docx,
        "rtf": writers.write_rtf,
        "odt": writers.write_odt,
        "txt": writers.write_txt,
        "html": writers.write_html,
        "md": writers.write_markdown,
    }


# ============= Plain text =============

class PlainTextConversionEngine(BaseConversionEngine):
    category = FormatCategory.PLAIN_TEXT
    READERS = {"txt": text_readers.read_txt}
    WRITERS = {
        "txt": writers.write_txt,
        "pdf": writers.write_pdf,
        "docx": writers.write_docx,
        "html": writers.write_html,
        "md": writers.write_markdown,
        "rtf": writers.write_rtf,
    }


# ============= Markup =============

def _markdown_metadata(path: Path) -> DocumentMetadata:
    return DocumentMetadata(title=text_readers.markdown_title(path))


def _json_metadata(path: Path) -> DocumentMetadata:
    return text_readers.metadata_from_data(text_readers.load_json(path))


def _yaml_metadata(path: Path) -> DocumentMetadata:
    return text_readers.metadata_from_data(text_readers.load_yaml(path))


class MarkupConversionEngine(BaseConversionEngine):
    category = FormatCategory.MARKUP
    READERS = {
        "md": text_readers.read_markdown,
        "html": text_readers.read_html,
        "xml": text_readers.read_xml,
        "json": text_readers.read_json,
        "yaml": text_readers.read_yaml,
        "latex": text_readers.read_latex,
    }
    METADATA_READERS = {
        "md": _markdown_metadata,
        "html": text_readers.read_html_metadata,
        "xml": text_readers.read_xml_metadata,
        "json": _json_metadata,
        "yaml": _yaml_metadata,
        "latex": text_readers.read_latex_metadata,
    }
    WRITERS = {
        "md": writers.write_markdown,
        "html": writers.write_html,
        "xml": writers.write_xml,
        "json": writers.write_json,
        "yaml": writers.write_yaml,
        "latex": writers.write_latex,
        "pdf": writers.write_pdf,
        "docx": writers.write_docx,
        "txt": writers.write_txt,
    }
    # json and yaml share a data model, so they convert without the content model
    DIRECT_ROUTES = {
        ("json", "yaml"): "_json_to_yaml",
        ("yaml", "json"): "_yaml_to_json",
    }

    def _json_to_yaml(self, input_path: Path, output_path: Path, options: ConversionOptions, monitor) -> None:
        data = text_readers.load_json(input_path)
        monitor.report(0.5)
        output_path.write_text(yaml.safe_dump(data, sort_keys=False, allow_unicode=True), encoding="utf-8")

    def _yaml_to_json(self, input_path: Path, output_path: Path, options: ConversionOptions, monitor) -> None:
        data = text_readers.load_yaml(input_path)
        monitor.report(0.5)
        # YAML timestamps have no JSON type
        output_path.write_text(json.dumps(data, indent=2, ensure_ascii=False, default=str) + "\n", encoding="utf-8")


# ============= Spreadsheets =============

class SpreadsheetConversionEngine(BaseConversionEngine):
    category = FormatCategory.SPREADSHEET
    READERS = {
        "csv": text_readers.read_csv,
        "tsv": text_readers.read_tsv,
    }
    WRITERS = {
        "csv": writers.write_csv,
        "tsv": writers.write_tsv,
        "pdf": writers.write_pdf,
        "html": writers.write_html,
        "txt": writers.write_txt,
    }
