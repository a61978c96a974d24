# infrastructure/container_engines.py
"""Engines for container-like formats: presentations, email, e-books and archives."""
import logging
import mailbox
from pathlib import Path

from config import settings
from core.domain import ConversionOptions, DocumentConversionError, ErrorCode
from core.formats import DocumentFormat, FormatCategory
from infrastructure import readers, writers
from infrastructure.conversion_engines import BaseConversionEngine

logger = logging.getLogger(settings.LOGGER_NAME)


class PresentationConversionEngine(BaseConversionEngine):
    """Slides become pages: one page per slide, the slide title as heading."""
    category = FormatCategory.PRESENTATION
    READERS = {
        "pptx": readers.read_pptx,
        "odp": readers.read_odp,
    }
    METADATA_READERS = {
        "pptx": readers.read_ooxml_metadata,
        "odp": readers.read_odf_metadata,
    }
    WRITERS = {"pdf": writers.write_pdf}


class EmailConversionEngine(BaseConversionEngine):
    category = FormatCategory.EMAIL
    READERS = {
        "eml": readers.read_eml,
        "mbox": readers.read_mbox,
    }
    METADATA_READERS = {
        "eml": readers.read_eml_metadata,
        "mbox": readers.read_mbox_metadata,
    }
    WRITERS = {
        "pdf": writers.write_pdf,
        "txt": writers.write_txt,
        "html": writers.write_html,
    }
    DIRECT_ROUTES = {
        ("eml", "mbox"): "_eml_to_mbox",
        ("mbox", "eml"): "_mbox_to_eml",
    }

    def _eml_to_mbox(self, input_path: Path, output_path: Path, options: ConversionOptions, monitor) -> None:
        message = readers.parse_email(input_path.read_bytes())
        monitor.report(0.5)
        box = mailbox.mbox(str(output_path), create=True)
        try:
            box.add(message)
            box.flush()
        finally:
            box.close()

    def _mbox_to_eml(self, input_path: Path, output_path: Path, options: ConversionOptions, monitor) -> None:
        messages = readers.read_mbox_messages(input_path)
        if len(messages) != 1:
            raise DocumentConversionError(
                f"Mailbox holds {len(messages)} messages; only a single-message mailbox converts to EML",
                ErrorCode.UNSUPPORTED_CONVERSION,
            )
        monitor.report(0.5)
        output_path.write_bytes(messages[0].as_bytes())


class EbookConversionEngine(BaseConversionEngine):
    """EPUB chapters (spine order) become pages."""
    category = FormatCategory.EBOOK
    READERS = {"epub": readers.read_epub}
    METADATA_READERS = {"epub": readers.read_epub_metadata}
    WRITERS = {
        "pdf": writers.write_pdf,
        "docx": writers.write_docx,
        "txt": writers.write_txt,
        "html": writers.write_html,
    }


class ArchiveConversionEngine(BaseConversionEngine):
    """Archives are never converted; their listing and properties can still be extracted."""
    category = FormatCategory.ARCHIVE
    READERS = {"zip": readers.read_zip_listing}
    METADATA_READERS = {"zip": readers.read_zip_metadata}

    def supports_conversion(self, source_format: DocumentFormat, target_format: DocumentFormat) -> bool:
        return False
