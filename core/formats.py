# core/formats.py
"""Static catalog of known document formats."""
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional


class FormatCategory(str, Enum):
    """Format families. Exactly one conversion engine serves each category."""
    DOCUMENT = "document"
    SPREADSHEET = "spreadsheet"
    PRESENTATION = "presentation"
    EMAIL = "email"
    IMAGE = "image"
    MARKUP = "markup"
    EBOOK = "ebook"
    ARCHIVE = "archive"
    PLAIN_TEXT = "plain_text"


@dataclass(frozen=True)
class DocumentFormat:
    """Immutable description of one file format."""
    id: str
    name: str
    extension: str
    mime_type: str
    category: FormatCategory
    is_input_supported: bool = True
    is_output_supported: bool = True
    requires_ocr: bool = False

    def __str__(self) -> str:
        return self.name


# ============= Catalog =============

PDF = DocumentFormat("pdf", "PDF", "pdf", "application/pdf", FormatCategory.DOCUMENT)
DOCX = DocumentFormat(
    "docx", "Word Document", "docx",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    FormatCategory.DOCUMENT,
)
DOC = DocumentFormat("doc", "Word Document (Legacy)", "doc", "application/msword", FormatCategory.DOCUMENT)
RTF = DocumentFormat("rtf", "Rich Text Format", "rtf", "application/rtf", FormatCategory.DOCUMENT)
ODT = DocumentFormat(
    "odt", "OpenDocument Text", "odt", "application/vnd.oasis.opendocument.text", FormatCategory.DOCUMENT
)
PAGES = DocumentFormat(
    "pages", "Apple Pages", "pages", "application/x-iwork-pages-sffpages",
    FormatCategory.DOCUMENT, is_output_supported=False,
)

XLSX = DocumentFormat(
    "xlsx", "Excel Spreadsheet", "xlsx",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    FormatCategory.SPREADSHEET,
)
XLS = DocumentFormat("xls", "Excel Spreadsheet (Legacy)", "xls", "application/vnd.ms-excel", FormatCategory.SPREADSHEET)
ODS = DocumentFormat(
    "ods", "OpenDocument Spreadsheet", "ods", "application/vnd.oasis.opendocument.spreadsheet",
    FormatCategory.SPREADSHEET,
)
CSV = DocumentFormat("csv", "CSV", "csv", "text/csv", FormatCategory.SPREADSHEET)
TSV = DocumentFormat("tsv", "TSV", "tsv", "text/tab-separated-values", FormatCategory.SPREADSHEET)

PPTX = DocumentFormat(
    "pptx", "PowerPoint Presentation", "pptx",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    FormatCategory.PRESENTATION,
)
PPT = DocumentFormat(
    "ppt", "PowerPoint Presentation (Legacy)", "ppt", "application/vnd.ms-powerpoint", FormatCategory.PRESENTATION
)
ODP = DocumentFormat(
    "odp", "OpenDocument Presentation", "odp", "application/vnd.oasis.opendocument.presentation",
    FormatCategory.PRESENTATION,
)
KEY = DocumentFormat(
    "key", "Apple Keynote", "key", "application/x-iwork-keynote-sffkey",
    FormatCategory.PRESENTATION, is_output_supported=False,
)

MSG = DocumentFormat("msg", "Outlook Message", "msg", "application/vnd.ms-outlook", FormatCategory.EMAIL)
EML = DocumentFormat("eml", "Email Message", "eml", "message/rfc822", FormatCategory.EMAIL)
MBOX = DocumentFormat("mbox", "Mailbox", "mbox", "application/mbox", FormatCategory.EMAIL)

JPG = DocumentFormat("jpg", "JPEG Image", "jpg", "image/jpeg", FormatCategory.IMAGE, requires_ocr=True)
PNG = DocumentFormat("png", "PNG Image", "png", "image/png", FormatCategory.IMAGE, requires_ocr=True)
TIFF = DocumentFormat("tiff", "TIFF Image", "tiff", "image/tiff", FormatCategory.IMAGE, requires_ocr=True)
BMP = DocumentFormat("bmp", "BMP Image", "bmp", "image/bmp", FormatCategory.IMAGE, requires_ocr=True)
WEBP = DocumentFormat("webp", "WebP Image", "webp", "image/webp", FormatCategory.IMAGE, requires_ocr=True)
GIF = DocumentFormat("gif", "GIF Image", "gif", "image/gif", FormatCategory.IMAGE, requires_ocr=True)

MD = DocumentFormat("md", "Markdown", "md", "text/markdown", FormatCategory.MARKUP)
HTML = DocumentFormat("html", "HTML", "html", "text/html", FormatCategory.MARKUP)
XML = DocumentFormat("xml", "XML", "xml", "text/xml", FormatCategory.MARKUP)
JSON = DocumentFormat("json", "JSON", "json", "application/json", FormatCategory.MARKUP)
YAML = DocumentFormat("yaml", "YAML", "yaml", "application/x-yaml", FormatCategory.MARKUP)
LATEX = DocumentFormat("latex", "LaTeX", "tex", "application/x-latex", FormatCategory.MARKUP)

EPUB = DocumentFormat("epub", "EPUB", "epub", "application/epub+zip", FormatCategory.EBOOK)
MOBI = DocumentFormat("mobi", "Mobipocket", "mobi", "application/x-mobipocket-ebook", FormatCategory.EBOOK)
AZW = DocumentFormat("azw", "Kindle (AZW)", "azw", "application/vnd.amazon.ebook", FormatCategory.EBOOK)
AZW3 = DocumentFormat("azw3", "Kindle (AZW3)", "azw3", "application/vnd.amazon.ebook", FormatCategory.EBOOK)

ZIP = DocumentFormat("zip", "ZIP Archive", "zip", "application/zip", FormatCategory.ARCHIVE)
RAR = DocumentFormat("rar", "RAR Archive", "rar", "application/x-rar-compressed", FormatCategory.ARCHIVE)
SEVEN_Z = DocumentFormat("7z", "7-Zip Archive", "7z", "application/x-7z-compressed", FormatCategory.ARCHIVE)

TXT = DocumentFormat("txt", "Plain Text", "txt", "text/plain", FormatCategory.PLAIN_TEXT)

ALL_FORMATS: List[DocumentFormat] = [
    PDF, DOCX, DOC, RTF, ODT, PAGES,
    XLSX, XLS, ODS, CSV, TSV,
    PPTX, PPT, ODP, KEY,
    MSG, EML, MBOX,
    JPG, PNG, TIFF, BMP, WEBP, GIF,
    MD, HTML, XML, JSON, YAML, LATEX,
    EPUB, MOBI, AZW, AZW3,
    ZIP, RAR, SEVEN_Z,
    TXT,
]

FORMATS_BY_ID: Mapping[str, DocumentFormat] = MappingProxyType({f.id: f for f in ALL_FORMATS})

# Common spellings that are not the canonical extension
_EXTENSION_ALIASES: Dict[str, str] = {
    "jpeg": "jpg",
    "tif": "tiff",
    "htm": "html",
    "yml": "yaml",
    "markdown": "md",
    "text": "txt",
}

if len(FORMATS_BY_ID) != len(ALL_FORMATS):
    raise RuntimeError("Duplicate format id in catalog")


# ============= Lookups =============

def get_format(format_id: str) -> Optional[DocumentFormat]:
    return FORMATS_BY_ID.get(format_id)


def formats_by_category(category: FormatCategory) -> List[DocumentFormat]:
    return [f for f in ALL_FORMATS if f.category == category]


def input_formats() -> List[DocumentFormat]:
    return [f for f in ALL_FORMATS if f.is_input_supported]


def output_formats() -> List[DocumentFormat]:
    return [f for f in ALL_FORMATS if f.is_output_supported]


def format_by_extension(extension: str) -> Optional[DocumentFormat]:
    """Case-insensitive lookup; accepts 'PDF', '.pdf' and common aliases like 'jpeg'."""
    ext = extension.strip().lstrip(".").lower()
    ext = _EXTENSION_ALIASES.get(ext, ext)
    for fmt in ALL_FORMATS:
        if fmt.extension == ext:
            return fmt
    return None


def format_by_mime_type(mime_type: str) -> Optional[DocumentFormat]:
    """First catalog entry with this MIME type (azw/azw3 share one)."""
    mime = mime_type.split(";")[0].strip().lower()
    for fmt in ALL_FORMATS:
        if fmt.mime_type == mime:
            return fmt
    return None
