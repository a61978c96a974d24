# core/domain.py
"""Shared enumerations, errors and domain models used across the application."""
from enum import Enum

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from core.formats import DocumentFormat

# ============= Enums =============

class ErrorCode(str, Enum):
    """Error codes for user-facing error messages."""
    UNSUPPORTED_CONVERSION = "UNSUPPORTED_CONVERSION"
    ENGINE_FAILURE = "ENGINE_FAILURE"
    UNEXPECTED_FAULT = "UNEXPECTED_FAULT"
    INVALID_FORMAT = "INVALID_FORMAT"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    DOCUMENT_NOT_FOUND = "DOCUMENT_NOT_FOUND"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    OCR_UNAVAILABLE = "OCR_UNAVAILABLE"
    REPORT_FAILED = "REPORT_FAILED"


class CompressionLevel(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class IssueType(str, Enum):
    CONTENT_MISMATCH = "content_mismatch"
    FORMATTING_MISMATCH = "formatting_mismatch"
    STRUCTURE_MISMATCH = "structure_mismatch"
    METADATA_MISMATCH = "metadata_mismatch"
    RESOURCE_MISSING = "resource_missing"
    FONT_SUBSTITUTION = "font_substitution"


class IssueSeverity(str, Enum):
    """Ordered from most to least severe."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @property
    def rank(self) -> int:
        return list(IssueSeverity).index(self)


# ============= Errors =============

class DocumentConversionError(Exception):
    """Raised when a document operation fails with a specific error code"""

    def __init__(self, message: str, error_code: ErrorCode):
        self.message = message
        self.error_code = error_code
        super().__init__(message)

    def __str__(self):
        # Format used for logging and progress store
        return f"[{self.error_code.value}] {self.message}"


class MissingEngineError(RuntimeError):
    """A catalog category has no registered engine. Fatal at startup."""


class ConversionCancelled(Exception):
    """Raised inside an engine once cancellation of its invocation is observed."""


# ============= Document Models =============

@dataclass(frozen=True)
class DocumentMetadata:
    """Immutable metadata snapshot, replaced wholesale on extraction."""
    title: Optional[str] = None
    author: Optional[str] = None
    subject: Optional[str] = None
    keywords: FrozenSet[str] = frozenset()
    creator: Optional[str] = None
    producer: Optional[str] = None
    creation_date: Optional[datetime] = None
    modification_date: Optional[datetime] = None
    page_count: Optional[int] = None
    is_encrypted: bool = False
    is_password_protected: bool = False
    properties: Mapping[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "author": self.author,
            "subject": self.subject,
            "keywords": sorted(self.keywords),
            "creator": self.creator,
            "producer": self.producer,
            "creation_date": self.creation_date.isoformat() if self.creation_date else None,
            "modification_date": self.modification_date.isoformat() if self.modification_date else None,
            "page_count": self.page_count,
            "is_encrypted": self.is_encrypted,
            "is_password_protected": self.is_password_protected,
            "properties": dict(self.properties),
        }

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> 'DocumentMetadata':
        if not data:
            return DocumentMetadata()

        def _date(value: Optional[str]) -> Optional[datetime]:
            return datetime.fromisoformat(value) if value else None

        return DocumentMetadata(
            title=data.get("title"),
            author=data.get("author"),
            subject=data.get("subject"),
            keywords=frozenset(data.get("keywords") or ()),
            creator=data.get("creator"),
            producer=data.get("producer"),
            creation_date=_date(data.get("creation_date")),
            modification_date=_date(data.get("modification_date")),
            page_count=data.get("page_count"),
            is_encrypted=bool(data.get("is_encrypted", False)),
            is_password_protected=bool(data.get("is_password_protected", False)),
            properties=dict(data.get("properties") or {}),
        )


@dataclass
class Document:
    """Domain model for a stored document"""
    id: str
    name: str
    format: DocumentFormat
    size: int
    storage_ref: str
    local_path: Optional[str] = None
    date_created: datetime = field(default_factory=datetime.now)
    date_modified: datetime = field(default_factory=datetime.now)
    thumbnail_ref: Optional[str] = None
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)

    @property
    def extension(self) -> str:
        return self.format.extension

    def exists(self) -> bool:
        return bool(self.local_path) and Path(self.local_path).exists()

    def formatted_size(self) -> str:
        if self.size < 1024:
            return f"{self.size} B"
        if self.size < 1024 * 1024:
            return f"{self.size // 1024} KB"
        return f"{self.size // (1024 * 1024)} MB"


# ============= Options =============

@dataclass
class ConversionOptions:
    preserve_formatting: bool = True
    preserve_images: bool = True
    preserve_fonts: bool = True
    preserve_metadata: bool = True
    preserve_hyperlinks: bool = True
    preserve_headers_footers: bool = True
    preserve_page_numbers: bool = True
    auto_verify: bool = True
    compression_level: CompressionLevel = CompressionLevel.MEDIUM
    password: Optional[str] = None
    custom_options: Dict[str, str] = field(default_factory=dict)


@dataclass
class VerificationOptions:
    verify_content: bool = True
    verify_formatting: bool = True
    verify_structure: bool = True
    verify_metadata: bool = True
    minimum_match_score: float = 0.9
    generate_report: bool = False


@dataclass
class ExtractionOptions:
    extract_text: bool = True
    extract_images: bool = True
    extract_tables: bool = True
    preserve_formatting: bool = True
    extract_hyperlinks: bool = True

    @staticmethod
    def for_conversion(options: ConversionOptions) -> 'ExtractionOptions':
        """Only extract what the conversion was asked to carry over."""
        return ExtractionOptions(
            extract_images=options.preserve_images,
            preserve_formatting=options.preserve_formatting,
            extract_hyperlinks=options.preserve_hyperlinks,
        )


# ============= Content Models =============

@dataclass
class DocumentImage:
    id: str
    data: bytes
    mime_type: str
    width: int = 0
    height: int = 0
    description: Optional[str] = None


@dataclass
class DocumentTable:
    id: str
    rows: List[List[str]]
    caption: Optional[str] = None

    @property
    def column_count(self) -> int:
        return max((len(r) for r in self.rows), default=0)


@dataclass
class DocumentLink:
    text: str
    url: str


@dataclass
class Heading:
    text: str
    level: int
    page_number: Optional[int] = None


@dataclass
class DocumentStructure:
    headings: List[Heading] = field(default_factory=list)
    paragraphs: int = 0
    sections: int = 0
    pages: int = 0


@dataclass
class DocumentContent:
    """Format-neutral content model. Pages in `text` are separated by form feeds."""
    text: str = ""
    formatted_text: Optional[str] = None
    images: List[DocumentImage] = field(default_factory=list)
    tables: List[DocumentTable] = field(default_factory=list)
    links: List[DocumentLink] = field(default_factory=list)
    structure: DocumentStructure = field(default_factory=DocumentStructure)
    fonts: FrozenSet[str] = frozenset()


# ============= Results =============

@dataclass(frozen=True)
class VerificationIssue:
    type: IssueType
    description: str
    severity: IssueSeverity
    location: Optional[str] = None


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    overall_score: float
    content_match_score: float
    formatting_match_score: float
    structure_match_score: float
    metadata_match_score: float
    issues: Tuple[VerificationIssue, ...] = ()


@dataclass(frozen=True)
class ConversionResult:
    source_document: Document
    output_document: Optional[Document]
    success: bool
    verification_result: Optional[VerificationResult] = None
    conversion_time: float = 0.0  # seconds
    error_message: Optional[str] = None
