# core/interfaces.py
"""Core interfaces for the conversion system"""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator, List, Optional, Set, Tuple

from core.domain import (
    ConversionOptions,
    Document,
    DocumentContent,
    DocumentMetadata,
    ExtractionOptions,
    VerificationOptions,
    VerificationResult,
)
from core.formats import DocumentFormat, FormatCategory
from core.progress import BatchConversionProgress, ConversionMonitor, ConversionProgress, VerificationProgress

# ============= Conversion Engine Interface =============
class IConversionEngine(ABC):
    """
    Byte-level conversion and extraction for one format category.

    convert() never raises: every failure becomes False plus a logged cause
    and a reason recorded on the monitor.
    """

    category: FormatCategory

    @abstractmethod
    def convert(
        self,
        input_path: Path,
        output_path: Path,
        source_format: DocumentFormat,
        target_format: DocumentFormat,
        options: ConversionOptions,
        monitor: Optional[ConversionMonitor] = None,
    ) -> bool:
        """Convert input_path into output_path. Returns success."""
        pass

    @abstractmethod
    def extract_content(
        self, input_path: Path, document_format: DocumentFormat, options: ExtractionOptions
    ) -> DocumentContent:
        """Extract text, tables, images, links and outline"""
        pass

    @abstractmethod
    def extract_metadata(self, input_path: Path, document_format: DocumentFormat) -> DocumentMetadata:
        """Extract document properties"""
        pass

    @abstractmethod
    def supports_conversion(self, source_format: DocumentFormat, target_format: DocumentFormat) -> bool:
        """Whether this engine can produce target_format from source_format"""
        pass

# ============= Verification Interface =============
class IVerificationEngine(ABC):
    """Scores a converted document against its source."""

    @abstractmethod
    async def verify(
        self,
        source: Document,
        converted: Document,
        options: VerificationOptions,
        progress_callback=None,
    ) -> VerificationResult:
        """Compare both documents across content, formatting, structure and metadata"""
        pass

# ============= Report Interface =============
class IReportGenerator(ABC):
    """Turns verification results into artifacts. Never called inline by a conversion."""

    @abstractmethod
    async def generate_report(self, source: Document, converted: Document, result: VerificationResult) -> str:
        """Write a text report, return its storage reference"""
        pass

    @abstractmethod
    async def generate_visual_comparison(self, source: Document, converted: Document) -> str:
        """Write a side-by-side diff image, return its storage reference"""
        pass

# ============= Repository Interfaces =============
class IDocumentRepository(ABC):
    """
    Interface for document record persistence.

    Does NOT handle: physical bytes (see IBlobStorage).
    Implementations: SQLDocumentRepository.
    """

    @abstractmethod
    async def save(self, document: Document) -> Document:
        """Insert or update a document record"""
        pass

    @abstractmethod
    async def get_by_id(self, document_id: str) -> Optional[Document]:
        """Get document by ID"""
        pass

    @abstractmethod
    async def delete(self, document: Document) -> bool:
        """Delete the record (and its local file, if any)"""
        pass

    @abstractmethod
    async def list_all(self) -> List[Document]:
        """List all documents, newest first"""
        pass

    @abstractmethod
    async def list_by_format(self, document_format: DocumentFormat) -> List[Document]:
        """List documents of one format"""
        pass

    @abstractmethod
    async def search(self, query: str) -> List[Document]:
        """Case-insensitive match on document name"""
        pass

    @abstractmethod
    async def list_recent(self, limit: int = 10) -> List[Document]:
        """Most recently modified documents"""
        pass

# ============= Blob Storage Interface =============
class IBlobStorage(ABC):
    """Raw bytes behind opaque storage references"""

    @abstractmethod
    async def read(self, storage_ref: str) -> bytes:
        """Read all bytes for a reference"""
        pass

    @abstractmethod
    async def save(self, data: bytes, filename: str) -> Tuple[str, int]:
        """Persist bytes, return (storage_ref, size)"""
        pass

    @abstractmethod
    async def delete(self, storage_ref: str) -> bool:
        """Delete stored bytes"""
        pass

    @abstractmethod
    def local_path(self, storage_ref: str) -> Optional[str]:
        """Local file path for a reference when one exists"""
        pass

# ============= Conversion Service Interface =============
class IConversionService(ABC):
    """Entry point used by adapters (HTTP, jobs)."""

    @abstractmethod
    def is_conversion_supported(self, source_format: DocumentFormat, target_format: DocumentFormat) -> bool:
        pass

    @abstractmethod
    def get_supported_target_formats(self, source_format: DocumentFormat) -> Set[DocumentFormat]:
        pass

    @abstractmethod
    def convert(
        self, document: Document, target_format: DocumentFormat, options: Optional[ConversionOptions] = None
    ) -> AsyncIterator[ConversionProgress]:
        """Stream progress; ends with exactly one Completed or Failed"""
        pass

    @abstractmethod
    def batch_convert(
        self, documents: List[Document], target_format: DocumentFormat, options: Optional[ConversionOptions] = None
    ) -> AsyncIterator[BatchConversionProgress]:
        """Convert sequentially, streaming batch snapshots"""
        pass

    @abstractmethod
    def verify_conversion(
        self, source: Document, converted: Document, options: Optional[VerificationOptions] = None
    ) -> AsyncIterator[VerificationProgress]:
        """Stream verification progress"""
        pass

    @abstractmethod
    async def extract_content(self, document: Document, options: Optional[ExtractionOptions] = None) -> DocumentContent:
        pass

    @abstractmethod
    async def extract_metadata(self, document: Document) -> Document:
        """Copy of the document carrying freshly extracted metadata"""
        pass
