# api/schemas.py
from datetime import datetime
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from core.domain import (
    CompressionLevel,
    ConversionOptions,
    Document,
    DocumentContent,
    DocumentMetadata,
    VerificationOptions,
    VerificationResult,
)
from core.formats import DocumentFormat
from core.progress import (
    Comparing,
    Completed,
    Failed,
    Initializing,
    Processing,
    TERMINAL_KINDS,
    VerificationCompleted,
    VerificationFailed,
    VerificationInitializing,
    Verifying,
)


class FormatResponse(BaseModel):
    id: str
    name: str
    extension: str
    mime_type: str
    category: str
    is_input_supported: bool
    is_output_supported: bool
    requires_ocr: bool

    @staticmethod
    def from_format(fmt: DocumentFormat) -> 'FormatResponse':
        return FormatResponse(
            id=fmt.id,
            name=fmt.name,
            extension=fmt.extension,
            mime_type=fmt.mime_type,
            category=fmt.category.value,
            is_input_supported=fmt.is_input_supported,
            is_output_supported=fmt.is_output_supported,
            requires_ocr=fmt.requires_ocr,
        )

class FormatsListResponse(BaseModel):
    formats: List[FormatResponse]

class MetadataResponse(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    subject: Optional[str] = None
    keywords: List[str] = []
    creator: Optional[str] = None
    producer: Optional[str] = None
    creation_date: Optional[datetime] = None
    modification_date: Optional[datetime] = None
    page_count: Optional[int] = None
    is_encrypted: bool = False
    is_password_protected: bool = False
    properties: Dict[str, str] = {}

    @staticmethod
    def from_metadata(metadata: DocumentMetadata) -> 'MetadataResponse':
        return MetadataResponse(
            title=metadata.title,
            author=metadata.author,
            subject=metadata.subject,
            keywords=sorted(metadata.keywords),
            creator=metadata.creator,
            producer=metadata.producer,
            creation_date=metadata.creation_date,
            modification_date=metadata.modification_date,
            page_count=metadata.page_count,
            is_encrypted=metadata.is_encrypted,
            is_password_protected=metadata.is_password_protected,
            properties=dict(metadata.properties),
        )

class DocumentResponse(BaseModel):
    id: str
    name: str
    format: str
    size: int
    formatted_size: str
    date_created: datetime
    date_modified: datetime
    has_thumbnail: bool = False
    metadata: MetadataResponse

    @staticmethod
    def from_document(document: Document) -> 'DocumentResponse':
        return DocumentResponse(
            id=document.id,
            name=document.name,
            format=document.format.id,
            size=document.size,
            formatted_size=document.formatted_size(),
            date_created=document.date_created,
            date_modified=document.date_modified,
            has_thumbnail=bool(document.thumbnail_ref),
            metadata=MetadataResponse.from_metadata(document.metadata),
        )

class DocumentsListResponse(BaseModel):
    documents: List[DocumentResponse]

class DeleteResponse(BaseModel):
    status: str
    message: str

class ConvertRequest(BaseModel):
    target_format: str
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
    custom_options: Dict[str, str] = {}

    def to_options(self) -> ConversionOptions:
        return ConversionOptions(
            preserve_formatting=self.preserve_formatting,
            preserve_images=self.preserve_images,
            preserve_fonts=self.preserve_fonts,
            preserve_metadata=self.preserve_metadata,
            preserve_hyperlinks=self.preserve_hyperlinks,
            preserve_headers_footers=self.preserve_headers_footers,
            preserve_page_numbers=self.preserve_page_numbers,
            auto_verify=self.auto_verify,
            compression_level=self.compression_level,
            password=self.password,
            custom_options=dict(self.custom_options),
        )

class BatchConvertRequest(ConvertRequest):
    document_ids: List[str] = Field(..., min_length=1)

class JobResponse(BaseModel):
    job_id: str
    status: str

# Progress tracking response
class JobStatusResponse(BaseModel):
    job_id: str
    status: str
    target_format: str
    total_documents: int
    processed_documents: int
    progress_percent: int  # 0-100
    current_document_id: Optional[str] = None
    output_document_ids: List[str] = []
    failures: List[Dict[str, str]] = []
    error: Optional[str] = None

class VerifyRequest(BaseModel):
    source_document_id: str
    converted_document_id: str
    verify_content: bool = True
    verify_formatting: bool = True
    verify_structure: bool = True
    verify_metadata: bool = True
    minimum_match_score: float = Field(0.9, ge=0.0, le=1.0)
    generate_report: bool = False
    stream: bool = False

    def to_options(self) -> VerificationOptions:
        return VerificationOptions(
            verify_content=self.verify_content,
            verify_formatting=self.verify_formatting,
            verify_structure=self.verify_structure,
            verify_metadata=self.verify_metadata,
            minimum_match_score=self.minimum_match_score,
            generate_report=self.generate_report,
        )

class IssueResponse(BaseModel):
    type: str
    description: str
    severity: str
    location: Optional[str] = None

class VerificationResultResponse(BaseModel):
    success: bool
    overall_score: float
    content_match_score: float
    formatting_match_score: float
    structure_match_score: float
    metadata_match_score: float
    issues: List[IssueResponse] = []
    report_ref: Optional[str] = None

    @staticmethod
    def from_result(result: VerificationResult, report_ref: Optional[str] = None) -> 'VerificationResultResponse':
        return VerificationResultResponse(
            success=result.success,
            overall_score=result.overall_score,
            content_match_score=result.content_match_score,
            formatting_match_score=result.formatting_match_score,
            structure_match_score=result.structure_match_score,
            metadata_match_score=result.metadata_match_score,
            issues=[
                IssueResponse(
                    type=issue.type.value,
                    description=issue.description,
                    severity=issue.severity.value,
                    location=issue.location,
                )
                for issue in result.issues
            ],
            report_ref=report_ref,
        )

class ReportRequest(BaseModel):
    source_document_id: str
    converted_document_id: str

class ReportResponse(BaseModel):
    report_ref: str
    download_url: str

class ContentResponse(BaseModel):
    document_id: str
    text: str
    tables: List[List[List[str]]] = []
    links: List[Dict[str, str]] = []
    headings: List[Dict[str, Any]] = []
    image_count: int = 0
    fonts: List[str] = []
    paragraphs: int = 0
    pages: int = 0

    @staticmethod
    def from_content(document_id: str, content: DocumentContent) -> 'ContentResponse':
        return ContentResponse(
            document_id=document_id,
            text=content.text,
            tables=[table.rows for table in content.tables],
            links=[{"text": link.text, "url": link.url} for link in content.links],
            headings=[
                {"text": h.text, "level": h.level, "page_number": h.page_number}
                for h in content.structure.headings
            ],
            image_count=len(content.images),
            fonts=sorted(content.fonts),
            paragraphs=content.structure.paragraphs,
            pages=content.structure.pages,
        )



def progress_payload(event) -> Dict[str, Any]:
    """JSON-ready dict for one conversion or verification progress event (one NDJSON line)."""
    payload: Dict[str, Any] = {"kind": event.kind.value, "final": event.kind in TERMINAL_KINDS}
    if isinstance(event, Initializing):
        payload["document_id"] = event.document.id
    elif isinstance(event, Verifying):
        payload.update(document_id=event.document.id, converted_document_id=event.converted.id)
    elif isinstance(event, Processing):
        payload.update(document_id=event.document.id, progress=round(event.progress, 4))
    elif isinstance(event, Completed):
        result = event.result
        payload.update(
            document_id=result.source_document.id,
            success=result.success,
            conversion_time=round(result.conversion_time, 3),
            output_document=(
                DocumentResponse.from_document(result.output_document).model_dump(mode="json")
                if result.output_document else None
            ),
            verification=(
                VerificationResultResponse.from_result(result.verification_result).model_dump(mode="json")
                if result.verification_result else None
            ),
        )
    elif isinstance(event, Failed):
        payload.update(
            document_id=event.document.id,
            error=event.error,
            error_code=event.error_code.value if event.error_code else None,
        )
    elif isinstance(event, VerificationInitializing):
        payload.update(source_document_id=event.source.id, converted_document_id=event.converted.id)
    elif isinstance(event, Comparing):
        payload["progress"] = round(event.progress, 4)
    elif isinstance(event, VerificationCompleted):
        payload["result"] = VerificationResultResponse.from_result(event.result, event.report_ref).model_dump(mode="json")
    elif isinstance(event, VerificationFailed):
        payload["error"] = event.error
    return payload
