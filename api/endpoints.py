# api/endpoints.py
"""
API endpoints for the document conversion service.

Thin adapter over ConversionService: conversions and verifications stream
their progress events as NDJSON, batch conversions run as background jobs
that clients poll.
"""
import json
import logging
import uuid
from contextlib import aclosing
from pathlib import Path
from typing import AsyncContextManager, AsyncIterator, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse, StreamingResponse

from config import settings
from core.domain import ConversionOptions, Document, DocumentConversionError, ErrorCode, VerificationOptions
from core.formats import ALL_FORMATS, DocumentFormat, format_by_extension, get_format
from core.interfaces import IBlobStorage, IDocumentRepository, IReportGenerator
from core.progress import VerificationCompleted, VerificationFailed
from infrastructure.image_utils import ImageProcessor
from infrastructure.progress_store import ProgressStore
from services.async_processor import BackgroundJobRunner
from services.conversion_service import ConversionService
from services.factory import (
    get_blob_storage,
    get_conversion_service,
    get_document_repository,
    get_image_processor,
    get_job_runner,
    get_progress_store,
    get_report_generator,
    get_report_storage,
    get_service_scope,
)
from api.schemas import (
    BatchConvertRequest,
    ContentResponse,
    ConvertRequest,
    DeleteResponse,
    DocumentResponse,
    DocumentsListResponse,
    FormatResponse,
    FormatsListResponse,
    JobResponse,
    JobStatusResponse,
    MetadataResponse,
    ReportRequest,
    ReportResponse,
    VerificationResultResponse,
    VerifyRequest,
    progress_payload,
)
from utils.common import get_file_extension, replace_extension, validate_document_id, validate_file_content

logger = logging.getLogger(settings.LOGGER_NAME)

router = APIRouter()

NDJSON_MEDIA_TYPE = "application/x-ndjson"

_STATUS_BY_CODE: Dict[ErrorCode, int] = {
    ErrorCode.DOCUMENT_NOT_FOUND: 404,
    ErrorCode.FILE_TOO_LARGE: 413,
    ErrorCode.INVALID_FORMAT: 415,
    ErrorCode.UNSUPPORTED_CONVERSION: 422,
    ErrorCode.EXTRACTION_FAILED: 422,
    ErrorCode.REPORT_FAILED: 422,
    ErrorCode.OCR_UNAVAILABLE: 503,
}


# ---------- Helpers ----------
def _http_error(e: DocumentConversionError) -> HTTPException:
    return HTTPException(status_code=_STATUS_BY_CODE.get(e.error_code, 500), detail=e.message)


async def _get_document(document_id: str, document_repo: IDocumentRepository) -> Document:
    if not validate_document_id(document_id):
        raise HTTPException(status_code=422, detail="Invalid document ID format")

    document = await document_repo.get_by_id(document_id)
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


def _get_target_format(format_id: str) -> DocumentFormat:
    target = get_format(format_id.lower())
    if target is None:
        raise HTTPException(status_code=422, detail=f"Unknown format: {format_id}")
    return target


def _stored_file(storage: IBlobStorage, storage_ref: Optional[str]) -> Path:
    """Local path of a stored blob. Storage refuses references outside its directory."""
    if not storage_ref:
        raise HTTPException(status_code=404, detail="File not found")
    try:
        path = storage.local_path(storage_ref)
    except DocumentConversionError:
        raise HTTPException(status_code=400, detail="Invalid file path")
    if not path:
        raise HTTPException(status_code=404, detail="File not found")
    return Path(path)


async def _ndjson(events: AsyncIterator) -> AsyncIterator[str]:
    """Serialize progress events one per line. Closing the response closes the stream."""
    async with aclosing(events) as stream:
        async for event in stream:
            yield json.dumps(progress_payload(event)) + "\n"


# ---------- Formats ----------
@router.get("/formats", response_model=FormatsListResponse)
async def list_formats() -> FormatsListResponse:
    return FormatsListResponse(formats=[FormatResponse.from_format(f) for f in ALL_FORMATS])


@router.get("/formats/{format_id}/targets", response_model=FormatsListResponse)
async def list_target_formats(
    format_id: str, conversion_service: ConversionService = Depends(get_conversion_service)
) -> FormatsListResponse:
    source = get_format(format_id.lower())
    if source is None:
        raise HTTPException(status_code=404, detail="Format not found")
    targets = sorted(conversion_service.get_supported_target_formats(source), key=lambda f: f.id)
    return FormatsListResponse(formats=[FormatResponse.from_format(f) for f in targets])


# ---------- Upload ----------
@router.post("/documents", response_model=DocumentResponse)
async def upload_document(
    file: UploadFile = File(...),
    conversion_service: ConversionService = Depends(get_conversion_service),
    document_repo: IDocumentRepository = Depends(get_document_repository),
    blob_storage: IBlobStorage = Depends(get_blob_storage),
    image_processor: ImageProcessor = Depends(get_image_processor),
) -> DocumentResponse:
    filename = Path(file.filename or "").name
    document_format = format_by_extension(get_file_extension(filename))
    if document_format is None or not document_format.is_input_supported:
        raise HTTPException(status_code=415, detail=f"Unsupported file type: {filename or 'unnamed'}")

    data = await file.read()
    if len(data) > settings.MAX_FILE_SIZE:
        raise HTTPException(
            status_code=413, detail=f"File exceeds {settings.MAX_FILE_SIZE // (1024 * 1024)}MB limit"
        )
    if not data:
        raise HTTPException(status_code=422, detail="File is empty")

    storage_ref, size = await blob_storage.save(data, filename)
    local_path = blob_storage.local_path(storage_ref)
    if not local_path or not validate_file_content(local_path, document_format.id):
        await blob_storage.delete(storage_ref)
        raise HTTPException(status_code=415, detail=f"File content does not match {document_format.name}")

    document = Document(
        id=str(uuid.uuid4()),
        name=filename,
        format=document_format,
        size=size,
        storage_ref=storage_ref,
        local_path=local_path,
    )
    try:
        document = await conversion_service.extract_metadata(document)
    except DocumentConversionError as e:
        logger.warning(f"[UPLOAD] Metadata unavailable for {filename}: {e}")

    thumbnail = await image_processor.thumbnail_for(Path(local_path), document_format)
    if thumbnail:
        document.thumbnail_ref, _ = await blob_storage.save(thumbnail, replace_extension(filename, "webp"))

    await document_repo.save(document)
    logger.info(f"[UPLOAD] {filename} stored as {document.id} ({document.formatted_size()})")
    return DocumentResponse.from_document(document)


# ---------- List / search documents ----------
@router.get("/documents", response_model=DocumentsListResponse)
async def list_documents(
    format: Optional[str] = None,
    document_repo: IDocumentRepository = Depends(get_document_repository),
) -> DocumentsListResponse:
    if format:
        documents = await document_repo.list_by_format(_get_target_format(format))
    else:
        documents = await document_repo.list_all()
    return DocumentsListResponse(documents=[DocumentResponse.from_document(d) for d in documents])


@router.get("/documents/search", response_model=DocumentsListResponse)
async def search_documents(
    q: str = Query(..., min_length=1, max_length=200),
    document_repo: IDocumentRepository = Depends(get_document_repository),
) -> DocumentsListResponse:
    documents = await document_repo.search(q)
    return DocumentsListResponse(documents=[DocumentResponse.from_document(d) for d in documents])


@router.get("/documents/recent", response_model=DocumentsListResponse)
async def recent_documents(
    limit: int = Query(settings.RECENT_DOCUMENTS_LIMIT, ge=1, le=100),
    document_repo: IDocumentRepository = Depends(get_document_repository),
) -> DocumentsListResponse:
    documents = await document_repo.list_recent(limit)
    return DocumentsListResponse(documents=[DocumentResponse.from_document(d) for d in documents])


# ---------- Single document ----------
@router.get("/documents/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: str, document_repo: IDocumentRepository = Depends(get_document_repository)
) -> DocumentResponse:
    document = await _get_document(document_id, document_repo)
    return DocumentResponse.from_document(document)


@router.get("/documents/{document_id}/download")
async def download_document(
    document_id: str,
    document_repo: IDocumentRepository = Depends(get_document_repository),
    blob_storage: IBlobStorage = Depends(get_blob_storage),
):
    document = await _get_document(document_id, document_repo)
    path = _stored_file(blob_storage, document.storage_ref)
    return FileResponse(path=str(path), filename=document.name, media_type=document.format.mime_type)


@router.get("/documents/{document_id}/thumbnail")
async def get_thumbnail(
    document_id: str,
    document_repo: IDocumentRepository = Depends(get_document_repository),
    blob_storage: IBlobStorage = Depends(get_blob_storage),
):
    document = await _get_document(document_id, document_repo)
    path = _stored_file(blob_storage, document.thumbnail_ref)
    return FileResponse(
        path=str(path),
        media_type="image/webp",
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )


@router.delete("/documents/{document_id}", response_model=DeleteResponse)
async def delete_document(
    document_id: str,
    document_repo: IDocumentRepository = Depends(get_document_repository),
    blob_storage: IBlobStorage = Depends(get_blob_storage),
) -> DeleteResponse:
    document = await _get_document(document_id, document_repo)
    if not await document_repo.delete(document):
        raise HTTPException(status_code=404, detail="Document not found")
    if document.thumbnail_ref:
        await blob_storage.delete(document.thumbnail_ref)
    return DeleteResponse(status="success", message="Document deleted successfully")


# ---------- Extraction ----------
@router.get("/documents/{document_id}/content", response_model=ContentResponse)
async def get_document_content(
    document_id: str,
    conversion_service: ConversionService = Depends(get_conversion_service),
    document_repo: IDocumentRepository = Depends(get_document_repository),
) -> ContentResponse:
    document = await _get_document(document_id, document_repo)
    try:
        content = await conversion_service.extract_content(document)
    except DocumentConversionError as e:
        raise _http_error(e)
    return ContentResponse.from_content(document.id, content)


@router.get("/documents/{document_id}/metadata", response_model=MetadataResponse)
async def get_document_metadata(
    document_id: str,
    refresh: bool = False,
    conversion_service: ConversionService = Depends(get_conversion_service),
    document_repo: IDocumentRepository = Depends(get_document_repository),
) -> MetadataResponse:
    """Stored metadata; refresh=true re-extracts it from the file and saves it."""
    document = await _get_document(document_id, document_repo)
    if refresh:
        try:
            document = await conversion_service.extract_metadata(document)
        except DocumentConversionError as e:
            raise _http_error(e)
        await document_repo.save(document)
    return MetadataResponse.from_metadata(document.metadata)


# ---------- Conversion ----------
@router.post("/documents/{document_id}/convert")
async def convert_document(
    document_id: str,
    request: ConvertRequest,
    conversion_service: ConversionService = Depends(get_conversion_service),
    document_repo: IDocumentRepository = Depends(get_document_repository),
) -> StreamingResponse:
    """Stream conversion progress as NDJSON; the last line is 'completed' or 'failed'."""
    document = await _get_document(document_id, document_repo)
    target_format = _get_target_format(request.target_format)
    events = conversion_service.convert(document, target_format, request.to_options())
    return StreamingResponse(_ndjson(events), media_type=NDJSON_MEDIA_TYPE)


async def _run_batch_job(
    job_id: str,
    documents: List[Document],
    target_format: DocumentFormat,
    options: ConversionOptions,
    progress_store: ProgressStore,
    service_scope: Callable[[], AsyncContextManager[ConversionService]],
) -> None:
    try:
        async with service_scope() as conversion_service:
            async with aclosing(conversion_service.batch_convert(documents, target_format, options)) as updates:
                async for snapshot in updates:
                    progress_store.update(job_id, snapshot)
    except Exception as e:
        progress_store.fail(job_id, str(e))
        raise
    progress_store.complete(job_id)
    logger.info(f"[BATCH] Job {job_id} complete")


@router.post("/batch-convert", response_model=JobResponse)
async def batch_convert(
    request: BatchConvertRequest,
    document_repo: IDocumentRepository = Depends(get_document_repository),
    job_runner: BackgroundJobRunner = Depends(get_job_runner),
    progress_store: ProgressStore = Depends(get_progress_store),
    service_scope: Callable[[], AsyncContextManager[ConversionService]] = Depends(get_service_scope),
) -> JobResponse:
    target_format = _get_target_format(request.target_format)
    documents = [await _get_document(document_id, document_repo) for document_id in request.document_ids]

    job_id = str(uuid.uuid4())
    progress_store.start(job_id, target_format.id, [d.id for d in documents])
    job_runner.submit(
        _run_batch_job(job_id, documents, target_format, request.to_options(), progress_store, service_scope)
    )
    logger.info(f"[BATCH] Job {job_id} queued: {len(documents)} documents -> {target_format.id}")
    return JobResponse(job_id=job_id, status=progress_store.get(job_id)["status"])


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(
    job_id: str, progress_store: ProgressStore = Depends(get_progress_store)
) -> JobStatusResponse:
    """Get real-time progress for a batch job"""
    progress = progress_store.get(job_id)
    if not progress:
        raise HTTPException(status_code=404, detail="No status found for this job")
    return JobStatusResponse(job_id=job_id, **progress)


# ---------- Verification ----------
@router.post("/verify")
async def verify_conversion(
    request: VerifyRequest,
    conversion_service: ConversionService = Depends(get_conversion_service),
    document_repo: IDocumentRepository = Depends(get_document_repository),
):
    """Compare a converted document with its source. stream=true returns NDJSON progress instead."""
    source = await _get_document(request.source_document_id, document_repo)
    converted = await _get_document(request.converted_document_id, document_repo)
    events = conversion_service.verify_conversion(source, converted, request.to_options())
    if request.stream:
        return StreamingResponse(_ndjson(events), media_type=NDJSON_MEDIA_TYPE)

    async with aclosing(events) as stream:
        async for event in stream:
            if isinstance(event, VerificationCompleted):
                return VerificationResultResponse.from_result(event.result, event.report_ref)
            if isinstance(event, VerificationFailed):
                raise HTTPException(status_code=500, detail=event.error)
    raise HTTPException(status_code=500, detail="Verification produced no result")


# ---------- Reports ----------
@router.post("/reports", response_model=ReportResponse)
async def create_report(
    request: ReportRequest,
    conversion_service: ConversionService = Depends(get_conversion_service),
    document_repo: IDocumentRepository = Depends(get_document_repository),
    report_generator: IReportGenerator = Depends(get_report_generator),
) -> ReportResponse:
    source = await _get_document(request.source_document_id, document_repo)
    converted = await _get_document(request.converted_document_id, document_repo)
    result = await conversion_service.verification_engine.verify(
        source, converted, VerificationOptions(minimum_match_score=settings.VERIFICATION_MIN_MATCH_SCORE)
    )
    try:
        report_ref = await report_generator.generate_report(source, converted, result)
    except DocumentConversionError as e:
        raise _http_error(e)
    return ReportResponse(report_ref=report_ref, download_url=f"/reports/{report_ref}")


@router.post("/visual-comparisons", response_model=ReportResponse)
async def create_visual_comparison(
    request: ReportRequest,
    document_repo: IDocumentRepository = Depends(get_document_repository),
    report_generator: IReportGenerator = Depends(get_report_generator),
) -> ReportResponse:
    source = await _get_document(request.source_document_id, document_repo)
    converted = await _get_document(request.converted_document_id, document_repo)
    try:
        report_ref = await report_generator.generate_visual_comparison(source, converted)
    except DocumentConversionError as e:
        raise _http_error(e)
    return ReportResponse(report_ref=report_ref, download_url=f"/reports/{report_ref}")


@router.get("/reports/{report_ref}")
async def download_report(report_ref: str, report_storage: IBlobStorage = Depends(get_report_storage)):
    path = _stored_file(report_storage, report_ref)
    media_type = "image/png" if path.suffix == ".png" else "text/plain"
    return FileResponse(path=str(path), filename=path.name, media_type=media_type)


# ---------- Health Check ----------
@router.get("/health")
async def health_check(conversion_service: ConversionService = Depends(get_conversion_service)):
    """Engine registry status and the size of the format catalog."""
    engines = conversion_service.engine_registry.engines
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "engines": {category.value: type(engine).__name__ for category, engine in engines.items()},
        "formats": len(ALL_FORMATS),
    }
