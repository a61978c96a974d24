# services/factory.py
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncContextManager, AsyncIterator, Callable

from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import Depends

from config import settings
from core.conversion_paths import ConversionPathGraph
from core.interfaces import IBlobStorage, IDocumentRepository, IReportGenerator
from database.session import get_db, get_session
from infrastructure.file_storage import LocalBlobStorage
from infrastructure.image_utils import ImageProcessor
from infrastructure.pdf_converters import PyMuPDFRenderer
from infrastructure.progress_store import ProgressStore
from infrastructure.report_generator import ReportGenerator
from infrastructure.repositories import SQLDocumentRepository
from services.async_processor import BackgroundJobRunner, WorkerPool
from services.conversion_service import ConversionService
from services.engine_registry import EngineRegistry, default_engine_registry
from services.verification_engine import VerificationEngine

# Process-wide components are cached; request-scoped ones (repository, service)
# are rebuilt per request around the injected session.

@lru_cache(maxsize=None)
def get_engine_registry() -> EngineRegistry:
    """One engine per format category. Raises MissingEngineError on a gap."""
    return default_engine_registry()

@lru_cache(maxsize=None)
def get_path_graph() -> ConversionPathGraph:
    return ConversionPathGraph()

@lru_cache(maxsize=None)
def get_worker_pool() -> WorkerPool:
    """Shared thread pool for blocking engine calls."""
    return WorkerPool(max_workers=settings.CONVERSION_WORKERS)

@lru_cache(maxsize=None)
def get_blob_storage() -> IBlobStorage:
    """Create document storage based on configuration."""
    return LocalBlobStorage(base_path=settings.STORAGE_DIR)

@lru_cache(maxsize=None)
def get_report_storage() -> IBlobStorage:
    return LocalBlobStorage(base_path=settings.REPORTS_DIR)

@lru_cache(maxsize=None)
def get_renderer() -> PyMuPDFRenderer:
    return PyMuPDFRenderer()

@lru_cache(maxsize=None)
def get_image_processor() -> ImageProcessor:
    return ImageProcessor(get_renderer())

@lru_cache(maxsize=None)
def get_progress_store() -> ProgressStore:
    return ProgressStore(max_entries=settings.MAX_PROGRESS_ENTRIES)

@lru_cache(maxsize=None)
def get_job_runner() -> BackgroundJobRunner:
    return BackgroundJobRunner(max_concurrent=settings.BACKGROUND_JOB_LIMIT)

def get_verification_engine(
    engine_registry: EngineRegistry = Depends(get_engine_registry),
    blob_storage: IBlobStorage = Depends(get_blob_storage),
    worker_pool: WorkerPool = Depends(get_worker_pool),
) -> VerificationEngine:
    return VerificationEngine(engine_registry, blob_storage, worker_pool, settings.TEMP_DIR)

def get_report_generator(
    blob_storage: IBlobStorage = Depends(get_blob_storage),
    report_storage: IBlobStorage = Depends(get_report_storage),
    renderer: PyMuPDFRenderer = Depends(get_renderer),
) -> IReportGenerator:
    return ReportGenerator(blob_storage, report_storage, settings.TEMP_DIR, renderer)

def get_document_repository(session: AsyncSession = Depends(get_db)) -> IDocumentRepository:
    """Create document repository with injected session."""
    return SQLDocumentRepository(session)

def build_conversion_service(document_repo: IDocumentRepository) -> ConversionService:
    """Assemble a conversion service outside FastAPI DI."""
    engine_registry = get_engine_registry()
    blob_storage = get_blob_storage()
    worker_pool = get_worker_pool()
    return ConversionService(
        engine_registry=engine_registry,
        path_graph=get_path_graph(),
        document_repo=document_repo,
        blob_storage=blob_storage,
        verification_engine=VerificationEngine(engine_registry, blob_storage, worker_pool, settings.TEMP_DIR),
        worker_pool=worker_pool,
        temp_dir=settings.TEMP_DIR,
        report_generator=ReportGenerator(blob_storage, get_report_storage(), settings.TEMP_DIR, get_renderer()),
    )

# Main service provider using FastAPI DI
def get_conversion_service(
    engine_registry: EngineRegistry = Depends(get_engine_registry),
    path_graph: ConversionPathGraph = Depends(get_path_graph),
    document_repo: IDocumentRepository = Depends(get_document_repository),
    blob_storage: IBlobStorage = Depends(get_blob_storage),
    verification_engine: VerificationEngine = Depends(get_verification_engine),
    worker_pool: WorkerPool = Depends(get_worker_pool),
    report_generator: IReportGenerator = Depends(get_report_generator),
) -> ConversionService:
    """
    Create conversion service with full dependency injection.

    Easy to override individual components for testing.
    """
    return ConversionService(
        engine_registry=engine_registry,
        path_graph=path_graph,
        document_repo=document_repo,
        blob_storage=blob_storage,
        verification_engine=verification_engine,
        worker_pool=worker_pool,
        temp_dir=settings.TEMP_DIR,
        report_generator=report_generator,
    )

@asynccontextmanager
async def conversion_service_scope() -> AsyncIterator[ConversionService]:
    """
    Conversion service bound to its own database session.

    Background batch jobs outlive the request that submitted them, so they
    cannot use the request-scoped session.
    """
    async with get_session() as session:
        yield build_conversion_service(SQLDocumentRepository(session))

def get_service_scope() -> Callable[[], AsyncContextManager[ConversionService]]:
    return conversion_service_scope
