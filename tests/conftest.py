"""Shared fixtures: temp storage, a temp SQLite repository and generated sample documents."""
import io
import logging
import sys
import threading
import time
import uuid
import zipfile
from pathlib import Path
from typing import Optional

import docx
import fitz  # PyMuPDF
import pytest
import pytest_asyncio
from PIL import Image
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from config import settings
from core.conversion_paths import ConversionPathGraph
from core.domain import ConversionCancelled, Document, DocumentMetadata
from core.formats import FormatCategory, get_format
from core.interfaces import IConversionEngine
from database.session import create_tables
from infrastructure.file_storage import LocalBlobStorage
from infrastructure.report_generator import ReportGenerator
from infrastructure.repositories import SQLDocumentRepository
from services.async_processor import WorkerPool
from services.conversion_service import ConversionService
from services.engine_registry import EngineRegistry, default_engine_registry
from services.verification_engine import VerificationEngine

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
    force=True,
)

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


# ---------------------------------------------------------------------------
# Sample documents
# ---------------------------------------------------------------------------

def make_docx(path: Path, title: str = "Quarterly Report") -> Path:
    document = docx.Document()
    document.core_properties.title = title
    document.core_properties.author = "Finance Team"
    document.core_properties.subject = "Results"
    document.add_heading(title, level=1)
    document.add_paragraph("Revenue grew in every region during the quarter.")
    document.add_heading("Details", level=2)
    document.add_paragraph("Costs stayed flat while headcount increased slightly.")
    table = document.add_table(rows=2, cols=2)
    table.cell(0, 0).text = "Region"
    table.cell(0, 1).text = "Revenue"
    table.cell(1, 0).text = "North"
    table.cell(1, 1).text = "120"
    document.save(str(path))
    return path


def make_pdf(path: Path, pages: int = 2) -> Path:
    doc = fitz.open()
    for number in range(1, pages + 1):
        page = doc.new_page()
        page.insert_text((72, 72), f"Page {number} of the sample", fontsize=12)
        page.insert_text((72, 100), "Plain body text for extraction.", fontsize=11)
    doc.set_metadata({"title": "Sample PDF", "author": "Tester"})
    doc.save(str(path))
    doc.close()
    return path


def make_png(path: Path, size=(64, 48), color=(200, 30, 30, 255), mode: str = "RGBA") -> Path:
    Image.new(mode, size, color if mode == "RGBA" else color[:3]).save(path, format="PNG")
    return path


def make_zip(path: Path) -> Path:
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("notes.txt", "first file")
        archive.writestr("data/values.csv", "a,b\n1,2\n")
    return path


def png_bytes(size=(32, 32), color=(0, 120, 255)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def sample_docx(tmp_path: Path) -> Path:
    return make_docx(tmp_path / "report.docx")


@pytest.fixture
def sample_pdf(tmp_path: Path) -> Path:
    return make_pdf(tmp_path / "sample.pdf")


@pytest.fixture
def sample_png(tmp_path: Path) -> Path:
    return make_png(tmp_path / "picture.png")


@pytest.fixture
def sample_zip(tmp_path: Path) -> Path:
    return make_zip(tmp_path / "bundle.zip")


# ---------------------------------------------------------------------------
# Storage, database and services
# ---------------------------------------------------------------------------

@pytest.fixture
def blob_storage(tmp_path: Path) -> LocalBlobStorage:
    return LocalBlobStorage(tmp_path / "storage")


@pytest.fixture
def report_storage(tmp_path: Path) -> LocalBlobStorage:
    return LocalBlobStorage(tmp_path / "reports")


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest_asyncio.fixture
async def session_maker(tmp_path: Path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def repo(session_maker):
    async with session_maker() as session:
        yield SQLDocumentRepository(session)


@pytest.fixture
def worker_pool():
    pool = WorkerPool(max_workers=2)
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture(scope="session")
def engine_registry() -> EngineRegistry:
    return default_engine_registry()


@pytest.fixture
def verification_engine(engine_registry, blob_storage, worker_pool, temp_dir) -> VerificationEngine:
    return VerificationEngine(engine_registry, blob_storage, worker_pool, temp_dir)


@pytest.fixture
def report_generator(blob_storage, report_storage, temp_dir) -> ReportGenerator:
    return ReportGenerator(blob_storage, report_storage, temp_dir)


@pytest.fixture
def service(engine_registry, repo, blob_storage, verification_engine, worker_pool, temp_dir, report_generator):
    return ConversionService(
        engine_registry=engine_registry,
        path_graph=ConversionPathGraph(),
        document_repo=repo,
        blob_storage=blob_storage,
        verification_engine=verification_engine,
        worker_pool=worker_pool,
        temp_dir=temp_dir,
        report_generator=report_generator,
    )


@pytest.fixture
def add_document(blob_storage, repo):
    """Store a local file as a Document (blob + repository row)."""

    async def _add(path: Path, format_id: Optional[str] = None, name: Optional[str] = None) -> Document:
        path = Path(path)
        document_format = get_format(format_id or path.suffix.lstrip("."))
        storage_ref, size = await blob_storage.save(path.read_bytes(), name or path.name)
        document = Document(
            id=str(uuid.uuid4()),
            name=name or path.name,
            format=document_format,
            size=size,
            storage_ref=storage_ref,
            local_path=blob_storage.local_path(storage_ref),
            metadata=DocumentMetadata(),
        )
        return await repo.save(document)

    return _add


# ---------------------------------------------------------------------------
# Fake engines
# ---------------------------------------------------------------------------

class SlowEngine(IConversionEngine):
    """Reports progress in small steps until cancelled or done."""

    category = FormatCategory.DOCUMENT

    def __init__(self, steps: int = 400, delay: float = 0.01):
        self.steps = steps
        self.delay = delay
        self.cancelled = threading.Event()
        self.started = threading.Event()

    def supports_conversion(self, source_format, target_format) -> bool:
        return True

    def convert(self, input_path, output_path, source_format, target_format, options, monitor=None) -> bool:
        self.started.set()
        try:
            for step in range(self.steps):
                monitor.step(step, self.steps)
                time.sleep(self.delay)
            Path(output_path).write_text("done", encoding="utf-8")
            return True
        except ConversionCancelled:
            self.cancelled.set()
            monitor.fail("cancelled")
            return False

    def extract_content(self, input_path, document_format, options):
        raise NotImplementedError

    def extract_metadata(self, input_path, document_format):
        return DocumentMetadata()


class FailingEngine(SlowEngine):
    """Returns False after recording a reason, like a real engine would."""

    def convert(self, input_path, output_path, source_format, target_format, options, monitor=None) -> bool:
        monitor.report(0.3)
        monitor.fail("renderer crashed")
        return False


@pytest.fixture
def settings_temp_dir(tmp_path: Path, monkeypatch):
    """Point settings.TEMP_DIR at a per-test directory for services built from settings."""
    path = tmp_path / "settings_temp"
    path.mkdir()
    monkeypatch.setattr(settings, "TEMP_DIR", str(path))
    return path


class BrokenVerifier:
    """Stands in for VerificationEngine; every verification raises."""

    async def verify(self, source, converted, options=None, on_progress=None):
        raise RuntimeError("comparison crashed")


class RaisingEngine(SlowEngine):
    """Raises from supports_conversion, so the conversion stream itself raises."""

    def supports_conversion(self, source_format, target_format) -> bool:
        raise RuntimeError("engine table corrupted")
