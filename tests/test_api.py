"""HTTP surface: upload, listing, streamed conversion, batch jobs, verification and reports."""
import json
import time
import uuid
from contextlib import asynccontextmanager

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from config import settings
from core.conversion_paths import ConversionPathGraph
from database.session import create_tables, get_db
from infrastructure.file_storage import LocalBlobStorage
from infrastructure.progress_store import ProgressStore
from infrastructure.report_generator import ReportGenerator
from infrastructure.repositories import SQLDocumentRepository
from services.async_processor import BackgroundJobRunner
from services.conversion_service import ConversionService
from services.factory import (
    get_blob_storage,
    get_job_runner,
    get_progress_store,
    get_report_storage,
    get_service_scope,
    get_worker_pool,
)
from services.verification_engine import VerificationEngine
from api.endpoints import router
from conftest import DOCX_MIME, make_docx, make_zip, png_bytes


@pytest.fixture
def client(tmp_path, settings_temp_dir, worker_pool, engine_registry):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    sessions = async_sessionmaker(engine, expire_on_commit=False)
    blob_storage = LocalBlobStorage(tmp_path / "storage")
    report_storage = LocalBlobStorage(tmp_path / "reports")
    progress_store = ProgressStore()
    job_runner = BackgroundJobRunner(max_concurrent=1)

    async def override_db():
        async with sessions() as session:
            yield session

    @asynccontextmanager
    async def service_scope():
        async with sessions() as session:
            yield ConversionService(
                engine_registry=engine_registry,
                path_graph=ConversionPathGraph(),
                document_repo=SQLDocumentRepository(session),
                blob_storage=blob_storage,
                verification_engine=VerificationEngine(engine_registry, blob_storage, worker_pool, settings_temp_dir),
                worker_pool=worker_pool,
                temp_dir=settings_temp_dir,
                report_generator=ReportGenerator(blob_storage, report_storage, settings_temp_dir),
            )

    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_blob_storage] = lambda: blob_storage
    app.dependency_overrides[get_report_storage] = lambda: report_storage
    app.dependency_overrides[get_worker_pool] = lambda: worker_pool
    app.dependency_overrides[get_progress_store] = lambda: progress_store
    app.dependency_overrides[get_job_runner] = lambda: job_runner
    app.dependency_overrides[get_service_scope] = lambda: service_scope

    with TestClient(app) as test_client:
        test_client.portal.call(create_tables, engine)
        yield test_client
        test_client.portal.call(job_runner.shutdown)
        test_client.portal.call(engine.dispose)


def upload(client, name, data, mime="application/octet-stream"):
    return client.post("/documents", files={"file": (name, data, mime)})


def upload_docx(client, tmp_path, name="report.docx", title="Quarterly Report") -> dict:
    response = upload(client, name, make_docx(tmp_path / name, title=title).read_bytes(), DOCX_MIME)
    assert response.status_code == 200, response.text
    return response.json()


def ndjson(response):
    return [json.loads(line) for line in response.text.splitlines() if line.strip()]


def convert(client, document_id, target, **options):
    response = client.post(f"/documents/{document_id}/convert", json={"target_format": target, **options})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")
    return ndjson(response)


# =========================================================================
# Formats
# =========================================================================


class TestFormats:
    def test_list_formats(self, client):
        formats = client.get("/formats").json()["formats"]
        by_id = {f["id"]: f for f in formats}
        assert by_id["docx"]["category"] == "document"
        assert by_id["pages"]["is_output_supported"] is False

    def test_targets(self, client):
        targets = {f["id"] for f in client.get("/formats/docx/targets").json()["formats"]}
        assert {"pdf", "txt", "html"} <= targets
        assert client.get("/formats/zip/targets").json()["formats"] == []

    def test_unknown_format(self, client):
        assert client.get("/formats/nope/targets").status_code == 404


# =========================================================================
# Documents
# =========================================================================


class TestUpload:
    def test_docx_upload_extracts_metadata(self, client, tmp_path):
        document = upload_docx(client, tmp_path)
        assert document["format"] == "docx"
        assert document["metadata"]["title"] == "Quarterly Report"
        assert document["metadata"]["author"] == "Finance Team"
        assert document["has_thumbnail"] is False

    def test_image_upload_gets_thumbnail(self, client):
        document = upload(client, "photo.png", png_bytes((300, 200)), "image/png").json()
        assert document["has_thumbnail"] is True

        response = client.get(f"/documents/{document['id']}/thumbnail")
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/webp"

    def test_unknown_extension(self, client):
        assert upload(client, "data.xyz", b"123").status_code == 415

    def test_empty_file(self, client):
        assert upload(client, "notes.txt", b"").status_code == 422

    def test_content_must_match_extension(self, client):
        assert upload(client, "fake.pdf", b"this is not a pdf").status_code == 415
        assert client.get("/documents").json()["documents"] == []

    def test_file_too_large(self, client, monkeypatch):
        monkeypatch.setattr(settings, "MAX_FILE_SIZE", 10)
        assert upload(client, "notes.txt", b"x" * 11).status_code == 413


class TestDocuments:
    def test_get_and_download(self, client, tmp_path):
        document = upload_docx(client, tmp_path)
        assert client.get(f"/documents/{document['id']}").json()["name"] == "report.docx"

        response = client.get(f"/documents/{document['id']}/download")
        assert response.status_code == 200
        assert response.content[:2] == b"PK"

    def test_invalid_and_missing_ids(self, client):
        assert client.get("/documents/not-a-uuid").status_code == 422
        assert client.get(f"/documents/{uuid.uuid4()}").status_code == 404

    def test_list_search_and_recent(self, client, tmp_path):
        upload_docx(client, tmp_path, "budget.docx")
        upload(client, "notes.txt", b"hello", "text/plain")

        assert len(client.get("/documents").json()["documents"]) == 2
        assert [d["name"] for d in client.get("/documents", params={"format": "txt"}).json()["documents"]] == ["notes.txt"]
        assert [d["name"] for d in client.get("/documents/search", params={"q": "BUDGET"}).json()["documents"]] == ["budget.docx"]
        assert len(client.get("/documents/recent", params={"limit": 1}).json()["documents"]) == 1

    def test_delete(self, client, tmp_path):
        document = upload_docx(client, tmp_path)
        assert client.delete(f"/documents/{document['id']}").json()["status"] == "success"
        assert client.get(f"/documents/{document['id']}").status_code == 404
        assert client.delete(f"/documents/{document['id']}").status_code == 404

    def test_content(self, client, tmp_path):
        document = upload_docx(client, tmp_path)
        content = client.get(f"/documents/{document['id']}/content").json()
        assert "Revenue grew in every region" in content["text"]
        assert content["tables"] == [[["Region", "Revenue"], ["North", "120"]]]
        assert [h["text"] for h in content["headings"]] == ["Quarterly Report", "Details"]

    def test_metadata_refresh(self, client, tmp_path):
        document = upload_docx(client, tmp_path)
        metadata = client.get(f"/documents/{document['id']}/metadata", params={"refresh": True}).json()
        assert metadata["subject"] == "Results"


# =========================================================================
# Conversion
# =========================================================================


class TestConvert:
    def test_streamed_conversion(self, client, tmp_path):
        document = upload_docx(client, tmp_path)
        events = convert(client, document["id"], "txt", auto_verify=False)

        assert events[0]["kind"] == "initializing"
        assert events[-1]["kind"] == "completed"
        assert [e["kind"] for e in events].count("completed") == 1
        progress = [e["progress"] for e in events if e["kind"] == "processing"]
        assert progress[-1] == 1.0

        output = events[-1]["output_document"]
        assert output["format"] == "txt"
        assert output["name"] == "report.txt"
        download = client.get(f"/documents/{output['id']}/download")
        assert "Costs stayed flat" in download.text

    def test_conversion_with_verification(self, client, tmp_path):
        document = upload_docx(client, tmp_path)
        events = convert(client, document["id"], "pdf")
        kinds = [e["kind"] for e in events]
        assert kinds[-2:] == ["verifying", "completed"]
        assert 0.0 <= events[-1]["verification"]["overall_score"] <= 1.0
        assert events[-2]["converted_document_id"] == events[-1]["output_document"]["id"]
        assert [e["final"] for e in events] == [False] * (len(events) - 1) + [True]

    def test_unsupported_conversion_streams_failure(self, client, tmp_path):
        archive = upload(client, "bundle.zip", make_zip(tmp_path / "bundle.zip").read_bytes(), "application/zip").json()
        events = convert(client, archive["id"], "docx")
        assert [e["kind"] for e in events] == ["initializing", "failed"]
        assert events[-1]["error_code"] == "UNSUPPORTED_CONVERSION"
        assert events[-1]["final"]

    def test_unknown_target(self, client, tmp_path):
        document = upload_docx(client, tmp_path)
        response = client.post(f"/documents/{document['id']}/convert", json={"target_format": "nope"})
        assert response.status_code == 422


class TestBatch:
    def wait_for(self, client, job_id, timeout=30.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            status = client.get(f"/jobs/{job_id}").json()
            if status["status"] in ("completed", "failed"):
                return status
            time.sleep(0.05)
        raise AssertionError(f"job {job_id} did not finish")

    def test_batch_job(self, client, tmp_path):
        first = upload_docx(client, tmp_path, "first.docx", "First")
        second = upload_docx(client, tmp_path, "second.docx", "Second")

        response = client.post("/batch-convert", json={
            "document_ids": [first["id"], second["id"]], "target_format": "html", "auto_verify": False,
        })
        assert response.status_code == 200
        status = self.wait_for(client, response.json()["job_id"])

        assert status["status"] == "completed"
        assert status["progress_percent"] == 100
        assert status["processed_documents"] == 2
        assert len(status["output_document_ids"]) == 2
        assert status["failures"] == []

    def test_batch_with_missing_document(self, client):
        response = client.post("/batch-convert", json={"document_ids": [str(uuid.uuid4())], "target_format": "pdf"})
        assert response.status_code == 404

    def test_batch_needs_documents(self, client):
        assert client.post("/batch-convert", json={"document_ids": [], "target_format": "pdf"}).status_code == 422

    def test_unknown_job(self, client):
        assert client.get("/jobs/unknown").status_code == 404


# =========================================================================
# Verification and reports
# =========================================================================


class TestVerification:
    def converted_pair(self, client, tmp_path):
        source = upload_docx(client, tmp_path)
        converted = convert(client, source["id"], "docx", auto_verify=False)[-1]["output_document"]
        return source, converted

    def test_verify(self, client, tmp_path):
        source, converted = self.converted_pair(client, tmp_path)
        result = client.post("/verify", json={
            "source_document_id": source["id"], "converted_document_id": converted["id"],
        }).json()
        assert result["success"] is True
        assert result["overall_score"] == 1.0
        assert result["report_ref"] is None

    def test_verify_stream(self, client, tmp_path):
        source, converted = self.converted_pair(client, tmp_path)
        response = client.post("/verify", json={
            "source_document_id": source["id"], "converted_document_id": converted["id"], "stream": True,
        })
        events = ndjson(response)
        assert events[0]["kind"] == "initializing"
        assert [e["progress"] for e in events if e["kind"] == "comparing"] == [0.25, 0.5, 0.75, 1.0]
        assert events[-1]["kind"] == "completed"

    def test_report_round_trip(self, client, tmp_path):
        source, converted = self.converted_pair(client, tmp_path)
        report = client.post("/reports", json={
            "source_document_id": source["id"], "converted_document_id": converted["id"],
        }).json()

        response = client.get(report["download_url"])
        assert response.status_code == 200
        assert response.text.startswith("Document Conversion Verification Report")

    def test_visual_comparison_requires_renderable_documents(self, client, tmp_path):
        source, converted = self.converted_pair(client, tmp_path)
        response = client.post("/visual-comparisons", json={
            "source_document_id": source["id"], "converted_document_id": converted["id"],
        })
        assert response.status_code == 422

    def test_missing_report(self, client):
        assert client.get("/reports/missing.txt").status_code == 404


class TestHealth:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert set(body["engines"]) == {"document", "spreadsheet", "presentation", "email", "image",
                                        "markup", "ebook", "archive", "plain_text"}
