"""Conversion orchestrator: event streams, failures, cancellation and extraction."""
import asyncio
from contextlib import aclosing

import pytest

from core.conversion_paths import ConversionPathGraph
from core.domain import ConversionOptions, ErrorCode, VerificationOptions
from core.formats import FormatCategory, get_format
from core.progress import (
    Comparing,
    Completed,
    Failed,
    Initializing,
    Processing,
    VerificationCompleted,
    VerificationInitializing,
    Verifying,
)
from services.conversion_service import ConversionService
from services.engine_registry import EngineRegistry
from conftest import BrokenVerifier, FailingEngine, SlowEngine, make_docx, make_zip

pytestmark = pytest.mark.asyncio


async def collect(events):
    async with aclosing(events) as stream:
        return [event async for event in stream]


def service_with(engine, repo, blob_storage, verification_engine, worker_pool, temp_dir) -> ConversionService:
    return ConversionService(
        engine_registry=EngineRegistry([engine], categories=[FormatCategory.DOCUMENT]),
        path_graph=ConversionPathGraph(),
        document_repo=repo,
        blob_storage=blob_storage,
        verification_engine=verification_engine,
        worker_pool=worker_pool,
        temp_dir=temp_dir,
    )


# =========================================================================
# Single conversion
# =========================================================================


class TestConvert:
    async def test_docx_to_pdf_with_verification(self, service, add_document, sample_docx):
        document = await add_document(sample_docx)
        events = await collect(service.convert(document, get_format("pdf"), ConversionOptions(auto_verify=True)))

        assert isinstance(events[0], Initializing)
        terminal = [e for e in events if isinstance(e, (Completed, Failed))]
        assert len(terminal) == 1 and terminal[0] is events[-1]
        assert isinstance(events[-2], Verifying)

        result = events[-1].result
        assert result.success
        assert events[-2].converted.id == result.output_document.id
        assert result.output_document.extension == "pdf"
        assert result.output_document.name == "report.pdf"
        assert 0.0 <= result.verification_result.overall_score <= 1.0
        assert result.conversion_time > 0

    async def test_progress_is_increasing_and_ends_at_one(self, service, add_document, sample_docx):
        document = await add_document(sample_docx)
        events = await collect(service.convert(document, get_format("txt"), ConversionOptions(auto_verify=False)))

        progress = [e.progress for e in events if isinstance(e, Processing)]
        assert progress[0] == 0.0
        assert progress[-1] == 1.0
        assert all(a < b for a, b in zip(progress, progress[1:]))
        assert isinstance(events[-1], Completed)
        assert not any(isinstance(e, Verifying) for e in events)

    async def test_output_is_stored_and_saved(self, service, add_document, sample_docx, repo, blob_storage):
        document = await add_document(sample_docx)
        events = await collect(service.convert(document, get_format("html"), ConversionOptions(auto_verify=False)))

        output = events[-1].result.output_document
        assert await repo.get_by_id(output.id) is not None
        html = (await blob_storage.read(output.storage_ref)).decode("utf-8")
        assert "Revenue grew in every region" in html
        assert output.metadata.title == document.metadata.title
        assert output.size == len(await blob_storage.read(output.storage_ref))

    async def test_unsupported_path_fails_before_any_work(self, service, add_document, sample_zip):
        document = await add_document(sample_zip)
        events = await collect(service.convert(document, get_format("docx")))

        assert [type(e) for e in events] == [Initializing, Failed]
        assert events[-1].error_code == ErrorCode.UNSUPPORTED_CONVERSION

    async def test_engine_refusal_is_reported(self, service, add_document, tmp_path):
        source = tmp_path / "scores.csv"
        source.write_text("name,score\nada,10\n", encoding="utf-8")
        document = await add_document(source)
        events = await collect(service.convert(document, get_format("xlsx")))

        assert [type(e) for e in events] == [Initializing, Failed]
        assert "not supported by the spreadsheet engine" in events[-1].error

    async def test_engine_failure_reason_is_kept(self, repo, blob_storage, verification_engine, worker_pool, temp_dir,
                                                 add_document, sample_docx):
        service = service_with(FailingEngine(), repo, blob_storage, verification_engine, worker_pool, temp_dir)
        document = await add_document(sample_docx)
        events = await collect(service.convert(document, get_format("pdf")))

        assert isinstance(events[-1], Failed)
        assert events[-1].error == "Conversion failed during processing: renderer crashed"
        assert events[-1].error_code == ErrorCode.ENGINE_FAILURE
        assert 1.0 not in [e.progress for e in events if isinstance(e, Processing)]

    async def test_corrupt_source_fails(self, service, add_document, tmp_path):
        broken = tmp_path / "broken.docx"
        broken.write_bytes(b"not a docx")
        document = await add_document(broken)
        events = await collect(service.convert(document, get_format("pdf")))

        assert isinstance(events[-1], Failed)
        assert events[-1].error.startswith("Conversion failed during processing")

    async def test_closing_the_stream_cancels_the_engine(self, repo, blob_storage, verification_engine, worker_pool,
                                                        temp_dir, add_document, sample_docx):
        engine = SlowEngine()
        service = service_with(engine, repo, blob_storage, verification_engine, worker_pool, temp_dir)
        document = await add_document(sample_docx)

        async with aclosing(service.convert(document, get_format("pdf"))) as events:
            async for event in events:
                if isinstance(event, Processing) and event.progress > 0.05:
                    break

        assert await asyncio.to_thread(engine.cancelled.wait, 5)

    @pytest.mark.parametrize("name", ["empty.txt", "empty.md", "empty.csv"])
    async def test_empty_document_converts_to_its_own_format(self, service, add_document, tmp_path, blob_storage, name):
        source = tmp_path / name
        source.write_bytes(b"")
        document = await add_document(source)
        events = await collect(service.convert(document, document.format, ConversionOptions(auto_verify=False)))

        assert isinstance(events[-1], Completed)
        output = events[-1].result.output_document
        assert output.size == 0
        assert await blob_storage.read(output.storage_ref) == b""

    async def test_verification_fault_still_completes(self, repo, blob_storage, worker_pool, temp_dir,
                                                      engine_registry, add_document, sample_docx):
        service = ConversionService(
            engine_registry=engine_registry,
            path_graph=ConversionPathGraph(),
            document_repo=repo,
            blob_storage=blob_storage,
            verification_engine=BrokenVerifier(),
            worker_pool=worker_pool,
            temp_dir=temp_dir,
        )
        document = await add_document(sample_docx)
        events = await collect(service.convert(document, get_format("txt"), ConversionOptions(auto_verify=True)))

        assert isinstance(events[-2], Verifying)
        assert isinstance(events[-1], Completed)
        result = events[-1].result
        assert result.verification_result is None
        assert await repo.get_by_id(result.output_document.id) is not None


# =========================================================================
# Working directory cleanup
# =========================================================================


class TestWorkingDirectory:
    async def test_removed_after_completion(self, service, add_document, sample_docx, temp_dir):
        document = await add_document(sample_docx)
        events = await collect(service.convert(document, get_format("pdf"), ConversionOptions(auto_verify=True)))

        assert isinstance(events[-1], Completed)
        assert list(temp_dir.iterdir()) == []

    async def test_removed_after_failure(self, repo, blob_storage, verification_engine, worker_pool, temp_dir,
                                         add_document, sample_docx):
        service = service_with(FailingEngine(), repo, blob_storage, verification_engine, worker_pool, temp_dir)
        document = await add_document(sample_docx)
        events = await collect(service.convert(document, get_format("pdf")))

        assert isinstance(events[-1], Failed)
        assert list(temp_dir.iterdir()) == []

    async def test_removed_after_cancellation(self, repo, blob_storage, verification_engine, worker_pool, temp_dir,
                                              add_document, sample_docx):
        engine = SlowEngine()
        service = service_with(engine, repo, blob_storage, verification_engine, worker_pool, temp_dir)
        document = await add_document(sample_docx)

        async with aclosing(service.convert(document, get_format("pdf"))) as events:
            async for event in events:
                if isinstance(event, Processing) and event.progress > 0.05:
                    break

        assert engine.cancelled.is_set()
        assert list(temp_dir.iterdir()) == []


# =========================================================================
# Verification and extraction
# =========================================================================


class TestVerifyConversion:
    async def test_verification_events_and_report(self, service, add_document, sample_docx, report_storage):
        document = await add_document(sample_docx)
        converted = (await collect(
            service.convert(document, get_format("docx"), ConversionOptions(auto_verify=False))
        ))[-1].result.output_document

        events = await collect(service.verify_conversion(
            document, converted, VerificationOptions(generate_report=True)
        ))

        assert isinstance(events[0], VerificationInitializing)
        assert [e.progress for e in events if isinstance(e, Comparing)] == [0.25, 0.5, 0.75, 1.0]
        completed = events[-1]
        assert isinstance(completed, VerificationCompleted)
        assert completed.result.success
        assert completed.result.overall_score == 1.0
        report = (await report_storage.read(completed.report_ref)).decode("utf-8")
        assert "Verification Status: PASSED" in report

    async def test_no_report_unless_requested(self, service, add_document, sample_docx):
        document = await add_document(sample_docx)
        events = await collect(service.verify_conversion(document, document))
        assert events[-1].report_ref is None


class TestExtraction:
    async def test_extract_content(self, service, add_document, sample_docx):
        document = await add_document(sample_docx)
        content = await service.extract_content(document)
        assert "Costs stayed flat" in content.text
        assert [h.text for h in content.structure.headings] == ["Quarterly Report", "Details"]

    async def test_extract_metadata_returns_updated_document(self, service, add_document, tmp_path):
        document = await add_document(make_docx(tmp_path / "plan.docx", title="Roadmap"))
        updated = await service.extract_metadata(document)
        assert updated.id == document.id
        assert updated.metadata.title == "Roadmap"
        assert document.metadata.title is None

    async def test_archive_content_is_a_listing(self, service, add_document, tmp_path):
        document = await add_document(make_zip(tmp_path / "files.zip"))
        content = await service.extract_content(document)
        assert "notes.txt" in content.text

    async def test_supported_targets(self, service):
        assert get_format("pdf") in service.get_supported_target_formats(get_format("docx"))
        assert not service.is_conversion_supported(get_format("zip"), get_format("pdf"))
