"""Batch conversion: sequential processing, failure isolation and overall progress."""
from contextlib import aclosing

import pytest

from core.conversion_paths import ConversionPathGraph
from core.domain import ConversionOptions, Document
from core.formats import FormatCategory, get_format
from core.progress import BatchConversionProgress
from services.conversion_service import ConversionService
from services.engine_registry import EngineRegistry
from conftest import RaisingEngine, make_docx


async def run_batch(service, documents, target="txt"):
    options = ConversionOptions(auto_verify=False)
    async with aclosing(service.batch_convert(documents, get_format(target), options)) as events:
        return [snapshot async for snapshot in events]


@pytest.mark.asyncio
class TestBatchConvert:
    async def test_one_failure_does_not_stop_the_batch(self, service, add_document, tmp_path):
        broken = tmp_path / "broken.docx"
        broken.write_bytes(b"not a docx")
        documents = [
            await add_document(make_docx(tmp_path / "first.docx", title="First")),
            await add_document(broken),
            await add_document(make_docx(tmp_path / "third.docx", title="Third")),
        ]

        snapshots = await run_batch(service, documents)
        final = snapshots[-1]

        assert final.processed_documents == 3
        assert final.current_document is None
        assert final.overall_progress == 1.0
        assert len(final.results) == 2
        assert len(final.failed) == 1
        assert final.failed[0].document.id == documents[1].id
        assert [r.output_document.name for r in final.results] == ["first.txt", "third.txt"]

    async def test_documents_are_processed_in_order(self, service, add_document, tmp_path):
        documents = [
            await add_document(make_docx(tmp_path / f"doc{i}.docx", title=f"Doc {i}"))
            for i in range(3)
        ]
        snapshots = await run_batch(service, documents)

        started = []
        for snapshot in snapshots:
            if snapshot.current_document and snapshot.current_document.id not in started:
                started.append(snapshot.current_document.id)
        assert started == [d.id for d in documents]

    async def test_overall_progress_never_decreases(self, service, add_document, tmp_path):
        documents = [await add_document(make_docx(tmp_path / f"p{i}.docx")) for i in range(2)]
        snapshots = await run_batch(service, documents)

        overall = [s.overall_progress for s in snapshots]
        assert all(a <= b for a, b in zip(overall, overall[1:]))
        assert overall[-1] == 1.0

    async def test_unsupported_documents_are_recorded_as_failures(self, service, add_document, tmp_path, sample_zip):
        documents = [await add_document(sample_zip), await add_document(make_docx(tmp_path / "ok.docx"))]
        final = (await run_batch(service, documents, target="pdf"))[-1]

        assert len(final.results) == 1
        assert final.failed[0].document.id == documents[0].id
        assert "not supported" in final.failed[0].reason

    async def test_empty_batch(self, service):
        snapshots = await run_batch(service, [])
        assert len(snapshots) == 1
        assert snapshots[0].overall_progress == 1.0

    async def test_stream_error_is_recorded_and_the_batch_continues(self, repo, blob_storage, verification_engine,
                                                                   worker_pool, temp_dir, add_document, tmp_path):
        service = ConversionService(
            engine_registry=EngineRegistry([RaisingEngine()], categories=[FormatCategory.DOCUMENT]),
            path_graph=ConversionPathGraph(),
            document_repo=repo,
            blob_storage=blob_storage,
            verification_engine=verification_engine,
            worker_pool=worker_pool,
            temp_dir=temp_dir,
        )
        documents = [await add_document(make_docx(tmp_path / f"r{i}.docx")) for i in range(2)]
        final = (await run_batch(service, documents))[-1]

        assert final.processed_documents == 2
        assert final.results == ()
        assert [f.document.id for f in final.failed] == [d.id for d in documents]
        assert all(f.reason == "Error: engine table corrupted" for f in final.failed)

    async def test_working_directory_is_gone_before_the_next_document(self, service, add_document, tmp_path, temp_dir):
        documents = [await add_document(make_docx(tmp_path / f"w{i}.docx")) for i in range(3)]
        options = ConversionOptions(auto_verify=False)

        started, leftovers = set(), []
        async with aclosing(service.batch_convert(documents, get_format("pdf"), options)) as events:
            async for snapshot in events:
                current = snapshot.current_document
                if current is not None and current.id not in started:
                    started.add(current.id)
                    leftovers.extend(temp_dir.iterdir())

        assert leftovers == []
        assert list(temp_dir.iterdir()) == []


class TestBatchProgress:
    def test_overall_progress_includes_current_document(self):
        snapshot = BatchConversionProgress(
            total_documents=4,
            processed_documents=1,
            current_document_progress=0.5,
            current_document=Document(id="d", name="a.txt", format=get_format("txt"), size=1, storage_ref="a.txt"),
        )
        assert snapshot.overall_progress == 0.375

    def test_no_documents_means_done(self):
        snapshot = BatchConversionProgress(0, 0, 0.0, None)
        assert snapshot.overall_progress == 1.0
