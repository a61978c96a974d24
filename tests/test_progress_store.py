"""In-memory batch job tracking."""
from core.domain import ConversionResult, Document
from core.formats import get_format
from core.progress import BatchConversionProgress, ConversionFailure
from infrastructure.progress_store import JobStatus, ProgressStore


def doc(doc_id: str, name: str = "a.docx") -> Document:
    return Document(id=doc_id, name=name, format=get_format(name.rsplit(".", 1)[1]), size=1, storage_ref=name)


class TestProgressStore:
    def test_start(self):
        store = ProgressStore()
        store.start("job", "pdf", ["a", "b"])
        entry = store.get("job")
        assert entry["status"] == JobStatus.PENDING
        assert entry["total_documents"] == 2
        assert "_created" not in entry

    def test_update_mirrors_snapshot(self):
        store = ProgressStore()
        store.start("job", "pdf", ["a", "b"])
        result = ConversionResult(source_document=doc("a"), output_document=doc("out", "a.pdf"), success=True)
        store.update("job", BatchConversionProgress(
            total_documents=2,
            processed_documents=1,
            current_document_progress=0.5,
            current_document=doc("b"),
            results=(result,),
            failed=(ConversionFailure(doc("c"), "broken"),),
        ))

        entry = store.get("job")
        assert entry["status"] == JobStatus.RUNNING
        assert entry["progress_percent"] == 75
        assert entry["current_document_id"] == "b"
        assert entry["output_document_ids"] == ["out"]
        assert entry["failures"] == [{"document_id": "c", "reason": "broken"}]

    def test_complete_and_fail(self):
        store = ProgressStore()
        store.start("ok", "txt", ["a"])
        store.start("bad", "txt", ["a"])
        store.complete("ok")
        store.fail("bad", "database went away")
        assert store.get("ok")["progress_percent"] == 100
        assert store.get("ok")["status"] == JobStatus.COMPLETED
        assert store.get("bad")["error"] == "database went away"

    def test_unknown_job(self):
        store = ProgressStore()
        store.update("ghost", BatchConversionProgress(0, 0, 0.0, None))
        store.complete("ghost")
        assert store.get("ghost") is None

    def test_oldest_entries_are_evicted(self):
        store = ProgressStore(max_entries=4)
        for index in range(5):
            store.start(f"job{index}", "pdf", [])
        assert store.get("job0") is None
        assert store.get("job1") is None
        assert store.get("job4") is not None

    def test_remove(self):
        store = ProgressStore()
        store.start("job", "pdf", [])
        store.remove("job")
        store.remove("job")
        assert store.get("job") is None
