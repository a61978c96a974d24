"""Local blob storage and materialization."""
from pathlib import Path

import pytest

from core.domain import Document, DocumentConversionError, ErrorCode
from core.formats import get_format
from infrastructure.file_storage import LocalBlobStorage, materialize

pytestmark = pytest.mark.asyncio


class TestLocalBlobStorage:
    async def test_save_and_read(self, blob_storage):
        ref, size = await blob_storage.save(b"hello", "greeting.txt")
        assert size == 5
        assert ref.endswith("_greeting.txt")
        assert await blob_storage.read(ref) == b"hello"

    async def test_same_name_gets_distinct_refs(self, blob_storage):
        first, _ = await blob_storage.save(b"1", "same.txt")
        second, _ = await blob_storage.save(b"2", "same.txt")
        assert first != second

    async def test_unsafe_names_are_sanitized(self, blob_storage):
        ref, _ = await blob_storage.save(b"x", "../../etc/passwd")
        assert "/" not in ref
        assert Path(blob_storage.local_path(ref)).parent == blob_storage.base_path.resolve()

    async def test_local_path(self, blob_storage):
        ref, _ = await blob_storage.save(b"x", "a.txt")
        assert Path(blob_storage.local_path(ref)).read_bytes() == b"x"
        assert blob_storage.local_path("missing.txt") is None

    async def test_read_missing(self, blob_storage):
        with pytest.raises(DocumentConversionError) as excinfo:
            await blob_storage.read("missing.txt")
        assert excinfo.value.error_code == ErrorCode.DOCUMENT_NOT_FOUND

    async def test_path_traversal_is_rejected(self, blob_storage):
        with pytest.raises(DocumentConversionError):
            await blob_storage.read("../outside.txt")
        with pytest.raises(DocumentConversionError):
            blob_storage.local_path("nested/file.txt")

    async def test_delete(self, blob_storage):
        ref, _ = await blob_storage.save(b"x", "a.txt")
        assert await blob_storage.delete(ref)
        assert not await blob_storage.delete(ref)
        assert not await blob_storage.delete("../outside.txt")

    async def test_creates_base_directory(self, tmp_path):
        storage = LocalBlobStorage(tmp_path / "deep" / "store")
        assert storage.base_path.is_dir()


class TestMaterialize:
    async def test_copies_into_workdir(self, blob_storage, tmp_path):
        ref, size = await blob_storage.save(b"payload", "input.docx")
        document = Document(id="1", name="input.docx", format=get_format("docx"), size=size, storage_ref=ref,
                            local_path=blob_storage.local_path(ref))
        workdir = tmp_path / "work"
        workdir.mkdir()

        path = await materialize(blob_storage, document, workdir)

        assert path.parent == workdir
        assert path.suffix == ".docx"
        assert path.read_bytes() == b"payload"
        assert str(path) != document.local_path
        path.write_bytes(b"changed")
        assert await blob_storage.read(ref) == b"payload"
