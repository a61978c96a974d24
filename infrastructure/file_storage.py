# infrastructure/file_storage.py
import asyncio
import logging
import os
import uuid
from pathlib import Path
from typing import Optional, Tuple, Union

from config import settings
from core.domain import DocumentConversionError, ErrorCode
from core.interfaces import IBlobStorage
from utils.common import sanitize_filename

logger = logging.getLogger(settings.LOGGER_NAME)


class LocalBlobStorage(IBlobStorage):
    """Stores blobs as files on the local disk. A storage reference is the file name."""

    def __init__(self, base_path: Union[str, Path]):
        self.base_path = Path(base_path)
        # Create the directory if it doesn't exist
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            logger.info(f"Storage directory ensured at: {self.base_path}")
        except OSError as e:
            logger.error(f"Could not create storage directory at {self.base_path}: {e}")
            raise

    def _resolve(self, storage_ref: str) -> Path:
        path = (self.base_path / storage_ref).resolve()
        if path.parent != self.base_path.resolve():
            raise DocumentConversionError(f"Invalid storage reference: {storage_ref}", ErrorCode.DOCUMENT_NOT_FOUND)
        return path

    async def save(self, data: bytes, filename: str) -> Tuple[str, int]:
        """Saves bytes under a unique name derived from filename."""
        storage_ref = f"{uuid.uuid4().hex}_{sanitize_filename(filename)}"
        file_path = self.base_path / storage_ref
        try:
            await asyncio.to_thread(file_path.write_bytes, data)
            logger.info(f"Successfully saved file to {file_path}")
            return storage_ref, len(data)
        except OSError as e:
            logger.error(f"Failed to save file to {file_path}: {e}")
            raise

    async def read(self, storage_ref: str) -> bytes:
        file_path = self._resolve(storage_ref)
        if not file_path.exists():
            raise DocumentConversionError(f"Stored file not found: {storage_ref}", ErrorCode.DOCUMENT_NOT_FOUND)
        return await asyncio.to_thread(file_path.read_bytes)

    def local_path(self, storage_ref: str) -> Optional[str]:
        """Gets the full path of a stored file if it exists."""
        file_path = self._resolve(storage_ref)
        if file_path.exists():
            return str(file_path)
        return None

    async def delete(self, storage_ref: str) -> bool:
        """Deletes a stored file."""
        try:
            file_path = self._resolve(storage_ref)
            if file_path.exists():
                os.unlink(file_path)
                logger.info(f"Successfully deleted file: {file_path}")
                return True
            logger.warning(f"Attempted to delete non-existent file: {file_path}")
            return False
        except (OSError, DocumentConversionError) as e:
            logger.error(f"Error deleting file {storage_ref}: {e}")
            return False


async def materialize(storage: IBlobStorage, document, workdir: Path) -> Path:
    """Copy the document's bytes into a working directory; engines never touch stored files."""
    data = await storage.read(document.storage_ref)
    target = Path(workdir) / f"{uuid.uuid4().hex}_{sanitize_filename(document.name)}"
    await asyncio.to_thread(target.write_bytes, data)
    return target
