# infrastructure/repositories.py
"""Database repository implementations"""
import logging
import os
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from core.domain import Document, DocumentMetadata
from core.formats import DocumentFormat, get_format
from core.interfaces import IDocumentRepository
from database.session import DocumentEntity

logger = logging.getLogger(settings.LOGGER_NAME)


class SQLDocumentRepository(IDocumentRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_domain(self, db_doc: Optional[DocumentEntity]) -> Optional[Document]:
        """Converts an SQLAlchemy entity to a domain model."""
        if db_doc is None:
            return None

        document_format = get_format(db_doc.format_id)  # type: ignore
        if document_format is None:
            logger.warning(f"Document {db_doc.id} has unknown format '{db_doc.format_id}', skipping")
            return None

        return Document(
            id=db_doc.id,  # type: ignore
            name=db_doc.name,  # type: ignore
            format=document_format,
            size=db_doc.size,  # type: ignore
            storage_ref=db_doc.storage_ref,  # type: ignore
            local_path=db_doc.local_path,  # type: ignore
            date_created=db_doc.date_created,  # type: ignore
            date_modified=db_doc.date_modified,  # type: ignore
            thumbnail_ref=db_doc.thumbnail_ref,  # type: ignore
            metadata=DocumentMetadata.from_dict(db_doc.meta),  # type: ignore
        )

    @staticmethod
    def _to_entity(document: Document) -> DocumentEntity:
        return DocumentEntity(
            id=document.id,
            name=document.name,
            format_id=document.format.id,
            size=document.size,
            storage_ref=document.storage_ref,
            local_path=document.local_path,
            thumbnail_ref=document.thumbnail_ref,
            date_created=document.date_created,
            date_modified=document.date_modified,
            meta=document.metadata.to_dict(),
        )

    def _to_domain_list(self, entities) -> List[Document]:
        docs = [self._to_domain(doc) for doc in entities]
        return [d for d in docs if d is not None]

    async def save(self, document: Document) -> Document:
        """Insert or update (merge by primary key)."""
        await self.session.merge(self._to_entity(document))
        await self.session.commit()
        logger.info(f"Saved document {document.id} ({document.name})")
        return document

    async def get_by_id(self, document_id: str) -> Optional[Document]:
        db_doc = await self.session.get(DocumentEntity, document_id)
        return self._to_domain(db_doc)

    async def delete(self, document: Document) -> bool:
        db_doc = await self.session.get(DocumentEntity, document.id)
        if not db_doc:
            return False
        await self.session.delete(db_doc)
        await self.session.commit()

        if document.local_path and os.path.exists(document.local_path):
            try:
                os.unlink(document.local_path)
            except OSError as e:
                logger.warning(f"Could not remove file for document {document.id}: {e}")
        logger.info(f"Deleted document {document.id}")
        return True

    async def list_all(self) -> List[Document]:
        """List all documents, newest first"""
        result = await self.session.execute(
            select(DocumentEntity).order_by(DocumentEntity.date_modified.desc())
        )
        return self._to_domain_list(result.scalars().all())

    async def list_by_format(self, document_format: DocumentFormat) -> List[Document]:
        result = await self.session.execute(
            select(DocumentEntity)
            .where(DocumentEntity.format_id == document_format.id)
            .order_by(DocumentEntity.date_modified.desc())
        )
        return self._to_domain_list(result.scalars().all())

    async def search(self, query: str) -> List[Document]:
        """Case-insensitive substring match on the document name"""
        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        result = await self.session.execute(
            select(DocumentEntity)
            .where(DocumentEntity.name.ilike(f"%{escaped}%", escape="\\"))
            .order_by(DocumentEntity.date_modified.desc())
        )
        return self._to_domain_list(result.scalars().all())

    async def list_recent(self, limit: int = 10) -> List[Document]:
        result = await self.session.execute(
            select(DocumentEntity).order_by(DocumentEntity.date_modified.desc()).limit(limit)
        )
        return self._to_domain_list(result.scalars().all())
