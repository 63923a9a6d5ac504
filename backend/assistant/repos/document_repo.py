from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from assistant.db.models import DocumentEmbedding, EmbeddingDocumentRow
from assistant.utils.time_utils import utc_now


class DocumentRepo:
    """Repository for ingested documents and their vectors."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    def add_document(
        self,
        *,
        document_id: str,
        content: str,
        metadata_json: str,
        embedding_id: str,
        provider: str,
        model_name: str,
        dim: int,
        vector_json: str,
        vector_norm: float,
    ) -> None:
        """Stage a document and its vector; the caller flushes the batch."""

        now = utc_now()
        self._db.add(
            EmbeddingDocumentRow(
                id=document_id,
                content=content,
                metadata_json=metadata_json,
                created_at=now,
            )
        )
        self._db.add(
            DocumentEmbedding(
                id=embedding_id,
                document_id=document_id,
                provider=provider,
                model_name=model_name,
                dim=dim,
                vector_json=vector_json,
                vector_norm=vector_norm,
                created_at=now,
            )
        )

    async def flush(self) -> None:
        await self._db.flush()

    async def list_vectors(
        self, *, provider: str, model_name: str, limit: int
    ) -> list[tuple[EmbeddingDocumentRow, DocumentEmbedding]]:
        """List document + embedding pairs for one embedding model, newest first."""

        stmt = (
            select(EmbeddingDocumentRow, DocumentEmbedding)
            .join(DocumentEmbedding, DocumentEmbedding.document_id == EmbeddingDocumentRow.id)
            .where(
                DocumentEmbedding.provider == provider,
                DocumentEmbedding.model_name == model_name,
            )
            .order_by(EmbeddingDocumentRow.created_at.desc(), EmbeddingDocumentRow.id.desc())
            .limit(limit)
        )
        result = await self._db.execute(stmt)
        return list(result.all())

    async def count_documents(self) -> int:
        result = await self._db.execute(select(func.count(EmbeddingDocumentRow.id)))
        return int(result.scalar_one() or 0)
