from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assistant.core.config import Settings
from assistant.repos.document_repo import DocumentRepo
from assistant.retrieval.embedder import Embedder, EmbeddingError, create_embedder
from assistant.retrieval.types import EmbeddingDocument, RetrievedSnippet
from assistant.retrieval.vector_store import SQLVectorStore, VectorStore

logger = logging.getLogger(__name__)


class RetrievalService:
    """Query-to-snippets lookup over the ingested document index."""

    def __init__(
        self,
        *,
        sessionmaker: async_sessionmaker[AsyncSession],
        embedder: Embedder,
        vector_store: VectorStore,
        default_top_k: int = 4,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._embedder = embedder
        self._vector_store = vector_store
        self._default_top_k = max(1, default_top_k)

    @property
    def embedder(self) -> Embedder:
        return self._embedder

    async def search(self, query: str, k: Optional[int] = None) -> list[RetrievedSnippet]:
        """Return at most ``k`` snippets, best match first.

        Retrieval is advisory: any failure is logged and yields no snippets.
        """

        cleaned_query = query.strip()
        top_k = self._default_top_k if k is None else k
        if not cleaned_query or top_k <= 0:
            return []

        try:
            query_embedding = await self._embedder.embed_query(cleaned_query)
        except EmbeddingError as exc:
            logger.warning("Retrieval skipped because query embedding failed: %s", exc)
            return []
        except Exception:  # noqa: BLE001
            logger.exception("Retrieval failed while embedding query")
            return []

        try:
            async with self._sessionmaker() as db:
                results = await self._vector_store.search(
                    db=db,
                    query_embedding=query_embedding,
                    embed_provider=self._embedder.provider,
                    embed_model=self._embedder.model_name,
                    limit=top_k,
                )
        except Exception:  # noqa: BLE001
            logger.exception("Retrieval failed while searching vector store")
            return []

        return [
            RetrievedSnippet(
                text=item.content,
                score=item.score,
                document_id=item.document_id,
                metadata=item.metadata,
            )
            for item in results
        ]

    async def index(self, documents: Sequence[EmbeddingDocument]) -> int:
        """Embed and store a batch of documents in one transaction.

        Errors propagate so the ingestion pipeline can account for the batch.
        """

        if not documents:
            return 0

        embeddings = await self._embedder.embed_texts([doc.content for doc in documents])
        if len(embeddings) != len(documents):
            raise EmbeddingError("Embedding count does not match document count")

        async with self._sessionmaker() as db:
            async with db.begin():
                await self._vector_store.add_documents(
                    db=db,
                    documents=documents,
                    embeddings=embeddings,
                    embed_provider=self._embedder.provider,
                    embed_model=self._embedder.model_name,
                )
        logger.debug("Indexed %d document(s)", len(documents))
        return len(documents)

    async def count_documents(self) -> int:
        async with self._sessionmaker() as db:
            return await DocumentRepo(db).count_documents()


def create_retrieval_service(
    *,
    sessionmaker: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> RetrievalService:
    """Factory wiring the configured embedder to the SQL vector store."""

    return RetrievalService(
        sessionmaker=sessionmaker,
        embedder=create_embedder(settings),
        vector_store=SQLVectorStore(candidate_limit=settings.retrieval_candidate_limit),
        default_top_k=settings.retrieval_top_k,
    )
