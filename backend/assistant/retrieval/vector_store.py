from __future__ import annotations

import json
import math
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from assistant.repos.document_repo import DocumentRepo
from assistant.retrieval.types import DocumentSearchResult, EmbeddingDocument
from assistant.utils.ids import new_time_ordered_id


class VectorStore(ABC):
    """Abstract document vector storage backend."""

    @abstractmethod
    async def add_documents(
        self,
        *,
        db: AsyncSession,
        documents: Sequence[EmbeddingDocument],
        embeddings: Sequence[Sequence[float]],
        embed_provider: str,
        embed_model: str,
    ) -> None:
        """Insert documents and their vectors in the caller's transaction."""

    @abstractmethod
    async def search(
        self,
        *,
        db: AsyncSession,
        query_embedding: Sequence[float],
        embed_provider: str,
        embed_model: str,
        limit: int,
    ) -> list[DocumentSearchResult]:
        """Return up to ``limit`` documents ordered by descending similarity."""


class SQLVectorStore(VectorStore):
    """SQL-backed vector store with in-process cosine similarity."""

    def __init__(self, candidate_limit: int = 5000) -> None:
        self._candidate_limit = max(1, int(candidate_limit))

    async def add_documents(
        self,
        *,
        db: AsyncSession,
        documents: Sequence[EmbeddingDocument],
        embeddings: Sequence[Sequence[float]],
        embed_provider: str,
        embed_model: str,
    ) -> None:
        if len(documents) != len(embeddings):
            raise ValueError("documents and embeddings must have the same length")

        repo = DocumentRepo(db)
        for document, embedding in zip(documents, embeddings):
            vector = [float(value) for value in embedding]
            norm = math.sqrt(sum(value * value for value in vector))
            repo.add_document(
                document_id=document.id,
                content=document.content,
                metadata_json=json.dumps(document.metadata, separators=(",", ":"), default=str),
                embedding_id=new_time_ordered_id(),
                provider=embed_provider,
                model_name=embed_model,
                dim=len(vector),
                vector_json=json.dumps(vector, separators=(",", ":")),
                vector_norm=norm if norm > 0 else 1.0,
            )
        await repo.flush()

    async def search(
        self,
        *,
        db: AsyncSession,
        query_embedding: Sequence[float],
        embed_provider: str,
        embed_model: str,
        limit: int,
    ) -> list[DocumentSearchResult]:
        if limit <= 0:
            return []

        query = [float(value) for value in query_embedding]
        query_norm = math.sqrt(sum(value * value for value in query))
        if query_norm <= 0:
            return []

        rows = await DocumentRepo(db).list_vectors(
            provider=embed_provider, model_name=embed_model, limit=self._candidate_limit
        )

        scored: list[DocumentSearchResult] = []
        for document, embedding in rows:
            candidate = _decode_vector(embedding.vector_json, len(query))
            if candidate is None:
                continue
            score = _cosine_similarity(query, query_norm, candidate, float(embedding.vector_norm))
            scored.append(
                DocumentSearchResult(
                    document_id=document.id,
                    content=document.content,
                    metadata=_decode_metadata(document.metadata_json),
                    score=score,
                )
            )

        # Rows come back newest first, and sort() is stable, so ties favour recent documents.
        scored.sort(key=lambda row: row.score, reverse=True)
        return scored[:limit]


def _decode_vector(raw: str, expected_dim: int) -> Optional[list[float]]:
    try:
        candidate = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(candidate, list) or len(candidate) != expected_dim:
        return None
    try:
        return [float(value) for value in candidate]
    except (TypeError, ValueError):
        return None


def _decode_metadata(raw: str) -> dict[str, Any]:
    try:
        value = json.loads(raw or "{}")
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def _cosine_similarity(
    left: list[float], left_norm: float, right: list[float], right_norm: float
) -> float:
    if left_norm <= 0 or right_norm <= 0 or len(left) != len(right):
        return 0.0
    dot = sum(l_value * r_value for l_value, r_value in zip(left, right))
    return dot / (left_norm * right_norm)
