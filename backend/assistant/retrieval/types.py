from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class EmbeddingDocument:
    """Content handed to the retrieval index in one ingestion batch."""

    id: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DocumentSearchResult:
    """Vector-search candidate with similarity score."""

    document_id: str
    content: str
    metadata: dict[str, Any]
    score: float


@dataclass(frozen=True)
class RetrievedSnippet:
    """Snippet returned to prompt construction."""

    text: str
    score: float
    document_id: str
    metadata: dict[str, Any] = field(default_factory=dict)
