from __future__ import annotations

from typing import Any, Optional

from pydantic import Field, field_validator

from assistant.schemas.common import APIModel


class EmbeddingDocumentIn(APIModel):
    """One raw item to ingest; ``content`` may be any JSON value."""

    content: Any
    metadata: Optional[dict[str, Any]] = Field(default=None)

    @field_validator("content", mode="before")
    @classmethod
    def _require_content(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("content must not be null")
        return value


class EmbeddingAcceptedResponse(APIModel):
    """Acknowledgement returned before ingestion runs."""

    accepted: int


class IngestionStatsOut(APIModel):
    """Ingestion pipeline counters."""

    submitted_batches: int
    indexed_batches: int
    failed_batches: int
    indexed_documents: int
    pending_batches: int
    last_error: Optional[str] = Field(default=None)
