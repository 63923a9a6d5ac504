from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status

from assistant.schemas.embedding import (
    EmbeddingAcceptedResponse,
    EmbeddingDocumentIn,
    IngestionStatsOut,
)
from assistant.services.ingestion_service import IngestionService, get_ingestion_service

router = APIRouter(prefix="/api/embeddings", tags=["embeddings"])


@router.post(
    "",
    response_model=EmbeddingAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def ingest_documents(
    payload: List[EmbeddingDocumentIn],
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> EmbeddingAcceptedResponse:
    """Queue documents for embedding; indexing happens in the background."""

    accepted = ingestion.submit([(item.content, item.metadata) for item in payload])
    return EmbeddingAcceptedResponse(accepted=accepted)


@router.get("/stats", response_model=IngestionStatsOut)
async def ingestion_stats(
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> IngestionStatsOut:
    return IngestionStatsOut.model_validate(ingestion.stats())
