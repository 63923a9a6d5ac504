from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Request

from assistant.retrieval.types import EmbeddingDocument
from assistant.services.retrieval_service import RetrievalService
from assistant.utils.ids import new_time_ordered_id

logger = logging.getLogger(__name__)

RawItem = tuple[Any, Optional[Mapping[str, Any]]]


@dataclass
class IngestionStats:
    """Counters describing what the ingestion workers have done so far."""

    submitted_batches: int = 0
    indexed_batches: int = 0
    failed_batches: int = 0
    indexed_documents: int = 0
    pending_batches: int = 0
    last_error: Optional[str] = None


def coerce_content(value: Any) -> str:
    """Turn an arbitrary JSON payload into indexable text."""

    if isinstance(value, str):
        return value
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    return str(value)


class IngestionService:
    """Background pipeline turning raw content batches into indexed documents.

    ``submit`` only enqueues; worker tasks build the documents and index each
    batch with one call. A failed batch is logged and counted, never retried.
    """

    def __init__(self, retrieval: RetrievalService, workers: int = 1) -> None:
        self._retrieval = retrieval
        self._worker_count = max(1, workers)
        self._queue: asyncio.Queue[list[RawItem]] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []
        self._in_flight = 0
        self._stats = IngestionStats()

    def start(self) -> None:
        """Spawn worker tasks on the running loop if they are not alive yet."""

        self._workers = [task for task in self._workers if not task.done()]
        while len(self._workers) < self._worker_count:
            index = len(self._workers)
            self._workers.append(
                asyncio.create_task(self._run_worker(index), name=f"ingestion-worker-{index}")
            )

    def submit(self, items: Sequence[RawItem]) -> int:
        """Queue one batch and return how many items were accepted."""

        batch = list(items)
        if not batch:
            return 0
        self.start()
        self._queue.put_nowait(batch)
        self._stats.submitted_batches += 1
        logger.debug("Queued ingestion batch of %d item(s)", len(batch))
        return len(batch)

    async def wait_idle(self) -> None:
        """Block until every queued batch has been processed."""

        await self._queue.join()

    async def shutdown(self) -> None:
        """Cancel worker tasks; batches still queued are dropped."""

        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

    def stats(self) -> IngestionStats:
        return IngestionStats(
            submitted_batches=self._stats.submitted_batches,
            indexed_batches=self._stats.indexed_batches,
            failed_batches=self._stats.failed_batches,
            indexed_documents=self._stats.indexed_documents,
            pending_batches=self._queue.qsize() + self._in_flight,
            last_error=self._stats.last_error,
        )

    async def _run_worker(self, index: int) -> None:
        logger.debug("Ingestion worker %d started", index)
        while True:
            batch = await self._queue.get()
            self._in_flight += 1
            try:
                await self._process(batch)
            finally:
                self._in_flight -= 1
                self._queue.task_done()

    async def _process(self, batch: list[RawItem]) -> None:
        try:
            documents = [
                EmbeddingDocument(
                    id=new_time_ordered_id(),
                    content=coerce_content(content),
                    metadata=dict(metadata or {}),
                )
                for content, metadata in batch
            ]
            indexed = await self._retrieval.index(documents)
        except Exception as exc:  # noqa: BLE001
            self._stats.failed_batches += 1
            self._stats.last_error = str(exc) or exc.__class__.__name__
            logger.exception("Ingestion batch of %d item(s) failed", len(batch))
            return

        self._stats.indexed_batches += 1
        self._stats.indexed_documents += indexed
        logger.info("Ingested %d document(s)", indexed)


def get_ingestion_service(request: Request) -> IngestionService:
    """Dependency to access the ingestion pipeline from app state."""

    return request.app.state.ingestion_service
