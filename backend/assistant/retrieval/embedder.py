from __future__ import annotations

import hashlib
import logging
import math
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Optional

import httpx

from assistant.core.config import Settings

logger = logging.getLogger(__name__)

_TOKEN_PATTERN = re.compile(r"[\w][\w-]*", re.UNICODE)


class EmbeddingError(RuntimeError):
    """Raised when embedding generation fails."""


class Embedder(ABC):
    """Embedding interface for pluggable providers."""

    provider: str
    model_name: str
    dimension: int

    @abstractmethod
    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        """Generate vectors for each text input."""

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single search query."""

        vectors = await self.embed_texts([text])
        if len(vectors) != 1:
            raise EmbeddingError("Embedding provider returned no vector for query")
        return vectors[0]


class DeterministicEmbedder(Embedder):
    """Offline hashing embedder for tests and local runs.

    Each word token is hashed into one signed bucket, so texts sharing words
    land close together under cosine similarity.
    """

    provider = "deterministic"

    def __init__(self, dimension: int, model_name: str = "deterministic-v1") -> None:
        if dimension <= 0:
            raise EmbeddingError("Embedding dimension must be > 0")
        self.dimension = int(dimension)
        self.model_name = model_name

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        return [self._embed_single(text) for text in texts]

    def _embed_single(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        tokens = _TOKEN_PATTERN.findall(text.casefold())
        if not tokens:
            vector[0] = 1.0
            return vector

        for token in tokens:
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=16).digest()
            index = int.from_bytes(digest[:4], byteorder="big") % self.dimension
            sign = 1.0 if digest[4] % 2 == 0 else -1.0
            magnitude = 1.0 + (digest[5] / 255.0)
            vector[index] += sign * magnitude
        return normalize_vector(vector)


class OpenAIEmbedder(Embedder):
    """OpenAI-compatible embedding provider implementation."""

    provider = "openai"

    _MAX_BATCH = 256

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model_name: str,
        dimension: int,
        timeout_sec: float = 20.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if dimension <= 0:
            raise EmbeddingError("Embedding dimension must be > 0")
        if not api_key.strip():
            raise EmbeddingError("OpenAI embedding API key is empty")
        self.model_name = model_name
        self.dimension = int(dimension)
        self._timeout_sec = timeout_sec
        self._api_key = api_key
        self._client = http_client
        normalized = base_url.rstrip("/")
        if normalized.endswith("/v1"):
            normalized = normalized[:-3]
        self._endpoint = f"{normalized}/v1/embeddings"

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._MAX_BATCH):
            chunk = list(texts[start : start + self._MAX_BATCH])
            vectors.extend(await self._embed_chunk(chunk))
        return vectors

    async def _embed_chunk(self, texts: list[str]) -> list[list[float]]:
        payload = {"model": self.model_name, "input": texts}
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        try:
            if self._client:
                response = await self._client.post(
                    self._endpoint, json=payload, headers=headers, timeout=self._timeout_sec
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout_sec) as client:
                    response = await client.post(self._endpoint, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise EmbeddingError("OpenAI embedding request failed") from exc
        except ValueError as exc:
            raise EmbeddingError("OpenAI embedding response is not JSON") from exc

        vectors = self._parse_embeddings(data, len(texts))
        return [normalize_vector(vector) for vector in vectors]

    def _parse_embeddings(self, payload: Any, expected_size: int) -> list[list[float]]:
        rows = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(rows, list) or len(rows) != expected_size:
            raise EmbeddingError("Embedding response shape is invalid")

        ordered = sorted(
            rows,
            key=lambda row: row.get("index", 0) if isinstance(row, dict) else 0,
        )
        vectors: list[list[float]] = []
        for row in ordered:
            embedding = row.get("embedding") if isinstance(row, dict) else None
            if not isinstance(embedding, list):
                raise EmbeddingError("Embedding row is missing vector data")
            if len(embedding) != self.dimension:
                raise EmbeddingError("Embedding dimension mismatch")
            try:
                vector = [float(value) for value in embedding]
            except (TypeError, ValueError) as exc:
                raise EmbeddingError("Embedding contains non-numeric values") from exc
            vectors.append(vector)
        return vectors


def create_embedder(settings: Settings) -> Embedder:
    """Build the configured embedder, falling back to the offline one."""

    provider = settings.embed_provider.strip().lower()
    if provider == "deterministic":
        model_name = settings.embed_model.strip() or "deterministic-v1"
        return DeterministicEmbedder(dimension=settings.embed_dim, model_name=model_name)

    if provider == "openai":
        api_key = settings.embed_openai_api_key.strip()
        if not api_key:
            logger.warning(
                "EMBED_PROVIDER=openai but EMBED_OPENAI_API_KEY is missing; fallback to deterministic"
            )
            return DeterministicEmbedder(dimension=settings.embed_dim)
        model_name = settings.embed_model.strip() or "text-embedding-3-small"
        return OpenAIEmbedder(
            base_url=settings.openai_base_url,
            api_key=api_key,
            model_name=model_name,
            dimension=settings.embed_dim,
        )

    logger.warning("Unknown EMBED_PROVIDER=%s; fallback to deterministic", provider)
    return DeterministicEmbedder(dimension=settings.embed_dim)


def normalize_vector(vector: list[float]) -> list[float]:
    norm = math.sqrt(sum(item * item for item in vector))
    if norm <= 0:
        return vector
    return [item / norm for item in vector]
