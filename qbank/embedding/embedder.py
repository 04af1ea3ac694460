"""
Embedding provider abstraction for qbank.

Provides an abstract EmbeddingProvider so the embedding backend can be swapped
without modifying callers. Two implementations:

- HTTPEmbeddingProvider: OpenAI-compatible ``/embeddings`` endpoint (default)
- SentenceTransformerProvider: local sentence-transformers model (optional
  ``local-embeddings`` extra)

Design decisions:
- embed_batch() is a template method: subclasses return raw vectors, the base
  class checks count and dimension and L2-normalises every vector.  Unit
  length is required because dedup compares vectors with pgvector's inner
  product operator (<#>), which equals cosine similarity only for unit vectors.
- A provider returning a different number of vectors than texts is an error,
  never silently truncated or padded.
- Module-level get_embedder() returns a singleton built from settings.

Exports: EmbeddingProvider, HTTPEmbeddingProvider, SentenceTransformerProvider,
l2_normalize, get_embedder
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

import httpx
import numpy as np

from qbank.errors import EmbeddingError

logger = logging.getLogger(__name__)


def l2_normalize(vector: Sequence[float]) -> list[float]:
    """Scale *vector* to unit length; an all-zero vector is returned unchanged."""
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    if norm == 0:
        return arr.tolist()
    return (arr / norm).tolist()


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------


class EmbeddingProvider(ABC):
    """Abstract interface for embedding providers.

    Implementors provide ``_embed_raw`` (one vector per input text, in order)
    plus the ``model_id`` and ``dimensions`` properties.  Callers only use
    ``embed`` and ``embed_batch``.
    """

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* and return one unit-length vector per text, in order.

        Raises:
            EmbeddingError: On provider failure, count mismatch, or a vector of
                the wrong dimension.
        """
        if not texts:
            return []

        raw = await self._embed_raw(texts)
        if len(raw) != len(texts):
            raise EmbeddingError(
                f"API response count ({len(raw)}) does not match input count ({len(texts)})"
            )

        vectors = []
        for i, vector in enumerate(raw):
            if len(vector) != self.dimensions:
                raise EmbeddingError(
                    f"vector {i} has {len(vector)} dimensions, expected {self.dimensions}"
                )
            vectors.append(l2_normalize(vector))
        return vectors

    async def embed(self, text: str) -> list[float]:
        """Embed a single text."""
        return (await self.embed_batch([text]))[0]

    @abstractmethod
    async def _embed_raw(self, texts: list[str]) -> Sequence[Sequence[float]]:
        """Return provider vectors for *texts* (not yet validated or normalised)."""
        ...

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Model identifier (e.g. 'text-embedding-3-small')."""
        ...

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Embedding vector dimensionality; must match the articles.embedding column."""
        ...


# ---------------------------------------------------------------------------
# OpenAI-compatible HTTP implementation
# ---------------------------------------------------------------------------


class HTTPEmbeddingProvider(EmbeddingProvider):
    """EmbeddingProvider backed by an OpenAI-compatible ``/embeddings`` API.

    The requested ``dimensions`` is sent with every call so models that support
    truncated output (text-embedding-3-*) return vectors matching the column.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        dimensions: int,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._dimensions = dimensions
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    async def _embed_raw(self, texts: list[str]) -> list[list[float]]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    f"{self._base_url}/embeddings",
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    json={
                        "model": self._model,
                        "input": texts,
                        "dimensions": self._dimensions,
                    },
                )
                response.raise_for_status()
                data = response.json()["data"]
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"embedding API error: {exc}") from exc
        except (KeyError, ValueError) as exc:
            raise EmbeddingError(f"unexpected embedding response shape: {exc}") from exc

        # The API tags each vector with its input index; do not trust list order
        return [item["embedding"] for item in sorted(data, key=lambda item: item["index"])]

    @property
    def model_id(self) -> str:
        return self._model

    @property
    def dimensions(self) -> int:
        return self._dimensions


# ---------------------------------------------------------------------------
# SentenceTransformer implementation
# ---------------------------------------------------------------------------


class SentenceTransformerProvider(EmbeddingProvider):
    """EmbeddingProvider backed by a local sentence-transformers model.

    The model is loaded once at construction.  Encoding is CPU/GPU bound, so it
    runs in a worker thread to keep the event loop (and the other pollers)
    responsive.  Requires the ``local-embeddings`` extra.
    """

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2") -> None:
        # Lazy import: torch is heavy and only needed for the local provider
        from sentence_transformers import SentenceTransformer  # noqa: PLC0415

        self._model_name = model_name
        self._model = SentenceTransformer(model_name)
        # Detect dimensions from the loaded model rather than hardcoding
        self._dimensions: int = self._model.get_sentence_embedding_dimension()

    async def _embed_raw(self, texts: list[str]) -> list[list[float]]:
        try:
            encoded = await asyncio.to_thread(
                self._model.encode, texts, normalize_embeddings=True
            )
        except RuntimeError as exc:
            raise EmbeddingError(f"local embedding failed: {exc}") from exc
        return [row.tolist() for row in encoded]

    @property
    def model_id(self) -> str:
        return self._model_name

    @property
    def dimensions(self) -> int:
        return self._dimensions


# ---------------------------------------------------------------------------
# Module-level singleton accessor
# ---------------------------------------------------------------------------


class _EmbedderSingleton:
    """Internal singleton holder — prevents repeated client/model construction."""

    _instance: EmbeddingProvider | None = None


def get_embedder() -> EmbeddingProvider:
    """Return the process-wide embedding provider, building it on first call.

    The provider type comes from settings.embedding_provider ("http" or
    "sentence-transformers").
    """
    if _EmbedderSingleton._instance is None:
        from qbank.config import settings  # noqa: PLC0415

        if settings.embedding_provider == "sentence-transformers":
            provider: EmbeddingProvider = SentenceTransformerProvider(settings.embedding_model)
        elif settings.embedding_provider == "http":
            provider = HTTPEmbeddingProvider(
                api_key=settings.embedding_api_key,
                model=settings.embedding_model,
                dimensions=settings.embedding_dimensions,
                base_url=settings.embedding_base_url,
                timeout=settings.embedding_timeout_seconds,
            )
        else:
            raise ValueError(f"Unsupported embedding provider: {settings.embedding_provider!r}")

        if provider.dimensions != settings.embedding_dimensions:
            logger.warning(
                "Embedding model %s produces %d dims but articles.embedding is %d — "
                "inserts will fail until QBANK_EMBEDDING_DIMENSIONS matches.",
                provider.model_id,
                provider.dimensions,
                settings.embedding_dimensions,
            )
        _EmbedderSingleton._instance = provider
        logger.info("Embedding provider ready: %s (dims=%d)", provider.model_id, provider.dimensions)
    return _EmbedderSingleton._instance
