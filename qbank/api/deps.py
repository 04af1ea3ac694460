"""FastAPI dependencies for the qbank REST API.

Routes never build stores or clients themselves; they depend on these
functions so tests can substitute doubles through ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from qbank.dedup.repository import PostgresArticleRepository
from qbank.embedding.embedder import EmbeddingProvider, get_embedder
from qbank.queue.store import QueueStore


@lru_cache(maxsize=1)
def get_queue_store() -> QueueStore:
    return QueueStore()


@lru_cache(maxsize=1)
def get_article_repository() -> PostgresArticleRepository:
    return PostgresArticleRepository()


def get_query_embedder() -> EmbeddingProvider:
    return get_embedder()
