"""Article persistence and vector lookups.

ArticleRepository is the narrow interface DedupEngine needs (nearest
neighbour, insert, append to ext).  PostgresArticleRepository implements it
with pgvector and adds the read queries the REST API serves.

Distances are pgvector inner-product distances (``<#>``): the negated dot
product.  For unit vectors that is ``-cosine_similarity``, so -1.0 is an exact
match and more negative means more similar.  Nearest-neighbour search itself is
delegated to PostgreSQL (HNSW index on ``vector_ip_ops``).
"""

from __future__ import annotations

import functools
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import ParamSpec, TypeVar

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qbank.db.models import Article
from qbank.enrich.models import EnrichedQuestion
from qbank.errors import StoreError

logger = logging.getLogger(__name__)

_P = ParamSpec("_P")
_R = TypeVar("_R")


@dataclass(frozen=True)
class NearestArticle:
    """The closest stored article to a query vector."""

    article_id: int
    distance: float


def _store_op(func: Callable[_P, Awaitable[_R]]) -> Callable[_P, Awaitable[_R]]:
    @functools.wraps(func)
    async def wrapper(*args: _P.args, **kwargs: _P.kwargs) -> _R:
        try:
            return await func(*args, **kwargs)
        except (SQLAlchemyError, OSError) as exc:
            raise StoreError(f"{func.__name__} failed: {exc}") from exc

    return wrapper


# ---------------------------------------------------------------------------
# Interface used by DedupEngine
# ---------------------------------------------------------------------------


class ArticleRepository(ABC):
    """Storage operations the dedup decision depends on.

    Every method raises StoreError when the store fails.
    """

    @abstractmethod
    async def find_closest(self, vector: Sequence[float]) -> NearestArticle | None:
        """Nearest article by inner-product distance, or None if there are none."""
        ...

    @abstractmethod
    async def insert(self, question: EnrichedQuestion, vector: Sequence[float]) -> int:
        """Create an article from *question* with an empty ext; return its id."""
        ...

    @abstractmethod
    async def append_ext(self, article_id: int, question: EnrichedQuestion) -> None:
        """Append *question* to the ext list of an existing article."""
        ...


# ---------------------------------------------------------------------------
# PostgreSQL + pgvector implementation
# ---------------------------------------------------------------------------


class PostgresArticleRepository(ArticleRepository):
    """ArticleRepository plus read queries, on PostgreSQL with pgvector."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        if session_factory is None:
            from qbank.db.session import AsyncSessionFactory  # noqa: PLC0415

            session_factory = AsyncSessionFactory
        self._session_factory = session_factory

    # -- dedup operations ------------------------------------------------

    @_store_op
    async def find_closest(self, vector: Sequence[float]) -> NearestArticle | None:
        distance_col = Article.embedding.max_inner_product(list(vector)).label("distance")
        async with self._session_factory() as session:
            result = await session.execute(
                sa.select(Article.id, distance_col).order_by(distance_col.asc()).limit(1)
            )
            row = result.first()
        if row is None:
            return None
        return NearestArticle(article_id=row.id, distance=float(row.distance))

    @_store_op
    async def insert(self, question: EnrichedQuestion, vector: Sequence[float]) -> int:
        article = Article(
            original_question=question.original_question,
            detailed_question=question.detailed_question,
            concise_answer=question.concise_answer,
            tags=list(question.tags),
            embedding=list(vector),
            ext=[],
        )
        async with self._session_factory() as session:
            session.add(article)
            await session.commit()
        return article.id

    @_store_op
    async def append_ext(self, article_id: int, question: EnrichedQuestion) -> None:
        # jsonb || jsonb on two arrays concatenates them
        appended = sa.func.coalesce(Article.ext, sa.text("'[]'::jsonb")).op(
            "||", return_type=postgresql.JSONB()
        )(sa.literal([question.model_dump(mode="json")], type_=postgresql.JSONB()))

        async with self._session_factory() as session:
            result = await session.execute(
                sa.update(Article)
                .where(Article.id == article_id)
                .values(ext=appended)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        if result.rowcount != 1:
            raise StoreError(f"append_ext failed: article {article_id} does not exist")

    # -- read queries (REST API) -----------------------------------------

    @_store_op
    async def get(self, article_id: int) -> Article | None:
        async with self._session_factory() as session:
            return await session.get(Article, article_id)

    @_store_op
    async def list_articles(
        self,
        tags: Sequence[str] | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Article], int]:
        """Page through articles, newest id first.

        When *tags* is given only articles carrying all of them are returned
        (``tags @> ARRAY[...]``, served by the GIN index).

        Returns:
            (articles on this page, total matching count)
        """
        conditions = []
        if tags:
            conditions.append(Article.tags.contains(list(tags)))

        async with self._session_factory() as session:
            total = (
                await session.execute(
                    sa.select(sa.func.count(Article.id)).where(*conditions)
                )
            ).scalar_one()
            result = await session.execute(
                sa.select(Article)
                .where(*conditions)
                .order_by(Article.id.desc())
                .limit(limit)
                .offset(offset)
            )
            articles = list(result.scalars().all())
        return articles, total

    @_store_op
    async def search(self, vector: Sequence[float], limit: int = 10) -> list[tuple[Article, float]]:
        """Nearest articles to *vector* with their similarity (negated distance)."""
        distance_col = Article.embedding.max_inner_product(list(vector)).label("distance")
        async with self._session_factory() as session:
            result = await session.execute(
                sa.select(Article, distance_col).order_by(distance_col.asc()).limit(limit)
            )
            return [(article, -float(distance)) for article, distance in result.all()]

    @_store_op
    async def find_similar(self, article_id: int, limit: int = 10) -> list[Article] | None:
        """Nearest other articles to an existing one; None if it does not exist."""
        async with self._session_factory() as session:
            anchor = (
                await session.execute(sa.select(Article.embedding).where(Article.id == article_id))
            ).scalar_one_or_none()
            if anchor is None:
                return None
            result = await session.execute(
                sa.select(Article)
                .where(Article.id != article_id)
                .order_by(Article.embedding.max_inner_product(anchor))
                .limit(limit)
            )
            return list(result.scalars().all())

    @_store_op
    async def all_tags(self) -> list[str]:
        """Distinct tags across all articles, alphabetically."""
        tag = sa.func.unnest(Article.tags).label("tag")
        async with self._session_factory() as session:
            result = await session.execute(sa.select(tag).distinct().order_by(tag))
            return [row[0] for row in result.all()]
