"""Article browsing and search endpoints.

Endpoints:
- GET  /articles               — paginated list, optional tag filter
- GET  /articles/{id}          — one article including merged duplicates
- GET  /articles/{id}/similar  — nearest other articles by embedding
- POST /articles/search        — embed a free-text query and return nearest
- GET  /tags                   — every distinct tag

All vector queries use the same inner-product ordering as dedup;
``similarity`` in responses is the negated distance (1.0 = identical).
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from qbank.api.deps import get_article_repository, get_query_embedder
from qbank.config import settings
from qbank.db.models import Article
from qbank.dedup.repository import PostgresArticleRepository
from qbank.embedding.embedder import EmbeddingProvider
from qbank.errors import EmbeddingError, StoreError

logger = logging.getLogger(__name__)

articles_router = APIRouter(tags=["articles"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class ArticleResponse(BaseModel):
    id: int
    original_question: str
    detailed_question: str | None = None
    concise_answer: str | None = None
    tags: list[str]
    created_at: str
    similarity: float | None = None


class ArticleDetailResponse(ArticleResponse):
    ext: list[dict] = Field(default_factory=list, description="Merged duplicate phrasings")


class Pagination(BaseModel):
    page: int
    page_size: int
    total: int
    total_pages: int


class ArticleListResponse(BaseModel):
    data: list[ArticleResponse]
    pagination: Pagination


class ArticleDetailEnvelope(BaseModel):
    data: ArticleDetailResponse


class SimilarArticlesResponse(BaseModel):
    data: list[ArticleResponse]
    source_id: int
    limit: int


class VectorSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    limit: int = Field(default=10, ge=1, le=100)


class VectorSearchResponse(BaseModel):
    data: list[ArticleResponse]
    query: str


class TagsResponse(BaseModel):
    data: list[str]


def _to_response(article: Article, similarity: float | None = None) -> ArticleResponse:
    return ArticleResponse(
        id=article.id,
        original_question=article.original_question,
        detailed_question=article.detailed_question,
        concise_answer=article.concise_answer,
        tags=list(article.tags or []),
        created_at=article.created_at.isoformat(),
        similarity=similarity,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@articles_router.get(
    "/articles",
    response_model=ArticleListResponse,
    operation_id="list_articles",
    summary="List articles, newest first",
)
async def list_articles(
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int | None, Query(ge=1, le=settings.max_page_size)] = None,
    tags: Annotated[list[str] | None, Query(description="Only articles carrying all of these tags")] = None,
    repository: PostgresArticleRepository = Depends(get_article_repository),
) -> ArticleListResponse:
    page_size = page_size or settings.default_page_size
    try:
        articles, total = await repository.list_articles(
            tags=tags, limit=page_size, offset=(page - 1) * page_size
        )
    except StoreError:
        logger.exception("Listing articles failed")
        raise HTTPException(status_code=500, detail="failed to list articles")

    return ArticleListResponse(
        data=[_to_response(a) for a in articles],
        pagination=Pagination(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=(total + page_size - 1) // page_size,
        ),
    )


@articles_router.post(
    "/articles/search",
    response_model=VectorSearchResponse,
    operation_id="search_articles",
    summary="Semantic search over articles",
)
async def search_articles(
    body: VectorSearchRequest,
    repository: PostgresArticleRepository = Depends(get_article_repository),
    embedder: EmbeddingProvider = Depends(get_query_embedder),
) -> VectorSearchResponse:
    try:
        vector = await embedder.embed(body.query)
    except EmbeddingError:
        logger.exception("Embedding search query failed")
        raise HTTPException(status_code=502, detail="failed to generate embedding")

    try:
        hits = await repository.search(vector, limit=body.limit)
    except StoreError:
        logger.exception("Vector search failed")
        raise HTTPException(status_code=500, detail="failed to search articles")

    return VectorSearchResponse(
        data=[_to_response(article, similarity) for article, similarity in hits],
        query=body.query,
    )


@articles_router.get(
    "/articles/{article_id}",
    response_model=ArticleDetailEnvelope,
    operation_id="get_article",
    summary="Fetch one article",
)
async def get_article(
    article_id: int,
    repository: PostgresArticleRepository = Depends(get_article_repository),
) -> ArticleDetailEnvelope:
    try:
        article = await repository.get(article_id)
    except StoreError:
        logger.exception("Fetching article %d failed", article_id)
        raise HTTPException(status_code=500, detail="failed to fetch article")
    if article is None:
        raise HTTPException(status_code=404, detail="article not found")

    base = _to_response(article)
    return ArticleDetailEnvelope(
        data=ArticleDetailResponse(**base.model_dump(), ext=list(article.ext or []))
    )


@articles_router.get(
    "/articles/{article_id}/similar",
    response_model=SimilarArticlesResponse,
    operation_id="find_similar_articles",
    summary="Articles closest to an existing one",
)
async def find_similar_articles(
    article_id: int,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    repository: PostgresArticleRepository = Depends(get_article_repository),
) -> SimilarArticlesResponse:
    try:
        similar = await repository.find_similar(article_id, limit=limit)
    except StoreError:
        logger.exception("Similarity lookup for article %d failed", article_id)
        raise HTTPException(status_code=500, detail="failed to find similar articles")
    if similar is None:
        raise HTTPException(status_code=404, detail=f"article {article_id} not found")

    return SimilarArticlesResponse(
        data=[_to_response(a) for a in similar],
        source_id=article_id,
        limit=limit,
    )


@articles_router.get(
    "/tags",
    response_model=TagsResponse,
    operation_id="list_tags",
    summary="All distinct article tags",
)
async def list_tags(
    repository: PostgresArticleRepository = Depends(get_article_repository),
) -> TagsResponse:
    try:
        tags = await repository.all_tags()
    except StoreError:
        logger.exception("Listing tags failed")
        raise HTTPException(status_code=500, detail="failed to get tags")
    return TagsResponse(data=tags)
