"""Top-level FastAPI APIRouter for the qbank REST API (v1).

Mount this router on the FastAPI app to expose all /api/v1/ endpoints.

Prefix:  /api/v1

Sub-routers included:
- articles_router — /articles, /articles/{id}, /articles/{id}/similar,
                    /articles/search, /tags
- tasks_router    — POST /tasks, GET /queue/stats
"""

from __future__ import annotations

from fastapi import APIRouter

from qbank.api.routes.articles import articles_router
from qbank.api.routes.tasks import tasks_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(articles_router)
api_router.include_router(tasks_router)
