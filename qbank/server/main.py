"""qbank HTTP server entry point.

Serves the REST API at /api/v1/ and, unless disabled with
QBANK_WORKERS_ENABLED=false, runs the worker pool in the same process so a
single deployment both accepts and processes tasks.

Entry point:
    uvicorn qbank.server.main:app --host 0.0.0.0 --port 8000

Or run directly:
    qbank serve
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute

from qbank import __version__
from qbank.api.router import api_router
from qbank.config import settings
from qbank.db.session import dispose_engine
from qbank.dedup.engine import DedupEngine
from qbank.dedup.repository import PostgresArticleRepository
from qbank.embedding.embedder import get_embedder
from qbank.enrich.enricher import LLMEnricher
from qbank.logging_config import configure_logging
from qbank.processor.pipeline import Pipeline
from qbank.processor.workers import WorkerPool
from qbank.queue.store import QueueStore

logger = logging.getLogger(__name__)


def build_worker_pool() -> WorkerPool:
    """Wire the production pipeline and a worker pool from settings."""
    store = QueueStore()
    pipeline = Pipeline(
        store=store,
        enricher=LLMEnricher.from_settings(),
        embedder=get_embedder(),
        dedup=DedupEngine(PostgresArticleRepository()),
    )
    return WorkerPool.from_settings(store, pipeline)


# ---------------------------------------------------------------------------
# Lifespan: logging, worker pool, engine disposal
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager: startup init and shutdown cleanup.

    Startup order:
    1. Configure logging
    2. Initialize the embedding provider (also used by /articles/search)
    3. Start the worker pool, if enabled
    4. Yield — server handles requests

    Shutdown:
    5. Stop the worker pool, waiting for in-flight entries
    6. Dispose the async engine and close all pooled connections
    """
    configure_logging(settings.log_level, settings.log_json)
    logger.info("qbank server starting up...")

    # Build the embedding provider before serving /articles/search
    get_embedder()

    pool: WorkerPool | None = None
    if settings.workers_enabled:
        pool = build_worker_pool()
        pool.start()
    else:
        logger.info("Worker pool disabled; serving API only")
    app.state.worker_pool = pool

    yield

    if pool is not None:
        logger.info("Stopping worker pool...")
        await pool.stop()

    logger.info("qbank server shutting down, disposing database engine...")
    await dispose_engine()
    logger.info("Database engine disposed.")


def custom_generate_unique_id(route: APIRoute) -> str:
    """Generate deterministic, SDK-friendly operation IDs for REST routes."""
    if route.tags:
        return f"{route.tags[0]}-{route.name}"
    return route.name


app = FastAPI(
    title="qbank",
    description="Question bank — LLM enrichment, vector dedup and a durable task queue",
    version=__version__,
    lifespan=lifespan,
    generate_unique_id_function=custom_generate_unique_id,
)


@app.get("/health")
async def health() -> JSONResponse:
    """Simple health check endpoint for load balancers and readiness checks."""
    return JSONResponse({"status": "ok", "service": "qbank"})


app.include_router(api_router)
