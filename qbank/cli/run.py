"""Long-running commands: the standalone worker process and the HTTP server."""

from __future__ import annotations

import asyncio
import logging
import signal

import typer

from qbank.config import settings
from qbank.logging_config import configure_logging

logger = logging.getLogger(__name__)


async def _run_worker() -> None:
    from qbank.db.session import dispose_engine  # noqa: PLC0415
    from qbank.server.main import build_worker_pool  # noqa: PLC0415

    pool = build_worker_pool()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, pool.request_stop)

    try:
        await pool.run_until_stopped()
    finally:
        await dispose_engine()


def worker(
    normal_workers: int = typer.Option(
        settings.normal_workers, "--normal-workers", help="Pollers on the ready lane."
    ),
    retry_workers: int = typer.Option(
        settings.retry_workers, "--retry-workers", help="Pollers on the retry lane."
    ),
    max_concurrency: int = typer.Option(
        settings.max_concurrency,
        "--max-concurrency",
        help="Pipelines allowed to run at once in this process.",
    ),
) -> None:
    """Run the worker pool until interrupted.

    SIGINT or SIGTERM stops claiming new entries; entries already being
    processed are finished before the process exits.
    """
    settings.normal_workers = normal_workers
    settings.retry_workers = retry_workers
    settings.max_concurrency = max_concurrency

    configure_logging(settings.log_level, settings.log_json)
    logger.info("Starting qbank worker process")
    asyncio.run(_run_worker())


def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8000, "--port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes."),
) -> None:
    """Run the HTTP API (and the worker pool unless QBANK_WORKERS_ENABLED=false)."""
    import uvicorn  # noqa: PLC0415

    uvicorn.run("qbank.server.main:app", host=host, port=port, reload=reload)
