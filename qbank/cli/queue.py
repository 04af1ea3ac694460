"""Queue commands: submit, reclaim, stats, exhausted.

Each command runs one coroutine with asyncio.run() and disposes the engine
before returning, so no pooled connection outlives the event loop.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Optional, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from qbank.config import settings
from qbank.errors import QBankError
from qbank.processor.task import submit as submit_task
from qbank.queue.store import QueueStore

console = Console()

_T = TypeVar("_T")


def _run(operation: Callable[[QueueStore], Awaitable[_T]]) -> _T:
    from qbank.db.session import dispose_engine  # noqa: PLC0415

    async def main() -> _T:
        try:
            return await operation(QueueStore())
        finally:
            await dispose_engine()

    try:
        return asyncio.run(main())
    except QBankError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc


def submit(
    text: Optional[str] = typer.Argument(
        None,
        help="Raw question text. Omit to read from --file.",
    ),
    file: Optional[Path] = typer.Option(
        None,
        "--file",
        "-f",
        exists=True,
        dir_okay=False,
        readable=True,
        help="Read raw question text from this file.",
    ),
    source: Optional[str] = typer.Option(
        None,
        "--source",
        help="Origin label stored with the task (default: 'default').",
    ),
    metadata: Optional[str] = typer.Option(
        None,
        "--metadata",
        help='Extra metadata as a JSON object, e.g. \'{"batch": 7}\'.',
    ),
) -> None:
    """Queue raw questions for enrichment."""
    if file is not None:
        text = file.read_text(encoding="utf-8")
    if not text or not text.strip():
        console.print("[red]Nothing to submit:[/red] pass TEXT or --file.")
        raise typer.Exit(code=2)

    meta: dict | None = None
    if metadata:
        try:
            meta = json.loads(metadata)
        except json.JSONDecodeError as exc:
            raise typer.BadParameter(f"not valid JSON: {exc}", param_hint="--metadata")
        if not isinstance(meta, dict):
            raise typer.BadParameter("must be a JSON object", param_hint="--metadata")

    task = _run(lambda store: submit_task(store, text, source, meta))
    console.print(f"[green]Task queued:[/green] {task.task_id} (source={task.source})")


def reclaim(
    timeout: float = typer.Option(
        settings.stuck_task_timeout_seconds,
        "--timeout",
        help="Seconds after which a processing entry counts as stuck.",
    ),
) -> None:
    """Revert stuck processing entries to ready."""
    reverted = _run(lambda store: store.reclaim_stuck(timeout))
    console.print(f"Reclaimed [bold]{reverted}[/bold] stuck entr{'y' if reverted == 1 else 'ies'}.")


def stats() -> None:
    """Show the number of queue entries per status."""
    counts = _run(lambda store: store.count_by_status())

    table = Table(title="processing_queue")
    table.add_column("status")
    table.add_column("entries", justify="right")
    for status, count in counts.items():
        table.add_row(status, str(count))
    table.add_row("[bold]total[/bold]", f"[bold]{sum(counts.values())}[/bold]")
    console.print(table)


def exhausted(
    limit: int = typer.Option(50, "--limit", help="Maximum number of entries to list."),
    max_retries: int = typer.Option(
        settings.max_retries,
        "--max-retries",
        help="Retry ceiling the workers run with.",
    ),
) -> None:
    """List failed entries that will never be retried again."""
    entries = _run(lambda store: store.list_exhausted(max_retries, limit=limit))
    if not entries:
        console.print("[dim]No exhausted entries.[/dim]")
        return

    table = Table(title=f"failed with retries >= {max_retries}")
    table.add_column("id", justify="right")
    table.add_column("task_type")
    table.add_column("retries", justify="right")
    table.add_column("updated_at")
    table.add_column("last_error", overflow="fold")
    for entry in entries:
        table.add_row(
            str(entry.id),
            entry.task_type,
            str(entry.retries),
            entry.updated_at.isoformat(timespec="seconds"),
            entry.last_error or "",
        )
    console.print(table)
