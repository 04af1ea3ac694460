"""qbank CLI — submit tasks, run workers, inspect the queue.

Entry point registered in pyproject.toml:
    qbank = "qbank.cli:app"

Commands:
    qbank submit     — queue raw questions (argument or --file)
    qbank worker     — run the worker pool until SIGINT/SIGTERM
    qbank reclaim    — revert stuck processing entries to ready once
    qbank stats      — entry counts per status
    qbank exhausted  — failed entries that used up their retries
    qbank serve      — run the HTTP server with uvicorn

Usage:
    qbank --help
    qbank submit "What is a closure?" --source docs
    QBANK_NORMAL_WORKERS=4 qbank worker
"""

import typer

from qbank.cli.queue import exhausted, reclaim, stats, submit
from qbank.cli.run import serve, worker

app = typer.Typer(
    name="qbank",
    help="qbank CLI — question enrichment queue and article store",
    no_args_is_help=True,
)

app.command()(submit)
app.command()(worker)
app.command()(reclaim)
app.command()(stats)
app.command()(exhausted)
app.command()(serve)
