"""Logging setup for qbank entry points (server, CLI, worker).

Library modules only ever call ``logging.getLogger(__name__)``; handlers and
formatters are installed once here by whichever process entry point runs.
"""

from __future__ import annotations

import datetime
import json
import logging
import sys
from typing import Any

_HUMAN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_HUMAN_DATEFMT = "%Y-%m-%d %H:%M:%S"


class JSONFormatter(logging.Formatter):
    """One JSON object per log line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.datetime.fromtimestamp(
                record.created, tz=datetime.timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


def configure_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Install a single stdout handler on the root logger.

    Calling this more than once replaces the previous handler instead of
    stacking duplicates.

    Args:
        level:       Logging level name (DEBUG, INFO, WARNING, ...).
        json_format: Emit JSON lines instead of human-readable text.
    """
    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_HUMAN_FORMAT, datefmt=_HUMAN_DATEFMT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # httpx logs every request at INFO; keep collaborator chatter at WARNING
    logging.getLogger("httpx").setLevel(logging.WARNING)
