"""Structured JSON logging configuration.

Provides:
  - JSON-formatted log output for CI and long-running campaigns
  - Human-readable colored output for development
  - Campaign/run correlation via ``CampaignLogFilter`` and ``campaign_scope``
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

_EXTRA_KEYS = ("campaign_id", "run_index", "seed", "duration_ms", "invariant_id")

# (campaign_id, run_index) of the campaign running in the current context.
_scope: ContextVar[tuple[str, int | None] | None] = ContextVar("ghostfuzz_scope", default=None)


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.pathname:
            log_entry["module"] = record.module
            log_entry["function"] = record.funcName
            log_entry["line"] = record.lineno

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else "Unknown",
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        for key in _EXTRA_KEYS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str)


class DevFormatter(logging.Formatter):
    """Colored human-readable formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now(timezone.utc).strftime("%H:%M:%S")
        prefix = f"{color}{ts} [{record.levelname:>8s}]{self.RESET}"
        msg = record.getMessage()

        campaign_id = getattr(record, "campaign_id", None)
        if campaign_id:
            run_index = getattr(record, "run_index", None)
            tag = campaign_id[:8] if run_index is None else f"{campaign_id[:8]}#{run_index}"
            msg = f"[{tag}] {msg}"

        base = f"{prefix} {record.name}: {msg}"
        if record.exc_info and record.exc_info[1]:
            base += "\n" + self.formatException(record.exc_info)
        return base


def setup_logging(env: str = "development", log_level: str = "INFO") -> None:
    """Configure logging for the engine.

    Args:
        env: Environment (development/staging/production)
        log_level: Minimum log level
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)

    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if env in ("staging", "production"):
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(DevFormatter())

    handler.addFilter(CampaignLogFilter())
    root.addHandler(handler)

    # Quiet noisy libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)


@contextmanager
def campaign_scope(campaign_id: str, run_index: int | None = None) -> Iterator[None]:
    """Attribute records logged inside the block to a campaign (and run).

    The scope lives in a context variable, so it follows the code into
    ``asyncio`` tasks and ``asyncio.to_thread`` workers.
    """
    token = _scope.set((campaign_id, run_index))
    try:
        yield
    finally:
        _scope.reset(token)


class CampaignLogFilter(logging.Filter):
    """Filter that adds campaign context to log records.

    Ids given to the constructor take precedence over the active
    ``campaign_scope``. Ids passed explicitly through ``extra=`` are kept.
    """

    def __init__(self, campaign_id: str = "", run_index: int | None = None) -> None:
        super().__init__()
        self.campaign_id = campaign_id
        self.run_index = run_index

    def filter(self, record: logging.LogRecord) -> bool:
        scope_id, scope_run = _scope.get() or ("", None)
        campaign_id = self.campaign_id or scope_id
        run_index = self.run_index if self.run_index is not None else scope_run
        if campaign_id and not hasattr(record, "campaign_id"):
            record.campaign_id = campaign_id  # type: ignore[attr-defined]
        if run_index is not None and not hasattr(record, "run_index"):
            record.run_index = run_index  # type: ignore[attr-defined]
        return True
