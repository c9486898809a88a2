"""Structured JSON logging configuration for ServiceSync processes.

Both entry points (the reconcile CLI and the admin API) call
configure_logging() once at startup. Component loggers from shared.log and
module loggers using ``extra=`` end up in the same JSON stream.
"""

from __future__ import annotations

import logging
from typing import IO, Optional

from pythonjsonlogger import json as jsonlogger

from shared.log import TRACE

# Libraries that log every request at INFO; one line per existence batch is noise.
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def resolve_level(log_level: str) -> int:
    """Map a configured level name (including "trace") to a logging level."""
    if log_level.lower() == "trace":
        return TRACE
    return getattr(logging, log_level.upper(), logging.INFO)


def configure_logging(log_level: str, stream: Optional[IO[str]] = None) -> None:
    """Configure the root logger with structured JSON output.

    Output format: {"ts": "...", "level": "...", "name": "...", "msg": "..."}

    Args:
        log_level: Logging level string (e.g., "info", "debug", "trace").
        stream: Destination (default: stderr, so CLI reports on stdout stay parseable).
    """
    level = resolve_level(log_level)

    formatter = jsonlogger.JsonFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={
            "asctime": "ts",
            "levelname": "level",
            "message": "msg",
        },
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
