"""
structlog setup for reelforge.

Console output for interactive runs, one JSON object per line when LOG_JSON is
set (cron / container runs feeding a log collector). The bound run_id and
job_id from `reelforge.core.context` are merged into every line.

Usage:
    from reelforge.core.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("Job completed successfully")

With LOG_JSON=1:
    {"event": "Job completed successfully", "run_id": "run_3f9c...", "job_id": "rec123",
     "level": "info", "timestamp": "2025-01-01T12:00:00Z"}

Logs go to stderr; stdout is left for command output.
"""

import logging
import os
import sys
from typing import Any

import structlog

IS_TEST = "pytest" in sys.modules

NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy", "asyncio")


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes"}


class _Stderr:
    """File-like that writes to whatever sys.stderr is at write time."""

    def write(self, message: str) -> int:
        return sys.stderr.write(message)

    def flush(self) -> None:
        sys.stderr.flush()


def _renderers(json_logs: bool) -> list[Any]:
    if json_logs:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=not IS_TEST)]


def configure_logging(json_logs: bool | None = None, level: str | None = None) -> None:
    """(Re)configure logging; arguments default to the LOG_JSON / LOG_LEVEL env vars."""
    if json_logs is None:
        json_logs = _env_flag("LOG_JSON")
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    log_level = logging.getLevelName(level_name)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            *_renderers(json_logs),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=_Stderr()),
        cache_logger_on_first_use=True,
    )

    # Modules using logging.getLogger (queue, rotation, breaker) and libraries
    logging.basicConfig(
        format="%(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(_Stderr())],
        level=log_level,
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


configure_logging()
