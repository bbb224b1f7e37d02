"""
Error reporting: structured logs always, Sentry when a DSN is configured.

Every report carries the current run_id/job_id from `reelforge.core.context`.

Usage:
    init_sentry(settings.SENTRY_DSN, environment=settings.ENVIRONMENT)

    capture_exception(exc, context={"attempt": 2}, level="warning")
    capture_message("Circuit batch opened", level="warning")

    # Record store writes must never change a job's outcome
    with ErrorHandler("update_record", capture=False):
        await sink.update_record(...)
"""

from contextlib import contextmanager
from datetime import datetime, timezone
import logging
import os
from typing import Any, Dict, Iterator, List, Optional

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
import structlog

from reelforge.core.context import get_context_dict

logger = structlog.get_logger(__name__)

__all__ = [
    "init_sentry",
    "is_sentry_enabled",
    "capture_exception",
    "capture_message",
    "ErrorHandler",
]

_sentry_enabled = False


def init_sentry(dsn: str, environment: str = "production", release: Optional[str] = None) -> bool:
    """
    Turn on Sentry reporting for this process.

    release defaults to the REELFORGE_RELEASE environment variable.
    Returns False (and reports only to logs) when dsn is empty or init fails.
    """
    global _sentry_enabled

    if not dsn:
        logger.info("Sentry disabled, no DSN configured")
        return False

    release = release or os.environ.get("REELFORGE_RELEASE")
    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            release=release,
            integrations=[
                SqlalchemyIntegration(),
                # Breadcrumbs from INFO, events from ERROR
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            ignore_errors=[KeyboardInterrupt, SystemExit],
            before_send=_tag_with_context,
        )
    except Exception as e:
        logger.error("Sentry init failed", error=str(e))
        return False

    _sentry_enabled = True
    logger.info("Sentry enabled", environment=environment, release=release)
    return True


def is_sentry_enabled() -> bool:
    return _sentry_enabled


def _tag_with_context(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    tags = event.setdefault("tags", {})
    for key, value in get_context_dict().items():
        if value:
            tags[key] = value
    return event


def _report_context(extra: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        **get_context_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **(extra or {}),
    }


@contextmanager
def _sentry_scope(
    level: str,
    extras: Dict[str, Any],
    tags: Optional[Dict[str, str]] = None,
    fingerprint: Optional[List[str]] = None,
) -> Iterator[Any]:
    with sentry_sdk.new_scope() as scope:
        scope.level = level
        for key, value in extras.items():
            if value is not None:
                scope.set_extra(key, value)
        for key, value in (tags or {}).items():
            scope.set_tag(key, value)
        if fingerprint:
            scope.fingerprint = fingerprint
        yield scope


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
    fingerprint: Optional[List[str]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Log exc with traceback and, if Sentry is on, send it.

    Args:
        exc: The exception
        context: Extra fields for the log line and the Sentry event
        level: debug, info, warning, error or fatal
        fingerprint: Sentry grouping override
        tags: Sentry tags

    Returns:
        The Sentry event id, or None when nothing was sent
    """
    extras = _report_context({"error_type": type(exc).__name__, **(context or {})})
    getattr(logger, level, logger.error)("Exception captured", exc_info=exc, **extras)

    if not _sentry_enabled:
        return None
    try:
        with _sentry_scope(level, extras, tags, fingerprint):
            return sentry_sdk.capture_exception(exc)
    except Exception as e:
        logger.warning("Could not report exception to Sentry", error=str(e))
        return None


def capture_message(
    message: str,
    level: str = "info",
    context: Optional[Dict[str, Any]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """Log and report a notable event that is not an exception (breaker opened, budget exhausted)."""
    extras = _report_context(context)
    getattr(logger, level, logger.info)(message, **extras)

    if not _sentry_enabled:
        return None
    try:
        with _sentry_scope(level, extras, tags):
            return sentry_sdk.capture_message(message, level=level)
    except Exception as e:
        logger.warning("Could not report message to Sentry", error=str(e))
        return None


class ErrorHandler:
    """
    Context manager that contains an Exception raised inside its block.

    capture=True reports it through capture_exception; capture=False only
    logs it at debug level (for best-effort calls). reraise=True reports and
    lets it propagate. Non-Exception BaseExceptions (cancellation, Ctrl+C)
    always propagate untouched.

    The contained exception is available afterwards as `.error`.
    """

    def __init__(
        self,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
        capture: bool = True,
        reraise: bool = False,
        fingerprint: Optional[List[str]] = None,
    ):
        self.operation = operation
        self.context = context or {}
        self.capture = capture
        self.reraise = reraise
        self.fingerprint = fingerprint or [operation]
        self.error: Optional[BaseException] = None
        self.event_id: Optional[str] = None

    def __enter__(self) -> "ErrorHandler":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_val is None or not isinstance(exc_val, Exception):
            return False

        self.error = exc_val
        if self.capture:
            self.event_id = capture_exception(
                exc_val,
                context={"operation": self.operation, **self.context},
                fingerprint=[*self.fingerprint, type(exc_val).__name__],
            )
        else:
            logger.debug("Suppressed error", operation=self.operation, error=str(exc_val), **self.context)

        return not self.reraise
