"""
Run context management for log and error correlation.

Carries the batch run id and the current job id across awaits. Uses contextvars,
so each asyncio task spawned for a job sees its own job id.

Usage:
    set_run_id(generate_run_id())

    with job_context(job.id):
        logger.info("Processing job")  # job_id is merged into the log line

    capture_exception(exc, context=get_context_dict())
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional
import uuid

import structlog

__all__ = [
    "generate_run_id",
    "set_run_id",
    "get_run_id",
    "get_job_id",
    "job_context",
    "clear_context",
    "get_context_dict",
]

_run_id: ContextVar[Optional[str]] = ContextVar("run_id", default=None)
_job_id: ContextVar[Optional[str]] = ContextVar("job_id", default=None)


def generate_run_id() -> str:
    """
    Generate a new run ID.

    Format: run_{16 hex chars}
    """
    return f"run_{uuid.uuid4().hex[:16]}"


def set_run_id(run_id: str) -> None:
    """Set run ID for the current context and bind it to structured logs."""
    _run_id.set(run_id)
    structlog.contextvars.bind_contextvars(run_id=run_id)


def get_run_id() -> Optional[str]:
    return _run_id.get()


def get_job_id() -> Optional[str]:
    return _job_id.get()


@contextmanager
def job_context(job_id: str) -> Iterator[None]:
    """Bind job_id for the duration of one job execution."""
    token = _job_id.set(job_id)
    try:
        with structlog.contextvars.bound_contextvars(job_id=job_id):
            yield
    finally:
        _job_id.reset(token)


def clear_context() -> None:
    """
    Clear all context variables.

    Called at end of a run to prevent context leaking into the next one.
    """
    _run_id.set(None)
    _job_id.set(None)
    structlog.contextvars.clear_contextvars()


def get_context_dict() -> dict:
    """
    Get all context variables as dict.

    Useful for enriching error reports.
    """
    return {
        "run_id": get_run_id(),
        "job_id": get_job_id(),
    }
