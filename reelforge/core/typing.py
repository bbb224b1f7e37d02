"""
Type and time helpers shared by the persistence layer.

SQLModel fields are declared with Python types (e.g., `status: JobStatus`) but at
the class level they're actually InstrumentedAttribute descriptors with SQLAlchemy
column methods like .asc(), .in_(), etc. `col()` tells the type checker so.

Timestamps are stored as integer epoch milliseconds.
"""

import time
from datetime import datetime, timezone
from threading import Lock
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from sqlalchemy.orm.attributes import InstrumentedAttribute

T = TypeVar("T")


def col(attr: T) -> "InstrumentedAttribute[T]":
    """
    Type helper for SQLAlchemy column operations in queries.

    At runtime this is a no-op - it just returns the input unchanged.

    Usage:
        select(Job).order_by(col(Job.created_at).asc())
    """
    return attr  # type: ignore[return-value]


class MonotonicMillis:
    """
    Wall-clock milliseconds that never repeat or go backwards within a process.

    Each call returns max(now_ms, previous + 1), so rows stamped in sequence keep
    a strict created_at order even when written inside the same millisecond.
    """

    def __init__(self) -> None:
        self._last = 0
        self._lock = Lock()

    def __call__(self) -> int:
        with self._lock:
            now = int(time.time() * 1000)
            self._last = max(now, self._last + 1)
            return self._last


utc_now_ms = MonotonicMillis()


def ms_to_datetime(value: int) -> datetime:
    """Convert epoch milliseconds to a timezone-aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


__all__ = ["col", "utc_now_ms", "ms_to_datetime", "MonotonicMillis"]
