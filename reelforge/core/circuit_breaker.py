from datetime import datetime, timezone
from enum import Enum
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Optional
import logging

from reelforge.core.errors import capture_message

logger = logging.getLogger(__name__)

# (name, old_state, new_state) - return value is ignored
StateChangeCallback = Callable[[str, str, str], Any]


class CircuitState(Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Too many failures, reject new work until cooldown passes


@dataclass
class CircuitBreaker:
    """
    Process-wide gate that stops starting new jobs after a burst of failures.

    After `failure_threshold` failures with no success in between, can_proceed()
    returns False until `cooldown_seconds` have passed since the last failure.
    The first check after that resets the count and lets work through again;
    there is no half-open trial phase.
    """

    name: str = "batch"
    failure_threshold: int = 5
    cooldown_seconds: float = 60.0
    on_state_change: Optional[StateChangeCallback] = None

    _failure_count: int = field(default=0, init=False)
    _last_failure_time: datetime | None = field(default=None, init=False)
    _lock: Lock = field(default_factory=Lock, init=False)

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError(f"failure_threshold must be at least 1, got {self.failure_threshold}")

    @property
    def state(self) -> CircuitState:
        """Current state. Does not apply the cooldown transition; use can_proceed()."""
        if self._failure_count >= self.failure_threshold:
            return CircuitState.OPEN
        return CircuitState.CLOSED

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _notify(self, old_state: CircuitState, new_state: CircuitState) -> None:
        if self.on_state_change:
            try:
                self.on_state_change(self.name, old_state.value, new_state.value)
            except Exception as e:
                logger.error(f"Circuit breaker notification failed: {e}")

    def can_proceed(self) -> bool:
        reopened = False
        with self._lock:
            if self._failure_count < self.failure_threshold:
                return True

            elapsed = (datetime.now(timezone.utc) - self._last_failure_time).total_seconds()
            if elapsed > self.cooldown_seconds:
                self._failure_count = 0
                reopened = True
                logger.info(f"Circuit {self.name}: cooldown elapsed, OPEN -> CLOSED")

        if reopened:
            self._notify(CircuitState.OPEN, CircuitState.CLOSED)
            return True
        return False

    def record_failure(self) -> None:
        opened = False
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = datetime.now(timezone.utc)
            failures = self._failure_count
            opened = failures == self.failure_threshold

        if opened:
            capture_message(
                f"Circuit {self.name}: {failures} failures, pausing for {self.cooldown_seconds:g}s",
                level="warning",
                context={"circuit": self.name, "failures": failures},
            )
            self._notify(CircuitState.CLOSED, CircuitState.OPEN)

    def record_success(self) -> None:
        with self._lock:
            was_open = self._failure_count >= self.failure_threshold
            self._failure_count = 0

        if was_open:
            # An in-flight job finished fine while new starts were paused
            logger.info(f"Circuit {self.name}: success recorded, OPEN -> CLOSED")
            self._notify(CircuitState.OPEN, CircuitState.CLOSED)
