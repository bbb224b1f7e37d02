"""
Tests for circuit breaker functionality.

Tests cover:
1. State transitions (CLOSED -> OPEN -> CLOSED)
2. Cooldown handling
3. State change notification
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from reelforge.core.circuit_breaker import CircuitBreaker, CircuitState


class TestCircuitState:
    def test_circuit_states_exist(self):
        assert CircuitState.CLOSED.value == "closed"
        assert CircuitState.OPEN.value == "open"
        assert len(CircuitState) == 2


class TestStateTransitions:
    def test_starts_closed(self):
        cb = CircuitBreaker()

        assert cb.state == CircuitState.CLOSED
        assert cb.failure_threshold == 5
        assert cb.cooldown_seconds == 60.0
        assert cb.can_proceed() is True

    def test_rejects_threshold_below_one(self):
        with pytest.raises(ValueError):
            CircuitBreaker(failure_threshold=0)

    def test_opens_at_threshold(self):
        cb = CircuitBreaker(failure_threshold=5)

        for _ in range(4):
            cb.record_failure()
        assert cb.can_proceed() is True

        cb.record_failure()

        assert cb.state == CircuitState.OPEN
        assert cb.can_proceed() is False

    def test_success_resets_count(self):
        cb = CircuitBreaker(failure_threshold=3)
        cb.record_failure()
        cb.record_failure()

        cb.record_success()
        cb.record_failure()
        cb.record_failure()

        assert cb.failure_count == 2
        assert cb.can_proceed() is True

    def test_stays_open_during_cooldown(self):
        cb = CircuitBreaker(failure_threshold=1, cooldown_seconds=60)
        cb.record_failure()
        cb._last_failure_time = datetime.now(timezone.utc) - timedelta(seconds=30)

        assert cb.can_proceed() is False

    def test_closes_after_cooldown_with_fresh_count(self):
        cb = CircuitBreaker(failure_threshold=5, cooldown_seconds=60)
        for _ in range(5):
            cb.record_failure()
        cb._last_failure_time = datetime.now(timezone.utc) - timedelta(seconds=61)

        assert cb.can_proceed() is True
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0

        # Needs a full new burst to open again
        for _ in range(4):
            cb.record_failure()
        assert cb.can_proceed() is True

    def test_success_while_open_closes(self):
        cb = CircuitBreaker(failure_threshold=2)
        cb.record_failure()
        cb.record_failure()

        cb.record_success()

        assert cb.state == CircuitState.CLOSED
        assert cb.can_proceed() is True


class TestStateChangeCallback:
    def test_callback_on_open_and_close(self):
        callback = MagicMock()
        cb = CircuitBreaker(name="batch", failure_threshold=2, cooldown_seconds=10, on_state_change=callback)

        cb.record_failure()
        cb.record_failure()
        callback.assert_called_once_with("batch", "closed", "open")

        cb._last_failure_time = datetime.now(timezone.utc) - timedelta(seconds=11)
        cb.can_proceed()
        callback.assert_called_with("batch", "open", "closed")
        assert callback.call_count == 2

    def test_callback_fires_once_per_opening(self):
        callback = MagicMock()
        cb = CircuitBreaker(failure_threshold=2, on_state_change=callback)

        for _ in range(5):
            cb.record_failure()

        assert callback.call_count == 1

    def test_callback_errors_are_contained(self):
        cb = CircuitBreaker(failure_threshold=1, on_state_change=MagicMock(side_effect=RuntimeError("down")))

        cb.record_failure()

        assert cb.state == CircuitState.OPEN
