"""Per-profile circuit breaker used by the connection manager."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable

LOG = logging.getLogger(__name__)


class BreakerState(str, Enum):
    """Lifecycle of a breaker: closed -> open -> half-open -> closed."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass(slots=True)
class CircuitBreakerState:
    """Failure bookkeeping for one profile name (clock seconds)."""

    failures: int = 0
    state: BreakerState = BreakerState.CLOSED
    last_failure: float | None = None
    next_attempt: float | None = None


class CircuitBreaker:
    """Tracks connection failures independently for each profile name."""

    def __init__(
        self,
        *,
        max_failures: int = 3,
        cooldown: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_failures = max_failures
        self._cooldown = cooldown
        self._clock = clock
        self._records: dict[str, CircuitBreakerState] = {}

    def allow(self, name: str) -> bool:
        """Return whether a real connection attempt may proceed.

        An open breaker whose cooldown has passed moves to half-open and
        lets the next attempt through as a trial.
        """

        record = self._records.get(name)
        if record is None or record.state is not BreakerState.OPEN:
            return True
        if record.next_attempt is not None and self._clock() >= record.next_attempt:
            record.state = BreakerState.HALF_OPEN
            return True
        return False

    def record_failure(self, name: str) -> CircuitBreakerState:
        now = self._clock()
        record = self._records.setdefault(name, CircuitBreakerState())
        record.failures += 1
        record.last_failure = now
        if record.state is BreakerState.HALF_OPEN or record.failures >= self._max_failures:
            record.state = BreakerState.OPEN
            record.next_attempt = now + self._cooldown
            LOG.warning(
                "Circuit opened after repeated connection failures",
                extra={"profile": name, "failures": record.failures, "cooldown": self._cooldown},
            )
        return replace(record)

    def record_success(self, name: str) -> None:
        self._records.pop(name, None)

    def state(self, name: str) -> CircuitBreakerState | None:
        """Snapshot of the breaker for ``name``; None when fully closed."""

        record = self._records.get(name)
        return replace(record) if record is not None else None

    def retry_at(self, name: str) -> float | None:
        record = self._records.get(name)
        return record.next_attempt if record is not None else None


__all__ = ["BreakerState", "CircuitBreaker", "CircuitBreakerState"]
