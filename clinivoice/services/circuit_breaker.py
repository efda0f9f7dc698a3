"""
Clinivoice Backend: Provider Circuit Breaker
=============================================

What:  Per-provider circuit breaker that skips a provider after repeated
       failures.
How:   Simple counters and a monotonic timestamp; one instance per provider
       object, shared by every request that provider serves.
Who:   Owned by each NoteProvider; read by the health endpoint.

State Machine:
    CLOSED (normal operation)
        → On failure: increment failure_count
        → When failure_count >= threshold: transition to OPEN

    OPEN (rejecting all requests)
        → before_call() raises CircuitBreakerOpenError immediately
        → After recovery_timeout seconds: transition to HALF_OPEN

    HALF_OPEN (testing recovery)
        → The next request goes through
        → On success: transition to CLOSED (reset failure_count)
        → On failure: transition back to OPEN (reset timer)

Concurrency:
    Not thread-safe. uvicorn async workers run every request of a process on
    one event loop, and each worker process keeps its own breaker.
"""

import logging
import time
from typing import Callable, Optional

from clinivoice.exceptions import CircuitBreakerOpenError

logger = logging.getLogger(__name__)


class CircuitBreaker:
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            name: Provider name, used in log lines and errors
            failure_threshold: Consecutive failures before opening the circuit
            recovery_timeout: Seconds to wait before letting a test call through
            clock: Monotonic time source; tests pass a fake
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def _elapsed(self) -> float:
        return self._clock() - (self.last_failure_time or 0.0)

    @property
    def is_open(self) -> bool:
        """True while the breaker would reject a call right now."""
        return self.state == self.OPEN and self._elapsed() < self.recovery_timeout

    def before_call(self) -> None:
        """
        Raises CircuitBreakerOpenError if the circuit is OPEN and the recovery
        timeout has not elapsed; otherwise lets the call proceed.
        """
        if self.state != self.OPEN:
            return

        elapsed = self._elapsed()
        if elapsed >= self.recovery_timeout:
            logger.info(
                "Circuit breaker [%s] transitioning to HALF_OPEN after %.1fs",
                self.name,
                elapsed,
            )
            self.state = self.HALF_OPEN
            return

        remaining = int(self.recovery_timeout - elapsed)
        raise CircuitBreakerOpenError(provider=self.name, recovery_time=max(remaining, 1))

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker [%s] transitioning to CLOSED (recovered)", self.name)
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker [%s] returning to OPEN (test call failed)", self.name)
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold and self.state != self.OPEN:
            logger.warning(
                "Circuit breaker [%s] OPENING after %d consecutive failures",
                self.name,
                self.failure_count,
            )
            self.state = self.OPEN
