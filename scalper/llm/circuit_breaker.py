"""
Circuit breaker for the LLM advisory service
"""
import time
from typing import Callable, Optional

from loguru import logger


class CircuitBreaker:
    """
    Stops calling a failing service until a cool-down elapses.

    closed -> open after ``failure_threshold`` consecutive failures;
    open -> half_open once ``timeout`` seconds have passed;
    half_open -> closed after ``success_threshold`` successes, or back
    to open on any failure.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        timeout: float = 60.0,
        name: str = "llm",
        clock: Optional[Callable[[], float]] = None,
    ):
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.timeout = timeout
        self.name = name
        self._clock = clock or time.monotonic

        self.state = self.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.opened_at: Optional[float] = None

    def record_success(self):
        """Record a successful call."""
        if self.state == self.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._transition(self.CLOSED)
        elif self.state == self.CLOSED:
            self.failure_count = 0

    def record_failure(self):
        """Record a failed call."""
        if self.state == self.HALF_OPEN:
            self._transition(self.OPEN)
            return

        self.failure_count += 1
        if self.state == self.CLOSED and self.failure_count >= self.failure_threshold:
            self._transition(self.OPEN)

    def allow_request(self) -> bool:
        if self.state == self.OPEN:
            if self._clock() - self.opened_at >= self.timeout:
                self._transition(self.HALF_OPEN)
                return True
            return False
        return True

    def retry_in(self) -> float:
        """Seconds until an open circuit may be probed again"""
        if self.state != self.OPEN or self.opened_at is None:
            return 0.0
        return max(0.0, self.timeout - (self._clock() - self.opened_at))

    def reset(self):
        self._transition(self.CLOSED)

    def _transition(self, state: str):
        previous = self.state
        self.state = state
        self.failure_count = 0
        self.success_count = 0
        self.opened_at = self._clock() if state == self.OPEN else None

        if previous != state:
            log = logger.warning if state == self.OPEN else logger.info
            log(f"Circuit '{self.name}' {previous} -> {state}")
