"""
Circuit Breaker

Fast-fails calls to a dependency (the pattern store) after repeated errors.

    CLOSED --(failure_threshold consecutive failures)--> OPEN
    OPEN   --(timeout elapsed, next call)-------------> HALF_OPEN
    HALF_OPEN --(trial succeeds)--> CLOSED
    HALF_OPEN --(trial fails)-----> OPEN (timer restarts)

Only one trial call is let through while half-open; concurrent callers are
rejected until it finishes.
"""
from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, TypeVar

from ledgersort.services.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        name: str = "pattern_store",
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self._total_failures = 0
        self._total_rejections = 0
        self._times_opened = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Run ``func`` through the breaker.

        Raises:
            CircuitOpenError: the breaker is open, or a half-open trial is
                already running
        """
        is_trial = self._before_call()
        try:
            result = func(*args, **kwargs)
        except Exception:
            self._on_failure(is_trial)
            raise
        self._on_success(is_trial)
        return result

    def _before_call(self) -> bool:
        with self._lock:
            if self._state == CircuitState.OPEN:
                if self._clock() - self._opened_at < self.timeout:
                    self._total_rejections += 1
                    raise CircuitOpenError()
                self._state = CircuitState.HALF_OPEN
                logger.info("Circuit %s half-open, allowing trial call", self.name)
            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    self._total_rejections += 1
                    raise CircuitOpenError("Circuit breaker is open (trial call in progress)")
                self._trial_in_flight = True
                return True
            return False

    def _on_success(self, is_trial: bool) -> None:
        with self._lock:
            if is_trial:
                self._trial_in_flight = False
                self._state = CircuitState.CLOSED
                self._opened_at = None
                logger.info("Circuit %s closed after successful trial", self.name)
            self._failure_count = 0

    def _on_failure(self, is_trial: bool) -> None:
        with self._lock:
            self._total_failures += 1
            if is_trial:
                self._trial_in_flight = False
                self._trip()
                return
            self._failure_count += 1
            if self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                self._trip()

    def _trip(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._times_opened += 1
        logger.warning(
            "Circuit %s opened after %d consecutive failure(s)", self.name, self._failure_count
        )

    def reconfigure(self, failure_threshold: int, timeout: float) -> None:
        """Apply new limits; the current state and counters are kept."""
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        with self._lock:
            self.failure_threshold = failure_threshold
            self.timeout = timeout

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._opened_at = None
            self._trial_in_flight = False
            self._total_failures = 0
            self._total_rejections = 0
            self._times_opened = 0

    def healthy(self) -> bool:
        return self.state == CircuitState.CLOSED

    def metrics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state": self._state.value,
                "consecutive_failures": self._failure_count,
                "failure_threshold": self.failure_threshold,
                "timeout_seconds": self.timeout,
                "total_failures": self._total_failures,
                "total_rejections": self._total_rejections,
                "times_opened": self._times_opened,
            }
