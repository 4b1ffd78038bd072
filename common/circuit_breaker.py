# common/circuit_breaker.py
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional


class CircuitBreaker:
    """
    In-memory circuit breaker guarding calls to an outbound collaborator.

    States:
    - closed: calls pass, failures are counted
    - open: calls are skipped until ``reset_timeout`` has elapsed
    - half_open: one trial call is let through; its outcome closes or
      re-opens the circuit
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, name: str, max_failures: int = 3, reset_timeout_seconds: int = 30):
        self.name = name
        self.max_failures = max_failures
        self.reset_timeout = timedelta(seconds=reset_timeout_seconds)
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[datetime] = None
        self._lock = threading.Lock()

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def allow_request(self) -> bool:
        """
        Return True if a call may go out, False while the circuit is open.
        """
        with self._lock:
            if self.state != self.OPEN:
                return True
            if self.last_failure_time is None:
                return False
            if self._now() - self.last_failure_time >= self.reset_timeout:
                self.state = self.HALF_OPEN
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            self.failure_count = 0
            self.state = self.CLOSED
            self.last_failure_time = None

    def record_failure(self) -> None:
        """
        Count a failed call; a failed half-open trial re-opens immediately.
        """
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._now()
            if self.state == self.HALF_OPEN or self.failure_count >= self.max_failures:
                self.state = self.OPEN
