"""Per-host circuit breaker shared by all fetches in a worker process."""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional

from recipe_ingest.app.core.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class DomainCircuitState:
    failures: Deque[float] = field(default_factory=deque)
    is_open: bool = False
    opened_at: Optional[float] = None


@dataclass(frozen=True)
class CircuitSnapshot:
    host: str
    failure_count: int
    is_open: bool
    opened_at: Optional[float]
    failure_timestamps: List[float]


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 5,
        failure_window_seconds: float = 600,
        block_duration_seconds: float = 1800,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.failure_window_seconds = failure_window_seconds
        self.block_duration_seconds = block_duration_seconds
        self._clock = clock
        self._states: Dict[str, DomainCircuitState] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls) -> "CircuitBreaker":
        settings = get_settings()
        return cls(
            failure_threshold=settings.circuit_breaker_failure_threshold,
            failure_window_seconds=settings.circuit_breaker_failure_window_minutes * 60,
            block_duration_seconds=settings.circuit_breaker_block_duration_minutes * 60,
        )

    @staticmethod
    def _key(host: str) -> str:
        return (host or "").strip().lower()

    def is_open(self, host: str) -> bool:
        key = self._key(host)
        with self._lock:
            state = self._states.get(key)
            if state is None or not state.is_open:
                return False
            if state.opened_at is not None and self._clock() - state.opened_at >= self.block_duration_seconds:
                # cooldown elapsed; reset optimistically
                logger.info("Circuit for %s reset after cooldown", key)
                del self._states[key]
                return False
            return True

    def record_failure(self, host: str) -> None:
        key = self._key(host)
        now = self._clock()
        with self._lock:
            state = self._states.setdefault(key, DomainCircuitState())
            state.failures.append(now)
            cutoff = now - self.failure_window_seconds
            while state.failures and state.failures[0] < cutoff:
                state.failures.popleft()
            if not state.is_open and len(state.failures) >= self.failure_threshold:
                state.is_open = True
                state.opened_at = now
                logger.warning(
                    "Circuit opened for %s after %s failures in %ss",
                    key,
                    len(state.failures),
                    self.failure_window_seconds,
                )

    def record_success(self, host: str) -> None:
        key = self._key(host)
        with self._lock:
            state = self._states.get(key)
            if state is None:
                return
            state.failures.clear()
            state.is_open = False
            state.opened_at = None

    def reset(self, host: str) -> None:
        with self._lock:
            self._states.pop(self._key(host), None)

    def get_state(self, host: str) -> Optional[CircuitSnapshot]:
        key = self._key(host)
        with self._lock:
            state = self._states.get(key)
            if state is None:
                return None
            return CircuitSnapshot(
                host=key,
                failure_count=len(state.failures),
                is_open=state.is_open,
                opened_at=state.opened_at,
                failure_timestamps=list(state.failures),
            )


_breaker: Optional[CircuitBreaker] = None


def get_circuit_breaker() -> CircuitBreaker:
    """Get or create the process-wide breaker."""
    global _breaker
    if _breaker is None:
        _breaker = CircuitBreaker.from_settings()
    return _breaker
