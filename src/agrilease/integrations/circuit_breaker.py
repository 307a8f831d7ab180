"""Circuit breaker guarding calls to external gateways."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from agrilease.observability.metrics import metrics
from agrilease.utils.time import utc_now

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"  # calls pass through
    OPEN = "open"  # calls fail fast
    HALF_OPEN = "half_open"  # probing for recovery


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    timeout_seconds: int = 60
    half_open_max_calls: int = 3
    success_threshold: int = 2


class CircuitBreakerOpen(Exception):
    """Raised when the circuit rejects a call and no fallback was given."""

    def __init__(self, service_name: str, retry_after: int):
        self.service_name = service_name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker open for {service_name}, retry after {retry_after}s")


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    CLOSED opens after failure_threshold failures in a row. OPEN moves to
    HALF_OPEN once timeout_seconds have passed. HALF_OPEN admits at most
    half_open_max_calls trial calls, closes after success_threshold successes
    and reopens on any failure.
    """

    def __init__(self, name: str, config: CircuitBreakerConfig):
        self.name = name
        self.config = config
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._half_open_calls = 0
        self._opened_at: Optional[datetime] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    async def call(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        fallback: Optional[Callable[..., Awaitable[Any]]] = None,
        **kwargs: Any,
    ) -> Any:
        """Run func through the breaker, using fallback when the circuit rejects it."""
        async with self._lock:
            admitted = self._admit()

        if not admitted:
            if fallback is not None:
                return await fallback(*args, **kwargs)
            raise CircuitBreakerOpen(self.name, self._seconds_until_half_open())

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            async with self._lock:
                self._record_failure(e)
            raise

        async with self._lock:
            self._record_success()
        return result

    def _admit(self) -> bool:
        if self._state == CircuitState.OPEN:
            if self._seconds_until_half_open() > 0:
                return False
            self._set_state(CircuitState.HALF_OPEN)

        if self._state == CircuitState.HALF_OPEN:
            if self._half_open_calls >= self.config.half_open_max_calls:
                logger.warning(f"Circuit {self.name} half-open trial limit reached")
                return False
            self._half_open_calls += 1
        return True

    def _record_success(self) -> None:
        self._failures = 0
        self._successes += 1
        if (
            self._state == CircuitState.HALF_OPEN
            and self._successes >= self.config.success_threshold
        ):
            self._set_state(CircuitState.CLOSED)

    def _record_failure(self, error: Exception) -> None:
        self._successes = 0
        self._failures += 1
        logger.warning(
            f"Circuit {self.name} failure ({self._failures}/{self.config.failure_threshold}): {error}"
        )
        if self._state == CircuitState.HALF_OPEN or (
            self._state == CircuitState.CLOSED
            and self._failures >= self.config.failure_threshold
        ):
            self._set_state(CircuitState.OPEN)

    def _set_state(self, state: CircuitState) -> None:
        self._state = state
        self._successes = 0
        self._half_open_calls = 0
        if state == CircuitState.OPEN:
            self._opened_at = utc_now()
            logger.error(f"Circuit {self.name} opened")
        else:
            self._failures = 0
            if state == CircuitState.CLOSED:
                self._opened_at = None
            logger.info(f"Circuit {self.name} {state.value}")
        metrics.inc_counter(f"circuit.{self.name}.{state.value}")

    def _seconds_until_half_open(self) -> int:
        if self._opened_at is None:
            return 0
        elapsed = (utc_now() - self._opened_at).total_seconds()
        return int(max(0.0, self.config.timeout_seconds - elapsed))

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "failure_count": self._failures,
            "success_count": self._successes,
            "opened_at": self._opened_at.isoformat() if self._opened_at else None,
        }

    async def reset(self) -> None:
        async with self._lock:
            self._set_state(CircuitState.CLOSED)
