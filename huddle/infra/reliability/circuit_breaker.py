# =============================================================================
# File: huddle/infra/reliability/circuit_breaker.py
# Description: Per-key circuit breaker guarding outbound calls
# =============================================================================

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, TypeVar

from huddle.common.enums.enums import CircuitState
from huddle.common.exceptions.exceptions import CircuitOpenError
from huddle.config.reliability_config import CircuitBreakerConfig
from huddle.infra.metrics.reliability import (
    circuit_breaker_failures,
    circuit_breaker_rejections,
    circuit_breaker_state,
    circuit_breaker_trips,
)

logger = logging.getLogger("huddle.reliability.circuit_breaker")

T = TypeVar('T')

_STATE_GAUGE = {
    CircuitState.CLOSED: 0,
    CircuitState.OPEN: 1,
    CircuitState.HALF_OPEN: 2,
}


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    CLOSED -> OPEN after failure_threshold consecutive failures.
    OPEN -> HALF_OPEN once reset_timeout_seconds have elapsed since the last
    failure. HALF_OPEN admits half_open_max_calls trial calls; every other
    caller is rejected until a trial settles. Trial success closes the
    circuit, trial failure reopens it and restarts the cool-down.
    """

    def __init__(
            self,
            config: CircuitBreakerConfig,
            clock: Callable[[], float] = time.monotonic,
    ):
        self.name = config.name
        self.config = config
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_at: Optional[float] = None
        self._last_failure_time: Optional[datetime] = None
        self._half_open_calls = 0

        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    async def acquire(self) -> bool:
        """
        Admit a call or raise CircuitOpenError.

        Returns True when the admitted call is a half-open trial. The caller
        must settle it with record_success() or record_failure().
        """
        async with self._lock:
            if self._state == CircuitState.CLOSED:
                return False

            if self._state == CircuitState.OPEN:
                if not self._should_attempt_reset():
                    self._reject()
                self._state = CircuitState.HALF_OPEN
                self._half_open_calls = 0
                logger.info(f"circuit_breaker_half_open for {self.name}")
                circuit_breaker_state.labels(name=self.name).set(_STATE_GAUGE[CircuitState.HALF_OPEN])

            # HALF_OPEN state
            if self._half_open_calls < self.config.half_open_max_calls:
                self._half_open_calls += 1
                return True
            self._reject()

    def _reject(self) -> None:
        circuit_breaker_rejections.labels(name=self.name).inc()
        raise CircuitOpenError(self.name)

    async def call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection."""
        await self.acquire()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            await self.record_failure(str(e))
            raise
        await self.record_success()
        return result

    async def record_success(self) -> None:
        """Reset to CLOSED."""
        async with self._lock:
            self._success_count += 1
            if self._state != CircuitState.CLOSED or self._failure_count:
                self._transition_to_closed()

    async def record_failure(self, error_details: Optional[str] = None) -> None:
        """Count one failure; may open the circuit."""
        async with self._lock:
            self._failure_count += 1
            self._last_failure_at = self._clock()
            self._last_failure_time = datetime.now(timezone.utc)

            if error_details:
                logger.debug(f"Circuit breaker {self.name} failure: {error_details}")

            circuit_breaker_failures.labels(name=self.name).inc()

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to_open()
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
                self._transition_to_open()

    async def release_trial(self) -> None:
        """Give back a half-open slot whose call never settled (cancelled)."""
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
                self._half_open_calls -= 1

    def _should_attempt_reset(self) -> bool:
        """Check if the cool-down has passed."""
        if self._last_failure_at is None:
            return True
        return (self._clock() - self._last_failure_at) >= self.config.reset_timeout_seconds

    def _transition_to_closed(self) -> None:
        previous = self._state
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_calls = 0

        if previous != CircuitState.CLOSED:
            logger.info(f"circuit_breaker_closed for {self.name}")
        circuit_breaker_state.labels(name=self.name).set(_STATE_GAUGE[CircuitState.CLOSED])

    def _transition_to_open(self) -> None:
        self._state = CircuitState.OPEN
        self._half_open_calls = 0

        logger.warning(
            f"circuit_breaker_opened for {self.name} after {self._failure_count} consecutive failures"
        )
        circuit_breaker_state.labels(name=self.name).set(_STATE_GAUGE[CircuitState.OPEN])
        circuit_breaker_trips.labels(name=self.name).inc()

    def is_open(self) -> bool:
        """True while calls would be rejected without a trial."""
        return self._state == CircuitState.OPEN and not self._should_attempt_reset()

    def reset(self) -> None:
        """Force the circuit back to CLOSED (admin / tests)."""
        self._transition_to_closed()
        self._last_failure_at = None
        self._last_failure_time = None

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot of the breaker state."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "last_failure_time": self._last_failure_time.isoformat() if self._last_failure_time else None,
            "threshold": self.config.failure_threshold,
            "reset_timeout_seconds": self.config.reset_timeout_seconds,
        }


class CircuitBreakerRegistry:
    """Breakers by key, created on first use."""

    def __init__(
            self,
            config_factory: Optional[Callable[[str], CircuitBreakerConfig]] = None,
            clock: Callable[[], float] = time.monotonic,
    ):
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._config_factory = config_factory or (lambda name: CircuitBreakerConfig(name=name))
        self._clock = clock

    def get(self, name: str, config: Optional[CircuitBreakerConfig] = None) -> CircuitBreaker:
        """Get or create a circuit breaker instance."""
        if name not in self._breakers:
            if config is None:
                config = self._config_factory(name)
            self._breakers[name] = CircuitBreaker(config, clock=self._clock)
        return self._breakers[name]

    def all_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Get metrics for all circuit breakers."""
        return {name: breaker.get_metrics() for name, breaker in self._breakers.items()}

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
