# =============================================================================
# File: huddle/infra/reliability/retry.py
# Description: Retry with exponential backoff and jitter, combined with the
#              per-key circuit breaker into a single resilience layer
# =============================================================================

import asyncio
import logging
import random
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from huddle.common.exceptions.exceptions import (
    CircuitOpenError,
    RateLimitedError,
    StorageBusyError,
    TransientNetworkError,
)
from huddle.config.reliability_config import (
    ReliabilityConfigs,
    ReliabilitySettings,
    RetryConfig,
    get_reliability_settings,
)
from huddle.infra.metrics.reliability import retry_attempts, retry_delay, retry_exhausted
from huddle.infra.reliability.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry

logger = logging.getLogger("huddle.reliability.retry")

_BUSY_MARKERS = ("locked", "busy", "disk i/o")


# Permanent error marking
def mark_permanent(error: Exception) -> Exception:
    """Mark an exception as permanent (should not be retried)"""
    error.__permanent__ = True
    return error


def is_permanent(error: BaseException) -> bool:
    """Check if an exception is marked as permanent"""
    return getattr(error, '__permanent__', False)


def _is_busy_error(error: BaseException) -> bool:
    if isinstance(error, StorageBusyError):
        return True
    if isinstance(error, sqlite3.OperationalError):
        message = str(error).lower()
        return any(marker in message for marker in _BUSY_MARKERS)
    return False


def is_retryable(error: BaseException) -> bool:
    """Default retry predicate."""
    if is_permanent(error) or isinstance(error, CircuitOpenError):
        return False

    if isinstance(error, (TransientNetworkError, RateLimitedError, asyncio.TimeoutError, ConnectionError)):
        return True

    if _is_busy_error(error):
        return True

    status = getattr(error, 'status', None) or getattr(error, 'status_code', None)
    if isinstance(status, int) and (status >= 500 or status == 429):
        return True

    return False


def calculate_delay(
        retry_index: int,
        policy: RetryConfig,
        error: Optional[BaseException] = None,
        rng: Callable[[float, float], float] = random.uniform,
) -> float:
    """
    Seconds to wait before retry number retry_index (0 for the first retry).

    min(base * 2**k + uniform(0, jitter), max), with the busy pair for storage
    lock errors. A rate limit carrying retry_after waits at least that long,
    still clipped at the maximum.
    """
    if error is not None and _is_busy_error(error):
        base_ms, max_ms = policy.busy_base_delay_ms, policy.busy_max_delay_ms
    else:
        base_ms, max_ms = policy.base_delay_ms, policy.max_delay_ms

    jitter_ms = rng(0, policy.jitter_ms) if policy.jitter_ms else 0.0
    delay_ms = min(base_ms * (2 ** retry_index) + jitter_ms, max_ms)

    if isinstance(error, RateLimitedError) and error.retry_after:
        delay_ms = min(max(delay_ms, error.retry_after * 1000), max_ms)

    return delay_ms / 1000


@dataclass
class RetryStats:
    """Per-key outcome counters."""
    total_requests: int = 0
    total_retries: int = 0
    successes: int = 0
    failures: int = 0
    last_updated: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successes / self.total_requests

    @property
    def average_retries(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.total_retries / self.total_requests

    def record(self, success: bool, retries: int) -> None:
        self.total_requests += 1
        self.total_retries += retries
        if success:
            self.successes += 1
        else:
            self.failures += 1
        self.last_updated = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "total_retries": self.total_retries,
            "successes": self.successes,
            "failures": self.failures,
            "success_rate": round(self.success_rate, 4),
            "average_retries": round(self.average_retries, 4),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


class ResilienceLayer:
    """
    Retry + circuit breaker around every outbound call.

    Usage:
        layer = ResilienceLayer()
        messages = await layer.execute(
            client.fetch_messages, channel_id,
            policy=ReliabilityConfigs.chat_platform_retry(),
            limit=100,
        )
    """

    def __init__(
            self,
            registry: Optional[CircuitBreakerRegistry] = None,
            settings: Optional[ReliabilitySettings] = None,
            sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
            rng: Callable[[float, float], float] = random.uniform,
    ):
        self.settings = settings or get_reliability_settings()
        self.registry = registry or CircuitBreakerRegistry(
            config_factory=lambda name: ReliabilityConfigs.circuit_breaker(name, self.settings)
        )
        self._sleep = sleep
        self._rng = rng
        self._stats: Dict[str, RetryStats] = {}
        self._default_policy = RetryConfig(circuit_key="default")

    def breaker(self, circuit_key: str) -> CircuitBreaker:
        return self.registry.get(circuit_key)

    async def execute(
            self,
            func: Callable[..., Awaitable[Any]],
            *args,
            policy: Optional[RetryConfig] = None,
            **kwargs
    ) -> Any:
        """
        Run func(*args, **kwargs) under the policy.

        Raises CircuitOpenError without calling func when the circuit is open.
        The last error is re-raised on exhaustion, annotated with `attempts`
        and `circuit_key`.
        """
        policy = policy or self._default_policy
        key = policy.circuit_key or "default"
        condition = policy.retry_condition or is_retryable
        breaker = self.registry.get(key) if self.settings.enable_circuit_breakers else None

        is_trial = await breaker.acquire() if breaker else False
        # Half-open trial runs once, never retried
        max_attempts = 1 if is_trial else policy.max_retries + 1

        attempt = 0
        retries = 0
        try:
            while True:
                attempt += 1
                try:
                    result = await self._attempt(func, args, kwargs, policy)
                except Exception as e:
                    breaker_counted = False
                    if isinstance(e, RateLimitedError) and breaker:
                        await breaker.record_failure(str(e))
                        breaker_counted = True

                    retryable = condition(e)
                    tripped = breaker_counted and breaker.is_open()
                    if not retryable or attempt >= max_attempts or tripped:
                        if breaker and not breaker_counted:
                            await breaker.record_failure(str(e))
                        self._record(key, success=False, retries=retries)
                        if retryable:
                            retry_exhausted.labels(name=key).inc()
                        e.attempts = attempt
                        e.circuit_key = key
                        logger.warning(
                            f"Operation failed for {key} after {attempt} attempt(s): "
                            f"{type(e).__name__}: {e}"
                        )
                        raise

                    delay = calculate_delay(retries, policy, e, self._rng)
                    retries += 1
                    retry_attempts.labels(name=key, success='false').inc()
                    retry_delay.labels(name=key).observe(delay)
                    logger.info(
                        f"Retry {retries}/{max_attempts - 1} for {key} "
                        f"after error: {e}. Waiting {delay:.2f}s before retry."
                    )
                    await self._sleep(delay)
                    continue

                if breaker:
                    await breaker.record_success()
                if retries:
                    retry_attempts.labels(name=key, success='true').inc()
                self._record(key, success=True, retries=retries)
                return result
        except asyncio.CancelledError:
            if is_trial and breaker:
                await breaker.release_trial()
            raise

    @staticmethod
    async def _attempt(
            func: Callable[..., Awaitable[Any]],
            args: tuple,
            kwargs: Dict[str, Any],
            policy: RetryConfig,
    ) -> Any:
        if not policy.timeout_ms:
            return await func(*args, **kwargs)
        try:
            return await asyncio.wait_for(func(*args, **kwargs), timeout=policy.timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            raise TransientNetworkError(f"Operation timed out after {policy.timeout_ms}ms") from e

    def _record(self, key: str, success: bool, retries: int) -> None:
        self._stats.setdefault(key, RetryStats()).record(success, retries)

    def get_circuit_breaker_status(self) -> Dict[str, Dict[str, Any]]:
        """State of every breaker created so far."""
        return self.registry.all_metrics()

    def get_retry_stats(self) -> Dict[str, Dict[str, Any]]:
        """Per-key retry counters."""
        return {key: stats.to_dict() for key, stats in self._stats.items()}

    def reset_stats(self) -> None:
        self._stats.clear()
