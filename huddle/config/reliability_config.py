# =============================================================================
# File: huddle/config/reliability_config.py
# Description: Reliability configuration for circuit breakers and retry
#              policies guarding the chat platform, match data and storage
# =============================================================================

from functools import lru_cache
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import SettingsConfigDict

from huddle.common.base.base_config import BASE_CONFIG_DICT, BaseConfig


# =============================================================================
# Configuration Models (Pydantic BaseModel for type safety)
# =============================================================================

class CircuitBreakerConfig(BaseModel):
    """Circuit breaker configuration."""
    name: str
    failure_threshold: int = 5
    reset_timeout_seconds: float = 60
    half_open_max_calls: int = 1


class RetryConfig(BaseModel):
    """
    Retry policy for one outbound call.

    Delay before retry k (k=0 for the first retry) is
    min(base_delay_ms * 2**k + uniform(0, jitter_ms), max_delay_ms).
    Storage lock errors use the busy_* pair instead of base/max.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    max_retries: int = Field(default=3, ge=0)
    base_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=30000, ge=0)
    jitter_ms: int = Field(default=1000, ge=0)
    timeout_ms: Optional[int] = Field(default=15000, gt=0)
    busy_base_delay_ms: int = Field(default=500, ge=0)
    busy_max_delay_ms: int = Field(default=5000, ge=0)
    circuit_key: Optional[str] = None
    retry_condition: Optional[Callable[[BaseException], bool]] = None

    def with_key(self, circuit_key: str, **overrides: Any) -> "RetryConfig":
        """Copy of this policy bound to another circuit key."""
        return self.model_copy(update={"circuit_key": circuit_key, **overrides})


# =============================================================================
# Main Reliability Config (loads from env)
# =============================================================================

class ReliabilitySettings(BaseConfig):
    """
    Global reliability settings loaded from environment.
    Individual service policies are created via ReliabilityConfigs factory.
    """

    model_config = SettingsConfigDict(
        **BASE_CONFIG_DICT,
        env_prefix='RELIABILITY_',
    )

    # Circuit breaker defaults
    default_circuit_breaker_threshold: int = Field(default=5)
    default_circuit_breaker_timeout: float = Field(default=60)

    # Network retry defaults
    default_retry_max_retries: int = Field(default=3)
    default_retry_base_delay_ms: int = Field(default=1000)
    default_retry_max_delay_ms: int = Field(default=30000)
    default_retry_jitter_ms: int = Field(default=1000)
    default_timeout_ms: int = Field(default=15000)

    # Storage (SQLite lock) backoff
    storage_base_delay_ms: int = Field(default=500)
    storage_max_delay_ms: int = Field(default=5000)
    storage_jitter_ms: int = Field(default=200)
    storage_timeout_ms: int = Field(default=10000)

    # Feature flags
    enable_circuit_breakers: bool = Field(default=True)
    enable_retries: bool = Field(default=True)


@lru_cache(maxsize=1)
def get_reliability_settings() -> ReliabilitySettings:
    """Get global reliability settings (cached)."""
    return ReliabilitySettings()


def reset_reliability_settings() -> None:
    """Reset settings singleton (for testing)."""
    get_reliability_settings.cache_clear()


# =============================================================================
# ReliabilityConfigs Factory Class
# =============================================================================

class ReliabilityConfigs:
    """Pre-configured reliability settings for the outbound services"""

    @staticmethod
    def circuit_breaker(name: str, settings: Optional[ReliabilitySettings] = None) -> CircuitBreakerConfig:
        settings = settings or get_reliability_settings()
        return CircuitBreakerConfig(
            name=name,
            failure_threshold=settings.default_circuit_breaker_threshold,
            reset_timeout_seconds=settings.default_circuit_breaker_timeout,
            half_open_max_calls=1,
        )

    # =========================================================================
    # Chat platform
    # =========================================================================
    @staticmethod
    def chat_platform_retry(settings: Optional[ReliabilitySettings] = None) -> RetryConfig:
        settings = settings or get_reliability_settings()
        return RetryConfig(
            max_retries=settings.default_retry_max_retries if settings.enable_retries else 0,
            base_delay_ms=settings.default_retry_base_delay_ms,
            max_delay_ms=settings.default_retry_max_delay_ms,
            jitter_ms=settings.default_retry_jitter_ms,
            timeout_ms=settings.default_timeout_ms,
            busy_base_delay_ms=settings.storage_base_delay_ms,
            busy_max_delay_ms=settings.storage_max_delay_ms,
            circuit_key="chat_platform",
        )

    # =========================================================================
    # Match data API
    # =========================================================================
    @staticmethod
    def match_data_retry(settings: Optional[ReliabilitySettings] = None) -> RetryConfig:
        settings = settings or get_reliability_settings()
        return RetryConfig(
            max_retries=settings.default_retry_max_retries if settings.enable_retries else 0,
            base_delay_ms=settings.default_retry_base_delay_ms,
            max_delay_ms=settings.default_retry_max_delay_ms,
            jitter_ms=settings.default_retry_jitter_ms,
            timeout_ms=settings.default_timeout_ms,
            busy_base_delay_ms=settings.storage_base_delay_ms,
            busy_max_delay_ms=settings.storage_max_delay_ms,
            circuit_key="match_data",
        )

    # =========================================================================
    # SQLite storage
    # =========================================================================
    @staticmethod
    def storage_retry(settings: Optional[ReliabilitySettings] = None) -> RetryConfig:
        settings = settings or get_reliability_settings()
        return RetryConfig(
            max_retries=settings.default_retry_max_retries if settings.enable_retries else 0,
            base_delay_ms=settings.storage_base_delay_ms,
            max_delay_ms=settings.storage_max_delay_ms,
            jitter_ms=settings.storage_jitter_ms,
            timeout_ms=settings.storage_timeout_ms,
            busy_base_delay_ms=settings.storage_base_delay_ms,
            busy_max_delay_ms=settings.storage_max_delay_ms,
            circuit_key="storage",
        )

    @staticmethod
    def named_policy(name: str, settings: Optional[ReliabilitySettings] = None) -> RetryConfig:
        """Look up one of the named policies: chat_platform, match_data, storage."""
        factories = {
            "chat_platform": ReliabilityConfigs.chat_platform_retry,
            "match_data": ReliabilityConfigs.match_data_retry,
            "storage": ReliabilityConfigs.storage_retry,
        }
        if name not in factories:
            raise KeyError(f"Unknown reliability policy: {name}")
        return factories[name](settings)
