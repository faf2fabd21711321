# =============================================================================
# File: huddle/config/recovery_config.py
# Description: Recovery engine configuration
# =============================================================================

from functools import lru_cache
from pydantic import Field
from pydantic_settings import SettingsConfigDict

from huddle.common.base.base_config import BaseConfig, BASE_CONFIG_DICT
from huddle.common.enums.enums import Confidence


class RecoveryConfig(BaseConfig):
    """Bounds and policy for rebuilding the store from chat history."""

    model_config = SettingsConfigDict(
        **BASE_CONFIG_DICT,
        env_prefix='RECOVERY_',
    )

    scan_depth_days: int = Field(default=30, gt=0, description="Chat history lookback")
    quick_scan_depth_days: int = Field(default=7, gt=0, description="Lookback for quick recovery")
    channel_scan_limit: int = Field(default=1000, gt=0, description="Max channel messages scanned")
    thread_scan_limit: int = Field(default=500, gt=0, description="Max messages scanned per thread")
    page_size: int = Field(default=100, gt=0, le=100, description="Messages per history page")
    archived_thread_page_size: int = Field(default=100, gt=0, le=100)
    max_archived_thread_pages: int = Field(default=10, gt=0)

    # Cross-reference candidates below this confidence are only surfaced for review
    auto_persist_min_confidence: Confidence = Field(default=Confidence.HIGH)

    # Success rate under which validate() recommends manual review
    low_success_rate_threshold: float = Field(default=0.8, ge=0, le=1)


@lru_cache(maxsize=1)
def get_recovery_config() -> RecoveryConfig:
    """Get recovery configuration singleton (cached)."""
    return RecoveryConfig()


def reset_recovery_config() -> None:
    """Reset config singleton (for testing)."""
    get_recovery_config.cache_clear()
