# =============================================================================
# File: huddle/config/sync_config.py
# Description: Reconciliation (store vs rendered status) configuration
# =============================================================================

from functools import lru_cache
from pydantic import Field
from pydantic_settings import SettingsConfigDict

from huddle.common.base.base_config import BaseConfig, BASE_CONFIG_DICT


class SyncConfig(BaseConfig):
    """Reconciler settings."""

    model_config = SettingsConfigDict(
        **BASE_CONFIG_DICT,
        env_prefix='SYNC_',
    )

    inter_item_delay_ms: int = Field(default=500, gt=0, description="Pause between batch items")
    status_scan_pages: int = Field(default=1, gt=0, description="History pages searched for the status message")
    status_page_size: int = Field(default=50, gt=0, le=100)
    interval_minutes: float = Field(default=30, gt=0, description="Periodic reconciliation interval")
    enable_periodic: bool = Field(default=True)


@lru_cache(maxsize=1)
def get_sync_config() -> SyncConfig:
    """Get sync configuration singleton (cached)."""
    return SyncConfig()


def reset_sync_config() -> None:
    """Reset config singleton (for testing)."""
    get_sync_config.cache_clear()
