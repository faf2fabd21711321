# =============================================================================
# File: huddle/config/storage_config.py
# Description: SQLite storage configuration
# =============================================================================

from functools import lru_cache
from pydantic import Field
from pydantic_settings import SettingsConfigDict

from huddle.common.base.base_config import BaseConfig, BASE_CONFIG_DICT


class StorageConfig(BaseConfig):
    """
    Storage configuration for the SQLite database that backs the RSVP store.
    """

    model_config = SettingsConfigDict(
        **BASE_CONFIG_DICT,
        env_prefix='STORAGE_',
    )

    database_path: str = Field(default="data/bot.db", description="SQLite database file")
    busy_timeout_ms: int = Field(default=5000, description="sqlite busy_timeout pragma (ms)")
    journal_mode: str = Field(default="WAL", description="sqlite journal_mode pragma")
    foreign_keys: bool = Field(default=True, description="Enable foreign key enforcement")


@lru_cache(maxsize=1)
def get_storage_config() -> StorageConfig:
    """Get storage configuration singleton (cached)."""
    return StorageConfig()


def reset_storage_config() -> None:
    """Reset config singleton (for testing)."""
    get_storage_config.cache_clear()
