# =============================================================================
# File: huddle/config/backup_config.py
# Description: Database snapshot/backup configuration
# =============================================================================

from functools import lru_cache
from pydantic import Field
from pydantic_settings import SettingsConfigDict

from huddle.common.base.base_config import BaseConfig, BASE_CONFIG_DICT


class BackupConfig(BaseConfig):
    """
    Snapshot configuration.

    Snapshots are written with VACUUM INTO. allow_raw_copy_fallback permits a
    plain file copy when that primitive is not available; the copy is not
    transactionally consistent, so it stays off unless explicitly enabled.
    """

    model_config = SettingsConfigDict(
        **BASE_CONFIG_DICT,
        env_prefix='BACKUP_',
    )

    directory: str = Field(default="backups", description="Snapshot directory")
    file_prefix: str = Field(default="bot_backup_", description="Snapshot file name prefix")
    keep_count: int = Field(default=10, gt=0, description="Snapshots kept after rotation")
    interval_hours: float = Field(default=6, gt=0, description="Periodic snapshot interval")
    initial_delay_minutes: float = Field(default=5, ge=0, description="Delay before the first periodic snapshot")
    enable_periodic: bool = Field(default=True)
    allow_raw_copy_fallback: bool = Field(default=False)


@lru_cache(maxsize=1)
def get_backup_config() -> BackupConfig:
    """Get backup configuration singleton (cached)."""
    return BackupConfig()


def reset_backup_config() -> None:
    """Reset config singleton (for testing)."""
    get_backup_config.cache_clear()
