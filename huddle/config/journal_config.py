# =============================================================================
# File: huddle/config/journal_config.py
# Description: Interaction journal configuration
# =============================================================================

from functools import lru_cache
from pydantic import Field
from pydantic_settings import SettingsConfigDict

from huddle.common.base.base_config import BaseConfig, BASE_CONFIG_DICT


class JournalConfig(BaseConfig):
    """Append-only JSONL journal of user interactions."""

    model_config = SettingsConfigDict(
        **BASE_CONFIG_DICT,
        env_prefix='JOURNAL_',
    )

    path: str = Field(default="data/interaction_log.jsonl", description="Journal file")
    replay_lookback_days: int = Field(default=30, gt=0, description="Window replayed during recovery")
    retention_days: int = Field(default=90, gt=0, description="Entries older than this are compacted away")
    compaction_interval_hours: float = Field(default=24, gt=0, description="Background compaction period")
    enable_compaction: bool = Field(default=True)


@lru_cache(maxsize=1)
def get_journal_config() -> JournalConfig:
    """Get journal configuration singleton (cached)."""
    return JournalConfig()


def reset_journal_config() -> None:
    """Reset config singleton (for testing)."""
    get_journal_config.cache_clear()
