# huddle/common/base/base_config.py
# =============================================================================
# BaseConfig - shared settings behaviour for every Huddle config class
#
# Each config subclasses BaseConfig, spreads BASE_CONFIG_DICT into its own
# SettingsConfigDict with a domain prefix (STORAGE_, JOURNAL_, BACKUP_, ...)
# and is exposed through an @lru_cache(maxsize=1) getter plus a reset_*
# function for tests.
# =============================================================================

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_CONFIG_DICT = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    case_sensitive=False,
    extra="ignore",
    env_nested_delimiter="__",
)


class BaseConfig(BaseSettings):
    """Loads from the environment and .env, case-insensitively; unknown keys are ignored."""

    model_config = BASE_CONFIG_DICT
