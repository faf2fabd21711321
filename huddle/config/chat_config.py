# =============================================================================
# File: huddle/config/chat_config.py
# Description: Chat platform channel and thread naming configuration
# =============================================================================

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from huddle.common.base.base_config import BaseConfig, BASE_CONFIG_DICT


class ChatConfig(BaseConfig):
    """Where match threads live and how they are named."""

    model_config = SettingsConfigDict(
        **BASE_CONFIG_DICT,
        env_prefix='CHAT_',
    )

    channel_id: Optional[str] = Field(default=None, description="Channel holding match threads")
    upcoming_thread_prefix: str = Field(default="INCOMING:")
    concluded_thread_prefix: str = Field(default="RESULT:")
    status_title_marker: str = Field(default="RSVP Status")
    link_confirmation_title: str = Field(default="Successfully Linked")


@lru_cache(maxsize=1)
def get_chat_config() -> ChatConfig:
    """Get chat configuration singleton (cached)."""
    return ChatConfig()


def reset_chat_config() -> None:
    """Reset config singleton (for testing)."""
    get_chat_config.cache_clear()
