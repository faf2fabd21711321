# =============================================================================
# File: huddle/rsvp/models.py
# Description: RSVP store records and the chat-side value objects read from
#              the platform
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from huddle.common.enums.enums import RsvpResponse, ThreadKind


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Store records (SQLite tables: user_mappings, rsvp_responses, event_threads)
# =============================================================================

class UserMapping(BaseModel):
    """Link between a chat user and a roster account. One per chat_id, one per roster_id."""
    chat_id: str
    display_name: str
    roster_id: str
    roster_nickname: str
    skill_level: Optional[int] = None
    rating: Optional[int] = None
    country: Optional[str] = None
    linked_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True, frozen=True)


class ResponseRecord(BaseModel):
    """A member's answer for one match. Keyed by (event_id, chat_id)."""
    event_id: str
    chat_id: str
    response: RsvpResponse
    display_name: str  # roster nickname at response time
    timestamp: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def key(self) -> Tuple[str, str]:
        return self.event_id, self.chat_id


class ThreadIndex(BaseModel):
    """The discussion thread carrying a match's status message."""
    event_id: str
    thread_id: str
    thread_kind: ThreadKind = ThreadKind.UPCOMING
    created_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True, frozen=True)


# =============================================================================
# Chat platform value objects
# =============================================================================

@dataclass(frozen=True)
class ChatAuthor:
    id: str
    name: str
    bot: bool = False


@dataclass(frozen=True)
class EmbedField:
    name: str
    value: str


@dataclass(frozen=True)
class Embed:
    title: Optional[str] = None
    description: Optional[str] = None
    fields: Tuple[EmbedField, ...] = ()
    footer: Optional[str] = None


@dataclass(frozen=True)
class ChatMessage:
    """
    One message as returned by the platform.

    interaction_user is the user whose slash command or button press produced
    this (bot-authored) message, when the platform reports it.
    """
    id: str
    channel_id: str
    author: ChatAuthor
    created_at: datetime
    content: str = ""
    embeds: Tuple[Embed, ...] = ()
    interaction_user: Optional[ChatAuthor] = None


@dataclass(frozen=True)
class ThreadInfo:
    id: str
    name: str
    parent_id: Optional[str] = None
    created_at: Optional[datetime] = None
    archived: bool = False


@dataclass(frozen=True)
class RosterMember:
    """A team member known to the match-data service."""
    roster_id: str
    nickname: str
    skill_level: Optional[int] = None
    rating: Optional[int] = None
    country: Optional[str] = None


@dataclass
class ArchivedThreadPage:
    threads: List[ThreadInfo] = field(default_factory=list)
    has_more: bool = False
