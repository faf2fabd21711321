# =============================================================================
# File: tests/fakes/fake_chat_platform.py
# Description: Fake implementation of ChatPlatformPort for unit testing
# Pattern: Ports & Adapters - Fake/Stub adapter
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from huddle.rsvp.models import (
    ArchivedThreadPage,
    ChatAuthor,
    ChatMessage,
    Embed,
    EmbedField,
    ThreadInfo,
    utc_now,
)

BOT = ChatAuthor(id="bot", name="HuddleBot", bot=True)


@dataclass
class CallRecord:
    """Record of a method call for verification."""
    method: str
    args: tuple
    kwargs: Dict[str, Any]


def render_status_embed(
        event_id: str,
        attending: Sequence[str] = (),
        not_attending: Sequence[str] = (),
        no_response: Sequence[str] = (),
        title: str = "Team vs Rivals - RSVP Status",
) -> Embed:
    """Status embed in the layout the bot renders (empty categories omitted)."""
    sections = []
    if attending:
        sections.append(f"✅ **Attending ({len(attending)}):** {', '.join(attending)}")
    if not_attending:
        sections.append(f"❌ **Not Attending ({len(not_attending)}):** {', '.join(not_attending)}")
    if no_response:
        sections.append(f"⏳ **No Response ({len(no_response)}):** {', '.join(no_response)}")
    body = "\n\n".join(sections) or "No RSVPs yet. Use the buttons above to respond!"
    return Embed(
        title=title,
        description=f"**Match:** Team vs Rivals\n\n**Current RSVPs:**\n{body}",
        footer=f"Match ID: {event_id}",
    )


def link_embed(nickname: str, skill_level: int = 8, rating: int = 2100, country: str = "DE") -> Embed:
    return Embed(
        title="✅ Successfully Linked",
        description=f"Your account has been linked to **[{nickname}](https://example.org/players/{nickname})**",
        fields=(
            EmbedField("Skill Level", str(skill_level)),
            EmbedField("ELO", f"{rating:,}"),
            EmbedField("Country", country),
        ),
    )


class FakeChatPlatform:
    """
    Fake implementation of ChatPlatformPort for unit testing.

    Messages are kept per channel (thread ids are channels too) with
    increasing numeric ids, so `before` pagination behaves like the platform.

    Usage:
        fake = FakeChatPlatform()
        thread = fake.add_thread("channel-1", "INCOMING: Team vs Rivals")
        fake.add_message(thread.id, embeds=(render_status_embed("m1", ["alice"]),))

        fake.configure_failure("fetch_messages", TransientNetworkError("reset"), times=2)
    """

    def __init__(self, bot_user_id: str = BOT.id):
        self._bot_user_id = bot_user_id
        self.messages: Dict[str, List[ChatMessage]] = {}   # channel_id -> oldest first
        self.threads: Dict[str, ThreadInfo] = {}

        # Call tracking
        self._calls: List[CallRecord] = []

        # Configurable failures: method -> (error, remaining or None for always)
        self._failures: Dict[str, List[Any]] = {}

        self._next_id = 1000

    @property
    def bot_user_id(self) -> str:
        return self._bot_user_id

    # =========================================================================
    # Test Setup Methods
    # =========================================================================

    def _new_id(self) -> str:
        self._next_id += 1
        return str(self._next_id)

    def add_message(
            self,
            channel_id: str,
            content: str = "",
            embeds: Sequence[Embed] = (),
            author: Optional[ChatAuthor] = None,
            interaction_user: Optional[ChatAuthor] = None,
            created_at: Optional[datetime] = None,
    ) -> ChatMessage:
        message = ChatMessage(
            id=self._new_id(),
            channel_id=channel_id,
            author=author or BOT,
            created_at=created_at or utc_now(),
            content=content,
            embeds=tuple(embeds),
            interaction_user=interaction_user,
        )
        self.messages.setdefault(channel_id, []).append(message)
        return message

    def add_thread(
            self,
            channel_id: str,
            name: str,
            archived: bool = False,
            created_at: Optional[datetime] = None,
    ) -> ThreadInfo:
        thread = ThreadInfo(
            id=self._new_id(),
            name=name,
            parent_id=channel_id,
            created_at=created_at or utc_now() - timedelta(hours=1),
            archived=archived,
        )
        self.threads[thread.id] = thread
        return thread

    def configure_failure(self, method: str, error: Exception, times: Optional[int] = None) -> None:
        """Make a method raise `error`, `times` times (or always)."""
        self._failures[method] = [error, times]

    def clear_failures(self) -> None:
        self._failures.clear()

    def _enter(self, method: str, *args, **kwargs) -> None:
        self._calls.append(CallRecord(method=method, args=args, kwargs=kwargs))
        failure = self._failures.get(method)
        if failure is None:
            return
        error, remaining = failure
        if remaining is not None:
            if remaining <= 0:
                return
            failure[1] = remaining - 1
        raise error

    # =========================================================================
    # Verification Methods
    # =========================================================================

    def was_called(self, method: str) -> bool:
        return any(c.method == method for c in self._calls)

    def get_call_count(self, method: str) -> int:
        return sum(1 for c in self._calls if c.method == method)

    def get_calls(self, method: str) -> List[CallRecord]:
        return [c for c in self._calls if c.method == method]

    # =========================================================================
    # ChatPlatformPort Implementation
    # =========================================================================

    async def fetch_messages(self, channel_id: str, limit: int = 100, before: Optional[str] = None) -> List[ChatMessage]:
        self._enter("fetch_messages", channel_id, limit=limit, before=before)
        newest_first = list(reversed(self.messages.get(channel_id, [])))
        if before is not None:
            newest_first = [m for m in newest_first if int(m.id) < int(before)]
        return newest_first[:limit]

    async def fetch_thread(self, thread_id: str) -> Optional[ThreadInfo]:
        self._enter("fetch_thread", thread_id)
        return self.threads.get(thread_id)

    async def list_active_threads(self, channel_id: str) -> List[ThreadInfo]:
        self._enter("list_active_threads", channel_id)
        return [t for t in self.threads.values() if t.parent_id == channel_id and not t.archived]

    async def list_archived_threads(
            self,
            channel_id: str,
            before: Optional[str] = None,
            limit: int = 100,
    ) -> ArchivedThreadPage:
        self._enter("list_archived_threads", channel_id, before=before, limit=limit)
        archived = sorted(
            (t for t in self.threads.values() if t.parent_id == channel_id and t.archived),
            key=lambda t: int(t.id),
            reverse=True,
        )
        if before is not None:
            archived = [t for t in archived if int(t.id) < int(before)]
        return ArchivedThreadPage(threads=archived[:limit], has_more=len(archived) > limit)
