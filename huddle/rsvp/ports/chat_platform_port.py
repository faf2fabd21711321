# =============================================================================
# File: huddle/rsvp/ports/chat_platform_port.py
# Description: Port interface for reading chat history and threads
# Pattern: Hexagonal Architecture / Ports & Adapters
# =============================================================================

from __future__ import annotations

from typing import List, Optional, Protocol, runtime_checkable

from huddle.rsvp.models import ArchivedThreadPage, ChatMessage, ThreadInfo


@runtime_checkable
class ChatPlatformPort(Protocol):
    """
    Port: Chat Platform (read side)

    Defined by: RSVP domain
    Implemented by: the bot's platform adapter; GuardedChatPlatform wraps it
    with retry and circuit breaking.

    Reads are newest-first and paginated. Implementations raise the
    huddle exception taxonomy (TransientNetworkError, RateLimitedError,
    PermanentClientError) so the resilience layer can classify failures.
    """

    @property
    def bot_user_id(self) -> str:
        """Id of the bot account; messages it authored are system messages."""
        ...

    async def fetch_messages(
        self,
        channel_id: str,
        limit: int = 100,
        before: Optional[str] = None,
    ) -> List[ChatMessage]:
        """
        Fetch one page of messages, newest first.

        Args:
            channel_id: Channel or thread id
            limit: Page size (platform maximum is 100)
            before: Only messages older than this message id

        Returns:
            Up to `limit` messages; an empty list means history is exhausted
        """
        ...

    async def fetch_thread(self, thread_id: str) -> Optional[ThreadInfo]:
        """Thread metadata, or None when the thread no longer exists."""
        ...

    async def list_active_threads(self, channel_id: str) -> List[ThreadInfo]:
        """All non-archived threads under the channel."""
        ...

    async def list_archived_threads(
        self,
        channel_id: str,
        before: Optional[str] = None,
        limit: int = 100,
    ) -> ArchivedThreadPage:
        """
        One page of archived threads, newest first.

        Args:
            channel_id: Parent channel id
            before: Only threads archived before this thread id
            limit: Page size
        """
        ...
