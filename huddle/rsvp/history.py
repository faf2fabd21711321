# =============================================================================
# File: huddle/rsvp/history.py
# Description: Bounded, paginated reads of channel/thread history
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional

from huddle.config.logging_config import get_logger
from huddle.rsvp.models import ChatMessage, ThreadInfo
from huddle.rsvp.ports.chat_platform_port import ChatPlatformPort

log = get_logger("huddle.rsvp.history")

ShouldStop = Callable[[], bool]


class MessageHistoryReader:
    """
    Newest-first history walks with hard bounds.

    Every walk stops at the first of: history exhausted, `limit` messages,
    `max_pages` pages, a message older than `cutoff`, or should_stop()
    returning True at a page boundary.
    """

    def __init__(self, chat: ChatPlatformPort, page_size: int = 100):
        self.chat = chat
        self.page_size = min(page_size, 100)

    async def iter_messages(
            self,
            channel_id: str,
            limit: int,
            cutoff: Optional[datetime] = None,
            max_pages: Optional[int] = None,
            should_stop: Optional[ShouldStop] = None,
    ) -> AsyncIterator[ChatMessage]:
        before: Optional[str] = None
        fetched = 0
        pages = 0

        while fetched < limit:
            if max_pages is not None and pages >= max_pages:
                break
            if should_stop is not None and should_stop():
                log.info(f"History walk of {channel_id} stopped after {pages} pages")
                break

            batch_size = min(self.page_size, limit - fetched)
            page = await self.chat.fetch_messages(channel_id, limit=batch_size, before=before)
            pages += 1
            if not page:
                break

            for message in page:
                if cutoff is not None and message.created_at < cutoff:
                    return
                fetched += 1
                yield message
                if fetched >= limit:
                    return

            if len(page) < batch_size:
                break
            before = page[-1].id

        log.debug(f"History walk of {channel_id}: {fetched} messages in {pages} pages")

    async def fetch_recent(
            self,
            channel_id: str,
            limit: int,
            cutoff: Optional[datetime] = None,
            max_pages: Optional[int] = None,
            should_stop: Optional[ShouldStop] = None,
    ) -> List[ChatMessage]:
        """Collect a bounded walk into a list (newest first)."""
        return [
            message
            async for message in self.iter_messages(
                channel_id, limit=limit, cutoff=cutoff, max_pages=max_pages, should_stop=should_stop
            )
        ]

    async def find_event_threads(
            self,
            channel_id: str,
            prefixes: Iterable[str],
            cutoff: Optional[datetime] = None,
            archived_page_size: int = 100,
            max_archived_pages: int = 10,
            should_stop: Optional[ShouldStop] = None,
    ) -> List[ThreadInfo]:
        """Active and archived threads whose name starts with one of the prefixes."""
        prefixes = tuple(prefixes)
        found: Dict[str, ThreadInfo] = {}

        def _accept(thread: ThreadInfo) -> None:
            if not thread.name.startswith(prefixes):
                return
            if cutoff is not None and thread.created_at is not None and thread.created_at < cutoff:
                return
            found.setdefault(thread.id, thread)

        for thread in await self.chat.list_active_threads(channel_id):
            _accept(thread)

        before: Optional[str] = None
        for _ in range(max_archived_pages):
            if should_stop is not None and should_stop():
                break
            page = await self.chat.list_archived_threads(channel_id, before=before, limit=archived_page_size)
            for thread in page.threads:
                _accept(thread)
            if not page.has_more or not page.threads:
                break
            before = page.threads[-1].id
            oldest = page.threads[-1].created_at
            if cutoff is not None and oldest is not None and oldest < cutoff:
                break

        log.info(f"Found {len(found)} match threads in channel {channel_id}")
        return list(found.values())
