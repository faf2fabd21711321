# =============================================================================
# File: huddle/infra/chat/guarded_ports.py
# Description: Port decorators that route every outbound call through the
#              resilience layer (retry + circuit breaker)
# =============================================================================

from __future__ import annotations

from typing import List, Optional

from huddle.config.reliability_config import ReliabilityConfigs, ReliabilitySettings, RetryConfig
from huddle.infra.reliability.retry import ResilienceLayer
from huddle.rsvp.models import ArchivedThreadPage, ChatMessage, RosterMember, ThreadInfo
from huddle.rsvp.ports.chat_platform_port import ChatPlatformPort
from huddle.rsvp.ports.match_data_port import MatchDataPort
from huddle.rsvp.ports.status_renderer_port import StatusRendererPort


class GuardedChatPlatform:
    """ChatPlatformPort with retry and the chat_platform circuit breaker."""

    def __init__(
            self,
            inner: ChatPlatformPort,
            resilience: ResilienceLayer,
            policy: Optional[RetryConfig] = None,
            settings: Optional[ReliabilitySettings] = None,
    ):
        self.inner = inner
        self.resilience = resilience
        self.policy = policy or ReliabilityConfigs.chat_platform_retry(settings)

    @property
    def bot_user_id(self) -> str:
        return self.inner.bot_user_id

    async def fetch_messages(self, channel_id: str, limit: int = 100, before: Optional[str] = None) -> List[ChatMessage]:
        return await self.resilience.execute(
            self.inner.fetch_messages, channel_id, limit=limit, before=before, policy=self.policy,
        )

    async def fetch_thread(self, thread_id: str) -> Optional[ThreadInfo]:
        return await self.resilience.execute(self.inner.fetch_thread, thread_id, policy=self.policy)

    async def list_active_threads(self, channel_id: str) -> List[ThreadInfo]:
        return await self.resilience.execute(self.inner.list_active_threads, channel_id, policy=self.policy)

    async def list_archived_threads(
            self,
            channel_id: str,
            before: Optional[str] = None,
            limit: int = 100,
    ) -> ArchivedThreadPage:
        return await self.resilience.execute(
            self.inner.list_archived_threads, channel_id, before=before, limit=limit, policy=self.policy,
        )


class GuardedStatusRenderer:
    """Re-renders share the chat platform's breaker: they hit the same API."""

    def __init__(
            self,
            inner: StatusRendererPort,
            resilience: ResilienceLayer,
            policy: Optional[RetryConfig] = None,
            settings: Optional[ReliabilitySettings] = None,
    ):
        self.inner = inner
        self.resilience = resilience
        self.policy = policy or ReliabilityConfigs.chat_platform_retry(settings)

    async def rerender_status(self, event_id: str, thread_id: str) -> None:
        await self.resilience.execute(self.inner.rerender_status, event_id, thread_id, policy=self.policy)


class GuardedMatchData:
    def __init__(
            self,
            inner: MatchDataPort,
            resilience: ResilienceLayer,
            policy: Optional[RetryConfig] = None,
            settings: Optional[ReliabilitySettings] = None,
    ):
        self.inner = inner
        self.resilience = resilience
        self.policy = policy or ReliabilityConfigs.match_data_retry(settings)

    async def list_roster_members(self) -> List[RosterMember]:
        return await self.resilience.execute(self.inner.list_roster_members, policy=self.policy)

    async def list_upcoming_event_ids(self) -> List[str]:
        return await self.resilience.execute(self.inner.list_upcoming_event_ids, policy=self.policy)
