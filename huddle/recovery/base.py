# =============================================================================
# File: huddle/recovery/base.py
# Description: Shared context and base class for recovery strategies
# =============================================================================

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from huddle.config.chat_config import ChatConfig
from huddle.config.logging_config import get_logger
from huddle.config.recovery_config import RecoveryConfig
from huddle.infra.journal.interaction_journal import InteractionJournal
from huddle.rsvp.extractor import RenderedStateExtractor
from huddle.rsvp.history import MessageHistoryReader
from huddle.rsvp.models import ChatMessage, RosterMember, utc_now
from huddle.rsvp.ports.match_data_port import MatchDataPort
from huddle.rsvp.store import RsvpStore
from huddle.recovery.results import StrategyResult

log = get_logger("huddle.recovery")


@dataclass
class RecoveryContext:
    """Everything a strategy may read or write during one recovery run."""
    store: RsvpStore
    journal: InteractionJournal
    history: MessageHistoryReader
    extractor: RenderedStateExtractor
    match_data: MatchDataPort
    chat_config: ChatConfig
    config: RecoveryConfig
    lookback_days: int
    dry_run: bool = False
    should_stop: Optional[Callable[[], bool]] = None
    started_at: datetime = field(default_factory=utc_now)

    _channel_messages: Optional[List[ChatMessage]] = field(default=None, init=False, repr=False)
    _roster: Optional[List[RosterMember]] = field(default=None, init=False, repr=False)

    @property
    def cutoff(self) -> datetime:
        return self.started_at - timedelta(days=self.lookback_days)

    @property
    def bot_user_id(self) -> str:
        return self.history.chat.bot_user_id

    def stop_requested(self) -> bool:
        return bool(self.should_stop and self.should_stop())

    async def channel_messages(self) -> List[ChatMessage]:
        """The bounded channel history walk, fetched once per run."""
        if self._channel_messages is None:
            if not self.chat_config.channel_id:
                self._channel_messages = []
            else:
                self._channel_messages = await self.history.fetch_recent(
                    self.chat_config.channel_id,
                    limit=self.config.channel_scan_limit,
                    cutoff=self.cutoff,
                    should_stop=self.should_stop,
                )
                log.info(f"Scanned {len(self._channel_messages)} channel messages for recovery")
        return self._channel_messages

    async def roster(self) -> List[RosterMember]:
        """Roster members from match data, fetched once per run. Empty when unavailable."""
        if self._roster is None:
            try:
                self._roster = list(await self.match_data.list_roster_members())
            except Exception as e:
                log.warning(f"Roster unavailable during recovery: {e}")
                self._roster = []
        return self._roster


class RecoveryStrategy(ABC):
    """One source of evidence the store can be rebuilt from."""

    name: str = ""

    def new_result(self, ctx: RecoveryContext) -> StrategyResult:
        return StrategyResult(strategy=self.name, dry_run=ctx.dry_run)

    @abstractmethod
    async def run(self, ctx: RecoveryContext) -> StrategyResult:
        """Recover what this source can. Per-record failures go into the result."""
        ...
