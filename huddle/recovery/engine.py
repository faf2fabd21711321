# =============================================================================
# File: huddle/recovery/engine.py
# Description: Runs the recovery strategies in order and aggregates a report
# =============================================================================

from __future__ import annotations

import asyncio
import time
from typing import Callable, List, Optional

from huddle.config.chat_config import ChatConfig
from huddle.config.logging_config import get_logger, log_metrics_table
from huddle.config.recovery_config import RecoveryConfig
from huddle.infra.journal.interaction_journal import InteractionJournal
from huddle.recovery.base import RecoveryContext, RecoveryStrategy
from huddle.recovery.cross_reference import CrossReferenceStrategy
from huddle.recovery.journal_replay import JournalReplayStrategy
from huddle.recovery.linking_scan import LinkingConfirmationStrategy
from huddle.recovery.response_scan import ResponseConfirmationStrategy
from huddle.recovery.results import RecoveryReport, StrategyResult
from huddle.rsvp.extractor import RenderedStateExtractor
from huddle.rsvp.history import MessageHistoryReader
from huddle.rsvp.models import utc_now
from huddle.rsvp.ports.match_data_port import MatchDataPort
from huddle.rsvp.store import RsvpStore

log = get_logger("huddle.recovery.engine")


def default_strategies() -> List[RecoveryStrategy]:
    """Strongest evidence first; later strategies only fill gaps."""
    return [
        JournalReplayStrategy(),
        LinkingConfirmationStrategy(),
        ResponseConfirmationStrategy(),
        CrossReferenceStrategy(),
    ]


class RecoveryEngine:
    """
    Rebuilds the store from the interaction journal and chat history.

    Every strategy writes through insert-if-absent only, so running recovery
    twice over the same history is a no-op the second time. One run at a
    time: a call made while another is in progress returns a skipped report.
    """

    def __init__(
            self,
            store: RsvpStore,
            journal: InteractionJournal,
            history: MessageHistoryReader,
            extractor: RenderedStateExtractor,
            match_data: MatchDataPort,
            chat_config: ChatConfig,
            config: RecoveryConfig,
            strategies: Optional[List[RecoveryStrategy]] = None,
    ):
        self.store = store
        self.journal = journal
        self.history = history
        self.extractor = extractor
        self.match_data = match_data
        self.chat_config = chat_config
        self.config = config
        self.strategies = strategies if strategies is not None else default_strategies()

        self._lock = asyncio.Lock()
        self._last_report: Optional[RecoveryReport] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def last_report(self) -> Optional[RecoveryReport]:
        return self._last_report

    def is_store_suspect(self) -> bool:
        """No user mappings at all means the store was lost or never populated."""
        return self.store.is_empty()

    async def recover(
            self,
            dry_run: bool = False,
            lookback_days: Optional[int] = None,
            should_stop: Optional[Callable[[], bool]] = None,
    ) -> RecoveryReport:
        if lookback_days is None:
            lookback_days = self.config.scan_depth_days

        if self._lock.locked():
            log.warning("Recovery already in progress; skipping")
            now = utc_now()
            return RecoveryReport(
                dry_run=dry_run,
                lookback_days=lookback_days,
                started_at=now,
                finished_at=now,
                skipped_reason="recovery already in progress",
            )

        async with self._lock:
            ctx = RecoveryContext(
                store=self.store,
                journal=self.journal,
                history=self.history,
                extractor=self.extractor,
                match_data=self.match_data,
                chat_config=self.chat_config,
                config=self.config,
                lookback_days=lookback_days,
                dry_run=dry_run,
                should_stop=should_stop,
            )
            report = RecoveryReport(dry_run=dry_run, lookback_days=lookback_days, started_at=ctx.started_at)

            mode = "dry run" if dry_run else "live"
            log.info(f"Starting recovery ({mode}, {lookback_days} day lookback, {len(self.strategies)} strategies)")
            start = time.perf_counter()

            for strategy in self.strategies:
                if ctx.stop_requested():
                    log.info(f"Recovery stopped before {strategy.name}")
                    break
                report.add(await self._run_strategy(strategy, ctx))

            report.finished_at = utc_now()
            self._last_report = report

            duration = time.perf_counter() - start
            validation = report.validate(self.config.low_success_rate_threshold)
            log_metrics_table(log, "Recovery Summary", {
                **report.summary(),
                "success_rate": f"{validation.success_rate}%",
                "duration_s": round(duration, 2),
                "result": validation.recommendation,
            })
            for issue in validation.critical_issues:
                log.warning(issue)

            return report

    async def quick_recover(self, dry_run: bool = False) -> RecoveryReport:
        """Recovery over the short lookback window."""
        return await self.recover(dry_run=dry_run, lookback_days=self.config.quick_scan_depth_days)

    async def recover_if_suspect(
            self,
            should_stop: Optional[Callable[[], bool]] = None,
    ) -> Optional[RecoveryReport]:
        if not self.is_store_suspect():
            log.debug("Store has user mappings; recovery not needed")
            return None
        log.warning("Store has no user mappings; running recovery")
        return await self.recover(should_stop=should_stop)

    async def _run_strategy(self, strategy: RecoveryStrategy, ctx: RecoveryContext) -> StrategyResult:
        start = time.perf_counter()
        try:
            result = await strategy.run(ctx)
        except Exception as e:
            log.error(f"Recovery strategy {strategy.name} failed: {e}", exc_info=True)
            result = strategy.new_result(ctx)
            result.error(strategy.name, str(e))
            return result

        log.info(
            f"Strategy {strategy.name}: {result.recovered} recovered, {result.skipped} present, "
            f"{result.errors} errors, {result.needs_review} for review "
            f"({(time.perf_counter() - start) * 1000:.0f}ms)"
        )
        return result
