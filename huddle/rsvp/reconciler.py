# =============================================================================
# File: huddle/rsvp/reconciler.py
# Description: Compares the store with the status message rendered in a
#              match thread and asks the renderer to redraw on mismatch
# =============================================================================

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional

from huddle.common.enums.enums import Evidence, RsvpCategory, RsvpResponse, ThreadKind
from huddle.common.exceptions.exceptions import CircuitOpenError, ThreadNotFoundError
from huddle.config.logging_config import get_logger
from huddle.config.sync_config import SyncConfig
from huddle.rsvp.extractor import CATEGORIES, RenderedState, RenderedStateExtractor
from huddle.rsvp.history import MessageHistoryReader
from huddle.rsvp.ports.match_data_port import MatchDataPort
from huddle.rsvp.ports.status_renderer_port import StatusRendererPort
from huddle.rsvp.store import RsvpStore

log = get_logger("huddle.rsvp.reconciler")


@dataclass
class CategoryDifference:
    store: List[str]
    render: List[str]
    only_in_store: List[str]
    only_in_render: List[str]

    @property
    def matches(self) -> bool:
        return not self.only_in_store and not self.only_in_render

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "store": self.store,
            "render": self.render,
            "only_in_store": self.only_in_store,
            "only_in_render": self.only_in_render,
        }


@dataclass
class ComparisonResult:
    event_id: str
    thread_id: str
    is_matching: bool
    evidence: Evidence
    differences: Dict[RsvpCategory, CategoryDifference] = field(default_factory=dict)
    summary: Dict[str, Dict[str, int]] = field(default_factory=dict)

    @property
    def ambiguous(self) -> bool:
        return self.evidence == Evidence.AMBIGUOUS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "thread_id": self.thread_id,
            "is_matching": self.is_matching,
            "evidence": self.evidence.value,
            "ambiguous": self.ambiguous,
            "differences": {c.value: d.to_dict() for c, d in self.differences.items()},
            "summary": self.summary,
        }


@dataclass
class SyncResult:
    """
    Outcome of one detect-and-correct pass.

    had_mismatch is None when the answer is unknown: the comparison failed
    or the rendered state was ambiguous.
    """
    event_id: str
    had_mismatch: Optional[bool]
    update_triggered: bool = False
    ambiguous: bool = False
    degraded: bool = False
    message: str = ""
    comparison: Optional[ComparisonResult] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "had_mismatch": self.had_mismatch,
            "update_triggered": self.update_triggered,
            "ambiguous": self.ambiguous,
            "degraded": self.degraded,
            "message": self.message,
            "error": self.error,
        }


@dataclass
class BatchReport:
    processed: int = 0
    synchronized: int = 0
    mismatched: int = 0
    updated: int = 0
    ambiguous: int = 0
    degraded: int = 0
    errors: int = 0
    details: List[SyncResult] = field(default_factory=list)

    def add(self, result: SyncResult) -> None:
        self.processed += 1
        self.details.append(result)
        if result.error is not None:
            self.errors += 1
        if result.degraded:
            self.degraded += 1
        if result.ambiguous:
            self.ambiguous += 1
        if result.had_mismatch is False:
            self.synchronized += 1
        elif result.had_mismatch is True:
            self.mismatched += 1
        if result.update_triggered:
            self.updated += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "synchronized": self.synchronized,
            "mismatched": self.mismatched,
            "updated": self.updated,
            "ambiguous": self.ambiguous,
            "degraded": self.degraded,
            "errors": self.errors,
            "details": [d.to_dict() for d in self.details],
        }


class RsvpReconciler:
    """Keeps status messages in line with the store."""

    def __init__(
            self,
            store: RsvpStore,
            history: MessageHistoryReader,
            extractor: RenderedStateExtractor,
            renderer: StatusRendererPort,
            match_data: MatchDataPort,
            config: SyncConfig,
            sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if config.inter_item_delay_ms <= 0:
            raise ValueError("inter_item_delay_ms must be positive")
        self.store = store
        self.history = history
        self.extractor = extractor
        self.renderer = renderer
        self.match_data = match_data
        self.config = config
        self._sleep = sleep
        self._event_locks: Dict[str, asyncio.Lock] = {}
        self._event_lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _event_lock(self, event_id: str) -> AsyncIterator[None]:
        """Serialize work per event; the lock is dropped once nobody holds or awaits it."""
        lock = self._event_locks.get(event_id)
        if lock is None:
            lock = self._event_locks[event_id] = asyncio.Lock()
        self._event_lock_users[event_id] = self._event_lock_users.get(event_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._event_lock_users[event_id] - 1
            if remaining:
                self._event_lock_users[event_id] = remaining
            else:
                del self._event_lock_users[event_id]
                del self._event_locks[event_id]

    # =========================================================================
    # Store view
    # =========================================================================

    def store_view(self, event_id: str) -> Dict[RsvpCategory, List[str]]:
        """Every linked member placed by their response (or its absence)."""
        view: Dict[RsvpCategory, List[str]] = {c: [] for c in CATEGORIES}
        responses = self.store.get_responses(event_id)
        for mapping in self.store.list_user_mappings():
            record = responses.get(mapping.chat_id)
            if record is None:
                view[RsvpCategory.NO_RESPONSE].append(mapping.roster_nickname)
            elif record.response == RsvpResponse.YES:
                view[RsvpCategory.ATTENDING].append(mapping.roster_nickname)
            else:
                view[RsvpCategory.NOT_ATTENDING].append(mapping.roster_nickname)
        return {c: sorted(names) for c, names in view.items()}

    # =========================================================================
    # Compare
    # =========================================================================

    async def _read_rendered(self, event_id: str) -> RenderedState:
        index = self.store.get_thread(event_id)
        if index is None:
            raise ThreadNotFoundError(event_id)

        thread = await self.history.chat.fetch_thread(index.thread_id)
        if thread is None:
            raise ThreadNotFoundError(event_id)

        return await self.extractor.read_thread(
            self.history,
            thread,
            thread_kind=index.thread_kind,
            max_pages=self.config.status_scan_pages,
            page_size=self.config.status_page_size,
        )

    async def compare(self, event_id: str) -> ComparisonResult:
        """
        Diff the store against the rendered status for one match.

        Raises:
            ThreadNotFoundError: no thread is indexed for the match
        """
        rendered = await self._read_rendered(event_id)
        thread_id = rendered.thread_id or self.store.get_thread(event_id).thread_id

        if rendered.evidence in (Evidence.NONE, Evidence.NOT_APPLICABLE):
            return ComparisonResult(
                event_id=event_id,
                thread_id=thread_id,
                is_matching=True,
                evidence=rendered.evidence,
            )

        stored = self.store_view(event_id)
        differences: Dict[RsvpCategory, CategoryDifference] = {}
        for category in CATEGORIES:
            store_names = stored[category]
            render_names = sorted(rendered.names(category))
            store_set, render_set = set(store_names), set(render_names)
            differences[category] = CategoryDifference(
                store=store_names,
                render=render_names,
                only_in_store=sorted(store_set - render_set),
                only_in_render=sorted(render_set - store_set),
            )

        return ComparisonResult(
            event_id=event_id,
            thread_id=thread_id,
            is_matching=all(d.matches for d in differences.values()),
            evidence=rendered.evidence,
            differences=differences,
            summary={
                "store": {c.value: len(stored[c]) for c in CATEGORIES},
                "render": {c.value: len(rendered.names(c)) for c in CATEGORIES},
            },
        )

    # =========================================================================
    # Detect and correct
    # =========================================================================

    async def detect_and_correct(self, event_id: str) -> SyncResult:
        """Compare and, on a trustworthy mismatch, re-render the status message."""
        async with self._event_lock(event_id):
            try:
                comparison = await self.compare(event_id)
            except CircuitOpenError as e:
                log.warning(f"RSVP sync for match {event_id} skipped: {e}")
                return SyncResult(event_id=event_id, had_mismatch=None, degraded=True,
                                  message="Chat platform unavailable", error=str(e))
            except Exception as e:
                log.error(f"RSVP comparison failed for match {event_id}: {e}", exc_info=True)
                return SyncResult(event_id=event_id, had_mismatch=None,
                                  message="Comparison failed", error=str(e))

            if comparison.ambiguous:
                log.warning(f"RSVP display for match {event_id} is ambiguous; not correcting")
                return SyncResult(event_id=event_id, had_mismatch=None, ambiguous=True,
                                  message="Rendered status could not be read reliably",
                                  comparison=comparison)

            if comparison.is_matching:
                return SyncResult(event_id=event_id, had_mismatch=False,
                                  message="RSVP display is in sync", comparison=comparison)

            log.info(
                f"RSVP mismatch for match {event_id}: "
                f"{ {c.value: d.to_dict() for c, d in comparison.differences.items() if not d.matches} }"
            )
            try:
                await self.renderer.rerender_status(event_id, comparison.thread_id)
            except CircuitOpenError as e:
                log.warning(f"Re-render for match {event_id} skipped: {e}")
                return SyncResult(event_id=event_id, had_mismatch=True, degraded=True,
                                  message="Mismatch found, renderer unavailable",
                                  comparison=comparison, error=str(e))
            except Exception as e:
                log.error(f"Re-render for match {event_id} failed: {e}", exc_info=True)
                return SyncResult(event_id=event_id, had_mismatch=True,
                                  message="Mismatch found, re-render failed",
                                  comparison=comparison, error=str(e))

            return SyncResult(event_id=event_id, had_mismatch=True, update_triggered=True,
                              message="Mismatch found, status re-rendered", comparison=comparison)

    # =========================================================================
    # Batches
    # =========================================================================

    async def reconcile_batch(self, event_ids: Iterable[str]) -> BatchReport:
        """Sequential detect_and_correct with a pause between matches."""
        report = BatchReport()
        ids = list(dict.fromkeys(event_ids))
        delay = self.config.inter_item_delay_ms / 1000

        for position, event_id in enumerate(ids):
            if position:
                await self._sleep(delay)
            report.add(await self.detect_and_correct(event_id))

        log.info(
            f"RSVP batch sync: processed={report.processed} synchronized={report.synchronized} "
            f"mismatched={report.mismatched} updated={report.updated} "
            f"ambiguous={report.ambiguous} errors={report.errors}"
        )
        return report

    async def reconcile_active_events(self) -> BatchReport:
        """Upcoming matches that have a thread, plus indexed upcoming threads."""
        worklist: List[str] = []
        try:
            upcoming = await self.match_data.list_upcoming_event_ids()
        except Exception as e:
            log.warning(f"Could not list upcoming matches, using thread index only: {e}")
            upcoming = []

        for event_id in upcoming:
            if self.store.get_thread(event_id) is not None:
                worklist.append(event_id)
        worklist.extend(t.event_id for t in self.store.list_threads(ThreadKind.UPCOMING))

        return await self.reconcile_batch(worklist)
