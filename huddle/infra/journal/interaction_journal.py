# =============================================================================
# File: huddle/infra/journal/interaction_journal.py
# Description: Append-only JSONL journal of mutating user interactions.
#              Replay feeds the RSVP store directly (insert-if-absent).
# =============================================================================

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiofiles
import aiofiles.os
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from huddle.common.enums.enums import JournalEntryType, RsvpResponse
from huddle.common.exceptions.exceptions import JournalWriteError
from huddle.config.journal_config import JournalConfig
from huddle.config.logging_config import get_logger
from huddle.rsvp.models import ResponseRecord, UserMapping, utc_now
from huddle.rsvp.store import RsvpStore

log = get_logger("huddle.infra.journal")


class JournalEntry(BaseModel):
    """One line of the journal. Never mutated once written."""
    timestamp: datetime = Field(default_factory=utc_now)
    type: JournalEntryType
    chat_id: str
    display_name: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @property
    def aware_timestamp(self) -> datetime:
        ts = self.timestamp
        return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


class ResponsePayload(BaseModel):
    event_id: str
    response: RsvpResponse
    roster_nickname: Optional[str] = None


class RegistrationPayload(BaseModel):
    roster_nickname: str
    roster_id: str
    skill_level: Optional[int] = None
    rating: Optional[int] = None
    country: Optional[str] = None


@dataclass
class MalformedLine:
    line_number: int
    raw: str
    error: str


@dataclass
class JournalReadResult:
    entries: List[JournalEntry] = field(default_factory=list)
    malformed: List[MalformedLine] = field(default_factory=list)


@dataclass
class ReplayItem:
    kind: str                    # "response" | "registration" | "malformed"
    key: str
    inserted: bool
    error: Optional[str] = None


@dataclass
class ReplayResult:
    recovered: int = 0
    skipped: int = 0
    errors: int = 0
    dry_run: bool = False
    items: List[ReplayItem] = field(default_factory=list)


class InteractionJournal:
    """
    JSONL journal at config.path.

    Lines that fail to parse are reported by readers and kept by compaction;
    the file is only ever appended to or atomically rewritten.
    """

    def __init__(self, config: JournalConfig):
        self.config = config
        self.path = Path(config.path)
        self._lock = asyncio.Lock()

    # =========================================================================
    # Append
    # =========================================================================

    async def append(self, entry: JournalEntry) -> None:
        line = entry.model_dump_json() + "\n"
        async with self._lock:
            try:
                await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
                async with aiofiles.open(self.path, "a", encoding="utf-8") as f:
                    await f.write(line)
            except OSError as e:
                log.error(f"Failed to append to interaction journal {self.path}: {e}")
                raise JournalWriteError(f"Failed to append to {self.path}: {e}") from e

    async def log_response_action(
            self,
            event_id: str,
            chat_id: str,
            display_name: str,
            response: RsvpResponse,
            roster_nickname: Optional[str] = None,
            context: Optional[Dict[str, Any]] = None,
    ) -> JournalEntry:
        entry = JournalEntry(
            type=JournalEntryType.RESPONSE_ACTION,
            chat_id=chat_id,
            display_name=display_name,
            payload={
                "event_id": event_id,
                "response": RsvpResponse(response).value,
                "roster_nickname": roster_nickname,
            },
            context=context or {},
        )
        await self.append(entry)
        return entry

    async def log_registration_action(
            self,
            chat_id: str,
            display_name: str,
            roster_nickname: str,
            roster_id: str,
            skill_level: Optional[int] = None,
            rating: Optional[int] = None,
            country: Optional[str] = None,
            context: Optional[Dict[str, Any]] = None,
    ) -> JournalEntry:
        entry = JournalEntry(
            type=JournalEntryType.REGISTRATION_ACTION,
            chat_id=chat_id,
            display_name=display_name,
            payload={
                "roster_nickname": roster_nickname,
                "roster_id": roster_id,
                "skill_level": skill_level,
                "rating": rating,
                "country": country,
            },
            context=context or {},
        )
        await self.append(entry)
        return entry

    async def log_unlink_action(
            self,
            chat_id: str,
            display_name: str,
            context: Optional[Dict[str, Any]] = None,
    ) -> JournalEntry:
        entry = JournalEntry(
            type=JournalEntryType.UNLINK_ACTION,
            chat_id=chat_id,
            display_name=display_name,
            context=context or {},
        )
        await self.append(entry)
        return entry

    # =========================================================================
    # Read
    # =========================================================================

    async def _read_lines(self) -> List[str]:
        if not await aiofiles.os.path.exists(self.path):
            return []
        # undecodable bytes (a torn write) survive as surrogates and fail parsing
        async with aiofiles.open(self.path, "r", encoding="utf-8", errors="surrogateescape") as f:
            content = await f.read()
        return content.split("\n")

    @staticmethod
    def _parse_line(line: str) -> JournalEntry:
        """Raises ValueError (ValidationError or UnicodeEncodeError) for a bad line."""
        return JournalEntry.model_validate_json(line.encode("utf-8"))

    async def read_entries(self, since: Optional[datetime] = None) -> JournalReadResult:
        """Parsed entries at or after `since`, in file order, plus malformed lines."""
        result = JournalReadResult()
        for number, line in enumerate(await self._read_lines(), start=1):
            if not line.strip():
                continue
            try:
                entry = self._parse_line(line)
            except ValueError as e:
                result.malformed.append(MalformedLine(number, line, str(e).splitlines()[0]))
                continue
            if since is None or entry.aware_timestamp >= since:
                result.entries.append(entry)
        return result

    # =========================================================================
    # Replay
    # =========================================================================

    async def replay(
            self,
            store: RsvpStore,
            lookback_days: Optional[int] = None,
            dry_run: bool = False,
    ) -> ReplayResult:
        """
        Rebuild store rows from the journal window.

        Entries collapse to the latest per key (response: match + user,
        registration or unlink: user) and are written insert-if-absent, so a
        second replay over the same journal recovers nothing. A user whose
        latest account action is an unlink gets no mapping back.
        """
        if lookback_days is None:
            lookback_days = self.config.replay_lookback_days
        since = utc_now() - timedelta(days=lookback_days)
        read = await self.read_entries(since=since)
        result = ReplayResult(dry_run=dry_run)

        for bad in read.malformed:
            result.errors += 1
            result.items.append(ReplayItem("malformed", f"line {bad.line_number}", False, bad.error))

        registrations: Dict[str, JournalEntry] = {}
        responses: Dict[Tuple[str, str], Tuple[JournalEntry, ResponsePayload]] = {}

        for entry in read.entries:
            try:
                if entry.type == JournalEntryType.REGISTRATION_ACTION:
                    RegistrationPayload.model_validate(entry.payload)
                    registrations[entry.chat_id] = entry
                elif entry.type == JournalEntryType.UNLINK_ACTION:
                    registrations[entry.chat_id] = entry
                else:
                    payload = ResponsePayload.model_validate(entry.payload)
                    responses[(payload.event_id, entry.chat_id)] = (entry, payload)
            except ValidationError as e:
                result.errors += 1
                result.items.append(ReplayItem(entry.type.value, entry.chat_id, False, str(e).splitlines()[0]))

        # Mappings first so responses replayed below resolve to linked users
        for chat_id, entry in registrations.items():
            if entry.type == JournalEntryType.UNLINK_ACTION:
                self._count(result, ReplayItem("registration", chat_id, False))
                continue
            payload = RegistrationPayload.model_validate(entry.payload)
            mapping = UserMapping(
                chat_id=chat_id,
                display_name=entry.display_name,
                roster_id=payload.roster_id,
                roster_nickname=payload.roster_nickname,
                skill_level=payload.skill_level,
                rating=payload.rating,
                country=payload.country,
                linked_at=entry.aware_timestamp,
                updated_at=entry.aware_timestamp,
            )
            try:
                if dry_run:
                    inserted = (store.get_user_mapping(chat_id) is None
                                and store.get_mapping_by_roster_id(payload.roster_id) is None)
                else:
                    inserted = await store.insert_user_mapping_if_absent(mapping)
            except Exception as e:
                log.error(f"Journal replay of registration for {chat_id} failed: {e}")
                result.errors += 1
                result.items.append(ReplayItem("registration", chat_id, False, str(e)))
                continue
            self._count(result, ReplayItem("registration", chat_id, inserted))

        for (event_id, chat_id), (entry, payload) in responses.items():
            mapping = store.get_user_mapping(chat_id)
            record = ResponseRecord(
                event_id=event_id,
                chat_id=chat_id,
                response=payload.response,
                display_name=payload.roster_nickname or (mapping.roster_nickname if mapping else entry.display_name),
                timestamp=entry.aware_timestamp,
            )
            key = f"{event_id}:{chat_id}"
            try:
                if dry_run:
                    inserted = store.get_response(event_id, chat_id) is None
                else:
                    inserted = await store.insert_response_if_absent(record)
            except Exception as e:
                log.error(f"Journal replay of response {key} failed: {e}")
                result.errors += 1
                result.items.append(ReplayItem("response", key, False, str(e)))
                continue
            self._count(result, ReplayItem("response", key, inserted))

        log.info(
            f"Journal replay{' (dry run)' if dry_run else ''}: recovered={result.recovered} "
            f"skipped={result.skipped} errors={result.errors} window={lookback_days}d"
        )
        return result

    @staticmethod
    def _count(result: ReplayResult, item: ReplayItem) -> None:
        if item.inserted:
            result.recovered += 1
        else:
            result.skipped += 1
        result.items.append(item)

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def compact(self, retention_days: Optional[int] = None) -> Dict[str, int]:
        """Drop entries older than the retention window. Unparseable lines are kept."""
        if retention_days is None:
            retention_days = self.config.retention_days
        cutoff = utc_now() - timedelta(days=retention_days)

        async with self._lock:
            lines = await self._read_lines()
            kept: List[str] = []
            removed = 0
            malformed = 0
            for line in lines:
                if not line.strip():
                    continue
                try:
                    entry = self._parse_line(line)
                except ValueError:
                    malformed += 1
                    kept.append(line)
                    continue
                if entry.aware_timestamp < cutoff:
                    removed += 1
                else:
                    kept.append(line)

            if removed:
                tmp_path = self.path.with_name(self.path.name + ".tmp")
                try:
                    async with aiofiles.open(tmp_path, "w", encoding="utf-8", errors="surrogateescape") as f:
                        await f.write("".join(f"{line}\n" for line in kept))
                        await f.flush()
                    await aiofiles.os.replace(tmp_path, self.path)
                except OSError as e:
                    raise JournalWriteError(f"Failed to compact {self.path}: {e}") from e

        log.info(f"Journal compaction: kept={len(kept)} removed={removed} malformed_kept={malformed}")
        return {"kept": len(kept), "removed": removed, "malformed_kept": malformed}

    async def get_stats(self, days: int = 7) -> Dict[str, Any]:
        """Counts over the last `days` days."""
        since = utc_now() - timedelta(days=days)
        read = await self.read_entries(since=since)
        by_type = Counter(e.type for e in read.entries)
        daily = Counter(e.aware_timestamp.date().isoformat() for e in read.entries)
        return {
            "period_days": days,
            "response_actions": by_type.get(JournalEntryType.RESPONSE_ACTION, 0),
            "registration_actions": by_type.get(JournalEntryType.REGISTRATION_ACTION, 0),
            "unlink_actions": by_type.get(JournalEntryType.UNLINK_ACTION, 0),
            "total_interactions": len(read.entries),
            "unique_users": len({e.chat_id for e in read.entries}),
            "malformed_lines": len(read.malformed),
            "daily_breakdown": dict(sorted(daily.items())),
        }

    async def size_bytes(self) -> int:
        if not await aiofiles.os.path.exists(self.path):
            return 0
        return (await aiofiles.os.stat(self.path)).st_size
