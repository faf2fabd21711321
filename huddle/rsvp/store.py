# =============================================================================
# File: huddle/rsvp/store.py
# Description: Authoritative RSVP state. In-process maps written through to
#              SQLite; every mutation holds one asyncio lock across the
#              existence check and the write.
# =============================================================================

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from huddle.common.enums.enums import RsvpResponse, ThreadKind
from huddle.common.exceptions.exceptions import MappingConflictError
from huddle.config.logging_config import get_logger
from huddle.rsvp.models import ResponseRecord, ThreadIndex, UserMapping, utc_now
from huddle.rsvp.repository import RsvpRepository

log = get_logger("huddle.rsvp.store")


class RsvpStore:
    """
    Owns user mappings, responses and the thread index.

    Ordinary writes (upsert_user_mapping, record_response, set_thread) are
    last-write-wins. Recovery and journal replay use the *_if_absent
    variants, which never overwrite and report whether they inserted.
    """

    def __init__(self, repository: RsvpRepository):
        self.repository = repository
        self._lock = asyncio.Lock()

        self._mappings: Dict[str, UserMapping] = {}          # chat_id -> mapping
        self._roster_owner: Dict[str, str] = {}              # roster_id -> chat_id
        self._responses: Dict[Tuple[str, str], ResponseRecord] = {}
        self._threads: Dict[str, ThreadIndex] = {}           # event_id -> thread
        self._initialized = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(self) -> None:
        await self.repository.ensure_schema()
        await self.reload()
        self._initialized = True

    async def reload(self) -> None:
        """Re-read everything from the database (startup, after restore)."""
        async with self._lock:
            mappings = await self.repository.load_user_mappings()
            responses = await self.repository.load_responses()
            threads = await self.repository.load_threads()

            self._mappings = {m.chat_id: m for m in mappings}
            self._roster_owner = {m.roster_id: m.chat_id for m in mappings}
            self._responses = {r.key: r for r in responses}
            self._threads = {t.event_id: t for t in threads}

        log.info(
            f"RSVP store loaded: {len(self._mappings)} user mappings, "
            f"{len(self._responses)} responses, {len(self._threads)} threads"
        )

    # =========================================================================
    # User mappings
    # =========================================================================

    def get_user_mapping(self, chat_id: str) -> Optional[UserMapping]:
        return self._mappings.get(chat_id)

    def get_mapping_by_roster_id(self, roster_id: str) -> Optional[UserMapping]:
        chat_id = self._roster_owner.get(roster_id)
        return self._mappings.get(chat_id) if chat_id else None

    def find_mapping_by_nickname(self, nickname: str) -> Optional[UserMapping]:
        """Exact nickname match first, then a unique case-insensitive match."""
        nickname = nickname.strip()
        for mapping in self._mappings.values():
            if mapping.roster_nickname == nickname:
                return mapping

        folded = nickname.casefold()
        candidates = [m for m in self._mappings.values() if m.roster_nickname.casefold() == folded]
        if len(candidates) == 1:
            return candidates[0]
        return None

    def list_user_mappings(self) -> List[UserMapping]:
        return sorted(self._mappings.values(), key=lambda m: m.roster_nickname.casefold())

    def _check_roster_owner(self, mapping: UserMapping) -> None:
        owner = self._roster_owner.get(mapping.roster_id)
        if owner is not None and owner != mapping.chat_id:
            raise MappingConflictError(mapping.roster_id, owner, mapping.chat_id)

    def _put_mapping(self, mapping: UserMapping) -> None:
        previous = self._mappings.get(mapping.chat_id)
        if previous is not None and previous.roster_id != mapping.roster_id:
            self._roster_owner.pop(previous.roster_id, None)
        self._mappings[mapping.chat_id] = mapping
        self._roster_owner[mapping.roster_id] = mapping.chat_id

    async def upsert_user_mapping(self, mapping: UserMapping) -> UserMapping:
        """
        Link or relink a chat user.

        Raises:
            MappingConflictError: roster_id already belongs to another chat user
        """
        async with self._lock:
            self._check_roster_owner(mapping)
            previous = self._mappings.get(mapping.chat_id)
            if previous is not None:
                mapping = mapping.model_copy(update={"linked_at": previous.linked_at, "updated_at": utc_now()})
            await self.repository.upsert_user_mapping(mapping)
            self._put_mapping(mapping)
            return mapping

    async def insert_user_mapping_if_absent(self, mapping: UserMapping) -> bool:
        """Insert unless the chat user is linked or the roster account is taken."""
        async with self._lock:
            if mapping.chat_id in self._mappings:
                return False
            if mapping.roster_id in self._roster_owner:
                log.debug(
                    f"Skipping mapping {mapping.chat_id} -> {mapping.roster_id}: "
                    f"roster account already linked to {self._roster_owner[mapping.roster_id]}"
                )
                return False
            inserted = await self.repository.insert_user_mapping(mapping)
            if inserted:
                self._put_mapping(mapping)
            return inserted

    async def remove_user_mapping(self, chat_id: str) -> bool:
        async with self._lock:
            mapping = self._mappings.get(chat_id)
            if mapping is None:
                return False
            await self.repository.delete_user_mapping(chat_id)
            del self._mappings[chat_id]
            self._roster_owner.pop(mapping.roster_id, None)
            return True

    async def clear_user_mappings(self) -> int:
        async with self._lock:
            await self.repository.delete_all_user_mappings()
            count = len(self._mappings)
            self._mappings.clear()
            self._roster_owner.clear()
            log.warning(f"Cleared {count} user mappings")
            return count

    # =========================================================================
    # Responses
    # =========================================================================

    def get_response(self, event_id: str, chat_id: str) -> Optional[ResponseRecord]:
        return self._responses.get((event_id, chat_id))

    def get_responses(self, event_id: str) -> Dict[str, ResponseRecord]:
        """chat_id -> record for one match."""
        return {chat_id: r for (eid, chat_id), r in self._responses.items() if eid == event_id}

    def list_event_ids_with_responses(self) -> List[str]:
        return sorted({event_id for event_id, _ in self._responses})

    async def record_response(
            self,
            event_id: str,
            chat_id: str,
            response: RsvpResponse,
            display_name: str,
            timestamp: Optional[datetime] = None,
    ) -> ResponseRecord:
        """Last write wins."""
        record = ResponseRecord(
            event_id=event_id,
            chat_id=chat_id,
            response=RsvpResponse(response),
            display_name=display_name,
            timestamp=timestamp or utc_now(),
        )
        async with self._lock:
            await self.repository.upsert_response(record)
            self._responses[record.key] = record
        return record

    async def insert_response_if_absent(self, record: ResponseRecord) -> bool:
        async with self._lock:
            if record.key in self._responses:
                return False
            inserted = await self.repository.insert_response(record)
            if inserted:
                self._responses[record.key] = record
            return inserted

    async def clear_responses(self, event_id: Optional[str] = None) -> int:
        """Delete responses for one match, or all of them."""
        async with self._lock:
            await self.repository.delete_responses(event_id)
            keys = [k for k in self._responses if event_id is None or k[0] == event_id]
            for key in keys:
                del self._responses[key]
            log.warning(f"Cleared {len(keys)} responses" + (f" for match {event_id}" if event_id else ""))
            return len(keys)

    # =========================================================================
    # Thread index
    # =========================================================================

    def get_thread(self, event_id: str) -> Optional[ThreadIndex]:
        return self._threads.get(event_id)

    def get_event_for_thread(self, thread_id: str) -> Optional[str]:
        for thread in self._threads.values():
            if thread.thread_id == thread_id:
                return thread.event_id
        return None

    def list_threads(self, kind: Optional[ThreadKind] = None) -> List[ThreadIndex]:
        return [t for t in self._threads.values() if kind is None or t.thread_kind == kind]

    async def set_thread(self, event_id: str, thread_id: str, kind: ThreadKind = ThreadKind.UPCOMING) -> ThreadIndex:
        """Point the match at a thread, replacing any previous one."""
        async with self._lock:
            previous = self._threads.get(event_id)
            thread = ThreadIndex(
                event_id=event_id,
                thread_id=thread_id,
                thread_kind=ThreadKind(kind),
                created_at=previous.created_at if previous else utc_now(),
            )
            await self.repository.upsert_thread(thread)
            for other_id, other in list(self._threads.items()):
                if other.thread_id == thread_id and other_id != event_id:
                    del self._threads[other_id]
            self._threads[event_id] = thread
            return thread

    async def insert_thread_if_absent(self, thread: ThreadIndex) -> bool:
        async with self._lock:
            if thread.event_id in self._threads:
                return False
            if any(t.thread_id == thread.thread_id for t in self._threads.values()):
                return False
            inserted = await self.repository.insert_thread(thread)
            if inserted:
                self._threads[thread.event_id] = thread
            return inserted

    async def remove_thread(self, event_id: str) -> bool:
        async with self._lock:
            if event_id not in self._threads:
                return False
            await self.repository.delete_thread(event_id)
            del self._threads[event_id]
            return True

    # =========================================================================
    # Stats
    # =========================================================================

    def counts(self) -> Dict[str, int]:
        return {
            "user_mappings": len(self._mappings),
            "responses": len(self._responses),
            "threads": len(self._threads),
        }

    def is_empty(self) -> bool:
        return not self._mappings
