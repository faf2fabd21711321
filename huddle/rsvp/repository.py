# =============================================================================
# File: huddle/rsvp/repository.py
# Description: SQL for the RSVP tables (user mappings, responses, thread index)
# =============================================================================

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import List, Optional

from huddle.common.enums.enums import RsvpResponse, ThreadKind
from huddle.config.logging_config import get_logger
from huddle.infra.persistence.sqlite_client import SQLiteClient
from huddle.rsvp.models import ResponseRecord, ThreadIndex, UserMapping

log = get_logger("huddle.rsvp.repository")

SCHEMA = """
CREATE TABLE IF NOT EXISTS user_mappings (
    chat_id TEXT PRIMARY KEY,
    display_name TEXT NOT NULL,
    roster_id TEXT NOT NULL UNIQUE,
    roster_nickname TEXT NOT NULL,
    skill_level INTEGER,
    rating INTEGER,
    country TEXT,
    linked_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_user_mappings_nickname ON user_mappings(roster_nickname);

CREATE TABLE IF NOT EXISTS rsvp_responses (
    event_id TEXT NOT NULL,
    chat_id TEXT NOT NULL,
    response TEXT NOT NULL CHECK (response IN ('yes', 'no')),
    display_name TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    PRIMARY KEY (event_id, chat_id)
);

CREATE TABLE IF NOT EXISTS event_threads (
    event_id TEXT PRIMARY KEY,
    thread_id TEXT NOT NULL UNIQUE,
    thread_kind TEXT NOT NULL CHECK (thread_kind IN ('upcoming', 'concluded')),
    created_at TEXT NOT NULL
);
"""


def _ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _parse_ts(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _mapping_from_row(row: sqlite3.Row) -> UserMapping:
    return UserMapping(
        chat_id=row["chat_id"],
        display_name=row["display_name"],
        roster_id=row["roster_id"],
        roster_nickname=row["roster_nickname"],
        skill_level=row["skill_level"],
        rating=row["rating"],
        country=row["country"],
        linked_at=_parse_ts(row["linked_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def _response_from_row(row: sqlite3.Row) -> ResponseRecord:
    return ResponseRecord(
        event_id=row["event_id"],
        chat_id=row["chat_id"],
        response=RsvpResponse(row["response"]),
        display_name=row["display_name"],
        timestamp=_parse_ts(row["timestamp"]),
    )


def _thread_from_row(row: sqlite3.Row) -> ThreadIndex:
    return ThreadIndex(
        event_id=row["event_id"],
        thread_id=row["thread_id"],
        thread_kind=ThreadKind(row["thread_kind"]),
        created_at=_parse_ts(row["created_at"]),
    )


class RsvpRepository:
    """
    Persistence for the RSVP store.

    Conflict and ownership rules live in RsvpStore; this class only issues SQL.
    """

    def __init__(self, client: SQLiteClient):
        self.client = client

    async def ensure_schema(self) -> None:
        await self.client.executescript(SCHEMA)

    # =========================================================================
    # User mappings
    # =========================================================================

    async def load_user_mappings(self) -> List[UserMapping]:
        rows = await self.client.fetch("SELECT * FROM user_mappings ORDER BY linked_at")
        return [_mapping_from_row(row) for row in rows]

    async def upsert_user_mapping(self, mapping: UserMapping) -> None:
        """Insert or replace the mapping for mapping.chat_id."""
        await self.client.execute(
            """
            INSERT INTO user_mappings (
                chat_id, display_name, roster_id, roster_nickname,
                skill_level, rating, country, linked_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (chat_id) DO UPDATE SET
                display_name = excluded.display_name,
                roster_id = excluded.roster_id,
                roster_nickname = excluded.roster_nickname,
                skill_level = excluded.skill_level,
                rating = excluded.rating,
                country = excluded.country,
                updated_at = excluded.updated_at
            """,
            mapping.chat_id, mapping.display_name, mapping.roster_id, mapping.roster_nickname,
            mapping.skill_level, mapping.rating, mapping.country,
            _ts(mapping.linked_at), _ts(mapping.updated_at),
        )

    async def insert_user_mapping(self, mapping: UserMapping) -> bool:
        """Insert only; False when the chat id or roster id is already taken."""
        affected = await self.client.execute(
            """
            INSERT OR IGNORE INTO user_mappings (
                chat_id, display_name, roster_id, roster_nickname,
                skill_level, rating, country, linked_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            mapping.chat_id, mapping.display_name, mapping.roster_id, mapping.roster_nickname,
            mapping.skill_level, mapping.rating, mapping.country,
            _ts(mapping.linked_at), _ts(mapping.updated_at),
        )
        return affected > 0

    async def delete_user_mapping(self, chat_id: str) -> bool:
        affected = await self.client.execute("DELETE FROM user_mappings WHERE chat_id = ?", chat_id)
        return affected > 0

    async def delete_all_user_mappings(self) -> int:
        return await self.client.execute("DELETE FROM user_mappings")

    # =========================================================================
    # Responses
    # =========================================================================

    async def load_responses(self) -> List[ResponseRecord]:
        rows = await self.client.fetch("SELECT * FROM rsvp_responses ORDER BY timestamp")
        return [_response_from_row(row) for row in rows]

    async def upsert_response(self, record: ResponseRecord) -> None:
        await self.client.execute(
            """
            INSERT INTO rsvp_responses (event_id, chat_id, response, display_name, timestamp)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (event_id, chat_id) DO UPDATE SET
                response = excluded.response,
                display_name = excluded.display_name,
                timestamp = excluded.timestamp
            """,
            record.event_id, record.chat_id, record.response.value,
            record.display_name, _ts(record.timestamp),
        )

    async def insert_response(self, record: ResponseRecord) -> bool:
        affected = await self.client.execute(
            """
            INSERT OR IGNORE INTO rsvp_responses (event_id, chat_id, response, display_name, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            record.event_id, record.chat_id, record.response.value,
            record.display_name, _ts(record.timestamp),
        )
        return affected > 0

    async def delete_responses(self, event_id: Optional[str] = None) -> int:
        if event_id is None:
            return await self.client.execute("DELETE FROM rsvp_responses")
        return await self.client.execute("DELETE FROM rsvp_responses WHERE event_id = ?", event_id)

    # =========================================================================
    # Thread index
    # =========================================================================

    async def load_threads(self) -> List[ThreadIndex]:
        rows = await self.client.fetch("SELECT * FROM event_threads")
        return [_thread_from_row(row) for row in rows]

    async def upsert_thread(self, thread: ThreadIndex) -> None:
        # A thread id belongs to one match; drop any stale row pointing at it
        await self.client.transaction([
            ("DELETE FROM event_threads WHERE thread_id = ? AND event_id != ?",
             (thread.thread_id, thread.event_id)),
            (
                """
                INSERT INTO event_threads (event_id, thread_id, thread_kind, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (event_id) DO UPDATE SET
                    thread_id = excluded.thread_id,
                    thread_kind = excluded.thread_kind
                """,
                (thread.event_id, thread.thread_id, thread.thread_kind.value, _ts(thread.created_at)),
            ),
        ])

    async def insert_thread(self, thread: ThreadIndex) -> bool:
        affected = await self.client.execute(
            """
            INSERT OR IGNORE INTO event_threads (event_id, thread_id, thread_kind, created_at)
            VALUES (?, ?, ?, ?)
            """,
            thread.event_id, thread.thread_id, thread.thread_kind.value, _ts(thread.created_at),
        )
        return affected > 0

    async def delete_thread(self, event_id: str) -> bool:
        affected = await self.client.execute("DELETE FROM event_threads WHERE event_id = ?", event_id)
        return affected > 0

    # =========================================================================
    # Stats
    # =========================================================================

    async def table_counts(self) -> dict:
        return {
            "user_mappings": await self.client.fetchval("SELECT COUNT(*) FROM user_mappings"),
            "rsvp_responses": await self.client.fetchval("SELECT COUNT(*) FROM rsvp_responses"),
            "event_threads": await self.client.fetchval("SELECT COUNT(*) FROM event_threads"),
        }
