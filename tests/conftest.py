# =============================================================================
# File: tests/conftest.py
# Description: Shared fixtures: a SQLite-backed store in tmp_path, the
#              journal, fake ports and the services built on them
# =============================================================================

from __future__ import annotations

from typing import List

import pytest

from huddle.config.backup_config import BackupConfig
from huddle.config.chat_config import ChatConfig
from huddle.config.journal_config import JournalConfig
from huddle.config.recovery_config import RecoveryConfig
from huddle.config.storage_config import StorageConfig
from huddle.config.sync_config import SyncConfig
from huddle.infra.journal.interaction_journal import InteractionJournal
from huddle.infra.persistence.sqlite_client import SQLiteClient
from huddle.recovery.engine import RecoveryEngine
from huddle.rsvp.extractor import RenderedStateExtractor
from huddle.rsvp.history import MessageHistoryReader
from huddle.rsvp.models import RosterMember, UserMapping
from huddle.rsvp.mutations import RsvpMutations
from huddle.rsvp.repository import RsvpRepository
from huddle.rsvp.store import RsvpStore
from tests.fakes.fake_chat_platform import FakeChatPlatform
from tests.fakes.fake_match_data import FakeMatchData, FakeStatusRenderer

CHANNEL_ID = "channel-1"


class SleepRecorder:
    """Stand-in for asyncio.sleep that records delays and returns at once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def mapping(chat_id: str, nickname: str, roster_id: str = None) -> UserMapping:
    return UserMapping(
        chat_id=chat_id,
        display_name=f"{nickname}-display",
        roster_id=roster_id or f"r-{nickname}",
        roster_nickname=nickname,
    )


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def storage_config(tmp_path) -> StorageConfig:
    return StorageConfig(database_path=str(tmp_path / "data" / "bot.db"))


@pytest.fixture
def journal_config(tmp_path) -> JournalConfig:
    return JournalConfig(path=str(tmp_path / "data" / "interaction_log.jsonl"))


@pytest.fixture
def backup_config(tmp_path) -> BackupConfig:
    return BackupConfig(directory=str(tmp_path / "backups"), keep_count=10)


@pytest.fixture
def chat_config() -> ChatConfig:
    return ChatConfig(channel_id=CHANNEL_ID)


@pytest.fixture
def recovery_config() -> RecoveryConfig:
    return RecoveryConfig()


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(inter_item_delay_ms=250)


@pytest.fixture
async def sqlite_client(storage_config):
    client = SQLiteClient(storage_config)
    await client.connect()
    yield client
    await client.close()


@pytest.fixture
async def store(sqlite_client) -> RsvpStore:
    store = RsvpStore(RsvpRepository(sqlite_client))
    await store.initialize()
    return store


@pytest.fixture
def journal(journal_config) -> InteractionJournal:
    return InteractionJournal(journal_config)


@pytest.fixture
def chat() -> FakeChatPlatform:
    return FakeChatPlatform()


@pytest.fixture
def roster() -> List[RosterMember]:
    return [
        RosterMember(roster_id="r-alice", nickname="alice", skill_level=9, rating=2300, country="DE"),
        RosterMember(roster_id="r-bob", nickname="bob", skill_level=7, rating=1900, country="FR"),
        RosterMember(roster_id="r-carol", nickname="Carol", skill_level=5, rating=1500, country="PL"),
    ]


@pytest.fixture
def match_data(roster) -> FakeMatchData:
    return FakeMatchData(roster=roster)


@pytest.fixture
def renderer() -> FakeStatusRenderer:
    return FakeStatusRenderer()


@pytest.fixture
def history(chat) -> MessageHistoryReader:
    return MessageHistoryReader(chat, page_size=50)


@pytest.fixture
def extractor(chat_config) -> RenderedStateExtractor:
    return RenderedStateExtractor(chat_config)


@pytest.fixture
def mutations(store, journal) -> RsvpMutations:
    return RsvpMutations(store, journal)


@pytest.fixture
def recovery_engine(store, journal, history, extractor, match_data, chat_config, recovery_config) -> RecoveryEngine:
    return RecoveryEngine(
        store=store,
        journal=journal,
        history=history,
        extractor=extractor,
        match_data=match_data,
        chat_config=chat_config,
        config=recovery_config,
    )
