# =============================================================================
# File: tests/unit/test_store.py
# Description: RSVP store, its SQLite repository and the mutation service
# =============================================================================

import pytest

from huddle.common.enums.enums import JournalEntryType, RsvpResponse, ThreadKind
from huddle.common.exceptions.exceptions import JournalWriteError, MappingConflictError
from huddle.rsvp.models import ResponseRecord, RosterMember, ThreadIndex
from huddle.rsvp.repository import RsvpRepository
from huddle.rsvp.store import RsvpStore
from tests.conftest import mapping


@pytest.mark.asyncio
async def test_store_survives_reload_from_sqlite(store, sqlite_client):
    await store.upsert_user_mapping(mapping("u1", "alice"))
    await store.record_response("m1", "u1", RsvpResponse.YES, "alice")
    await store.set_thread("m1", "t1")

    fresh = RsvpStore(RsvpRepository(sqlite_client))
    await fresh.initialize()

    assert fresh.get_user_mapping("u1").roster_nickname == "alice"
    assert fresh.get_response("m1", "u1").response == RsvpResponse.YES
    assert fresh.get_thread("m1").thread_id == "t1"
    assert fresh.counts() == {"user_mappings": 1, "responses": 1, "threads": 1}


@pytest.mark.asyncio
async def test_roster_account_belongs_to_one_chat_user(store):
    await store.upsert_user_mapping(mapping("u1", "alice"))
    with pytest.raises(MappingConflictError) as exc_info:
        await store.upsert_user_mapping(mapping("u2", "alice"))
    assert exc_info.value.owner_chat_id == "u1"


@pytest.mark.asyncio
async def test_relink_frees_the_previous_roster_account(store):
    await store.upsert_user_mapping(mapping("u1", "alice"))
    await store.upsert_user_mapping(mapping("u1", "bob"))

    assert store.get_mapping_by_roster_id("r-alice") is None
    assert store.get_mapping_by_roster_id("r-bob").chat_id == "u1"
    await store.upsert_user_mapping(mapping("u2", "alice"))


@pytest.mark.asyncio
async def test_nickname_lookup_exact_then_unique_casefold(store):
    await store.upsert_user_mapping(mapping("u1", "Alice"))
    await store.upsert_user_mapping(mapping("u2", "bob"))
    await store.upsert_user_mapping(mapping("u3", "BOB", roster_id="r-bob2"))

    assert store.find_mapping_by_nickname("Alice").chat_id == "u1"
    assert store.find_mapping_by_nickname("alice").chat_id == "u1"
    assert store.find_mapping_by_nickname("bob").chat_id == "u2"
    assert store.find_mapping_by_nickname("Bob") is None
    assert store.find_mapping_by_nickname("nobody") is None


@pytest.mark.asyncio
async def test_response_is_last_write_wins(store):
    await store.record_response("m1", "u1", RsvpResponse.YES, "alice")
    await store.record_response("m1", "u1", RsvpResponse.NO, "alice")

    assert store.get_response("m1", "u1").response == RsvpResponse.NO
    assert list(store.get_responses("m1")) == ["u1"]


@pytest.mark.asyncio
async def test_insert_if_absent_never_overwrites(store):
    await store.record_response("m1", "u1", RsvpResponse.YES, "alice")
    older = ResponseRecord(event_id="m1", chat_id="u1", response=RsvpResponse.NO, display_name="alice")

    assert await store.insert_response_if_absent(older) is False
    assert store.get_response("m1", "u1").response == RsvpResponse.YES

    assert await store.insert_user_mapping_if_absent(mapping("u1", "alice")) is True
    assert await store.insert_user_mapping_if_absent(mapping("u1", "bob")) is False
    assert await store.insert_user_mapping_if_absent(mapping("u2", "alice")) is False
    assert store.get_user_mapping("u2") is None


@pytest.mark.asyncio
async def test_thread_index_replaces_stale_thread(store):
    await store.set_thread("m1", "t1")
    await store.set_thread("m2", "t1", ThreadKind.CONCLUDED)

    assert store.get_thread("m1") is None
    assert store.get_event_for_thread("t1") == "m2"
    assert [t.event_id for t in store.list_threads(ThreadKind.CONCLUDED)] == ["m2"]

    duplicate = ThreadIndex(event_id="m3", thread_id="t1")
    assert await store.insert_thread_if_absent(duplicate) is False


@pytest.mark.asyncio
async def test_clear_operations(store):
    await store.upsert_user_mapping(mapping("u1", "alice"))
    await store.record_response("m1", "u1", RsvpResponse.YES, "alice")
    await store.record_response("m2", "u1", RsvpResponse.NO, "alice")

    assert await store.clear_responses("m1") == 1
    assert store.list_event_ids_with_responses() == ["m2"]
    assert await store.clear_user_mappings() == 1
    assert store.is_empty()

    await store.reload()
    assert store.is_empty()
    assert store.counts()["responses"] == 1


# =============================================================================
# Mutations (journal + store)
# =============================================================================

@pytest.mark.asyncio
async def test_record_response_is_journaled_with_roster_nickname(mutations, store, journal):
    await store.upsert_user_mapping(mapping("u1", "alice"))

    record = await mutations.record_response("m1", "u1", "Alice D.", RsvpResponse.YES, context={"source": "button"})

    assert record.display_name == "alice"
    read = await journal.read_entries()
    assert len(read.entries) == 1
    assert read.entries[0].payload == {"event_id": "m1", "response": "yes", "roster_nickname": "alice"}
    assert read.entries[0].context == {"source": "button"}


@pytest.mark.asyncio
async def test_link_account_conflict_is_not_journaled(mutations, store, journal):
    member = RosterMember(roster_id="r-alice", nickname="alice")
    await mutations.link_account("u1", "Alice", member)

    with pytest.raises(MappingConflictError):
        await mutations.link_account("u2", "Impostor", member)

    read = await journal.read_entries()
    assert [e.chat_id for e in read.entries] == ["u1"]
    assert store.get_mapping_by_roster_id("r-alice").chat_id == "u1"


@pytest.mark.asyncio
async def test_journal_failure_does_not_block_the_write(mutations, store, monkeypatch):
    async def broken_append(entry):
        raise JournalWriteError("disk full")

    monkeypatch.setattr(mutations.journal, "append", broken_append)

    await mutations.record_response("m1", "u1", "alice", RsvpResponse.NO)
    assert store.get_response("m1", "u1").response == RsvpResponse.NO


@pytest.mark.asyncio
async def test_unlink_account(mutations, store):
    await mutations.link_account("u1", "Alice", RosterMember(roster_id="r-alice", nickname="alice"))
    assert await mutations.unlink_account("u1") is True
    assert await mutations.unlink_account("u1") is False
    assert store.get_mapping_by_roster_id("r-alice") is None


@pytest.mark.asyncio
async def test_unlink_is_journaled_and_survives_replay(mutations, store):
    alice = RosterMember(roster_id="r-alice", nickname="alice")
    await mutations.link_account("u1", "Alice", alice)
    await mutations.unlink_account("u1")

    read = await mutations.journal.read_entries()
    assert [e.type for e in read.entries] == [
        JournalEntryType.REGISTRATION_ACTION,
        JournalEntryType.UNLINK_ACTION,
    ]

    result = await mutations.journal.replay(store)
    assert result.recovered == 0
    assert store.get_user_mapping("u1") is None

    await mutations.link_account("u1", "Alice", alice)
    await store.remove_user_mapping("u1")
    assert (await mutations.journal.replay(store)).recovered == 1
    assert store.get_user_mapping("u1").roster_id == "r-alice"
