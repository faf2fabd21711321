# =============================================================================
# File: tests/unit/test_recovery.py
# Description: Recovery engine and its strategies over fake chat history
# =============================================================================

import asyncio

import pytest

from huddle.common.enums.enums import Confidence, RsvpResponse, ThreadKind
from huddle.recovery.cross_reference import CrossReferenceStrategy
from huddle.recovery.engine import RecoveryEngine
from huddle.recovery.linking_scan import LinkingConfirmationStrategy
from huddle.recovery.response_scan import ResponseConfirmationStrategy
from huddle.recovery.results import (
    KIND_RESPONSE,
    KIND_THREAD,
    KIND_UNRESOLVED,
    KIND_USER_MAPPING,
    RecoveryReport,
    StrategyResult,
)
from huddle.rsvp.models import ChatAuthor, Embed, utc_now
from tests.conftest import CHANNEL_ID, mapping
from tests.fakes.fake_chat_platform import link_embed, render_status_embed

ALICE = ChatAuthor(id="u1", name="Alice")
BOB = ChatAuthor(id="u2", name="Bob")
CAZ = ChatAuthor(id="u3", name="Caz")
DAVE = ChatAuthor(id="u4", name="Dave")


def engine_with(recovery_engine, *strategies):
    return RecoveryEngine(
        store=recovery_engine.store,
        journal=recovery_engine.journal,
        history=recovery_engine.history,
        extractor=recovery_engine.extractor,
        match_data=recovery_engine.match_data,
        chat_config=recovery_engine.chat_config,
        config=recovery_engine.config,
        strategies=list(strategies),
    )


def seed_history(chat):
    chat.add_message(CHANNEL_ID, embeds=(link_embed("alice"),), interaction_user=ALICE)
    chat.add_message(CHANNEL_ID, embeds=(link_embed("bob"),), interaction_user=BOB)
    chat.add_message(CHANNEL_ID, content="Carol is me btw", author=CAZ)
    chat.add_message(CHANNEL_ID, content="playing as carol tonight", author=CAZ)

    thread = chat.add_thread(CHANNEL_ID, "INCOMING: Team vs Rivals")
    chat.add_message(thread.id, embeds=(render_status_embed("m1", ["alice"], ["bob"]),))
    return thread


# =============================================================================
# Engine
# =============================================================================

@pytest.mark.asyncio
async def test_full_recovery_then_second_run_is_a_noop(recovery_engine, store, chat):
    thread = seed_history(chat)

    report = await recovery_engine.recover()

    assert report.recovered_of_kind(KIND_USER_MAPPING) == 3
    assert report.recovered_of_kind(KIND_THREAD) == 1
    assert report.recovered_of_kind(KIND_RESPONSE) == 2
    assert report.errors == 0
    assert store.get_user_mapping("u1").roster_nickname == "alice"
    assert store.get_user_mapping("u3").roster_nickname == "Carol"
    assert store.get_response("m1", "u1").response == RsvpResponse.YES
    assert store.get_response("m1", "u2").response == RsvpResponse.NO
    assert store.get_thread("m1").thread_id == thread.id
    assert recovery_engine.last_report is report

    again = await recovery_engine.recover()
    assert again.recovered == 0
    assert again.errors == 0


@pytest.mark.asyncio
async def test_journal_evidence_is_replayed_first(recovery_engine, store, journal):
    await journal.log_registration_action("u1", "Alice", "alice", "r-alice")
    await journal.log_response_action("m1", "u1", "Alice", RsvpResponse.NO, roster_nickname="alice")

    report = await recovery_engine.recover()

    replay = report.by_strategy["journal_replay"]
    assert replay.recovered == 2
    assert all(d.confidence == Confidence.EXACT for d in replay.details)
    assert store.get_response("m1", "u1").response == RsvpResponse.NO


@pytest.mark.asyncio
async def test_dry_run_writes_nothing(recovery_engine, store, chat):
    seed_history(chat)

    report = await recovery_engine.recover(dry_run=True)

    assert report.dry_run
    assert report.recovered > 0
    assert all(d.dry_run and not d.persisted for d in report.details)
    assert store.is_empty()
    assert store.list_threads() == []


@pytest.mark.asyncio
async def test_failing_strategy_does_not_stop_the_run(recovery_engine, store, chat):
    class Broken(LinkingConfirmationStrategy):
        name = "broken"

        async def run(self, ctx):
            raise RuntimeError("boom")

    chat.add_message(CHANNEL_ID, embeds=(link_embed("alice"),), interaction_user=ALICE)
    engine = engine_with(recovery_engine, Broken(), LinkingConfirmationStrategy())

    report = await engine.recover()

    assert report.by_strategy["broken"].errors == 1
    assert report.by_strategy["linking_scan"].recovered == 1


@pytest.mark.asyncio
async def test_concurrent_recovery_is_skipped(recovery_engine):
    release = asyncio.Event()

    class Slow(LinkingConfirmationStrategy):
        name = "slow"

        async def run(self, ctx):
            await release.wait()
            return self.new_result(ctx)

    engine = engine_with(recovery_engine, Slow())
    first = asyncio.create_task(engine.recover())
    while not engine.is_running:
        await asyncio.sleep(0)

    skipped = await engine.recover()
    assert skipped.skipped_reason == "recovery already in progress"
    assert skipped.by_strategy == {}

    release.set()
    report = await first
    assert report.skipped_reason is None
    assert "slow" in report.by_strategy


@pytest.mark.asyncio
async def test_stop_request_ends_the_run(recovery_engine, chat):
    seed_history(chat)
    report = await recovery_engine.recover(should_stop=lambda: True)
    assert report.by_strategy == {}


@pytest.mark.asyncio
async def test_quick_recover_uses_the_short_window(recovery_engine):
    report = await recovery_engine.quick_recover()
    assert report.lookback_days == 7


@pytest.mark.asyncio
async def test_explicit_zero_day_window_is_kept(recovery_engine):
    report = await recovery_engine.recover(dry_run=True, lookback_days=0)
    assert report.lookback_days == 0


@pytest.mark.asyncio
async def test_recover_if_suspect(recovery_engine, store):
    assert recovery_engine.is_store_suspect()
    assert await recovery_engine.recover_if_suspect() is not None

    await store.upsert_user_mapping(mapping("u1", "alice"))
    assert await recovery_engine.recover_if_suspect() is None


def test_validation_flags_lost_mappings():
    result = StrategyResult(strategy="linking_scan")
    result.error("u1", "boom")
    report = RecoveryReport(dry_run=False, lookback_days=30, started_at=utc_now())
    report.add(result)

    validation = report.validate()

    assert not validation.is_successful
    assert validation.success_rate == 0
    assert validation.critical_issues


def test_validation_of_a_clean_run():
    result = StrategyResult(strategy="journal_replay")
    result.record(KIND_USER_MAPPING, "u1", Confidence.EXACT, True)
    report = RecoveryReport(dry_run=False, lookback_days=30, started_at=utc_now())
    report.add(result)

    validation = report.validate()

    assert validation.is_successful
    assert validation.success_rate == 100
    assert validation.recommendation == "Recovery successful"


# =============================================================================
# Linking scan
# =============================================================================

@pytest.mark.asyncio
async def test_linking_scan_requires_the_invoking_user(recovery_engine, store, chat):
    chat.add_message(CHANNEL_ID, content="✅ You are now linked to roster account **bob**")

    report = await engine_with(recovery_engine, LinkingConfirmationStrategy()).recover()

    result = report.by_strategy["linking_scan"]
    assert result.unresolved == 1
    assert result.recovered == 0
    assert store.is_empty()


@pytest.mark.asyncio
async def test_linking_scan_newest_confirmation_wins(recovery_engine, store, chat):
    chat.add_message(CHANNEL_ID, embeds=(link_embed("bob"),), interaction_user=ALICE)
    chat.add_message(CHANNEL_ID, embeds=(link_embed("alice", skill_level=10),), interaction_user=ALICE)

    await engine_with(recovery_engine, LinkingConfirmationStrategy()).recover()

    linked = store.get_user_mapping("u1")
    assert linked.roster_nickname == "alice"
    assert linked.roster_id == "r-alice"
    assert linked.skill_level == 10


@pytest.mark.asyncio
async def test_linking_scan_uses_a_placeholder_for_unknown_roster_members(recovery_engine, store, chat):
    chat.add_message(CHANNEL_ID, embeds=(link_embed("zed"),), interaction_user=ALICE)

    report = await engine_with(recovery_engine, LinkingConfirmationStrategy()).recover()

    assert store.get_user_mapping("u1").roster_id == "unresolved:zed"
    assert report.details[0].data["roster_resolved"] is False


@pytest.mark.asyncio
async def test_linking_scan_ignores_confirmations_from_other_authors(recovery_engine, store, chat):
    chat.add_message(CHANNEL_ID, embeds=(link_embed("alice"),), author=BOB, interaction_user=BOB)

    await engine_with(recovery_engine, LinkingConfirmationStrategy()).recover()

    assert store.is_empty()


# =============================================================================
# Response scan
# =============================================================================

@pytest.mark.asyncio
async def test_response_scan_resolves_names_through_mappings(recovery_engine, store, chat):
    await store.upsert_user_mapping(mapping("u1", "alice"))
    thread = chat.add_thread(CHANNEL_ID, "RESULT: Team vs Rivals", archived=True)
    chat.add_message(thread.id, embeds=(render_status_embed("m1", ["alice", "mallory"]),))

    report = await engine_with(recovery_engine, ResponseConfirmationStrategy()).recover()

    result = report.by_strategy["response_scan"]
    assert store.get_response("m1", "u1").response == RsvpResponse.YES
    assert store.get_thread("m1").thread_kind == ThreadKind.CONCLUDED
    assert [d.key for d in result.details if d.kind == KIND_UNRESOLVED] == ["m1:mallory"]


@pytest.mark.asyncio
async def test_response_scan_falls_back_to_the_thread_index(recovery_engine, store, chat):
    await store.upsert_user_mapping(mapping("u2", "bob"))
    thread = chat.add_thread(CHANNEL_ID, "INCOMING: Team vs Rivals")
    await store.set_thread("m5", thread.id)
    no_footer = Embed(
        title="Team vs Rivals - RSVP Status",
        description="**Current RSVPs:**\n❌ **Not Attending (1):** bob",
    )
    chat.add_message(thread.id, embeds=(no_footer,))

    await engine_with(recovery_engine, ResponseConfirmationStrategy()).recover()

    assert store.get_response("m5", "u2").response == RsvpResponse.NO


@pytest.mark.asyncio
async def test_response_scan_skips_categories_failing_validation(recovery_engine, store, chat):
    await store.upsert_user_mapping(mapping("u1", "alice"))
    thread = chat.add_thread(CHANNEL_ID, "INCOMING: Team vs Rivals")
    broken = Embed(
        title="Team vs Rivals - RSVP Status",
        description="**Current RSVPs:**\n✅ **Attending (3):** alice",
        footer="Match ID: m1",
    )
    chat.add_message(thread.id, embeds=(broken,))

    report = await engine_with(recovery_engine, ResponseConfirmationStrategy()).recover()

    result = report.by_strategy["response_scan"]
    assert store.get_response("m1", "u1") is None
    assert "m1:attending" in [d.key for d in result.details if d.kind == KIND_UNRESOLVED]


@pytest.mark.asyncio
async def test_response_scan_reads_confirmations_of_linked_users(recovery_engine, store, chat):
    await store.upsert_user_mapping(mapping("u1", "alice"))
    thread = chat.add_thread(CHANNEL_ID, "INCOMING: Team vs Rivals")
    await store.set_thread("m1", thread.id)
    chat.add_message(thread.id, content="✅ Your RSVP has been recorded! **alice** - YES", interaction_user=ALICE)
    chat.add_message(thread.id, content="✅ Your RSVP has been recorded! **alice** - NO", interaction_user=BOB)

    report = await engine_with(recovery_engine, ResponseConfirmationStrategy()).recover()

    result = report.by_strategy["response_scan"]
    assert result.recovered_of_kind(KIND_RESPONSE) == 1
    assert result.unresolved == 1
    assert store.get_response("m1", "u1").response == RsvpResponse.YES
    assert store.get_response("m1", "u2") is None


@pytest.mark.asyncio
async def test_response_scan_isolates_thread_failures(recovery_engine, chat):
    chat.add_thread(CHANNEL_ID, "INCOMING: Team vs Rivals")
    chat.configure_failure("fetch_messages", RuntimeError("forbidden"))

    report = await engine_with(recovery_engine, ResponseConfirmationStrategy()).recover()

    assert report.by_strategy["response_scan"].errors == 1


# =============================================================================
# Cross reference
# =============================================================================

@pytest.mark.asyncio
async def test_single_mention_is_only_suggested(recovery_engine, store, chat):
    await store.upsert_user_mapping(mapping("u1", "alice"))
    await store.upsert_user_mapping(mapping("u2", "bob"))
    chat.add_message(CHANNEL_ID, content="carol here", author=CAZ)

    report = await engine_with(recovery_engine, CrossReferenceStrategy()).recover()

    result = report.by_strategy["cross_reference"]
    assert result.needs_review == 1
    assert result.details[0].confidence == Confidence.MEDIUM
    assert store.get_user_mapping("u3") is None


@pytest.mark.asyncio
async def test_repeated_mentions_are_linked(recovery_engine, store, chat):
    await store.upsert_user_mapping(mapping("u1", "alice"))
    await store.upsert_user_mapping(mapping("u2", "bob"))
    chat.add_message(CHANNEL_ID, content="carol here", author=CAZ)
    chat.add_message(CHANNEL_ID, content="(carol) ready", author=CAZ)

    report = await engine_with(recovery_engine, CrossReferenceStrategy()).recover()

    assert report.by_strategy["cross_reference"].recovered == 1
    assert store.get_user_mapping("u3").roster_id == "r-carol"


@pytest.mark.asyncio
async def test_mentions_by_different_authors_count_towards_recurrence(recovery_engine, store, chat):
    await store.upsert_user_mapping(mapping("u1", "alice"))
    await store.upsert_user_mapping(mapping("u2", "bob"))
    chat.add_message(CHANNEL_ID, content="carol", author=CAZ)
    chat.add_message(CHANNEL_ID, content="gg carol", author=DAVE)

    report = await engine_with(recovery_engine, CrossReferenceStrategy()).recover()

    result = report.by_strategy["cross_reference"]
    assert result.recovered == 1
    assert result.details[0].confidence == Confidence.HIGH
    assert result.details[0].data["mentions"] == 2
    assert store.get_user_mapping("u4").roster_nickname == "Carol"
    assert store.get_user_mapping("u3") is None


@pytest.mark.asyncio
async def test_partial_words_do_not_count_as_mentions(recovery_engine, store, chat):
    await store.upsert_user_mapping(mapping("u1", "alice"))
    await store.upsert_user_mapping(mapping("u2", "bob"))
    chat.add_message(CHANNEL_ID, content="caroline and carolers", author=CAZ)

    report = await engine_with(recovery_engine, CrossReferenceStrategy()).recover()

    assert report.by_strategy["cross_reference"].unresolved == 1


@pytest.mark.asyncio
async def test_one_user_matching_several_members_goes_to_review(recovery_engine, store, chat):
    await store.upsert_user_mapping(mapping("u1", "alice"))
    for _ in range(2):
        chat.add_message(CHANNEL_ID, content="bob and carol are both me", author=CAZ)

    report = await engine_with(recovery_engine, CrossReferenceStrategy()).recover()

    result = report.by_strategy["cross_reference"]
    assert result.needs_review == 2
    assert result.recovered == 0
    assert store.get_user_mapping("u3") is None
