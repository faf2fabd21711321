# =============================================================================
# File: tests/unit/test_extractor.py
# Description: Reading the rendered RSVP state out of status messages
# =============================================================================

import pytest

from huddle.common.enums.enums import Confidence, Evidence, RsvpCategory, RsvpResponse, ThreadKind
from huddle.rsvp.extractor import (
    extract_event_id,
    parse_link_confirmation,
    parse_names_list,
    parse_rsvp_confirmation,
)
from huddle.rsvp.models import ChatAuthor, ChatMessage, Embed, EmbedField, utc_now
from tests.fakes.fake_chat_platform import BOT, link_embed, render_status_embed

USER = ChatAuthor(id="u1", name="Alice")


def test_parse_names_list_trims_and_strips_bold():
    assert parse_names_list(" **alice**, bob ,, carol ") == ["alice", "bob", "carol"]


def test_renderer_layout_is_read_with_high_confidence(extractor):
    text = extractor.status_text(chat_message(render_status_embed("m1", ["alice", "bob"], ["carol"], ["dave"])))
    readings, matched = extractor.parse_text(text)

    assert matched
    assert readings[RsvpCategory.ATTENDING].names == ["alice", "bob"]
    assert readings[RsvpCategory.NOT_ATTENDING].names == ["carol"]
    assert readings[RsvpCategory.NO_RESPONSE].names == ["dave"]
    assert all(r.confidence == Confidence.HIGH for r in readings.values())
    assert readings[RsvpCategory.ATTENDING].pattern == "label_marker"


def test_omitted_categories_are_empty(extractor):
    readings, _ = extractor.parse_text("✅ **Attending (1):** alice")
    assert readings[RsvpCategory.NOT_ATTENDING].names == []
    assert readings[RsvpCategory.NOT_ATTENDING].pattern == "absent"
    assert readings[RsvpCategory.NOT_ATTENDING].valid


def test_placeholder_means_nobody_answered(extractor):
    readings, matched = extractor.parse_text("No RSVPs yet. Use the buttons above to respond!")
    assert matched
    assert all(r.names == [] for r in readings.values())
    assert readings[RsvpCategory.ATTENDING].pattern == "placeholder"


def test_label_only_and_keyword_fallbacks(extractor):
    readings, _ = extractor.parse_text("Attending: alice, bob\nDeclined: carol")
    assert readings[RsvpCategory.ATTENDING].names == ["alice", "bob"]
    assert readings[RsvpCategory.ATTENDING].confidence == Confidence.MEDIUM
    assert readings[RsvpCategory.NOT_ATTENDING].names == ["carol"]
    assert readings[RsvpCategory.NOT_ATTENDING].confidence == Confidence.LOW


def test_count_mismatch_invalidates_the_category(extractor):
    readings, _ = extractor.parse_text("✅ **Attending (3):** alice, bob")
    reading = readings[RsvpCategory.ATTENDING]
    assert not reading.valid
    assert reading.confidence == Confidence.LOW
    assert reading.declared_count == 3


def test_unreadable_status_is_ambiguous(extractor):
    message = chat_message(Embed(title="Match - RSVP Status", description="**Current RSVPs:**\n¯\\_(ツ)_/¯"))
    state = extractor.parse_messages([message], BOT.id)
    assert state.evidence == Evidence.AMBIGUOUS


def test_invalid_count_makes_the_state_ambiguous(extractor):
    embed = Embed(
        title="Match - RSVP Status",
        description="**Current RSVPs:**\n✅ **Attending (2):** alice",
        footer="Match ID: m7",
    )
    state = extractor.parse_messages([chat_message(embed)], BOT.id)
    assert state.ambiguous
    assert state.invalid_categories == [RsvpCategory.ATTENDING]
    assert state.event_id == "m7"


def test_newest_status_message_wins(extractor):
    newer = chat_message(render_status_embed("m1", ["alice", "bob"]), message_id="2")
    older = chat_message(render_status_embed("m1", ["alice"]), message_id="1")
    state = extractor.parse_messages([newer, older], BOT.id)

    assert state.evidence == Evidence.PARSED
    assert state.attending == ["alice", "bob"]
    assert state.message_id == "2"


def test_no_status_message(extractor):
    chatter = chat_message(content="see you all on sunday", author=USER)
    assert extractor.parse_messages([chatter], BOT.id).evidence == Evidence.NONE

    rsvp_talk = chat_message(content="did everyone RSVP?", author=USER)
    assert extractor.parse_messages([rsvp_talk], BOT.id).evidence == Evidence.AMBIGUOUS


def test_status_from_another_author_is_not_trusted(extractor):
    spoof = chat_message(render_status_embed("m1", ["mallory"]), author=USER)
    assert extractor.parse_messages([spoof], BOT.id).evidence == Evidence.AMBIGUOUS


def test_concluded_threads_are_not_applicable_unless_requested(extractor):
    message = chat_message(render_status_embed("m1", ["alice"]))
    state = extractor.parse_messages([message], BOT.id, thread_kind=ThreadKind.CONCLUDED)
    assert state.evidence == Evidence.NOT_APPLICABLE

    state = extractor.parse_messages([message], BOT.id, thread_kind=ThreadKind.CONCLUDED, include_concluded=True)
    assert state.attending == ["alice"]


def test_rsvp_field_layout(extractor):
    embed = Embed(
        title="Team vs Rivals",
        fields=(EmbedField("📝 RSVP Status", "✅ **Attending (1):** alice\n\n⏳ **No Response (1):** bob"),),
        footer="Match ID: m2",
    )
    state = extractor.parse_messages([chat_message(embed)], BOT.id)
    assert state.attending == ["alice"]
    assert state.no_response == ["bob"]


def test_message_helpers():
    assert extract_event_id(chat_message(render_status_embed("abc-123"))) == "abc-123"

    confirmation = chat_message(content="✅ Your RSVP has been recorded! **alice** - YES")
    assert parse_rsvp_confirmation(confirmation) == ("alice", RsvpResponse.YES)
    assert parse_rsvp_confirmation(chat_message(content="hello **alice** - YES")) is None

    link = parse_link_confirmation(chat_message(link_embed("alice", skill_level=9, rating=2300), interaction_user=USER))
    assert link.nickname == "alice"
    assert link.skill_level == 9
    assert link.rating == 2300
    assert link.country == "DE"
    assert link.actor == USER

    legacy = parse_link_confirmation(chat_message(content="✅ You are now linked to roster account **bob**"))
    assert legacy.nickname == "bob"
    assert legacy.actor is None


@pytest.mark.asyncio
async def test_read_thread_fetches_bounded_history(extractor, history, chat):
    thread = chat.add_thread("channel-1", "INCOMING: Team vs Rivals")
    chat.add_message(thread.id, embeds=(render_status_embed("m1", ["alice"]),))
    for i in range(5):
        chat.add_message(thread.id, content=f"message {i}", author=USER)

    state = await extractor.read_thread(history, thread, max_pages=1, page_size=50)

    assert state.attending == ["alice"]
    assert state.thread_id == thread.id
    assert chat.get_call_count("fetch_messages") == 1


def chat_message(embed=None, content="", author=BOT, message_id="1", interaction_user=None):
    return ChatMessage(
        id=message_id,
        channel_id="t1",
        author=author,
        created_at=utc_now(),
        content=content,
        embeds=(embed,) if embed else (),
        interaction_user=interaction_user,
    )
