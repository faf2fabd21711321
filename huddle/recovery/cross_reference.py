# =============================================================================
# File: huddle/recovery/cross_reference.py
# Description: Suggests links for roster members nobody is mapped to, by
#              looking for chat users who mention their nickname
# =============================================================================

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from huddle.common.enums.enums import Confidence
from huddle.config.logging_config import get_logger
from huddle.recovery.base import RecoveryContext, RecoveryStrategy
from huddle.recovery.results import KIND_USER_MAPPING, StrategyResult
from huddle.rsvp.extractor import message_text
from huddle.rsvp.models import ChatMessage, RosterMember, UserMapping, utc_now

log = get_logger("huddle.recovery.cross_reference")


@dataclass
class MentionCandidate:
    chat_id: str
    display_name: str
    hits: int = 0
    mentions: int = 0
    last_seen: Optional[datetime] = None
    message_ids: List[str] = field(default_factory=list)

    @property
    def confidence(self) -> Confidence:
        return Confidence.HIGH if self.mentions > 1 else Confidence.MEDIUM


def nickname_pattern(nickname: str) -> re.Pattern:
    return re.compile(rf"(?<!\w){re.escape(nickname)}(?!\w)", re.IGNORECASE)


def find_candidate(member: RosterMember, messages: List[ChatMessage], bot_user_id: str) -> Optional[MentionCandidate]:
    """The most recent human author mentioning the nickname.

    `hits` counts that author's own mentions; `mentions` counts every human
    message naming the nickname.
    """
    pattern = nickname_pattern(member.nickname)
    by_author: Dict[str, MentionCandidate] = {}
    newest: Optional[MentionCandidate] = None
    mentions = 0

    # messages are newest first
    for message in messages:
        if message.author.bot or message.author.id == bot_user_id:
            continue
        if not pattern.search(message_text(message)):
            continue
        candidate = by_author.get(message.author.id)
        if candidate is None:
            candidate = MentionCandidate(
                chat_id=message.author.id,
                display_name=message.author.name,
                last_seen=message.created_at,
            )
            by_author[message.author.id] = candidate
        mentions += 1
        candidate.hits += 1
        candidate.message_ids.append(message.id)
        if newest is None:
            newest = candidate

    if newest is not None:
        newest.mentions = mentions
    return newest


class CrossReferenceStrategy(RecoveryStrategy):
    """
    Weakest evidence source. Candidates below the configured confidence, or
    claimed by more than one roster member, are reported for review and
    never written.
    """
    name = "cross_reference"

    async def run(self, ctx: RecoveryContext) -> StrategyResult:
        result = self.new_result(ctx)
        roster = await ctx.roster()
        if not roster:
            log.info("No roster members available; skipping cross reference")
            return result

        unmapped = [
            m for m in roster
            if ctx.store.get_mapping_by_roster_id(m.roster_id) is None
            and ctx.store.find_mapping_by_nickname(m.nickname) is None
        ]
        if not unmapped:
            return result

        messages = await ctx.channel_messages()
        bot_user_id = ctx.bot_user_id

        candidates: Dict[str, MentionCandidate] = {}
        for member in unmapped:
            if ctx.stop_requested():
                break
            candidate = find_candidate(member, messages, bot_user_id)
            if candidate is None:
                result.unresolvable(
                    f"roster:{member.roster_id}",
                    f"No chat user mentions {member.nickname}",
                    nickname=member.nickname,
                )
                continue
            if ctx.store.get_user_mapping(candidate.chat_id) is not None:
                continue
            candidates[member.roster_id] = candidate

        claims: Dict[str, List[str]] = {}
        for roster_id, candidate in candidates.items():
            claims.setdefault(candidate.chat_id, []).append(roster_id)

        members = {m.roster_id: m for m in unmapped}
        minimum = ctx.config.auto_persist_min_confidence

        for roster_id, candidate in candidates.items():
            member = members[roster_id]
            data = {
                "nickname": member.nickname,
                "roster_id": roster_id,
                "display_name": candidate.display_name,
                "hits": candidate.hits,
                "mentions": candidate.mentions,
                "message_ids": candidate.message_ids[:5],
            }

            if len(claims[candidate.chat_id]) > 1:
                others = [members[r].nickname for r in claims[candidate.chat_id] if r != roster_id]
                result.review(
                    KIND_USER_MAPPING, candidate.chat_id, candidate.confidence,
                    f"{candidate.display_name} also matches {', '.join(others)}",
                    **data,
                )
                continue

            if candidate.confidence.rank < minimum.rank:
                result.review(
                    KIND_USER_MAPPING, candidate.chat_id, candidate.confidence,
                    f"{member.nickname} mentioned {candidate.mentions} time(s), last by {candidate.display_name}",
                    **data,
                )
                continue

            mapping = UserMapping(
                chat_id=candidate.chat_id,
                display_name=candidate.display_name,
                roster_id=member.roster_id,
                roster_nickname=member.nickname,
                skill_level=member.skill_level,
                rating=member.rating,
                country=member.country,
                linked_at=candidate.last_seen or utc_now(),
                updated_at=candidate.last_seen or utc_now(),
            )
            try:
                if ctx.dry_run:
                    inserted = (ctx.store.get_user_mapping(mapping.chat_id) is None
                                and ctx.store.get_mapping_by_roster_id(mapping.roster_id) is None)
                else:
                    inserted = await ctx.store.insert_user_mapping_if_absent(mapping)
            except Exception as e:
                log.error(f"Failed to persist cross-reference link {candidate.chat_id} -> {roster_id}: {e}")
                result.error(candidate.chat_id, str(e), **data)
                continue
            result.record(KIND_USER_MAPPING, candidate.chat_id, candidate.confidence, inserted, **data)

        return result
