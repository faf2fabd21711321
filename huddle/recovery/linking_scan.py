# =============================================================================
# File: huddle/recovery/linking_scan.py
# Description: Rebuilds user mappings from the bot's "Successfully Linked"
#              confirmations in the channel history
# =============================================================================

from __future__ import annotations

from typing import List, Optional, Set

from huddle.common.enums.enums import Confidence
from huddle.config.logging_config import get_logger
from huddle.recovery.base import RecoveryContext, RecoveryStrategy
from huddle.recovery.results import KIND_USER_MAPPING, StrategyResult
from huddle.rsvp.extractor import parse_link_confirmation
from huddle.rsvp.models import RosterMember, UserMapping

log = get_logger("huddle.recovery.linking_scan")

PLACEHOLDER_ROSTER_PREFIX = "unresolved:"


def resolve_roster_member(nickname: str, roster: List[RosterMember]) -> Optional[RosterMember]:
    """Exact nickname, then a unique case-insensitive match."""
    for member in roster:
        if member.nickname == nickname:
            return member
    folded = nickname.casefold()
    matches = [m for m in roster if m.nickname.casefold() == folded]
    return matches[0] if len(matches) == 1 else None


class LinkingConfirmationStrategy(RecoveryStrategy):
    """
    Only confirmations that carry the invoking user's identity are accepted;
    the newest confirmation per chat user wins.
    """
    name = "linking_scan"

    async def run(self, ctx: RecoveryContext) -> StrategyResult:
        result = self.new_result(ctx)
        if not ctx.chat_config.channel_id:
            log.info("No channel configured; skipping linking confirmation scan")
            return result

        messages = await ctx.channel_messages()
        roster = await ctx.roster()
        seen: Set[str] = set()
        bot_user_id = ctx.bot_user_id

        for message in messages:
            if message.author.id != bot_user_id:
                continue
            link = parse_link_confirmation(message)
            if link is None:
                continue

            if link.actor is None:
                result.unresolvable(
                    f"message:{message.id}",
                    f"Link confirmation for {link.nickname} has no invoking user",
                    nickname=link.nickname,
                )
                continue

            chat_id = link.actor.id
            if chat_id in seen:
                continue
            seen.add(chat_id)

            try:
                member = resolve_roster_member(link.nickname, roster)
                mapping = UserMapping(
                    chat_id=chat_id,
                    display_name=link.actor.name,
                    roster_id=member.roster_id if member else f"{PLACEHOLDER_ROSTER_PREFIX}{link.nickname}",
                    roster_nickname=member.nickname if member else link.nickname,
                    skill_level=link.skill_level if link.skill_level is not None else (member.skill_level if member else None),
                    rating=link.rating if link.rating is not None else (member.rating if member else None),
                    country=link.country or (member.country if member else None),
                    linked_at=message.created_at,
                    updated_at=message.created_at,
                )
                inserted = await self._insert(ctx, mapping)
            except Exception as e:
                log.error(f"Failed to recover mapping for {chat_id} from message {message.id}: {e}")
                result.error(chat_id, str(e), message_id=message.id)
                continue

            result.record(
                KIND_USER_MAPPING, chat_id, Confidence.HIGH, inserted,
                nickname=mapping.roster_nickname,
                roster_id=mapping.roster_id,
                roster_resolved=member is not None,
                message_id=message.id,
            )

        return result

    @staticmethod
    async def _insert(ctx: RecoveryContext, mapping: UserMapping) -> bool:
        if ctx.dry_run:
            return (ctx.store.get_user_mapping(mapping.chat_id) is None
                    and ctx.store.get_mapping_by_roster_id(mapping.roster_id) is None)
        return await ctx.store.insert_user_mapping_if_absent(mapping)
