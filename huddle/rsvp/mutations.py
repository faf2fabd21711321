# =============================================================================
# File: huddle/rsvp/mutations.py
# Description: The write path used by command and button handlers:
#              journal first, then the store
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, Optional

from huddle.common.enums.enums import RsvpResponse
from huddle.common.exceptions.exceptions import JournalWriteError, MappingConflictError
from huddle.config.logging_config import get_logger
from huddle.infra.journal.interaction_journal import InteractionJournal
from huddle.rsvp.models import ResponseRecord, RosterMember, UserMapping
from huddle.rsvp.store import RsvpStore

log = get_logger("huddle.rsvp.mutations")


class RsvpMutations:
    """
    Every user-driven mutation goes through here so the journal can rebuild
    the store later. A journal failure is logged and does not block the
    user's action; store failures propagate.
    """

    def __init__(self, store: RsvpStore, journal: InteractionJournal):
        self.store = store
        self.journal = journal

    async def record_response(
            self,
            event_id: str,
            chat_id: str,
            display_name: str,
            response: RsvpResponse,
            context: Optional[Dict[str, Any]] = None,
    ) -> ResponseRecord:
        response = RsvpResponse(response)
        mapping = self.store.get_user_mapping(chat_id)
        roster_nickname = mapping.roster_nickname if mapping else display_name

        try:
            await self.journal.log_response_action(
                event_id=event_id,
                chat_id=chat_id,
                display_name=display_name,
                response=response,
                roster_nickname=roster_nickname,
                context=context,
            )
        except JournalWriteError as e:
            log.error(f"RSVP {event_id}/{chat_id} not journaled: {e}")

        record = await self.store.record_response(event_id, chat_id, response, roster_nickname)
        log.info(f"RSVP recorded: match={event_id} user={chat_id} ({roster_nickname}) -> {response.value}")
        return record

    async def link_account(
            self,
            chat_id: str,
            display_name: str,
            member: RosterMember,
            context: Optional[Dict[str, Any]] = None,
    ) -> UserMapping:
        """
        Link a chat user to a roster account.

        Raises:
            MappingConflictError: the roster account belongs to someone else
        """
        owner = self.store.get_mapping_by_roster_id(member.roster_id)
        if owner is not None and owner.chat_id != chat_id:
            raise MappingConflictError(member.roster_id, owner.chat_id, chat_id)

        try:
            await self.journal.log_registration_action(
                chat_id=chat_id,
                display_name=display_name,
                roster_nickname=member.nickname,
                roster_id=member.roster_id,
                skill_level=member.skill_level,
                rating=member.rating,
                country=member.country,
                context=context,
            )
        except JournalWriteError as e:
            log.error(f"Account link for {chat_id} not journaled: {e}")

        mapping = await self.store.upsert_user_mapping(UserMapping(
            chat_id=chat_id,
            display_name=display_name,
            roster_id=member.roster_id,
            roster_nickname=member.nickname,
            skill_level=member.skill_level,
            rating=member.rating,
            country=member.country,
        ))
        log.info(f"Linked {chat_id} ({display_name}) to roster account {member.nickname}")
        return mapping

    async def unlink_account(self, chat_id: str, context: Optional[Dict[str, Any]] = None) -> bool:
        mapping = self.store.get_user_mapping(chat_id)
        if mapping is None:
            return False

        try:
            await self.journal.log_unlink_action(chat_id, mapping.display_name, context=context)
        except JournalWriteError as e:
            log.error(f"Account unlink for {chat_id} not journaled: {e}")

        removed = await self.store.remove_user_mapping(chat_id)
        if removed:
            log.info(f"Unlinked {chat_id}")
        return removed
