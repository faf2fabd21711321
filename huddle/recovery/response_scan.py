# =============================================================================
# File: huddle/recovery/response_scan.py
# Description: Rebuilds responses and the thread index from the status
#              messages and RSVP confirmations inside match threads
# =============================================================================

from __future__ import annotations

from typing import Optional, Set, Tuple

from huddle.common.enums.enums import Confidence, Evidence, RsvpCategory, RsvpResponse, ThreadKind
from huddle.config.logging_config import get_logger
from huddle.recovery.base import RecoveryContext, RecoveryStrategy
from huddle.recovery.results import KIND_RESPONSE, KIND_THREAD, StrategyResult
from huddle.rsvp.extractor import RenderedState, parse_rsvp_confirmation
from huddle.rsvp.models import ChatMessage, ResponseRecord, ThreadIndex, ThreadInfo, utc_now

log = get_logger("huddle.recovery.response_scan")

_ANSWERED = {
    RsvpCategory.ATTENDING: RsvpResponse.YES,
    RsvpCategory.NOT_ATTENDING: RsvpResponse.NO,
}


class ResponseConfirmationStrategy(RecoveryStrategy):
    """
    Names are resolved strictly through known user mappings, so this
    strategy only helps once mappings exist (journal or linking scan).
    """
    name = "response_scan"

    async def run(self, ctx: RecoveryContext) -> StrategyResult:
        result = self.new_result(ctx)
        channel_id = ctx.chat_config.channel_id
        if not channel_id:
            log.info("No channel configured; skipping response scan")
            return result

        threads = await ctx.history.find_event_threads(
            channel_id,
            prefixes=(ctx.chat_config.upcoming_thread_prefix, ctx.chat_config.concluded_thread_prefix),
            cutoff=ctx.cutoff,
            archived_page_size=ctx.config.archived_thread_page_size,
            max_archived_pages=ctx.config.max_archived_thread_pages,
            should_stop=ctx.should_stop,
        )

        for thread in threads:
            if ctx.stop_requested():
                log.info("Response scan stopped on request")
                break
            try:
                await self._scan_thread(ctx, thread, result)
            except Exception as e:
                log.error(f"Response scan of thread {thread.id} ({thread.name}) failed: {e}", exc_info=True)
                result.error(f"thread:{thread.id}", str(e), thread_name=thread.name)

        return result

    async def _scan_thread(self, ctx: RecoveryContext, thread: ThreadInfo, result: StrategyResult) -> None:
        messages = await ctx.history.fetch_recent(
            thread.id,
            limit=ctx.config.thread_scan_limit,
            should_stop=ctx.should_stop,
        )
        state = ctx.extractor.parse_messages(messages, ctx.bot_user_id, thread=thread, include_concluded=True)

        event_id = state.event_id or ctx.store.get_event_for_thread(thread.id)
        if event_id is None:
            if state.evidence != Evidence.NONE:
                result.unresolvable(f"thread:{thread.id}", f"No match id found in thread {thread.name}")
            return

        await self._recover_thread_index(ctx, thread, event_id, result)

        seen: Set[Tuple[str, str]] = set()
        if state.readings:
            await self._recover_from_status(ctx, state, event_id, seen, result)
        await self._recover_from_confirmations(ctx, messages, event_id, seen, result)

    async def _recover_thread_index(
            self,
            ctx: RecoveryContext,
            thread: ThreadInfo,
            event_id: str,
            result: StrategyResult,
    ) -> None:
        kind = (ThreadKind.CONCLUDED
                if thread.name.startswith(ctx.chat_config.concluded_thread_prefix)
                else ThreadKind.UPCOMING)
        index = ThreadIndex(
            event_id=event_id,
            thread_id=thread.id,
            thread_kind=kind,
            created_at=thread.created_at or utc_now(),
        )
        if ctx.dry_run:
            inserted = (ctx.store.get_thread(event_id) is None
                        and ctx.store.get_event_for_thread(thread.id) is None)
        else:
            inserted = await ctx.store.insert_thread_if_absent(index)
        result.record(KIND_THREAD, event_id, Confidence.HIGH, inserted, thread_id=thread.id, thread_kind=kind.value)

    async def _recover_from_status(
            self,
            ctx: RecoveryContext,
            state: RenderedState,
            event_id: str,
            seen: Set[Tuple[str, str]],
            result: StrategyResult,
    ) -> None:
        for category, response in _ANSWERED.items():
            reading = state.readings.get(category)
            if reading is None:
                continue
            if not reading.valid:
                result.unresolvable(
                    f"{event_id}:{category.value}",
                    f"Category failed count validation (declared {reading.declared_count}, "
                    f"listed {len(reading.names)})",
                    names=reading.names,
                )
                continue

            for name in reading.names:
                mapping = ctx.store.find_mapping_by_nickname(name)
                if mapping is None:
                    result.unresolvable(f"{event_id}:{name}", f"No linked user named {name}")
                    continue
                seen.add((event_id, mapping.chat_id))
                record = ResponseRecord(
                    event_id=event_id,
                    chat_id=mapping.chat_id,
                    response=response,
                    display_name=mapping.roster_nickname,
                    timestamp=state.message_created_at or utc_now(),
                )
                inserted = await self._insert(ctx, record)
                result.record(
                    KIND_RESPONSE, f"{event_id}:{mapping.chat_id}", reading.confidence, inserted,
                    nickname=name, response=response.value, pattern=reading.pattern,
                )

    async def _recover_from_confirmations(
            self,
            ctx: RecoveryContext,
            messages: list,
            event_id: str,
            seen: Set[Tuple[str, str]],
            result: StrategyResult,
    ) -> None:
        bot_user_id = ctx.bot_user_id
        for message in messages:
            if message.author.id != bot_user_id:
                continue
            parsed = parse_rsvp_confirmation(message)
            if parsed is None:
                continue
            nickname, response = parsed
            chat_id = self._confirmation_owner(ctx, message, nickname)
            if chat_id is None:
                result.unresolvable(f"message:{message.id}", f"RSVP confirmation for {nickname} has no known user")
                continue
            if (event_id, chat_id) in seen:
                continue
            seen.add((event_id, chat_id))

            mapping = ctx.store.get_user_mapping(chat_id)
            record = ResponseRecord(
                event_id=event_id,
                chat_id=chat_id,
                response=response,
                display_name=mapping.roster_nickname if mapping else nickname,
                timestamp=message.created_at,
            )
            inserted = await self._insert(ctx, record)
            result.record(
                KIND_RESPONSE, f"{event_id}:{chat_id}", Confidence.HIGH, inserted,
                nickname=nickname, response=response.value, pattern="confirmation",
            )

    @staticmethod
    def _confirmation_owner(ctx: RecoveryContext, message: ChatMessage, nickname: str) -> Optional[str]:
        """The invoking user, provided they are linked to the confirmed nickname."""
        actor = message.interaction_user
        if actor is None:
            return None
        mapping = ctx.store.get_user_mapping(actor.id)
        if mapping is None or mapping.roster_nickname.casefold() != nickname.casefold():
            return None
        return actor.id

    @staticmethod
    async def _insert(ctx: RecoveryContext, record: ResponseRecord) -> bool:
        if ctx.dry_run:
            return ctx.store.get_response(record.event_id, record.chat_id) is None
        return await ctx.store.insert_response_if_absent(record)
