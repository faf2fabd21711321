# =============================================================================
# File: huddle/recovery/journal_replay.py
# Description: Recovery from the interaction journal (exact evidence)
# =============================================================================

from __future__ import annotations

from huddle.common.enums.enums import Confidence
from huddle.recovery.base import RecoveryContext, RecoveryStrategy
from huddle.recovery.results import KIND_RESPONSE, KIND_USER_MAPPING, StrategyResult

_KINDS = {"registration": KIND_USER_MAPPING, "response": KIND_RESPONSE}


class JournalReplayStrategy(RecoveryStrategy):
    name = "journal_replay"

    async def run(self, ctx: RecoveryContext) -> StrategyResult:
        result = self.new_result(ctx)
        replay = await ctx.journal.replay(ctx.store, lookback_days=ctx.lookback_days, dry_run=ctx.dry_run)

        for item in replay.items:
            if item.error is not None:
                result.error(f"{item.kind}:{item.key}", item.error)
                continue
            result.record(_KINDS[item.kind], item.key, Confidence.EXACT, item.inserted)

        return result
