# =============================================================================
# File: huddle/core/background_tasks.py
# Description: Periodic reconciliation, journal compaction and snapshots
# =============================================================================

import asyncio
from typing import Dict

from huddle.config.logging_config import get_logger
from huddle.core.bootstrap import HuddleServices

logger = get_logger("huddle.background")

_stop_requested = False
_tasks: Dict[str, asyncio.Task] = {}


def stop_requested() -> bool:
    """Cooperative stop check handed to long scans."""
    return _stop_requested


async def reconcile_periodically(services: HuddleServices) -> None:
    """Compare rendered status messages with the store and redraw drifted ones."""
    interval = services.configs.sync.interval_minutes * 60

    while not _stop_requested:
        try:
            await asyncio.sleep(interval)
            report = await services.reconciler.reconcile_active_events()
            if report.updated or report.errors:
                logger.warning(
                    f"Reconciliation: {report.processed} events, {report.updated} redrawn, "
                    f"{report.ambiguous} ambiguous, {report.errors} errors"
                )
            else:
                logger.debug(f"Reconciliation: {report.processed} events, all in sync")

        except asyncio.CancelledError:
            logger.info("Reconciliation task cancelled")
            break

        except Exception as e:
            logger.error(f"Reconciliation task error: {e}", exc_info=True)
            await asyncio.sleep(300)


async def compact_journal_periodically(services: HuddleServices) -> None:
    interval = services.configs.journal.compaction_interval_hours * 3600

    while not _stop_requested:
        try:
            await asyncio.sleep(interval)
            result = await services.journal.compact()
            if result["removed"]:
                logger.info(f"Journal compaction removed {result['removed']} entries, kept {result['kept']}")

        except asyncio.CancelledError:
            logger.info("Journal compaction task cancelled")
            break

        except Exception as e:
            logger.error(f"Journal compaction error: {e}", exc_info=True)


async def recover_on_startup(services: HuddleServices) -> None:
    """Run recovery once when the store looks lost."""
    try:
        report = await services.recovery.recover_if_suspect(should_stop=stop_requested)
        if report is not None:
            validation = report.validate(services.configs.recovery.low_success_rate_threshold)
            for recommendation in validation.recommendations:
                logger.info(f"Recovery: {recommendation}")
    except Exception as e:
        logger.error(f"Startup recovery failed: {e}", exc_info=True)


async def start_background_tasks(services: HuddleServices) -> None:
    """Start all background tasks"""
    global _stop_requested
    _stop_requested = False

    _tasks["startup_recovery"] = asyncio.create_task(recover_on_startup(services))

    if services.configs.sync.enable_periodic:
        _tasks["reconciliation"] = asyncio.create_task(reconcile_periodically(services))
        logger.info(f"Reconciliation task started (interval={services.configs.sync.interval_minutes}min)")

    if services.configs.journal.enable_compaction:
        _tasks["journal_compaction"] = asyncio.create_task(compact_journal_periodically(services))
        logger.info("Journal compaction task started")

    if services.configs.backup.enable_periodic:
        services.snapshots.start_periodic()


async def stop_background_tasks(services: HuddleServices) -> None:
    """Stop all background tasks gracefully"""
    global _stop_requested
    _stop_requested = True

    for name, task in list(_tasks.items()):
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"{name} task stopped")
    _tasks.clear()

    await services.snapshots.stop()
