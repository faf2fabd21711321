# =============================================================================
# File: huddle/core/bootstrap.py
# Description: Wires configuration, storage, the RSVP services, recovery and
#              snapshots into one container owned by the bot process
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from huddle.config.backup_config import BackupConfig, get_backup_config
from huddle.config.chat_config import ChatConfig, get_chat_config
from huddle.config.journal_config import JournalConfig, get_journal_config
from huddle.config.logging_config import get_logger
from huddle.config.recovery_config import RecoveryConfig, get_recovery_config
from huddle.config.reliability_config import ReliabilityConfigs, ReliabilitySettings, get_reliability_settings
from huddle.config.storage_config import StorageConfig, get_storage_config
from huddle.config.sync_config import SyncConfig, get_sync_config
from huddle.infra.backup.snapshot_manager import SnapshotManager
from huddle.infra.chat.guarded_ports import GuardedChatPlatform, GuardedMatchData, GuardedStatusRenderer
from huddle.infra.journal.interaction_journal import InteractionJournal
from huddle.infra.persistence.sqlite_client import SQLiteClient
from huddle.infra.reliability.retry import ResilienceLayer
from huddle.recovery.engine import RecoveryEngine
from huddle.rsvp.extractor import RenderedStateExtractor
from huddle.rsvp.history import MessageHistoryReader
from huddle.rsvp.mutations import RsvpMutations
from huddle.rsvp.ports.chat_platform_port import ChatPlatformPort
from huddle.rsvp.ports.match_data_port import MatchDataPort
from huddle.rsvp.ports.status_renderer_port import StatusRendererPort
from huddle.rsvp.reconciler import RsvpReconciler
from huddle.rsvp.repository import RsvpRepository
from huddle.rsvp.store import RsvpStore

logger = get_logger("huddle.startup")


@dataclass
class HuddleConfigs:
    reliability: ReliabilitySettings
    storage: StorageConfig
    journal: JournalConfig
    backup: BackupConfig
    recovery: RecoveryConfig
    sync: SyncConfig
    chat: ChatConfig

    @classmethod
    def from_env(cls) -> "HuddleConfigs":
        return cls(
            reliability=get_reliability_settings(),
            storage=get_storage_config(),
            journal=get_journal_config(),
            backup=get_backup_config(),
            recovery=get_recovery_config(),
            sync=get_sync_config(),
            chat=get_chat_config(),
        )


@dataclass
class HuddleServices:
    configs: HuddleConfigs
    resilience: ResilienceLayer
    sqlite: SQLiteClient
    repository: RsvpRepository
    store: RsvpStore
    journal: InteractionJournal
    chat: GuardedChatPlatform
    renderer: GuardedStatusRenderer
    match_data: GuardedMatchData
    history: MessageHistoryReader
    extractor: RenderedStateExtractor
    reconciler: RsvpReconciler
    mutations: RsvpMutations
    recovery: RecoveryEngine
    snapshots: SnapshotManager

    async def close(self) -> None:
        """Stop periodic snapshots and close the database."""
        await self.snapshots.stop()
        await self.sqlite.close()
        logger.info("Huddle services closed")


async def build_services(
        chat: ChatPlatformPort,
        renderer: StatusRendererPort,
        match_data: MatchDataPort,
        configs: Optional[HuddleConfigs] = None,
        resilience: Optional[ResilienceLayer] = None,
) -> HuddleServices:
    """
    Build and initialize every service.

    The platform ports are wrapped in the resilience layer here; callers pass
    the raw adapters. The store is loaded from SQLite before returning.
    """
    configs = configs or HuddleConfigs.from_env()
    resilience = resilience or ResilienceLayer(settings=configs.reliability)

    logger.info("Initializing huddle services...")

    sqlite = SQLiteClient(
        configs.storage,
        resilience=resilience,
        retry_policy=ReliabilityConfigs.storage_retry(configs.reliability),
    )
    await sqlite.connect()

    repository = RsvpRepository(sqlite)
    store = RsvpStore(repository)
    await store.initialize()
    counts = store.counts()
    logger.info(
        f"Store loaded: {counts['user_mappings']} mappings, {counts['responses']} responses, "
        f"{counts['threads']} threads"
    )

    guarded_chat = GuardedChatPlatform(chat, resilience, settings=configs.reliability)
    guarded_renderer = GuardedStatusRenderer(renderer, resilience, settings=configs.reliability)
    guarded_match_data = GuardedMatchData(match_data, resilience, settings=configs.reliability)

    journal = InteractionJournal(configs.journal)
    history = MessageHistoryReader(guarded_chat, page_size=configs.recovery.page_size)
    extractor = RenderedStateExtractor(configs.chat)

    reconciler = RsvpReconciler(
        store=store,
        history=history,
        extractor=extractor,
        renderer=guarded_renderer,
        match_data=guarded_match_data,
        config=configs.sync,
    )
    mutations = RsvpMutations(store, journal)
    recovery = RecoveryEngine(
        store=store,
        journal=journal,
        history=history,
        extractor=extractor,
        match_data=guarded_match_data,
        chat_config=configs.chat,
        config=configs.recovery,
    )
    snapshots = SnapshotManager(sqlite, configs.backup, after_restore=store.reload)

    logger.info("Huddle services initialized")
    return HuddleServices(
        configs=configs,
        resilience=resilience,
        sqlite=sqlite,
        repository=repository,
        store=store,
        journal=journal,
        chat=guarded_chat,
        renderer=guarded_renderer,
        match_data=guarded_match_data,
        history=history,
        extractor=extractor,
        reconciler=reconciler,
        mutations=mutations,
        recovery=recovery,
        snapshots=snapshots,
    )
