# =============================================================================
# File: tests/unit/test_bootstrap.py
# Description: Service wiring, guarded ports and background task lifecycle
# =============================================================================

import pytest

from huddle.common.exceptions.exceptions import PermanentClientError, TransientNetworkError
from huddle.config.backup_config import BackupConfig
from huddle.config.journal_config import JournalConfig
from huddle.config.reliability_config import ReliabilitySettings
from huddle.config.sync_config import SyncConfig
from huddle.core import background_tasks
from huddle.core.bootstrap import HuddleConfigs, build_services
from huddle.infra.reliability.retry import ResilienceLayer
from huddle.rsvp.models import RosterMember
from tests.conftest import CHANNEL_ID, mapping
from tests.fakes.fake_chat_platform import link_embed


@pytest.fixture
def configs(storage_config, journal_config, backup_config, recovery_config, chat_config):
    return HuddleConfigs(
        reliability=ReliabilitySettings(),
        storage=storage_config,
        journal=journal_config,
        backup=backup_config,
        recovery=recovery_config,
        sync=SyncConfig(inter_item_delay_ms=100),
        chat=chat_config,
    )


@pytest.fixture
async def services(chat, renderer, match_data, configs, sleep_recorder):
    resilience = ResilienceLayer(settings=configs.reliability, sleep=sleep_recorder)
    built = await build_services(chat, renderer, match_data, configs=configs, resilience=resilience)
    yield built
    await built.close()


@pytest.mark.asyncio
async def test_services_share_one_store(services):
    await services.mutations.link_account("u1", "Alice", RosterMember(roster_id="r-alice", nickname="alice"))

    assert services.reconciler.store is services.store
    assert services.recovery.store is services.store
    assert services.store.get_user_mapping("u1").roster_nickname == "alice"
    assert (await services.sqlite.health_check())["healthy"]


@pytest.mark.asyncio
async def test_chat_reads_are_retried(services, chat, sleep_recorder):
    chat.add_message(CHANNEL_ID, content="hello")
    chat.configure_failure("fetch_messages", TransientNetworkError("connection reset"), times=1)

    messages = await services.history.fetch_recent(CHANNEL_ID, limit=10)

    assert [m.content for m in messages] == ["hello"]
    assert chat.get_call_count("fetch_messages") == 2
    assert len(sleep_recorder.delays) == 1
    assert services.chat.bot_user_id == chat.bot_user_id


@pytest.mark.asyncio
async def test_permanent_renderer_errors_are_not_retried(services, renderer):
    renderer.configure_failure(PermanentClientError("missing permissions", status=403))

    with pytest.raises(PermanentClientError):
        await services.renderer.rerender_status("m1", "t1")
    assert len(renderer.rerenders) == 1


@pytest.mark.asyncio
async def test_match_data_goes_through_its_own_circuit(services, match_data):
    roster = await services.match_data.list_roster_members()

    assert [m.nickname for m in roster] == ["alice", "bob", "Carol"]
    assert "match_data" in services.resilience.get_circuit_breaker_status()


@pytest.mark.asyncio
async def test_store_is_reloaded_on_rebuild(chat, renderer, match_data, configs, sleep_recorder):
    resilience = ResilienceLayer(settings=configs.reliability, sleep=sleep_recorder)
    first = await build_services(chat, renderer, match_data, configs=configs, resilience=resilience)
    await first.store.upsert_user_mapping(mapping("u1", "alice"))
    await first.close()

    second = await build_services(chat, renderer, match_data, configs=configs, resilience=resilience)
    try:
        assert second.store.get_user_mapping("u1") is not None
    finally:
        await second.close()


@pytest.mark.asyncio
async def test_background_tasks_run_startup_recovery(chat, renderer, match_data, configs, sleep_recorder, tmp_path):
    configs.sync = SyncConfig(enable_periodic=False)
    configs.journal = JournalConfig(path=str(tmp_path / "journal.jsonl"), enable_compaction=False)
    configs.backup = BackupConfig(directory=str(tmp_path / "backups"), enable_periodic=False)
    chat.add_message(CHANNEL_ID, embeds=(link_embed("alice"),), interaction_user=None)

    resilience = ResilienceLayer(settings=configs.reliability, sleep=sleep_recorder)
    services = await build_services(chat, renderer, match_data, configs=configs, resilience=resilience)
    try:
        await background_tasks.start_background_tasks(services)
        assert set(background_tasks._tasks) == {"startup_recovery"}
        await background_tasks._tasks["startup_recovery"]

        assert services.recovery.last_report is not None
        assert services.recovery.last_report.unresolved >= 1
    finally:
        await background_tasks.stop_background_tasks(services)
        await services.close()

    assert background_tasks._tasks == {}
    assert background_tasks.stop_requested()
