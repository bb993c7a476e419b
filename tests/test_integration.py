"""End-to-end tests through PackageHub: submit, orchestrate, rebuild."""

import asyncio

import pytest

from pkghub.config import HubConfig
from pkghub.coordination.lease import InMemoryLeaseManager
from pkghub.errors import CatalogBuildError
from pkghub.events.envelope import CATALOG_BUILT, DENY_LIST_PRUNED, PACKAGE_PERSISTED, build_event
from pkghub.hub import PackageHub
from pkghub.ingestion import InMemoryLedger, InMemoryWorkQueue
from pkghub.integrity import compute_digest
from pkghub.models import DenyRule
from pkghub.orchestration import OrchestrationState
from pkghub.storage.filesystem import LocalObjectStore
from pkghub.storage.keys import CATALOG_KEY, metadata_key
from pkghub.storage.memory import InMemoryObjectStore


@pytest.fixture
def config(artifact_dir, tmp_path):
    return HubConfig(
        _env_file=None,
        artifact_roots=str(artifact_dir),
        retry_base_delay=0,
        rebuild_backoff_min=0,
        rebuild_backoff_max=0,
        storage_root=str(tmp_path / "objects"),
    )


@pytest.fixture
async def hub(config):
    hub = await PackageHub.from_config(config)
    yield hub
    await hub.close()


def names(catalog):
    return [str(i) for i in catalog.identities()]


class StallingStore(InMemoryObjectStore):
    """Lands metadata writes, then stalls before acknowledging them."""

    def __init__(self, stall: float) -> None:
        super().__init__()
        self.stall = stall

    async def put(self, key, data, fence=None):
        version = await super().put(key, data, fence=fence)
        if key != CATALOG_KEY:
            await asyncio.sleep(self.stall)
        return version


class TestPackageHub:
    async def test_submit_is_catalogued(self, hub, publish):
        result = await hub.submit(publish("foo", "1.0.0"))
        assert result.accepted

        await hub.process_pending()

        assert names(await hub.read_catalog()) == ["foo@1.0.0"]
        assert hub.bus.of_type(CATALOG_BUILT)

    async def test_deny_rule_prunes_catalog(self, hub, publish):
        await hub.submit(publish("foo", "1.0.0"))
        await hub.submit(publish("foo", "1.1.0"))
        await hub.submit(publish("bar", "1.0.0"))
        await hub.process_pending()
        assert names(await hub.read_catalog()) == ["bar@1.0.0", "foo@1.0.0", "foo@1.1.0"]

        prune = await hub.update_deny_rules([DenyRule(package_name="foo", version="*", reason="compromised")])
        await hub.coordinator.wait_idle()

        assert len(prune.denied) == 2
        assert len(hub.bus.of_type(DENY_LIST_PRUNED)) == 1
        assert names(await hub.read_catalog()) == ["bar@1.0.0"]

    async def test_integrity_mismatch_leaves_catalog_alone(self, hub, publish):
        await hub.submit(publish("foo", "1.0.0"))
        await hub.process_pending()
        before = await hub.read_catalog()

        bad = publish("bar", "2.0.0").model_copy(update={"integrity_digest": compute_digest(b"forged")})
        await hub.submit(bad)
        [result] = await hub.process_pending()

        assert result.state == OrchestrationState.REJECTED
        assert await hub.store.get(metadata_key(bad.identity)) is None
        after = await hub.read_catalog()
        assert after.identities() == before.identities()
        assert after.built_at == before.built_at

    async def test_concurrent_duplicate_submissions_write_once(self, hub, publish):
        event = publish("baz", "1.0.0")
        await asyncio.gather(hub.submit(event), hub.submit(event))

        results = await hub.process_pending()

        assert sum(r.written for r in results) == 1
        assert {r.state for r in results} <= {OrchestrationState.PERSISTED, OrchestrationState.RETRYABLE}
        assert results[-1].state == OrchestrationState.PERSISTED
        assert len(await hub.store.list_versions(metadata_key(event.identity))) == 1
        assert names(await hub.read_catalog()) == ["baz@1.0.0"]
        assert hub.bus.dlq.depth == 0

    async def test_replay_ignores_bus_notifications(self, hub):
        event = build_event(PACKAGE_PERSISTED, "/pkghub/orchestration", {}, subject="foo@1.0.0")
        hub.bus.dlq.add(event, error="handler down", retry_count=3)

        assert not await hub.replay_failed(event.id)
        assert hub.bus.dlq.depth == 1
        assert await hub.queue.depth() == 0

    async def test_resubmitting_processed_artifact_is_a_no_op(self, hub, publish):
        event = publish("foo", "1.0.0")
        await hub.submit(event)
        await hub.process_pending()

        again = await hub.submit(event)

        assert again.duplicate
        assert await hub.queue.depth() == 0

    async def test_unlicensed_package_rejected(self, hub, publish):
        await hub.submit(publish("copyleft", "1.0.0", license="GPL-3.0"))
        [result] = await hub.process_pending()
        assert result.state == OrchestrationState.REJECTED
        assert await hub.read_catalog() is None

    async def test_inventory_and_lifecycle(self, hub, publish):
        await hub.submit(publish("foo", "1.0.0"))
        await hub.process_pending()

        report = await hub.run_inventory()
        assert report.version_count == 1
        assert await hub.prune_lifecycle() == 0

    async def test_rebuild_catalog_returns_document(self, hub, publish):
        await hub.submit(publish("foo", "1.0.0"))
        await hub.worker.drain()

        catalog = await hub.rebuild_catalog()

        assert names(catalog) == ["foo@1.0.0"]

    async def test_rebuild_catalog_raises_when_build_fails(self, hub, monkeypatch):
        async def broken(fence=None):
            raise ValueError("disk on fire")

        monkeypatch.setattr(hub.builder, "rebuild", broken)

        with pytest.raises(CatalogBuildError, match="disk on fire"):
            await hub.rebuild_catalog()

    async def test_replay_failed_requeues_message(self, hub, publish):
        await hub.submit(publish("foo", "1.0.0"))
        message = await hub.queue.receive()
        await hub.queue.ack(message)
        hub.bus.dlq.add(message.event, error="gave up", retry_count=6)

        assert await hub.replay_failed(message.event.id)
        assert not await hub.replay_failed(message.event.id)
        [result] = await hub.process_pending()

        assert result.state == OrchestrationState.PERSISTED
        assert hub.bus.dlq.depth == 0


class TestFromConfig:
    async def test_filesystem_and_sql_backends(self, config, tmp_path, publish):
        config.storage_backend = "filesystem"
        config.ledger_url = f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"
        deny_file = tmp_path / "deny.yaml"
        deny_file.write_text("rules:\n  - package_name: evil\n")
        config.deny_list_file = str(deny_file)

        hub = await PackageHub.from_config(config)
        try:
            assert isinstance(hub.store, LocalObjectStore)
            assert hub.deny_list.evaluate(publish("evil", "1.0.0").identity).is_denied

            event = publish("foo", "1.0.0")
            await hub.submit(event)
            await hub.process_pending()

            assert names(await hub.read_catalog()) == ["foo@1.0.0"]
            assert await hub.ledger.is_processed(event.identity, event.integrity_digest)
        finally:
            await hub.close()

    async def test_reload_deny_rules(self, config, tmp_path):
        deny_file = tmp_path / "deny.yaml"
        deny_file.write_text("rules: []\n")
        config.deny_list_file = str(deny_file)
        hub = await PackageHub.from_config(config)
        try:
            deny_file.write_text("rules:\n  - package_name: evil\n    version: 1.0.0\n")
            await hub.reload_deny_rules()
            assert [r.package_name for r in hub.deny_list.rules] == ["evil"]
        finally:
            await hub.close()


class TestInterruptedWrite:
    async def test_record_written_by_timed_out_attempt_is_catalogued(self, config, publish):
        config.execution_timeout = 0.2
        hub = PackageHub(
            StallingStore(stall=0.5), InMemoryWorkQueue(), InMemoryLedger(), InMemoryLeaseManager(), config=config,
        )
        event = publish("foo", "1.0.0")
        await hub.submit(event)

        results = await hub.process_pending()

        assert [(r.state, r.written) for r in results] == [
            (OrchestrationState.RETRYABLE, False),
            (OrchestrationState.PERSISTED, False),
        ]
        assert names(await hub.read_catalog()) == ["foo@1.0.0"]
        await hub.close()
