"""PackageHub: wires ingestion, orchestration and the catalog builder together."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from pkghub.catalog.builder import CatalogBuilder
from pkghub.catalog.coordinator import RebuildCoordinator
from pkghub.config import HubConfig
from pkghub.coordination.lease import InMemoryLeaseManager, LeaseManager, RedisLeaseManager
from pkghub.db.engine import create_engine
from pkghub.db.ledger import SqlLedger
from pkghub.denylist.engine import DenyList, PruneEvent, load_rules
from pkghub.errors import CatalogBuildError
from pkghub.events.bus import InMemoryEventBus
from pkghub.events.envelope import INGESTION_RECEIVED, PACKAGE_PERSISTED, CloudEvent
from pkghub.ingestion.ingestion import Ingestion, SubmitResult
from pkghub.ingestion.ledger import InMemoryLedger, ProcessedLedger
from pkghub.ingestion.queue import InMemoryWorkQueue, RedisWorkQueue, WorkQueue
from pkghub.inventory import InventoryCanary, InventoryReport
from pkghub.licenses import LicenseList
from pkghub.models import CatalogDocument, DenyRule, IngestionEvent
from pkghub.orchestration.fetcher import ArtifactFetcher, EgressPolicy
from pkghub.orchestration.orchestrator import OrchestrationResult, Orchestrator
from pkghub.orchestration.worker import OrchestrationWorker
from pkghub.redis.client import RedisManager
from pkghub.storage.base import LifecyclePolicy, ObjectStore
from pkghub.storage.filesystem import LocalObjectStore
from pkghub.storage.keys import CATALOG_KEY
from pkghub.storage.memory import InMemoryObjectStore
from pkghub.storage.records import read_catalog

logger = logging.getLogger(__name__)


class PackageHub:
    """Composition root for one indexing deployment.

    Successful writes and deny-list prunes both request a catalog rebuild
    through the same coordinator, so concurrent triggers coalesce into at
    most one running and one trailing rebuild.
    """

    def __init__(
        self,
        store: ObjectStore,
        queue: WorkQueue,
        ledger: ProcessedLedger,
        leases: LeaseManager,
        config: HubConfig | None = None,
        rules: Sequence[DenyRule] = (),
        fetcher: ArtifactFetcher | None = None,
    ) -> None:
        self.config = config or HubConfig()  # type: ignore[call-arg]
        self.store = store
        self.queue = queue
        self.ledger = ledger
        self.leases = leases
        self.bus = InMemoryEventBus()
        self.licenses = LicenseList.from_ids(self.config.license_ids)
        self.lifecycle = LifecyclePolicy(
            noncurrent_days=self.config.noncurrent_retention_days,
            prefix_overrides={CATALOG_KEY: self.config.catalog_retention_days},
        )
        self._redis: RedisManager | None = None
        self._engine = None

        self.deny_list = DenyList(rules, store=store, bus=self.bus)
        self.ingestion = Ingestion(queue, ledger)
        self.fetcher = fetcher or ArtifactFetcher(
            EgressPolicy.from_lists(self.config.egress_hosts, self.config.artifact_root_paths)
        )
        self.orchestrator = Orchestrator(
            store=store,
            deny_list=self.deny_list,
            fetcher=self.fetcher,
            leases=leases,
            ledger=ledger,
            bus=self.bus,
            licenses=self.licenses,
            max_concurrency=self.config.max_concurrency,
            max_retries=self.config.max_retries,
            execution_timeout=self.config.execution_timeout,
            lease_ttl=self.config.lease_ttl_seconds,
        )
        self.worker = OrchestrationWorker(
            queue,
            self.orchestrator,
            dlq=self.bus.dlq,
            retry_base_delay=self.config.retry_base_delay,
            retry_max_delay=self.config.retry_max_delay,
            max_concurrency=self.config.max_concurrency,
        )
        self.builder = CatalogBuilder(store, self.deny_list, licenses=self.licenses)
        self.coordinator = RebuildCoordinator(
            self.builder,
            leases=leases,
            bus=self.bus,
            attempts=self.config.rebuild_attempts,
            backoff_min=self.config.rebuild_backoff_min,
            backoff_max=self.config.rebuild_backoff_max,
            lease_ttl=self.config.lease_ttl_seconds,
        )
        self.inventory = InventoryCanary(store, deny_list=self.deny_list, bus=self.bus)

        self.bus.subscribe(PACKAGE_PERSISTED, self._request_rebuild)
        self.deny_list.subscribe(self._request_rebuild)

    @classmethod
    async def from_config(cls, config: HubConfig) -> PackageHub:
        store: ObjectStore
        if config.storage_backend == "filesystem":
            store = LocalObjectStore(config.storage_root)
        else:
            store = InMemoryObjectStore()

        redis: RedisManager | None = None
        if "redis" in (config.queue_backend, config.lease_backend):
            redis = RedisManager(config.redis_config())

        queue: WorkQueue
        if config.queue_backend == "redis":
            queue = RedisWorkQueue(redis, config.queue_name, config.queue_visibility_timeout)
        else:
            queue = InMemoryWorkQueue(config.queue_visibility_timeout)

        leases: LeaseManager
        if config.lease_backend == "redis":
            leases = RedisLeaseManager(redis)
        else:
            leases = InMemoryLeaseManager()

        engine = None
        ledger: ProcessedLedger
        if config.ledger_url:
            engine = create_engine(config.ledger_url)
            ledger = SqlLedger(engine)
            await ledger.create_schema()
        else:
            ledger = InMemoryLedger()

        rules: list[DenyRule] = []
        if config.deny_list_file:
            rules = load_rules(config.deny_list_file)
            logger.info("Loaded %d deny rule(s) from %s", len(rules), config.deny_list_file)

        hub = cls(store, queue, ledger, leases, config=config, rules=rules)
        hub._redis = redis
        hub._engine = engine
        logger.info(
            "PackageHub ready (storage=%s, queue=%s, leases=%s, ledger=%s)",
            config.storage_backend, config.queue_backend, config.lease_backend,
            "sql" if engine is not None else "memory",
        )
        return hub

    async def _request_rebuild(self, event: CloudEvent) -> None:
        logger.debug("Rebuild requested by %s", event.type)
        self.coordinator.request()

    async def submit(self, event: IngestionEvent | Mapping[str, Any]) -> SubmitResult:
        return await self.ingestion.submit(event)

    async def update_deny_rules(self, rules: Sequence[DenyRule]) -> PruneEvent | None:
        return await self.deny_list.update_rules(rules)

    async def reload_deny_rules(self) -> PruneEvent | None:
        if not self.config.deny_list_file:
            return None
        return await self.update_deny_rules(load_rules(self.config.deny_list_file))

    async def process_pending(self) -> list[OrchestrationResult]:
        """Run every ready ingestion message, then wait for catalog rebuilds to settle."""
        results = await self.worker.drain()
        await self.coordinator.wait_idle()
        return results

    async def rebuild_catalog(self) -> CatalogDocument:
        """Rebuild now and return the published catalog."""
        self.coordinator.request()
        await self.coordinator.wait_idle()
        outcome = self.coordinator.outcomes[-1]
        if not outcome.success:
            raise CatalogBuildError(outcome.error)
        return outcome.catalog

    async def read_catalog(self) -> CatalogDocument | None:
        return await read_catalog(self.store)

    async def replay_failed(self, event_id: str) -> bool:
        """Send a dead-lettered ingestion message back to the work queue.

        Only ingestion messages are replayable; failed bus notifications stay
        in the DLQ for inspection.
        """
        parked = self.bus.dlq.get(event_id)
        if parked is None or parked.event.type != INGESTION_RECEIVED:
            return False
        event = self.bus.dlq.replay(event_id)
        await self.queue.send(event)
        logger.info("Replayed %s from the DLQ", event.subject or event.id)
        return True

    async def run_inventory(self) -> InventoryReport:
        return await self.inventory.run()

    async def prune_lifecycle(self) -> int:
        removed = await self.store.prune_noncurrent(self.lifecycle)
        if removed:
            logger.info("Lifecycle pruned %d non-current version(s)", removed)
        return removed

    async def close(self) -> None:
        await self.coordinator.wait_idle()
        await self.fetcher.close()
        if self._redis is not None:
            await self._redis.close()
        if self._engine is not None:
            await self._engine.dispose()
