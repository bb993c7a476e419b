"""Worker entry point: consumes ingestion messages and runs periodic jobs."""

from __future__ import annotations

import asyncio
import logging
import signal

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from pkghub.config import HubConfig
from pkghub.hub import PackageHub

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


class HubScheduler:
    """Periodic rebuild, inventory canary, deny-list reload and lifecycle prune."""

    def __init__(self, hub: PackageHub, config: HubConfig) -> None:
        self.hub = hub
        self.config = config
        self._scheduler = AsyncIOScheduler()

    async def _rebuild(self) -> None:
        self.hub.coordinator.request()

    async def _inventory(self) -> None:
        await self.hub.run_inventory()

    async def _reload_deny_list(self) -> None:
        await self.hub.reload_deny_rules()

    async def _prune(self) -> None:
        await self.hub.prune_lifecycle()

    def configure(self) -> None:
        self._scheduler.add_job(
            self._rebuild, "interval", minutes=self.config.rebuild_interval_minutes,
            id="catalog-rebuild", replace_existing=True,
        )
        self._scheduler.add_job(
            self._inventory, "interval", minutes=self.config.inventory_interval_minutes,
            id="inventory-canary", replace_existing=True,
        )
        self._scheduler.add_job(
            self._prune, "interval", hours=self.config.lifecycle_interval_hours,
            id="lifecycle-prune", replace_existing=True,
        )
        if self.config.deny_list_file:
            self._scheduler.add_job(
                self._reload_deny_list, "interval", minutes=self.config.deny_list_reload_minutes,
                id="deny-list-reload", replace_existing=True,
            )

    def start(self) -> None:
        self._scheduler.start()

    def shutdown(self) -> None:
        self._scheduler.shutdown(wait=False)


async def main() -> None:
    config = HubConfig()  # type: ignore[call-arg]  # pydantic-settings loads from env
    hub = await PackageHub.from_config(config)

    scheduler = HubScheduler(hub, config)
    scheduler.configure()
    scheduler.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    # First build so readers have a catalog before any ingestion completes.
    hub.coordinator.request()
    logger.info("pkghub worker started. Consuming %s...", config.queue_name)

    try:
        await hub.worker.run(stop)
    finally:
        scheduler.shutdown()
        await hub.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
