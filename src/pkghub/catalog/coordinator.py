"""Coalescing rebuild trigger for the catalog builder.

At most one rebuild runs at a time. Requests arriving while a rebuild runs
collapse into a single trailing rebuild, which starts after the current one
finishes and therefore sees every write that preceded any of the requests.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from enum import Enum

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pkghub.catalog.builder import CatalogBuilder
from pkghub.coordination.lease import LeaseManager, hold_lease
from pkghub.errors import RetryableError
from pkghub.events.bus import EventBus
from pkghub.events.envelope import CATALOG_BUILT, CATALOG_FAILED, build_event
from pkghub.models import CatalogDocument
from pkghub.storage.keys import CATALOG_KEY

logger = logging.getLogger(__name__)


class RebuildState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    RUNNING_WITH_PENDING = "running_with_pending"


@dataclass
class RebuildOutcome:
    success: bool
    catalog: CatalogDocument | None = None
    error: str = ""
    attempts: int = 1


class RebuildCoordinator:
    def __init__(
        self,
        builder: CatalogBuilder,
        leases: LeaseManager | None = None,
        bus: EventBus | None = None,
        attempts: int = 5,
        backoff_min: float = 1.0,
        backoff_max: float = 30.0,
        lease_ttl: float = 600.0,
        owner: str | None = None,
    ) -> None:
        self._builder = builder
        self._leases = leases
        self._bus = bus
        self.attempts = attempts
        self.backoff_min = backoff_min
        self.backoff_max = backoff_max
        self.lease_ttl = lease_ttl
        self.owner = owner or f"catalog-builder-{uuid.uuid4().hex[:8]}"
        self.state = RebuildState.IDLE
        self.outcomes: deque[RebuildOutcome] = deque(maxlen=100)
        self._task: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    def request(self) -> None:
        """Ask for a rebuild without waiting for it."""
        if self.state == RebuildState.IDLE:
            self.state = RebuildState.RUNNING
            self._idle.clear()
            self._task = asyncio.create_task(self._run_loop())
        elif self.state == RebuildState.RUNNING:
            self.state = RebuildState.RUNNING_WITH_PENDING
            logger.debug("Rebuild in progress; queued one trailing rebuild")

    async def wait_idle(self) -> None:
        await self._idle.wait()

    async def _run_loop(self) -> None:
        try:
            while True:
                outcome = await self._rebuild_with_retry()
                self.outcomes.append(outcome)
                await self._report(outcome)
                if self.state == RebuildState.RUNNING_WITH_PENDING:
                    self.state = RebuildState.RUNNING
                    continue
                break
        finally:
            self.state = RebuildState.IDLE
            self._task = None
            self._idle.set()

    async def _rebuild_with_retry(self) -> RebuildOutcome:
        attempt = 0
        try:
            async for attempt_state in AsyncRetrying(
                stop=stop_after_attempt(self.attempts),
                wait=wait_exponential(min=self.backoff_min, max=self.backoff_max),
                retry=retry_if_exception_type(RetryableError),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    catalog = await self._rebuild_once()
            return RebuildOutcome(success=True, catalog=catalog, attempts=attempt)
        except Exception as e:
            logger.exception("Catalog rebuild failed after %d attempt(s); previous catalog kept", attempt)
            return RebuildOutcome(success=False, error=f"{type(e).__name__}: {e}", attempts=attempt)

    async def _rebuild_once(self) -> CatalogDocument:
        if self._leases is None:
            return await self._builder.rebuild()
        async with hold_lease(self._leases, CATALOG_KEY, self.owner, self.lease_ttl) as lease:
            return await self._builder.rebuild(fence=lease.token)

    async def _report(self, outcome: RebuildOutcome) -> None:
        if self._bus is None:
            return
        if outcome.success:
            stats = self._builder.last_stats
            event = build_event(CATALOG_BUILT, source="/pkghub/catalog", data={
                "packages": stats.included,
                "denied": stats.denied,
                "unlicensed": stats.unlicensed,
                "corrupt": stats.corrupt,
                "attempts": outcome.attempts,
            })
        else:
            event = build_event(CATALOG_FAILED, source="/pkghub/catalog", data={
                "error": outcome.error,
                "attempts": outcome.attempts,
            })
        await self._bus.publish(event)
