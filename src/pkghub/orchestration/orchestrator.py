"""Orchestrator: drives one ingestion event to a terminal state.

Received → Validating → DenyCheck → Extracting → Persisted, or Rejected, or
Retryable (re-enqueued by the worker until retries run out, then Failed).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass

from pkghub.coordination.lease import LeaseManager, hold_lease
from pkghub.denylist.engine import DenyList
from pkghub.errors import (
    CorruptRecordError,
    DenyListedError,
    IntegrityMismatchError,
    LicenseNotAllowedError,
    RejectionError,
    RejectionReason,
    RetryableError,
)
from pkghub.events.bus import EventBus
from pkghub.events.envelope import PACKAGE_FAILED, PACKAGE_PERSISTED, PACKAGE_REJECTED, build_event
from pkghub.ingestion.ledger import OutcomeEntry, ProcessedLedger
from pkghub.integrity import verify_digest
from pkghub.licenses import LicenseList
from pkghub.models import IngestionEvent, PackageIdentity, PackageMetadataRecord
from pkghub.orchestration.extractor import PackageExtractor
from pkghub.orchestration.fetcher import ArtifactFetcher
from pkghub.orchestration.state import (
    TERMINAL_STATES,
    OrchestrationState,
    OrchestrationStateMachine,
)
from pkghub.storage.base import ObjectStore
from pkghub.storage.keys import metadata_key
from pkghub.storage.records import read_record, write_record

logger = logging.getLogger(__name__)


def _mark_retryable(machine: OrchestrationStateMachine) -> None:
    # cancellation can land after the record was persisted
    if machine.state not in TERMINAL_STATES:
        machine.transition(OrchestrationState.RETRYABLE)


@dataclass
class OrchestrationResult:
    identity: PackageIdentity
    state: OrchestrationState
    attempt: int
    reason: RejectionReason | None = None
    error: str = ""
    record: PackageMetadataRecord | None = None
    written: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class Orchestrator:
    def __init__(
        self,
        store: ObjectStore,
        deny_list: DenyList,
        fetcher: ArtifactFetcher,
        leases: LeaseManager,
        ledger: ProcessedLedger,
        bus: EventBus | None = None,
        extractor: PackageExtractor | None = None,
        licenses: LicenseList | None = None,
        max_concurrency: int = 10,
        max_retries: int = 5,
        execution_timeout: float = 300.0,
        lease_ttl: float = 600.0,
        worker_id: str | None = None,
    ) -> None:
        self._store = store
        self._deny_list = deny_list
        self._fetcher = fetcher
        self._leases = leases
        self._ledger = ledger
        self._bus = bus
        self._extractor = extractor or PackageExtractor()
        self._licenses = licenses or LicenseList.default()
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self.max_retries = max_retries
        self.execution_timeout = execution_timeout
        self.lease_ttl = lease_ttl
        self.worker_id = worker_id or f"orchestrator-{uuid.uuid4().hex[:8]}"

    async def process(self, event: IngestionEvent, attempt: int = 1) -> OrchestrationResult:
        machine = OrchestrationStateMachine(max_retries=self.max_retries, attempt=attempt)
        record: PackageMetadataRecord | None = None
        written = False
        error = ""

        async with self._semaphore:
            try:
                record, written = await asyncio.wait_for(
                    self._execute(event, machine),
                    timeout=self.execution_timeout,
                )
            except RejectionError as e:
                error = str(e)
                machine.reject(e.reason)
                logger.info("Rejected %s (%s): %s", event.identity, e.reason.value, e)
            except RetryableError as e:
                error = str(e)
                _mark_retryable(machine)
                logger.warning("Transient failure for %s (attempt %d): %s", event.identity, attempt, e)
            except asyncio.TimeoutError:
                error = f"execution exceeded {self.execution_timeout}s"
                _mark_retryable(machine)
                logger.warning("Timed out processing %s (attempt %d)", event.identity, attempt)
            except Exception as e:
                error = f"{type(e).__name__}: {e}"
                _mark_retryable(machine)
                logger.exception("Unexpected error processing %s (attempt %d)", event.identity, attempt)

        result = OrchestrationResult(
            identity=event.identity,
            state=machine.state,
            attempt=attempt,
            reason=machine.reason,
            error=error,
            record=record,
            written=written,
        )
        if result.state == OrchestrationState.FAILED:
            logger.error("Giving up on %s after %d attempt(s): %s", event.identity, attempt, error)
        await self._report(event, result)
        return result

    async def _execute(
        self, event: IngestionEvent, machine: OrchestrationStateMachine
    ) -> tuple[PackageMetadataRecord, bool]:
        identity = event.identity
        key = metadata_key(identity)

        async with hold_lease(self._leases, key, self.worker_id, self.lease_ttl) as lease:
            machine.transition(OrchestrationState.VALIDATING)
            data = await self._fetcher.fetch(event.artifact_location)
            if not verify_digest(data, event.integrity_digest):
                raise IntegrityMismatchError(f"{identity}: content does not match {event.integrity_digest[:16]}...")

            machine.transition(OrchestrationState.DENY_CHECK)
            decision = self._deny_list.evaluate(identity)
            if decision.is_denied:
                if await self._store.get(key) is not None:
                    logger.info("%s has a stored record; the next rebuild excludes it", identity)
                raise DenyListedError(decision.reason)

            machine.transition(OrchestrationState.EXTRACTING)
            record = await asyncio.to_thread(
                self._extractor.extract, identity, data, event.integrity_digest
            )
            if not self._licenses.is_allowed(record.license):
                raise LicenseNotAllowedError(f"{identity}: license {record.license or '(none)'} is not allowed")

            existing = await self._existing_record(identity)
            if existing is not None and existing.content_digest == event.integrity_digest:
                machine.transition(OrchestrationState.PERSISTED)
                return existing, False

            await write_record(self._store, record, fence=lease.token)
            machine.transition(OrchestrationState.PERSISTED)
            logger.info("Persisted %s", identity)
            return record, True

    async def _existing_record(self, identity: PackageIdentity) -> PackageMetadataRecord | None:
        try:
            return await read_record(self._store, identity)
        except CorruptRecordError as e:
            logger.warning("Overwriting corrupt record: %s", e)
            return None

    async def _report(self, event: IngestionEvent, result: OrchestrationResult) -> None:
        data = {
            "name": event.identity.name,
            "version": event.identity.version,
            "integrity": event.integrity_digest,
            "attempt": result.attempt,
        }
        if result.state == OrchestrationState.PERSISTED:
            # Also on the no-write path: an earlier attempt may have written
            # the record and died before announcing it.
            await self._publish(PACKAGE_PERSISTED, event, {**data, "written": result.written})
        elif result.state == OrchestrationState.REJECTED:
            await self._publish(PACKAGE_REJECTED, event, {**data, "reason": result.reason.value, "error": result.error})
        elif result.state == OrchestrationState.FAILED:
            await self._publish(PACKAGE_FAILED, event, {**data, "error": result.error})

        if result.state == OrchestrationState.PERSISTED:
            await self._ledger.mark_processed(event.identity, event.integrity_digest)
        await self._ledger.record_outcome(OutcomeEntry(
            identity=event.identity,
            integrity_digest=event.integrity_digest,
            state=result.state.value,
            reason=result.reason.value if result.reason else result.error,
            attempt=result.attempt,
        ))

    async def _publish(self, event_type: str, event: IngestionEvent, data: dict) -> None:
        if self._bus is None:
            return
        await self._bus.publish(build_event(
            event_type,
            source="/pkghub/orchestration",
            data=data,
            subject=str(event.identity),
        ))
