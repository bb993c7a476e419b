"""Inventory canary: periodic census of the metadata store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pkghub.denylist.engine import DenyList
from pkghub.errors import CorruptRecordError
from pkghub.events.bus import EventBus
from pkghub.events.envelope import INVENTORY_REPORTED, build_event
from pkghub.storage.base import ObjectStore
from pkghub.storage.keys import STORAGE_KEY_PREFIX, is_metadata_key
from pkghub.storage.records import decode_record

logger = logging.getLogger(__name__)


@dataclass
class InventoryReport:
    package_count: int = 0
    version_count: int = 0
    corrupt_records: list[str] = field(default_factory=list)
    unknown_objects: list[str] = field(default_factory=list)
    denied_count: int = 0
    scanned_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "package_count": self.package_count,
            "version_count": self.version_count,
            "corrupt_records": list(self.corrupt_records),
            "unknown_objects": list(self.unknown_objects),
            "denied_count": self.denied_count,
            "scanned_at": self.scanned_at.isoformat(),
        }


class InventoryCanary:
    def __init__(
        self,
        store: ObjectStore,
        deny_list: DenyList | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._deny_list = deny_list
        self._bus = bus

    async def run(self) -> InventoryReport:
        report = InventoryReport()
        names: set[str] = set()

        for obj in await self._store.list_objects(STORAGE_KEY_PREFIX):
            if not is_metadata_key(obj.key):
                report.unknown_objects.append(obj.key)
                continue
            data = await self._store.get(obj.key, version_id=obj.version_id)
            if data is None:
                continue
            try:
                record = decode_record(obj.key, data)
            except CorruptRecordError:
                report.corrupt_records.append(obj.key)
                continue
            names.add(record.identity.name)
            report.version_count += 1
            if self._deny_list is not None and self._deny_list.evaluate(record.identity).is_denied:
                report.denied_count += 1

        report.package_count = len(names)
        if report.corrupt_records or report.unknown_objects:
            logger.warning(
                "Inventory found %d corrupt record(s) and %d unknown object(s)",
                len(report.corrupt_records), len(report.unknown_objects),
            )
        logger.info("Inventory: %d package(s), %d version(s)", report.package_count, report.version_count)

        if self._bus is not None:
            await self._bus.publish(build_event(
                INVENTORY_REPORTED, source="/pkghub/inventory", data=report.to_dict(),
            ))
        return report
