"""Catalog builder: snapshot the metadata store and write one catalog document."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pkghub.denylist.engine import DenyList
from pkghub.errors import CorruptRecordError
from pkghub.licenses import LicenseList
from pkghub.models import CatalogDocument, PackageMetadataRecord
from pkghub.storage.base import ObjectStore
from pkghub.storage.keys import STORAGE_KEY_PREFIX, is_metadata_key
from pkghub.storage.records import decode_record, write_catalog

logger = logging.getLogger(__name__)


@dataclass
class BuildStats:
    scanned: int = 0
    included: int = 0
    denied: int = 0
    unlicensed: int = 0
    corrupt: int = 0


class CatalogBuilder:
    def __init__(
        self,
        store: ObjectStore,
        deny_list: DenyList,
        licenses: LicenseList | None = None,
    ) -> None:
        self._store = store
        self._deny_list = deny_list
        self._licenses = licenses or LicenseList.default()
        self.last_stats = BuildStats()

    async def collect(self) -> tuple[list[PackageMetadataRecord], BuildStats]:
        """Read every allowed record from a listing snapshot.

        Each key is read at the version seen in the listing, so records
        written after the listing started are left for the next build.
        """
        stats = BuildStats()
        records: list[PackageMetadataRecord] = []
        listing = await self._store.list_objects(STORAGE_KEY_PREFIX)

        for obj in listing:
            if not is_metadata_key(obj.key):
                continue
            stats.scanned += 1
            data = await self._store.get(obj.key, version_id=obj.version_id)
            if data is None:
                continue
            try:
                record = decode_record(obj.key, data)
            except CorruptRecordError as e:
                stats.corrupt += 1
                logger.warning("Skipping corrupt record: %s", e)
                continue

            if self._admit(record, stats):
                records.append(record)

        records.sort(key=lambda r: r.identity.sort_key)
        stats.included = len(records)
        return records, stats

    def _admit(self, record: PackageMetadataRecord, stats: BuildStats) -> bool:
        if self._deny_list.evaluate(record.identity).is_denied:
            stats.denied += 1
            return False
        if not self._licenses.is_allowed(record.license):
            stats.unlicensed += 1
            return False
        return True

    async def rebuild(self, fence: int | None = None) -> CatalogDocument:
        records, stats = await self.collect()
        # Rules may have changed while records were being read. Nothing may
        # await between this pass and the put.
        records = [r for r in records if self._admit(r, stats)]
        stats.included = len(records)
        catalog = CatalogDocument(packages=records)
        await write_catalog(self._store, catalog, fence=fence)
        self.last_stats = stats
        logger.info(
            "Catalog rebuilt: %d package version(s), %d denied, %d unlicensed, %d corrupt",
            stats.included, stats.denied, stats.unlicensed, stats.corrupt,
        )
        return catalog
