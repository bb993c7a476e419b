"""Read and write metadata records and the catalog document."""

from __future__ import annotations

from pydantic import ValidationError

from pkghub.errors import CorruptRecordError
from pkghub.models import CatalogDocument, PackageIdentity, PackageMetadataRecord
from pkghub.storage.base import ObjectStore, ObjectVersion
from pkghub.storage.keys import CATALOG_KEY, identity_from_key, metadata_key


def encode_record(record: PackageMetadataRecord) -> bytes:
    return record.model_dump_json(indent=2).encode("utf-8")


def decode_record(key: str, data: bytes) -> PackageMetadataRecord:
    """Parse a stored record and check it belongs under *key*."""
    try:
        record = PackageMetadataRecord.model_validate_json(data)
    except ValidationError as e:
        raise CorruptRecordError(f"{key}: {e.error_count()} validation error(s)") from e
    expected = identity_from_key(key)
    if expected is not None and expected != record.identity:
        raise CorruptRecordError(f"{key}: holds metadata for {record.identity}")
    return record


async def write_record(
    store: ObjectStore, record: PackageMetadataRecord, fence: int | None = None
) -> ObjectVersion:
    return await store.put(metadata_key(record.identity), encode_record(record), fence=fence)


async def read_record(
    store: ObjectStore, identity: PackageIdentity
) -> PackageMetadataRecord | None:
    key = metadata_key(identity)
    data = await store.get(key)
    if data is None:
        return None
    return decode_record(key, data)


async def write_catalog(
    store: ObjectStore, catalog: CatalogDocument, fence: int | None = None
) -> ObjectVersion:
    return await store.put(CATALOG_KEY, catalog.model_dump_json(indent=2).encode("utf-8"), fence=fence)


async def read_catalog(store: ObjectStore) -> CatalogDocument | None:
    """The last successfully written catalog, or None before the first build."""
    data = await store.get(CATALOG_KEY)
    if data is None:
        return None
    return CatalogDocument.model_validate_json(data)
