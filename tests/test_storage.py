"""Tests for the versioned object stores, storage keys and record codecs."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from pkghub.errors import CorruptRecordError, FencedWriteError
from pkghub.integrity import compute_digest
from pkghub.models import CatalogDocument, PackageIdentity, PackageMetadataRecord
from pkghub.storage import (
    CATALOG_KEY,
    InMemoryObjectStore,
    LifecyclePolicy,
    LocalObjectStore,
    identity_from_key,
    is_metadata_key,
    metadata_key,
)
from pkghub.storage.records import decode_record, read_catalog, read_record, write_catalog, write_record

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def catalog_of(name: str, count: int) -> CatalogDocument:
    return CatalogDocument(packages=[
        PackageMetadataRecord(
            identity=PackageIdentity(name=name, version=f"1.0.{n}"),
            description="x" * 200,
            content_digest=compute_digest(f"{name}{n}".encode()),
        )
        for n in range(count)
    ])


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(params=["memory", "filesystem"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryObjectStore()
    return LocalObjectStore(tmp_path / "objects")


class TestKeys:
    def test_metadata_key(self):
        identity = PackageIdentity(name="@scope/pkg", version="1.0.0")
        key = metadata_key(identity)
        assert key == "data/@scope/pkg/v1.0.0/metadata.json"
        assert is_metadata_key(key)
        assert identity_from_key(key) == identity

    def test_non_metadata_keys(self):
        assert not is_metadata_key(CATALOG_KEY)
        assert not is_metadata_key("data/pkg/v1.0.0/readme.md")
        assert identity_from_key("data/pkg/vnot-semver/metadata.json") is None


class TestObjectStore:
    async def test_get_missing(self, store):
        assert await store.get("data/missing") is None

    async def test_put_replaces_current(self, store):
        first = await store.put("data/a", b"one")
        second = await store.put("data/a", b"two")
        assert await store.get("data/a") == b"two"
        assert await store.get("data/a", version_id=first.version_id) == b"one"
        versions = await store.list_versions("data/a")
        assert [v.version_id for v in versions] == [first.version_id, second.version_id]

    async def test_list_objects_by_prefix(self, store):
        await store.put("data/a", b"1")
        await store.put("data/b", b"2")
        await store.put(CATALOG_KEY, b"{}")
        keys = sorted(o.key for o in await store.list_objects("data/"))
        assert keys == ["data/a", "data/b"]

    async def test_stale_fence_rejected(self, store):
        await store.put("data/a", b"new", fence=2)
        with pytest.raises(FencedWriteError):
            await store.put("data/a", b"old", fence=1)
        assert await store.get("data/a") == b"new"

    async def test_equal_fence_accepted(self, store):
        await store.put("data/a", b"1", fence=3)
        await store.put("data/a", b"2", fence=3)
        assert await store.get("data/a") == b"2"


class TestLocalObjectStore:
    async def test_rejects_unsafe_keys(self, tmp_path):
        store = LocalObjectStore(tmp_path)
        for key in ("", "/abs", "data/../escape", "data/.hidden"):
            with pytest.raises(ValueError):
                await store.put(key, b"x")

    async def test_no_temp_files_left(self, tmp_path):
        store = LocalObjectStore(tmp_path)
        await store.put("data/a", b"payload")
        leftovers = [p for p in tmp_path.rglob("*.tmp")]
        assert leftovers == []
        assert (tmp_path / "data" / "a").read_bytes() == b"payload"

    async def test_catalog_reads_during_write_see_whole_documents(self, tmp_path):
        store = LocalObjectStore(tmp_path)
        old = catalog_of("old", 500)
        new = catalog_of("new", 5000)
        await write_catalog(store, old)
        writing = asyncio.create_task(write_catalog(store, new))

        seen = []
        while True:
            done = writing.done()
            reads = await asyncio.gather(*(read_catalog(store) for _ in range(8)))
            seen.extend(c.packages[0].identity.name for c in reads)
            assert all(len(c.packages) in (500, 5000) for c in reads)
            if done:
                break
        await writing

        assert set(seen) <= {"old", "new"}
        assert seen[-1] == "new"


class TestLifecycle:
    def test_retention_override(self):
        policy = LifecyclePolicy()
        assert policy.retention_for(CATALOG_KEY) == timedelta(days=7)
        assert policy.retention_for("data/pkg/v1.0.0/metadata.json") == timedelta(days=90)

    async def test_prune_noncurrent(self):
        clock = FakeClock()
        store = InMemoryObjectStore(clock=clock)
        await store.put(CATALOG_KEY, b"v1")
        clock.advance(days=1)
        await store.put(CATALOG_KEY, b"v2")
        await store.put("data/a", b"a1")
        await store.put("data/a", b"a2")

        clock.advance(days=8)
        removed = await store.prune_noncurrent(LifecyclePolicy())

        assert removed == 1
        assert len(await store.list_versions(CATALOG_KEY)) == 1
        assert len(await store.list_versions("data/a")) == 2
        assert await store.get(CATALOG_KEY) == b"v2"

    async def test_current_version_never_pruned(self):
        clock = FakeClock()
        store = InMemoryObjectStore(clock=clock)
        await store.put("data/a", b"only")
        clock.advance(days=1000)
        assert await store.prune_noncurrent(LifecyclePolicy()) == 0
        assert await store.get("data/a") == b"only"


class TestRecords:
    async def test_record_round_trip(self, store):
        record = PackageMetadataRecord(
            identity=PackageIdentity(name="pkg", version="1.0.0"),
            description="A package",
            license="MIT",
            tags=["cdk"],
            content_digest=compute_digest(b"x"),
        )
        await write_record(store, record)
        loaded = await read_record(store, record.identity)
        assert loaded == record

    def test_decode_rejects_garbage(self):
        with pytest.raises(CorruptRecordError):
            decode_record("data/pkg/v1.0.0/metadata.json", b"not json")

    def test_decode_rejects_misplaced_record(self):
        record = PackageMetadataRecord(
            identity=PackageIdentity(name="other", version="1.0.0"),
            content_digest=compute_digest(b"x"),
        )
        with pytest.raises(CorruptRecordError):
            decode_record("data/pkg/v1.0.0/metadata.json", record.model_dump_json().encode())

    async def test_catalog_absent_before_first_build(self, store):
        assert await read_catalog(store) is None
        await write_catalog(store, CatalogDocument())
        assert (await read_catalog(store)).packages == []
