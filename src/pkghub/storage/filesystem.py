"""Filesystem-backed versioned object store.

Layout under ``root``:
  - ``<key>``                       current bytes, replaced with os.replace
  - ``.versions/<key>/<version_id>`` every retained version
  - ``.fences/<key>``               highest fencing token accepted for key

Version ids start with a zero-padded nanosecond timestamp so that the
lexicographically greatest id is the current version. Writes go to a dot-file
first and are renamed into place, so readers never see a partial object.
Fencing is enforced per process; run one writer process per root.
"""

from __future__ import annotations

import asyncio
import os
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path

from pkghub.errors import FencedWriteError, StorageUnavailableError
from pkghub.storage.base import LifecyclePolicy, ObjectVersion

_VERSIONS_DIR = ".versions"
_FENCES_DIR = ".fences"


def _version_time(version_id: str) -> datetime:
    nanos = int(version_id.split("-", 1)[0])
    return datetime.fromtimestamp(nanos / 1e9, tz=timezone.utc)


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    with open(tmp, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


class LocalObjectStore:
    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self._locks: dict[str, asyncio.Lock] = {}

    def _check_key(self, key: str) -> None:
        parts = key.split("/")
        if not key or key.startswith("/") or any(p in ("", "..") or p.startswith(".") for p in parts):
            raise ValueError(f"invalid object key: {key!r}")

    def _versions_dir(self, key: str) -> Path:
        return self.root / _VERSIONS_DIR / key

    def _lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def get(self, key: str, version_id: str | None = None) -> bytes | None:
        self._check_key(key)
        path = self.root / key if version_id is None else self._versions_dir(key) / version_id
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageUnavailableError(f"read {key}: {e}") from e

    async def put(self, key: str, data: bytes, fence: int | None = None) -> ObjectVersion:
        self._check_key(key)
        async with self._lock(key):
            try:
                return await asyncio.to_thread(self._put_sync, key, data, fence)
            except OSError as e:
                raise StorageUnavailableError(f"write {key}: {e}") from e

    def _put_sync(self, key: str, data: bytes, fence: int | None) -> ObjectVersion:
        if fence is not None:
            fence_path = self.root / _FENCES_DIR / key
            highest = int(fence_path.read_text()) if fence_path.exists() else 0
            if fence < highest:
                raise FencedWriteError(f"stale fencing token {fence} for {key} (seen {highest})")
            _atomic_write(fence_path, str(fence).encode())
        version_id = f"{time.time_ns():020d}-{uuid.uuid4().hex[:8]}"
        _atomic_write(self._versions_dir(key) / version_id, data)
        _atomic_write(self.root / key, data)
        return ObjectVersion(
            key=key,
            version_id=version_id,
            last_modified=_version_time(version_id),
            size=len(data),
        )

    async def list_objects(self, prefix: str = "") -> list[ObjectVersion]:
        try:
            return await asyncio.to_thread(self._list_sync, prefix)
        except OSError as e:
            raise StorageUnavailableError(f"list {prefix!r}: {e}") from e

    def _list_sync(self, prefix: str) -> list[ObjectVersion]:
        base = self.root / _VERSIONS_DIR
        if not base.exists():
            return []
        result = []
        for key_dir, _dirs, files in os.walk(base):
            versions = sorted(f for f in files if not f.startswith("."))
            if not versions:
                continue
            key = Path(key_dir).relative_to(base).as_posix()
            if not key.startswith(prefix):
                continue
            current = versions[-1]
            result.append(ObjectVersion(
                key=key,
                version_id=current,
                last_modified=_version_time(current),
                size=(Path(key_dir) / current).stat().st_size,
            ))
        return result

    async def list_versions(self, key: str) -> list[ObjectVersion]:
        self._check_key(key)
        key_dir = self._versions_dir(key)

        def _scan() -> list[ObjectVersion]:
            if not key_dir.is_dir():
                return []
            return [
                ObjectVersion(
                    key=key,
                    version_id=p.name,
                    last_modified=_version_time(p.name),
                    size=p.stat().st_size,
                )
                for p in sorted(key_dir.iterdir())
                if p.is_file() and not p.name.startswith(".")
            ]

        try:
            return await asyncio.to_thread(_scan)
        except OSError as e:
            raise StorageUnavailableError(f"list versions of {key}: {e}") from e

    async def prune_noncurrent(self, policy: LifecyclePolicy, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        removed = 0
        for current in await self.list_objects():
            versions = await self.list_versions(current.key)
            retention = policy.retention_for(current.key)
            for older, newer in zip(versions, versions[1:]):
                if now - newer.last_modified > retention:
                    path = self._versions_dir(current.key) / older.version_id
                    await asyncio.to_thread(path.unlink, missing_ok=True)
                    removed += 1
        return removed
