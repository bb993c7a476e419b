"""In-memory versioned object store. Used by tests and the embedded worker."""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from pkghub.errors import FencedWriteError
from pkghub.storage.base import LifecyclePolicy, ObjectVersion


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _StoredVersion:
    version_id: str
    data: bytes
    written_at: datetime


class InMemoryObjectStore:
    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._objects: dict[str, list[_StoredVersion]] = {}
        self._fences: dict[str, int] = {}
        self._counter = itertools.count(1)

    async def get(self, key: str, version_id: str | None = None) -> bytes | None:
        versions = self._objects.get(key)
        if not versions:
            return None
        if version_id is None:
            return versions[-1].data
        for version in versions:
            if version.version_id == version_id:
                return version.data
        return None

    async def put(self, key: str, data: bytes, fence: int | None = None) -> ObjectVersion:
        if fence is not None:
            highest = self._fences.get(key, 0)
            if fence < highest:
                raise FencedWriteError(f"stale fencing token {fence} for {key} (seen {highest})")
            self._fences[key] = fence
        stored = _StoredVersion(
            version_id=f"v{next(self._counter):012d}",
            data=bytes(data),
            written_at=self._clock(),
        )
        self._objects.setdefault(key, []).append(stored)
        return self._describe(key, stored)

    async def list_objects(self, prefix: str = "") -> list[ObjectVersion]:
        return [
            self._describe(key, versions[-1])
            for key, versions in self._objects.items()
            if key.startswith(prefix) and versions
        ]

    async def list_versions(self, key: str) -> list[ObjectVersion]:
        return [self._describe(key, v) for v in self._objects.get(key, [])]

    async def prune_noncurrent(self, policy: LifecyclePolicy, now: datetime | None = None) -> int:
        now = now or self._clock()
        removed = 0
        for key, versions in self._objects.items():
            retention = policy.retention_for(key)
            kept = []
            for i, version in enumerate(versions):
                if i < len(versions) - 1:
                    # A version turns non-current when its successor is written.
                    noncurrent_since = versions[i + 1].written_at
                    if now - noncurrent_since > retention:
                        removed += 1
                        continue
                kept.append(version)
            versions[:] = kept
        return removed

    def _describe(self, key: str, version: _StoredVersion) -> ObjectVersion:
        return ObjectVersion(
            key=key,
            version_id=version.version_id,
            last_modified=version.written_at,
            size=len(version.data),
        )
