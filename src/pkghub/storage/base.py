"""Object store contract: versioned objects with atomic replace."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from pkghub.storage.keys import CATALOG_KEY


@dataclass(frozen=True)
class ObjectVersion:
    key: str
    version_id: str
    last_modified: datetime
    size: int


@dataclass
class LifecyclePolicy:
    """Expiry of non-current object versions.

    A version becomes non-current when a newer one is written; it is removed
    once it has been non-current for longer than the retention window of the
    longest matching prefix.
    """

    noncurrent_days: int = 90
    prefix_overrides: dict[str, int] = field(default_factory=lambda: {CATALOG_KEY: 7})

    def retention_for(self, key: str) -> timedelta:
        best = ""
        days = self.noncurrent_days
        for prefix, prefix_days in self.prefix_overrides.items():
            if key.startswith(prefix) and len(prefix) > len(best):
                best, days = prefix, prefix_days
        return timedelta(days=days)


class ObjectStore(Protocol):
    async def get(self, key: str, version_id: str | None = None) -> bytes | None:
        """Return the current (or the given) version of *key*, None when absent."""
        ...

    async def put(self, key: str, data: bytes, fence: int | None = None) -> ObjectVersion:
        """Atomically replace *key*; readers see the old or new bytes, never a mix.

        Raises FencedWriteError when *fence* is older than a token already
        accepted for *key*.
        """
        ...

    async def list_objects(self, prefix: str = "") -> list[ObjectVersion]:
        """Snapshot of the current version of every key under *prefix*."""
        ...

    async def list_versions(self, key: str) -> list[ObjectVersion]:
        """All retained versions of *key*, oldest first."""
        ...

    async def prune_noncurrent(self, policy: LifecyclePolicy, now: datetime | None = None) -> int:
        """Delete expired non-current versions; returns how many were removed."""
        ...
