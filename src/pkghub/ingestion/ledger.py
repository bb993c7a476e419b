"""Processed-artifact ledger: which (identity, digest) pairs reached Persisted."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from pkghub.models import PackageIdentity


@dataclass
class OutcomeEntry:
    identity: PackageIdentity
    integrity_digest: str
    state: str
    reason: str = ""
    attempt: int = 1
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ProcessedLedger(Protocol):
    async def is_processed(self, identity: PackageIdentity, digest: str) -> bool: ...
    async def mark_processed(self, identity: PackageIdentity, digest: str) -> None: ...
    async def record_outcome(self, entry: OutcomeEntry) -> None: ...


class InMemoryLedger:
    """Keeps the latest processed digest per identity.

    A newer digest for the same identity replaces the old one, so re-ingesting
    the previous artifact is processed again.
    """

    def __init__(self) -> None:
        self._processed: dict[PackageIdentity, str] = {}
        self.outcomes: list[OutcomeEntry] = []

    async def is_processed(self, identity: PackageIdentity, digest: str) -> bool:
        return self._processed.get(identity) == digest

    async def mark_processed(self, identity: PackageIdentity, digest: str) -> None:
        self._processed[identity] = digest

    async def record_outcome(self, entry: OutcomeEntry) -> None:
        self.outcomes.append(entry)
