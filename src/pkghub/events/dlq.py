"""Dead-letter queue for executions that ended in Failed.

Entries are keyed by event id, so a message failing again after a replay
replaces its earlier entry. Replaying hands the event back with its attempt
counter reset, ready to be sent to the work queue.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from pkghub.events.envelope import CloudEvent

logger = logging.getLogger(__name__)


@dataclass
class DLQEntry:
    event: CloudEvent
    error: str
    retry_count: int
    failed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def subject(self) -> str:
        return self.event.subject


class DeadLetterQueue:
    def __init__(self, max_entries: int = 10_000) -> None:
        self.max_entries = max_entries
        self._entries: OrderedDict[str, DLQEntry] = OrderedDict()

    def add(self, event: CloudEvent, error: str, retry_count: int) -> None:
        self._entries.pop(event.id, None)
        self._entries[event.id] = DLQEntry(event=event, error=error, retry_count=retry_count)
        logger.error("Dead-lettered %s %s after %d attempt(s): %s", event.type, event.subject or event.id, retry_count, error)
        while len(self._entries) > self.max_entries:
            _, dropped = self._entries.popitem(last=False)
            logger.warning("DLQ full, dropped oldest entry %s", dropped.event.id)

    @property
    def entries(self) -> list[DLQEntry]:
        return list(self._entries.values())

    def get(self, event_id: str) -> DLQEntry | None:
        return self._entries.get(event_id)

    def for_subject(self, subject: str) -> list[DLQEntry]:
        return [e for e in self._entries.values() if e.subject == subject]

    def replay(self, event_id: str) -> CloudEvent | None:
        entry = self._entries.pop(event_id, None)
        if entry is None:
            return None
        return replace(entry.event, attempt=1)

    @property
    def depth(self) -> int:
        return len(self._entries)
