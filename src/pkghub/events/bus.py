"""In-process publish/subscribe for hub signals.

Orchestration, catalog and deny-list components announce completions and
failures here. Delivery is deduplicated by event id within a bounded
window; a handler that keeps failing parks the event in the DLQ without
affecting the other subscribers.
"""

from __future__ import annotations

import logging
from collections import OrderedDict, defaultdict, deque
from typing import Awaitable, Callable, Protocol

from pkghub.events.dlq import DeadLetterQueue
from pkghub.events.envelope import CloudEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[CloudEvent], Awaitable[None]]

ALL_EVENTS = "*"


class EventBus(Protocol):
    async def publish(self, event: CloudEvent) -> None: ...
    def subscribe(self, event_type: str, handler: EventHandler) -> None: ...


class InMemoryEventBus:
    def __init__(self, max_retries: int = 3, history: int = 1000, dedup_window: int = 10_000) -> None:
        self._subscribers: defaultdict[str, list[EventHandler]] = defaultdict(list)
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._dedup_window = dedup_window
        self._max_retries = max(1, max_retries)
        self.dlq = DeadLetterQueue()
        self.published: deque[CloudEvent] = deque(maxlen=history)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Register ``handler`` for ``event_type``, or for every type with ``"*"``."""
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def _first_sighting(self, event_id: str) -> bool:
        if event_id in self._seen:
            return False
        self._seen[event_id] = None
        if len(self._seen) > self._dedup_window:
            self._seen.popitem(last=False)
        return True

    async def publish(self, event: CloudEvent) -> None:
        if not self._first_sighting(event.id):
            logger.debug("Dropping duplicate event %s", event.id)
            return
        self.published.append(event)

        for handler in [*self._subscribers.get(event.type, []), *self._subscribers.get(ALL_EVENTS, [])]:
            await self._deliver(handler, event)

    async def _deliver(self, handler: EventHandler, event: CloudEvent) -> None:
        for attempt in range(1, self._max_retries + 1):
            try:
                await handler(event)
                return
            except Exception as exc:
                logger.warning("Handler for %s failed (attempt %d/%d): %s", event.type, attempt, self._max_retries, exc)
                last_error = exc
        self.dlq.add(event, error=str(last_error), retry_count=self._max_retries)

    def of_type(self, event_type: str) -> list[CloudEvent]:
        return [e for e in self.published if e.type == event_type]
