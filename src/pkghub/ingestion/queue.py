"""Work queue between Ingestion and Orchestration.

Delivery is at-least-once and unordered: a received message stays in flight
until acknowledged and becomes visible again once its visibility timeout
lapses. Message bodies are CloudEvents wrapping a serialized IngestionEvent.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable, Protocol

from pkghub.events.envelope import CloudEvent
from pkghub.redis.client import RedisManager, RedisRole

logger = logging.getLogger(__name__)


@dataclass
class QueueMessage:
    receipt: str
    event: CloudEvent


class WorkQueue(Protocol):
    async def send(self, event: CloudEvent, delay_seconds: float = 0.0) -> None: ...
    async def receive(self, wait_seconds: float = 0.0) -> QueueMessage | None: ...
    async def ack(self, message: QueueMessage) -> None: ...
    async def depth(self) -> int: ...


class InMemoryWorkQueue:
    def __init__(
        self,
        visibility_timeout: float = 900.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.visibility_timeout = visibility_timeout
        self._clock = clock
        self._ready: deque[CloudEvent] = deque()
        self._delayed: list[tuple[float, int, CloudEvent]] = []
        self._inflight: dict[str, tuple[float, CloudEvent]] = {}
        self._seq = itertools.count()
        self._wakeup = asyncio.Event()

    async def send(self, event: CloudEvent, delay_seconds: float = 0.0) -> None:
        if delay_seconds > 0:
            heapq.heappush(self._delayed, (self._clock() + delay_seconds, next(self._seq), event))
        else:
            self._ready.append(event)
        self._wakeup.set()

    def _promote(self) -> None:
        now = self._clock()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, event = heapq.heappop(self._delayed)
            self._ready.append(event)
        for receipt, (deadline, event) in list(self._inflight.items()):
            if deadline <= now:
                del self._inflight[receipt]
                logger.warning("Message %s exceeded visibility timeout, redelivering", event.id)
                self._ready.append(event)

    def _next_due_in(self) -> float | None:
        candidates = [d for d, _ in self._inflight.values()]
        if self._delayed:
            candidates.append(self._delayed[0][0])
        if not candidates:
            return None
        return max(0.0, min(candidates) - self._clock())

    async def receive(self, wait_seconds: float = 0.0) -> QueueMessage | None:
        deadline = self._clock() + wait_seconds
        while True:
            self._promote()
            if self._ready:
                event = self._ready.popleft()
                receipt = uuid.uuid4().hex
                self._inflight[receipt] = (self._clock() + self.visibility_timeout, event)
                return QueueMessage(receipt=receipt, event=event)
            remaining = deadline - self._clock()
            if remaining <= 0:
                return None
            due_in = self._next_due_in()
            timeout = remaining if due_in is None else min(remaining, due_in)
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass

    async def ack(self, message: QueueMessage) -> None:
        self._inflight.pop(message.receipt, None)

    async def depth(self) -> int:
        return len(self._ready) + len(self._delayed) + len(self._inflight)


# Move due delayed messages and expired in-flight messages back to the ready list.
_PROMOTE_SCRIPT = """
local now = tonumber(ARGV[1])
local due = redis.call("zrangebyscore", KEYS[2], "-inf", now)
for _, payload in ipairs(due) do
    redis.call("zrem", KEYS[2], payload)
    redis.call("lpush", KEYS[1], payload)
end
local expired = redis.call("zrangebyscore", KEYS[4], "-inf", now)
for _, receipt in ipairs(expired) do
    local payload = redis.call("hget", KEYS[3], receipt)
    redis.call("zrem", KEYS[4], receipt)
    redis.call("hdel", KEYS[3], receipt)
    if payload then
        redis.call("lpush", KEYS[1], payload)
    end
end
return #due + #expired
"""

# Pop one message and record it as in flight in a single step.
_RECEIVE_SCRIPT = """
local payload = redis.call("rpop", KEYS[1])
if not payload then
    return false
end
redis.call("hset", KEYS[2], ARGV[1], payload)
redis.call("zadd", KEYS[3], ARGV[2], ARGV[1])
return payload
"""


class RedisWorkQueue:
    """Work queue shared by every worker connected to the same Redis."""

    def __init__(
        self,
        manager: RedisManager,
        name: str = "ingestion",
        visibility_timeout: float = 900.0,
        poll_interval: float = 0.5,
    ) -> None:
        self._manager = manager
        self.name = name
        self.visibility_timeout = visibility_timeout
        self.poll_interval = poll_interval
        self._ready_key = manager.build_queue_key(name)
        self._delayed_key = manager.build_queue_key(name, "delayed")
        self._inflight_key = manager.build_queue_key(name, "inflight")
        self._deadlines_key = manager.build_queue_key(name, "deadlines")

    async def _client(self):
        return await self._manager.get_client(RedisRole.QUEUE)

    async def send(self, event: CloudEvent, delay_seconds: float = 0.0) -> None:
        client = await self._client()
        payload = event.to_json()
        if delay_seconds > 0:
            await client.zadd(self._delayed_key, {payload: time.time() + delay_seconds})
        else:
            await client.lpush(self._ready_key, payload)

    async def _promote(self) -> None:
        client = await self._client()
        await client.eval(
            _PROMOTE_SCRIPT, 4,
            self._ready_key, self._delayed_key, self._inflight_key, self._deadlines_key,
            time.time(),
        )

    async def receive(self, wait_seconds: float = 0.0) -> QueueMessage | None:
        deadline = time.monotonic() + wait_seconds
        client = await self._client()
        while True:
            await self._promote()
            receipt = uuid.uuid4().hex
            payload = await client.eval(
                _RECEIVE_SCRIPT, 3,
                self._ready_key, self._inflight_key, self._deadlines_key,
                receipt, time.time() + self.visibility_timeout,
            )
            if payload:
                return QueueMessage(receipt=receipt, event=CloudEvent.from_json(payload))
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def ack(self, message: QueueMessage) -> None:
        client = await self._client()
        await client.hdel(self._inflight_key, message.receipt)
        await client.zrem(self._deadlines_key, message.receipt)

    async def depth(self) -> int:
        client = await self._client()
        ready = await client.llen(self._ready_key)
        delayed = await client.zcard(self._delayed_key)
        inflight = await client.hlen(self._inflight_key)
        return int(ready) + int(delayed) + int(inflight)
