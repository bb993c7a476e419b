"""Leases with fencing tokens.

A lease grants one owner exclusive use of a key for a bounded time. Every
successful acquisition also yields a fencing token that strictly increases per
key; stores reject writes carrying a token older than one they have already
accepted, so a holder whose lease silently expired cannot clobber the work of
its successor.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Protocol

from pkghub.errors import LeaseUnavailableError
from pkghub.redis.client import RedisManager, RedisRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Lease:
    key: str
    owner: str
    token: int
    expires_at: float


class LeaseManager(Protocol):
    async def acquire(self, key: str, owner: str, ttl_seconds: float) -> Lease | None: ...
    async def release(self, lease: Lease) -> bool: ...


class InMemoryLeaseManager:
    """Single-process lease manager for tests and the embedded worker."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._holders: dict[str, Lease] = {}
        self._tokens: dict[str, int] = {}

    async def acquire(self, key: str, owner: str, ttl_seconds: float) -> Lease | None:
        now = self._clock()
        current = self._holders.get(key)
        if current is not None and current.expires_at > now:
            return None
        token = self._tokens.get(key, 0) + 1
        self._tokens[key] = token
        lease = Lease(key=key, owner=owner, token=token, expires_at=now + ttl_seconds)
        self._holders[key] = lease
        return lease

    async def release(self, lease: Lease) -> bool:
        current = self._holders.get(lease.key)
        if current is None or current.token != lease.token:
            return False
        del self._holders[lease.key]
        return True

    def holder(self, key: str) -> Lease | None:
        lease = self._holders.get(key)
        if lease is None or lease.expires_at <= self._clock():
            return None
        return lease


# Take the lease and its fencing token in one step. Returns 0 when held.
_ACQUIRE_SCRIPT = """
if redis.call("exists", KEYS[1]) == 1 then
    return 0
end
local token = redis.call("incr", KEYS[2])
redis.call("set", KEYS[1], ARGV[1] .. ":" .. token, "PX", ARGV[2])
return token
"""

# Delete the lease only if this acquisition (owner and token) still holds it.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisLeaseManager:
    """Lease manager shared by every worker connected to the same Redis."""

    def __init__(self, manager: RedisManager) -> None:
        self._manager = manager

    async def acquire(self, key: str, owner: str, ttl_seconds: float) -> Lease | None:
        client = await self._manager.get_client(RedisRole.LEASES)
        token = await client.eval(
            _ACQUIRE_SCRIPT,
            2,
            self._manager.build_lease_key(key),
            self._manager.build_fence_key(key),
            owner,
            max(1, int(ttl_seconds * 1000)),
        )
        if not token:
            return None
        return Lease(key=key, owner=owner, token=int(token), expires_at=time.time() + ttl_seconds)

    async def release(self, lease: Lease) -> bool:
        client = await self._manager.get_client(RedisRole.LEASES)
        deleted = await client.eval(
            _RELEASE_SCRIPT, 1, self._manager.build_lease_key(lease.key), f"{lease.owner}:{lease.token}"
        )
        return bool(deleted)


@asynccontextmanager
async def hold_lease(
    leases: LeaseManager, key: str, owner: str, ttl_seconds: float
) -> AsyncIterator[Lease]:
    """Hold *key* for the duration of the block or raise LeaseUnavailableError."""
    lease = await leases.acquire(key, owner, ttl_seconds)
    if lease is None:
        raise LeaseUnavailableError(f"lease for {key} is held by another execution")
    try:
        yield lease
    finally:
        if not await leases.release(lease):
            logger.warning("Lease for %s expired before release (token %d)", key, lease.token)
