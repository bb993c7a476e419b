"""Redis connections for the distributed deployment.

Leases and the work queue live in separate logical databases so the
queue can be flushed without touching fencing counters:

  - DB 0 (``RedisRole.LEASES``): ``{prefix}:lease:{key}`` holds the lease
    owner with the lease TTL, ``{prefix}:fence:{key}`` the fencing counter.
  - DB 1 (``RedisRole.QUEUE``): ``{prefix}:queue:{name}`` is the ready list,
    with ``:inflight``, ``:deadlines`` and ``:delayed`` companions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from urllib.parse import quote

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class RedisRole(Enum):
    LEASES = "leases"
    QUEUE = "queue"


@dataclass
class RedisConfig:
    host: str = "localhost"
    port: int = 6379
    password: str | None = None
    db_leases: int = 0
    db_queue: int = 1
    max_connections: int = 20
    key_prefix: str = "pkghub"

    def db_for(self, role: RedisRole) -> int:
        return self.db_leases if role is RedisRole.LEASES else self.db_queue


class RedisManager:
    """One lazily created client per role, closed together."""

    def __init__(self, config: RedisConfig) -> None:
        self.config = config
        self._clients: dict[RedisRole, aioredis.Redis] = {}

    def get_url(self, role: RedisRole) -> str:
        auth = f":{quote(self.config.password, safe='')}@" if self.config.password else ""
        return f"redis://{auth}{self.config.host}:{self.config.port}/{self.config.db_for(role)}"

    async def get_client(self, role: RedisRole) -> aioredis.Redis:
        client = self._clients.get(role)
        if client is None:
            logger.debug("Connecting to redis %s:%s db %d for %s",
                         self.config.host, self.config.port, self.config.db_for(role), role.value)
            client = aioredis.from_url(
                self.get_url(role),
                max_connections=self.config.max_connections,
                decode_responses=False,
            )
            self._clients[role] = client
        return client

    def _key(self, *parts: str) -> str:
        return ":".join((self.config.key_prefix, *(p for p in parts if p)))

    def build_lease_key(self, key: str) -> str:
        return self._key("lease", key)

    def build_fence_key(self, key: str) -> str:
        return self._key("fence", key)

    def build_queue_key(self, name: str, suffix: str = "") -> str:
        return self._key("queue", name, suffix)

    async def close(self) -> None:
        clients, self._clients = self._clients, {}
        for client in clients.values():
            await client.aclose()
