"""Artifact fetching under a network isolation policy.

Extraction handles untrusted content, so artifacts may only be read from
allow-listed hosts or from configured local artifact roots.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from pkghub.errors import ArtifactUnavailableError, IntegrityMismatchError, InvalidPackageFormatError

DEFAULT_MAX_ARTIFACT_BYTES = 50 * 1024 * 1024


@dataclass(frozen=True)
class EgressPolicy:
    """Where artifacts may be read from. The empty policy denies everything.

    ``hosts`` entries are exact hostnames or ``*.suffix`` patterns that
    match subdomains only. A bare ``*`` is ignored.
    """

    hosts: frozenset[str] = frozenset()
    roots: tuple[str, ...] = ()

    @classmethod
    def from_lists(cls, hosts: list[str], roots: list[str]) -> EgressPolicy:
        return cls(
            hosts=frozenset(h.strip().lower() for h in hosts if h.strip() and h.strip() != "*"),
            roots=tuple(os.path.normpath(os.path.abspath(r)) for r in roots),
        )

    def is_egress_allowed(self, host: str) -> bool:
        host = host.lower().rstrip(".")
        if host in self.hosts:
            return True
        return any(p.startswith("*.") and host.endswith(p[1:]) for p in self.hosts)

    def is_path_allowed(self, path: str) -> bool:
        normalized = os.path.normpath(os.path.abspath(path))
        return any(normalized == root or normalized.startswith(root + os.sep) for root in self.roots)


class ArtifactFetcher:
    """Resolves artifact locations (file:// or http(s)://) to bytes."""

    def __init__(
        self,
        policy: EgressPolicy,
        client: httpx.AsyncClient | None = None,
        max_bytes: int = DEFAULT_MAX_ARTIFACT_BYTES,
    ) -> None:
        self.policy = policy
        self.max_bytes = max_bytes
        self._client = client or httpx.AsyncClient(timeout=60.0, follow_redirects=False)

    async def fetch(self, location: str) -> bytes:
        parsed = urlparse(location)
        if parsed.scheme == "file":
            return await self._fetch_file(unquote(parsed.path))
        if parsed.scheme in ("http", "https"):
            return await self._fetch_http(location, parsed.hostname or "")
        raise IntegrityMismatchError(f"unsupported artifact location: {location}")

    async def _fetch_file(self, path: str) -> bytes:
        if not self.policy.is_path_allowed(path):
            raise IntegrityMismatchError(f"artifact path outside allowed roots: {path}")
        try:
            size = await asyncio.to_thread(os.path.getsize, path)
            if size > self.max_bytes:
                raise InvalidPackageFormatError(f"artifact is {size} bytes, limit {self.max_bytes}")
            return await asyncio.to_thread(Path(path).read_bytes)
        except (FileNotFoundError, IsADirectoryError) as e:
            raise IntegrityMismatchError(f"artifact not found: {path}") from e
        except OSError as e:
            raise ArtifactUnavailableError(f"cannot read {path}: {e}") from e

    async def _fetch_http(self, url: str, host: str) -> bytes:
        if not self.policy.is_egress_allowed(host):
            raise IntegrityMismatchError(f"egress to {host!r} is not allowed")
        try:
            async with self._client.stream("GET", url) as response:
                if response.status_code == 429 or response.status_code >= 500:
                    raise ArtifactUnavailableError(f"GET {url}: HTTP {response.status_code}")
                if response.status_code != 200:
                    raise IntegrityMismatchError(f"GET {url}: HTTP {response.status_code}")
                chunks = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > self.max_bytes:
                        raise InvalidPackageFormatError(f"artifact exceeds {self.max_bytes} bytes")
                    chunks.append(chunk)
                return b"".join(chunks)
        except httpx.TransportError as e:
            raise ArtifactUnavailableError(f"GET {url}: {e}") from e

    async def close(self) -> None:
        await self._client.aclose()
