"""Deterministic object keys for metadata records and the catalog."""

from __future__ import annotations

import re

from pydantic import ValidationError

from pkghub.models import PackageIdentity

STORAGE_KEY_PREFIX = "data/"
METADATA_KEY_SUFFIX = "/metadata.json"
CATALOG_KEY = "catalog.json"

_METADATA_KEY_RE = re.compile(
    "^" + re.escape(STORAGE_KEY_PREFIX)
    + r"(?P<name>(?:@[^/]+/)?[^/@]+)/v(?P<version>[^/]+)"
    + re.escape(METADATA_KEY_SUFFIX) + "$"
)


def metadata_key(identity: PackageIdentity) -> str:
    return f"{STORAGE_KEY_PREFIX}{identity.name}/v{identity.version}{METADATA_KEY_SUFFIX}"


def is_metadata_key(key: str) -> bool:
    return bool(_METADATA_KEY_RE.match(key))


def identity_from_key(key: str) -> PackageIdentity | None:
    """Recover the identity a metadata key was derived from, if it is one."""
    match = _METADATA_KEY_RE.match(key)
    if not match:
        return None
    try:
        return PackageIdentity(name=match.group("name"), version=match.group("version"))
    except ValidationError:
        return None
