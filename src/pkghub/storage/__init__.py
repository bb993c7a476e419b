"""Versioned object storage for metadata records and the catalog."""

from pkghub.storage.base import LifecyclePolicy, ObjectStore, ObjectVersion
from pkghub.storage.filesystem import LocalObjectStore
from pkghub.storage.keys import (
    CATALOG_KEY,
    METADATA_KEY_SUFFIX,
    STORAGE_KEY_PREFIX,
    identity_from_key,
    is_metadata_key,
    metadata_key,
)
from pkghub.storage.memory import InMemoryObjectStore

__all__ = [
    "CATALOG_KEY",
    "InMemoryObjectStore",
    "LifecyclePolicy",
    "LocalObjectStore",
    "METADATA_KEY_SUFFIX",
    "ObjectStore",
    "ObjectVersion",
    "STORAGE_KEY_PREFIX",
    "identity_from_key",
    "is_metadata_key",
    "metadata_key",
]
