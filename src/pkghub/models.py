"""Pydantic v2 models for package identities, ingestion events and the catalog."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pkghub.integrity import parse_digest

CATALOG_SCHEMA_VERSION = 1

SUPPORTED_LOCATION_SCHEMES = ("file", "http", "https")

_SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[A-Za-z-][0-9A-Za-z-]*)(?:\.(?:0|[1-9]\d*|\d*[A-Za-z-][0-9A-Za-z-]*))*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)
_NAME_RE = re.compile(r"^(?:@[A-Za-z0-9][\w.~-]*/)?[A-Za-z0-9][\w.~-]*$")
_MAX_NAME_LENGTH = 214


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def semver_key(version: str) -> tuple:
    """Sort key implementing semantic version precedence.

    Releases sort after their pre-releases, numeric pre-release identifiers
    sort before alphanumeric ones. Build metadata does not affect precedence,
    the raw string is appended so the order stays total.
    """
    match = _SEMVER_RE.match(version)
    if not match:
        return (float("inf"), version)
    major, minor, patch, pre, _build = match.groups()
    if pre is None:
        pre_key: tuple = (1,)
    else:
        parts = []
        for ident in pre.split("."):
            if ident.isdigit():
                parts.append((0, int(ident), ""))
            else:
                parts.append((1, 0, ident))
        pre_key = (0, tuple(parts))
    return (int(major), int(minor), int(patch), pre_key, version)


class PackageIdentity(BaseModel):
    """name@version key of one package artifact."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not value or len(value) > _MAX_NAME_LENGTH or not _NAME_RE.match(value):
            raise ValueError(f"invalid package name: {value!r}")
        return value

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        if not _SEMVER_RE.match(value):
            raise ValueError(f"invalid semantic version: {value!r}")
        return value

    @property
    def sort_key(self) -> tuple:
        return (self.name, semver_key(self.version))

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


class IngestionEvent(BaseModel):
    """A newly observed package artifact, as produced by a package source."""

    model_config = ConfigDict(frozen=True)

    identity: PackageIdentity
    artifact_location: str
    integrity_digest: str
    received_at: datetime = Field(default_factory=_utcnow)

    @field_validator("artifact_location")
    @classmethod
    def _check_location(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in SUPPORTED_LOCATION_SCHEMES:
            raise ValueError(f"unsupported artifact location scheme: {parsed.scheme!r}")
        if parsed.scheme == "file" and not parsed.path:
            raise ValueError("file artifact location has no path")
        if parsed.scheme in ("http", "https") and not parsed.netloc:
            raise ValueError("artifact URL has no host")
        return value

    @field_validator("integrity_digest")
    @classmethod
    def _check_digest(cls, value: str) -> str:
        parse_digest(value)
        return value

    @property
    def dedup_key(self) -> tuple[PackageIdentity, str]:
        return (self.identity, self.integrity_digest)


class DenyRule(BaseModel):
    """Excludes one version, or every version, of a package.

    ``version`` of ``None`` or ``"*"`` matches all versions.
    """

    model_config = ConfigDict(frozen=True)

    package_name: str = Field(min_length=1)
    version: str | None = None
    reason: str = ""

    @property
    def is_wildcard(self) -> bool:
        return self.version is None or self.version == "*"

    def matches(self, identity: PackageIdentity) -> bool:
        if identity.name != self.package_name:
            return False
        return self.is_wildcard or identity.version == self.version


class PackageMetadataRecord(BaseModel):
    """Canonical metadata extracted from one package artifact."""

    identity: PackageIdentity
    description: str = ""
    license: str = ""
    tags: list[str] = Field(default_factory=list)
    links: dict[str, str] = Field(default_factory=dict)
    author: str = ""
    content_digest: str
    persisted_at: datetime = Field(default_factory=_utcnow)


class CatalogDocument(BaseModel):
    """The aggregated index of all currently allowed packages."""

    packages: list[PackageMetadataRecord] = Field(default_factory=list)
    built_at: datetime = Field(default_factory=_utcnow)
    schema_version: int = CATALOG_SCHEMA_VERSION

    def identities(self) -> list[PackageIdentity]:
        return [record.identity for record in self.packages]

    def find(self, name: str, version: str | None = None) -> list[PackageMetadataRecord]:
        return [
            record for record in self.packages
            if record.identity.name == name and (version is None or record.identity.version == version)
        ]
