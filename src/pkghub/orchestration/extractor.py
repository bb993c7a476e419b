"""Metadata extraction from npm-style package tarballs.

Only the top-level ``package.json`` is read; nothing is written to disk and
links, devices and oversized members are refused.
"""

from __future__ import annotations

import io
import json
import logging
import tarfile
import zlib

from pkghub.errors import InvalidPackageFormatError
from pkghub.models import PackageIdentity, PackageMetadataRecord
from pkghub.schema import PACKAGE_MANIFEST_SCHEMA, validate_document

logger = logging.getLogger(__name__)

MANIFEST_NAME = "package.json"
DEFAULT_MAX_MANIFEST_BYTES = 1024 * 1024


def _url_of(value: object) -> str:
    if isinstance(value, dict):
        value = value.get("url", "")
    if not isinstance(value, str):
        return ""
    url = value.strip()
    if url.startswith("git+"):
        url = url[len("git+"):]
    if url.endswith(".git"):
        url = url[: -len(".git")]
    return url


def _author_of(value: object) -> str:
    if isinstance(value, dict):
        value = value.get("name", "")
    return value.strip() if isinstance(value, str) else ""


class PackageExtractor:
    def __init__(self, max_manifest_bytes: int = DEFAULT_MAX_MANIFEST_BYTES) -> None:
        self.max_manifest_bytes = max_manifest_bytes

    def read_manifest(self, data: bytes) -> dict:
        try:
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tar:
                for member in tar:
                    parts = member.name.lstrip("./").split("/")
                    if len(parts) != 2 or parts[1] != MANIFEST_NAME:
                        continue
                    if not member.isfile():
                        raise InvalidPackageFormatError(f"{member.name} is not a regular file")
                    if member.size > self.max_manifest_bytes:
                        raise InvalidPackageFormatError(f"{member.name} is {member.size} bytes")
                    handle = tar.extractfile(member)
                    if handle is None:
                        raise InvalidPackageFormatError(f"cannot read {member.name}")
                    manifest = json.loads(handle.read().decode("utf-8"))
                    break
                else:
                    raise InvalidPackageFormatError(f"no top-level {MANIFEST_NAME} in tarball")
        except (tarfile.TarError, EOFError, zlib.error, OSError) as e:
            raise InvalidPackageFormatError(f"unreadable tarball: {e}") from e
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidPackageFormatError(f"{MANIFEST_NAME} is not valid JSON: {e}") from e

        result = validate_document(manifest, PACKAGE_MANIFEST_SCHEMA)
        if not result.valid:
            raise InvalidPackageFormatError(f"{MANIFEST_NAME}: " + "; ".join(result.errors))
        return manifest

    def extract(
        self, identity: PackageIdentity, data: bytes, content_digest: str
    ) -> PackageMetadataRecord:
        manifest = self.read_manifest(data)
        if manifest["name"] != identity.name or manifest["version"] != identity.version:
            raise InvalidPackageFormatError(
                f"tarball declares {manifest['name']}@{manifest['version']}, expected {identity}"
            )

        links = {
            "homepage": _url_of(manifest.get("homepage")),
            "repository": _url_of(manifest.get("repository")),
            "bugs": _url_of(manifest.get("bugs")),
        }
        return PackageMetadataRecord(
            identity=identity,
            description=manifest.get("description", ""),
            license=manifest.get("license", ""),
            tags=sorted(set(manifest.get("keywords", []))),
            links={k: v for k, v in links.items() if v},
            author=_author_of(manifest.get("author")),
            content_digest=content_digest,
        )
