"""Shared fixtures: ingestion events over locally published tarballs."""

from __future__ import annotations

from pathlib import Path

import pytest

from pkghub.integrity import compute_digest
from pkghub.models import IngestionEvent, PackageIdentity

from helpers import make_tarball, manifest_for


@pytest.fixture
def artifact_dir(tmp_path: Path) -> Path:
    path = tmp_path / "artifacts"
    path.mkdir()
    return path


@pytest.fixture
def publish(artifact_dir: Path):
    """Write a tarball for name@version and return its IngestionEvent."""

    def _publish(name: str, version: str, data: bytes | None = None, **fields) -> IngestionEvent:
        if data is None:
            data = make_tarball(manifest_for(name, version, **fields))
        filename = f"{name.replace('/', '__')}-{version}.tgz"
        path = artifact_dir / filename
        path.write_bytes(data)
        return IngestionEvent(
            identity=PackageIdentity(name=name, version=version),
            artifact_location=path.as_uri(),
            integrity_digest=compute_digest(data),
        )

    return _publish
