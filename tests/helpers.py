"""Builders for in-memory package tarballs."""

from __future__ import annotations

import io
import json
import tarfile


def make_tarball(manifest: dict | None, extra: dict[str, bytes] | None = None, top: str = "package") -> bytes:
    """Build a gzipped npm-style tarball in memory."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        files = dict(extra or {})
        if manifest is not None:
            files["package.json"] = json.dumps(manifest).encode()
        for name, data in files.items():
            info = tarfile.TarInfo(f"{top}/{name}")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def manifest_for(name: str, version: str, **fields) -> dict:
    manifest = {"name": name, "version": version, "license": "Apache-2.0", "description": f"{name} library"}
    manifest.update(fields)
    return manifest
