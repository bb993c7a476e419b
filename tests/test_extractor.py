"""Tests for package.json extraction from tarballs."""

import io
import tarfile

import pytest

from pkghub.errors import InvalidPackageFormatError
from pkghub.integrity import compute_digest
from pkghub.models import PackageIdentity
from pkghub.orchestration.extractor import PackageExtractor

from helpers import make_tarball, manifest_for

PKG = PackageIdentity(name="pkg", version="1.0.0")


def extract(data: bytes):
    return PackageExtractor().extract(PKG, data, compute_digest(data))


class TestPackageExtractor:
    def test_extracts_metadata(self):
        data = make_tarball(manifest_for(
            "pkg", "1.0.0",
            keywords=["cdk", "aws", "cdk"],
            homepage="https://example.com",
            repository={"type": "git", "url": "git+https://github.com/example/pkg.git"},
            bugs={"url": "https://github.com/example/pkg/issues"},
            author={"name": "Jane Example", "email": "jane@example.com"},
        ), extra={"index.js": b"module.exports = 1;"})

        record = extract(data)

        assert record.identity == PKG
        assert record.license == "Apache-2.0"
        assert record.description == "pkg library"
        assert record.tags == ["aws", "cdk"]
        assert record.author == "Jane Example"
        assert record.links == {
            "homepage": "https://example.com",
            "repository": "https://github.com/example/pkg",
            "bugs": "https://github.com/example/pkg/issues",
        }
        assert record.content_digest == compute_digest(data)

    def test_string_author_and_repository(self):
        data = make_tarball(manifest_for("pkg", "1.0.0", author="Jane", repository="https://github.com/example/pkg"))
        record = extract(data)
        assert record.author == "Jane"
        assert record.links["repository"] == "https://github.com/example/pkg"

    def test_any_top_directory(self):
        record = extract(make_tarball(manifest_for("pkg", "1.0.0"), top="pkg-1.0.0"))
        assert record.identity == PKG

    def test_not_a_tarball(self):
        with pytest.raises(InvalidPackageFormatError):
            extract(b"definitely not gzip")

    def test_missing_manifest(self):
        with pytest.raises(InvalidPackageFormatError):
            extract(make_tarball(None, extra={"README.md": b"# pkg"}))

    def test_nested_manifest_ignored(self):
        data = make_tarball(None, extra={"node_modules/dep/package.json": b'{"name": "dep", "version": "1.0.0"}'})
        with pytest.raises(InvalidPackageFormatError):
            extract(data)

    def test_invalid_json(self):
        with pytest.raises(InvalidPackageFormatError):
            extract(make_tarball(None, extra={"package.json": b"{not json"}))

    def test_schema_violation(self):
        with pytest.raises(InvalidPackageFormatError):
            extract(make_tarball({"name": "pkg", "version": "1.0.0", "keywords": "not-a-list"}))

    def test_identity_mismatch(self):
        with pytest.raises(InvalidPackageFormatError):
            extract(make_tarball(manifest_for("pkg", "2.0.0")))

    def test_symlink_manifest_rejected(self):
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tar:
            info = tarfile.TarInfo("package/package.json")
            info.type = tarfile.SYMTYPE
            info.linkname = "/etc/passwd"
            tar.addfile(info)
        with pytest.raises(InvalidPackageFormatError):
            extract(buf.getvalue())

    def test_oversized_manifest_rejected(self):
        data = make_tarball(manifest_for("pkg", "1.0.0", description="x" * 200))
        with pytest.raises(InvalidPackageFormatError):
            PackageExtractor(max_manifest_bytes=100).extract(PKG, data, compute_digest(data))
