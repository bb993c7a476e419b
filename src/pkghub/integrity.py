"""Subresource-integrity style content digests (``sha512-<base64>``)."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from dataclasses import dataclass

SUPPORTED_ALGORITHMS: dict[str, int] = {
    "sha256": 32,
    "sha384": 48,
    "sha512": 64,
}

DEFAULT_ALGORITHM = "sha512"


@dataclass(frozen=True)
class Digest:
    algorithm: str
    value: bytes

    def __str__(self) -> str:
        return f"{self.algorithm}-{base64.b64encode(self.value).decode('ascii')}"


def parse_digest(text: str) -> Digest:
    """Parse an integrity string, raising ValueError when it is not well formed."""
    if not text or "-" not in text:
        raise ValueError(f"malformed integrity digest: {text!r}")
    algorithm, _, encoded = text.partition("-")
    expected_length = SUPPORTED_ALGORITHMS.get(algorithm)
    if expected_length is None:
        raise ValueError(f"unsupported digest algorithm: {algorithm!r}")
    try:
        value = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"digest is not valid base64: {e}") from e
    if len(value) != expected_length:
        raise ValueError(
            f"{algorithm} digest must be {expected_length} bytes, got {len(value)}"
        )
    return Digest(algorithm=algorithm, value=value)


def compute_digest(data: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"unsupported digest algorithm: {algorithm!r}")
    return str(Digest(algorithm=algorithm, value=hashlib.new(algorithm, data).digest()))


def verify_digest(data: bytes, expected: str) -> bool:
    """True when *data* hashes to the *expected* integrity string."""
    digest = parse_digest(expected)
    actual = hashlib.new(digest.algorithm, data).digest()
    return hmac.compare_digest(actual, digest.value)
