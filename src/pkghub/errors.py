"""Error taxonomy shared by ingestion, orchestration and the catalog builder.

Terminal rejections are never retried. RetryableError subclasses mark
transient infrastructure faults that are retried with backoff.
"""

from __future__ import annotations

from enum import Enum


class RejectionReason(Enum):
    MALFORMED_INPUT = "malformed_input"
    INTEGRITY_MISMATCH = "integrity_mismatch"
    INVALID_PACKAGE_FORMAT = "invalid_package_format"
    DENY_LISTED = "deny_listed"
    LICENSE_NOT_ALLOWED = "license_not_allowed"


class HubError(Exception):
    """Base class for all pkghub errors."""


class MalformedInputError(HubError):
    reason = RejectionReason.MALFORMED_INPUT


class RejectionError(HubError):
    """Terminal failure for one package identity."""

    reason: RejectionReason


class IntegrityMismatchError(RejectionError):
    reason = RejectionReason.INTEGRITY_MISMATCH


class InvalidPackageFormatError(RejectionError):
    reason = RejectionReason.INVALID_PACKAGE_FORMAT


class DenyListedError(RejectionError):
    reason = RejectionReason.DENY_LISTED


class LicenseNotAllowedError(RejectionError):
    reason = RejectionReason.LICENSE_NOT_ALLOWED


class RetryableError(HubError):
    """Transient fault; the unit of work may be attempted again."""


class StorageUnavailableError(RetryableError):
    pass


class ArtifactUnavailableError(RetryableError):
    pass


class LeaseUnavailableError(RetryableError):
    """Another execution currently holds the lease for this key."""


class FencedWriteError(RetryableError):
    """A write carried a fencing token older than one already accepted."""


class CorruptRecordError(HubError):
    pass


class CatalogBuildError(HubError):
    pass
