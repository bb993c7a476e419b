"""Allowed SPDX licenses for indexed packages."""

from __future__ import annotations

from typing import Iterable

APACHE_LICENSES = ("Apache-1.0", "Apache-1.1", "Apache-2.0")
BSD_LICENSES = (
    "0BSD",
    "BSD-1-Clause",
    "BSD-2-Clause",
    "BSD-2-Clause-Patent",
    "BSD-3-Clause",
    "BSD-3-Clause-Attribution",
    "BSD-3-Clause-Clear",
    "BSD-3-Clause-LBNL",
    "BSD-4-Clause",
    "BSD-4-Clause-UC",
)
MIT_LICENSES = ("MIT", "MIT-0", "MIT-CMU", "MIT-feh", "MIT-open-group", "MITNFA")


class LicenseList:
    """Case-insensitive set of allowed license identifiers.

    ``allow_any`` disables the check entirely.
    """

    def __init__(self, licenses: Iterable[str] = (), allow_any: bool = False) -> None:
        self._allowed = {lic.strip().lower() for lic in licenses if lic.strip()}
        self.allow_any = allow_any

    @classmethod
    def default(cls) -> LicenseList:
        return cls([*APACHE_LICENSES, *BSD_LICENSES, *MIT_LICENSES])

    @classmethod
    def from_ids(cls, ids: list[str] | None) -> LicenseList:
        if ids is None:
            return cls.default()
        if "*" in ids:
            return cls(allow_any=True)
        return cls(ids)

    def is_allowed(self, license_id: str) -> bool:
        if self.allow_any:
            return True
        return license_id.strip().lower() in self._allowed

    def __len__(self) -> int:
        return len(self._allowed)
