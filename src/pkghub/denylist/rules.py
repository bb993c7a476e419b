"""Deny rule evaluation.

Exact name+version rules take precedence over name-only (wildcard) rules.
Within each class the first matching rule in list order wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from pkghub.models import DenyRule, PackageIdentity


class DenyVerdict(Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass
class DenyDecision:
    verdict: DenyVerdict = DenyVerdict.ALLOW
    reason: str = ""
    rule: DenyRule | None = None

    @property
    def is_allowed(self) -> bool:
        return self.verdict == DenyVerdict.ALLOW

    @property
    def is_denied(self) -> bool:
        return self.verdict == DenyVerdict.DENY


def first_match(rules: Iterable[DenyRule], identity: PackageIdentity) -> DenyRule | None:
    wildcard_match: DenyRule | None = None
    for rule in rules:
        if not rule.matches(identity):
            continue
        if not rule.is_wildcard:
            return rule
        if wildcard_match is None:
            wildcard_match = rule
    return wildcard_match


def decide(rules: Iterable[DenyRule], identity: PackageIdentity) -> DenyDecision:
    rule = first_match(rules, identity)
    if rule is None:
        return DenyDecision()
    return DenyDecision(
        verdict=DenyVerdict.DENY,
        reason=rule.reason or f"{identity} is deny-listed",
        rule=rule,
    )
