"""Deny List: exclusion rules over package identities."""

from pkghub.denylist.engine import DenyList, PruneEvent, load_rules, parse_rules
from pkghub.denylist.rules import DenyDecision, DenyVerdict

__all__ = [
    "DenyDecision",
    "DenyList",
    "DenyVerdict",
    "PruneEvent",
    "load_rules",
    "parse_rules",
]
