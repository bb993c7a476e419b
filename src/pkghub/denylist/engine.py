"""Deny List: holds exclusion rules and signals prunes when they change.

The deny list never mutates storage. When a rule change flips the verdict of
an identity that has a metadata record in storage, a prune event is published
and the catalog builder's next pass drops (or restores) those identities.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

import yaml

from pkghub.denylist.rules import DenyDecision, decide
from pkghub.errors import MalformedInputError, StorageUnavailableError
from pkghub.events.bus import EventBus, EventHandler, InMemoryEventBus
from pkghub.events.envelope import DENY_LIST_PRUNED, build_event
from pkghub.models import DenyRule, PackageIdentity
from pkghub.schema import DENY_LIST_SCHEMA, validate_document
from pkghub.storage.base import ObjectStore
from pkghub.storage.keys import STORAGE_KEY_PREFIX, identity_from_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PruneEvent:
    """Identities in storage affected by a rule change.

    ``denied`` holds every stored identity denied under the new rules,
    ``released`` those that were denied before and are allowed now.
    """

    denied: frozenset[PackageIdentity]
    released: frozenset[PackageIdentity]


class DenyList:
    def __init__(
        self,
        rules: Iterable[DenyRule] = (),
        store: ObjectStore | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self._rules: tuple[DenyRule, ...] = tuple(rules)
        self._store = store
        self._bus = bus

    @property
    def rules(self) -> tuple[DenyRule, ...]:
        return self._rules

    def evaluate(self, identity: PackageIdentity) -> DenyDecision:
        return decide(self._rules, identity)

    def subscribe(self, handler: EventHandler) -> None:
        """Call *handler* with every prune event."""
        if self._bus is None:
            self._bus = InMemoryEventBus()
        self._bus.subscribe(DENY_LIST_PRUNED, handler)

    async def update_rules(self, rules: Sequence[DenyRule]) -> PruneEvent | None:
        """Replace the rule set; returns the prune event if one was signalled."""
        previous = self._rules
        self._rules = tuple(rules)
        if previous == self._rules:
            return None

        try:
            stored = await self._stored_identities()
        except StorageUnavailableError:
            # Unknown blast radius: prune conservatively and let the rebuild decide.
            logger.warning("Storage unavailable while diffing deny rules; signalling full prune")
            event = PruneEvent(denied=frozenset(), released=frozenset())
            await self._publish(event)
            return event

        denied: set[PackageIdentity] = set()
        released: set[PackageIdentity] = set()
        changed = False
        for identity in stored:
            was_denied = decide(previous, identity).is_denied
            now_denied = self.evaluate(identity).is_denied
            if now_denied:
                denied.add(identity)
            elif was_denied:
                released.add(identity)
            changed = changed or was_denied != now_denied

        if self._store is not None and not changed:
            logger.info("Deny rules updated (%d rules), no stored package affected", len(self._rules))
            return None

        event = PruneEvent(denied=frozenset(denied), released=frozenset(released))
        logger.info(
            "Deny rules updated (%d rules): %d stored package(s) denied, %d released",
            len(self._rules), len(denied), len(released),
        )
        await self._publish(event)
        return event

    async def _stored_identities(self) -> list[PackageIdentity]:
        if self._store is None:
            return []
        identities = []
        for obj in await self._store.list_objects(STORAGE_KEY_PREFIX):
            identity = identity_from_key(obj.key)
            if identity is not None:
                identities.append(identity)
        return identities

    async def _publish(self, event: PruneEvent) -> None:
        if self._bus is None:
            return
        await self._bus.publish(build_event(
            DENY_LIST_PRUNED,
            source="/pkghub/denylist",
            data={
                "denied": sorted(str(i) for i in event.denied),
                "released": sorted(str(i) for i in event.released),
                "rule_count": len(self._rules),
            },
        ))


def parse_rules(document: object) -> list[DenyRule]:
    """Validate a deny-list document ({"rules": [...]}) and build its rules."""
    result = validate_document(document, DENY_LIST_SCHEMA)
    if not result.valid:
        raise MalformedInputError("invalid deny list: " + "; ".join(result.errors))
    return [DenyRule(**entry) for entry in document["rules"]]


def load_rules(path: Path | str) -> list[DenyRule]:
    with open(path) as f:
        document = yaml.safe_load(f) or {"rules": []}
    return parse_rules(document)
