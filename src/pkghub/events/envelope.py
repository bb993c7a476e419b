"""CloudEvents 1.0 envelope."""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone

INGESTION_RECEIVED = "pkghub.ingestion.received"
PACKAGE_PERSISTED = "pkghub.package.persisted"
PACKAGE_REJECTED = "pkghub.package.rejected"
PACKAGE_FAILED = "pkghub.package.failed"
DENY_LIST_PRUNED = "pkghub.denylist.pruned"
CATALOG_BUILT = "pkghub.catalog.built"
CATALOG_FAILED = "pkghub.catalog.failed"
INVENTORY_REPORTED = "pkghub.inventory.reported"


@dataclass
class CloudEvent:
    specversion: str = "1.0"
    type: str = ""
    source: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    time: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    datacontenttype: str = "application/json"
    data: dict = field(default_factory=dict)
    subject: str = ""
    attempt: int = 1

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str | bytes) -> CloudEvent:
        """Decode a queued envelope, ignoring extension attributes we do not carry."""
        payload = json.loads(raw)
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in payload.items() if k in known})


def build_event(
    event_type: str,
    source: str,
    data: dict,
    subject: str = "",
) -> CloudEvent:
    return CloudEvent(
        type=event_type,
        source=source,
        data=data,
        subject=subject,
    )
