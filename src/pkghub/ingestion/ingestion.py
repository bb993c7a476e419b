"""Ingestion: validates, deduplicates and enqueues newly observed artifacts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from pydantic import ValidationError

from pkghub.errors import RejectionReason
from pkghub.events.envelope import INGESTION_RECEIVED, CloudEvent, build_event
from pkghub.ingestion.ledger import ProcessedLedger
from pkghub.ingestion.queue import WorkQueue
from pkghub.models import IngestionEvent

logger = logging.getLogger(__name__)


@dataclass
class SubmitResult:
    accepted: bool
    duplicate: bool = False
    reason: RejectionReason | None = None
    error: str = ""
    message_id: str = ""


def to_message(event: IngestionEvent) -> CloudEvent:
    return build_event(
        INGESTION_RECEIVED,
        source="/pkghub/ingestion",
        data=event.model_dump(mode="json"),
        subject=str(event.identity),
    )


def from_message(message: CloudEvent) -> IngestionEvent:
    return IngestionEvent.model_validate(message.data)


class Ingestion:
    def __init__(self, queue: WorkQueue, ledger: ProcessedLedger) -> None:
        self.queue = queue
        self._ledger = ledger

    async def submit(self, event: IngestionEvent | Mapping[str, Any]) -> SubmitResult:
        """Accept *event* for orchestration, or reject it as malformed.

        Pairs already processed successfully are acknowledged without being
        enqueued again.
        """
        if not isinstance(event, IngestionEvent):
            try:
                event = IngestionEvent.model_validate(event)
            except ValidationError as e:
                logger.info("Rejected malformed ingestion event: %s", e.errors()[0]["msg"])
                return SubmitResult(
                    accepted=False,
                    reason=RejectionReason.MALFORMED_INPUT,
                    error=str(e),
                )

        if await self._ledger.is_processed(event.identity, event.integrity_digest):
            logger.debug("Skipping already processed %s", event.identity)
            return SubmitResult(accepted=True, duplicate=True)

        message = to_message(event)
        await self.queue.send(message)
        logger.info("Enqueued %s (%s)", event.identity, message.id)
        return SubmitResult(accepted=True, message_id=message.id)
