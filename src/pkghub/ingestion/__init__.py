"""Ingestion: dedup + enqueue in front of orchestration."""

from pkghub.ingestion.ingestion import Ingestion, SubmitResult, from_message, to_message
from pkghub.ingestion.ledger import InMemoryLedger, OutcomeEntry, ProcessedLedger
from pkghub.ingestion.queue import InMemoryWorkQueue, QueueMessage, RedisWorkQueue, WorkQueue

__all__ = [
    "InMemoryLedger",
    "InMemoryWorkQueue",
    "Ingestion",
    "OutcomeEntry",
    "ProcessedLedger",
    "QueueMessage",
    "RedisWorkQueue",
    "SubmitResult",
    "WorkQueue",
    "from_message",
    "to_message",
]
