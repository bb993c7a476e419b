"""Queue consumer that feeds ingestion messages through the Orchestrator."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace

from pydantic import ValidationError

from pkghub.events.dlq import DeadLetterQueue
from pkghub.ingestion.ingestion import from_message
from pkghub.ingestion.queue import QueueMessage, WorkQueue
from pkghub.orchestration.orchestrator import OrchestrationResult, Orchestrator
from pkghub.orchestration.state import OrchestrationState

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base: float = 1.0, maximum: float = 60.0) -> float:
    """Exponential delay before re-running attempt ``attempt + 1``."""
    return min(maximum, base * 2 ** max(0, attempt - 1))


def _log_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("Message handling failed; it will be redelivered", exc_info=error)


class OrchestrationWorker:
    def __init__(
        self,
        queue: WorkQueue,
        orchestrator: Orchestrator,
        dlq: DeadLetterQueue | None = None,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 60.0,
        max_concurrency: int = 10,
    ) -> None:
        self._queue = queue
        self._orchestrator = orchestrator
        self.dlq = dlq or DeadLetterQueue()
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.max_concurrency = max_concurrency

    async def handle(self, message: QueueMessage) -> OrchestrationResult | None:
        """Process one message and acknowledge it.

        Retryable outcomes are re-enqueued with the next attempt number before
        the original is acknowledged, so a crash in between only duplicates
        delivery.
        """
        event = message.event
        try:
            ingestion_event = from_message(event)
        except ValidationError as e:
            logger.warning("Message %s does not decode as an ingestion event", event.id)
            self.dlq.add(event, error=str(e), retry_count=event.attempt)
            await self._queue.ack(message)
            return None

        result = await self._orchestrator.process(ingestion_event, attempt=event.attempt)

        if result.state == OrchestrationState.RETRYABLE:
            delay = backoff_delay(event.attempt, self.retry_base_delay, self.retry_max_delay)
            await self._queue.send(replace(event, attempt=event.attempt + 1), delay_seconds=delay)
            logger.info("Retrying %s in %.1fs (attempt %d)", ingestion_event.identity, delay, event.attempt + 1)
        elif result.state == OrchestrationState.FAILED:
            self.dlq.add(event, error=result.error, retry_count=event.attempt)

        await self._queue.ack(message)
        return result

    async def drain(self) -> list[OrchestrationResult]:
        """Process ready messages in batches until none are immediately available."""
        results: list[OrchestrationResult] = []
        while True:
            batch: list[QueueMessage] = []
            while len(batch) < self.max_concurrency:
                message = await self._queue.receive()
                if message is None:
                    break
                batch.append(message)
            if not batch:
                return results
            for result in await asyncio.gather(*(self.handle(m) for m in batch)):
                if result is not None:
                    results.append(result)

    async def run(self, stop: asyncio.Event, wait_seconds: float = 5.0) -> None:
        slots = asyncio.Semaphore(self.max_concurrency)
        tasks: set[asyncio.Task] = set()
        logger.info("Orchestration worker started (concurrency %d)", self.max_concurrency)

        while not stop.is_set():
            await slots.acquire()
            try:
                message = await self._queue.receive(wait_seconds=wait_seconds)
            except Exception:
                slots.release()
                logger.exception("Queue receive failed")
                await asyncio.sleep(wait_seconds)
                continue
            if message is None:
                slots.release()
                continue

            task = asyncio.create_task(self.handle(message))
            tasks.add(task)
            task.add_done_callback(tasks.discard)
            task.add_done_callback(lambda _: slots.release())
            task.add_done_callback(_log_failure)

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Orchestration worker stopped")
