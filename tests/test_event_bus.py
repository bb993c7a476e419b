"""Tests for CloudEvent envelopes, the in-memory bus and the DLQ."""

from pkghub.events.bus import InMemoryEventBus
from pkghub.events.dlq import DeadLetterQueue
from pkghub.events.envelope import CATALOG_BUILT, PACKAGE_PERSISTED, CloudEvent, build_event


class TestCloudEvent:
    def test_build_event(self):
        event = build_event(PACKAGE_PERSISTED, "/pkghub/orchestration", {"name": "pkg"}, subject="pkg@1.0.0")
        assert event.specversion == "1.0"
        assert event.type == "pkghub.package.persisted"
        assert event.subject == "pkg@1.0.0"
        assert event.attempt == 1
        assert event.id

    def test_json_round_trip_keeps_attempt(self):
        event = build_event(PACKAGE_PERSISTED, "/test", {"n": 1})
        event.attempt = 3
        restored = CloudEvent.from_json(event.to_json())
        assert restored == event


class TestInMemoryEventBus:
    async def test_publish_and_subscribe(self):
        bus = InMemoryEventBus()
        received = []

        async def handler(event: CloudEvent) -> None:
            received.append(event)

        bus.subscribe(CATALOG_BUILT, handler)
        await bus.publish(build_event(PACKAGE_PERSISTED, "/test", {}))
        await bus.publish(build_event(CATALOG_BUILT, "/test", {}))

        assert [e.type for e in received] == [CATALOG_BUILT]
        assert len(bus.of_type(PACKAGE_PERSISTED)) == 1

    async def test_failed_handler_sends_to_dlq(self):
        bus = InMemoryEventBus(max_retries=2)

        async def failing_handler(event: CloudEvent) -> None:
            raise ValueError("Handler error")

        bus.subscribe(CATALOG_BUILT, failing_handler)
        await bus.publish(build_event(CATALOG_BUILT, "/test", {}))

        assert bus.dlq.depth == 1
        assert bus.dlq.entries[0].retry_count == 2

    async def test_idempotent_delivery(self):
        bus = InMemoryEventBus()
        received = []

        async def handler(event: CloudEvent) -> None:
            received.append(event)

        bus.subscribe(CATALOG_BUILT, handler)
        event = build_event(CATALOG_BUILT, "/test", {})
        await bus.publish(event)
        await bus.publish(event)

        assert len(received) == 1

    async def test_history_is_bounded(self):
        bus = InMemoryEventBus(history=3)
        for n in range(5):
            await bus.publish(build_event(CATALOG_BUILT, "/test", {"n": n}))
        assert [e.data["n"] for e in bus.published] == [2, 3, 4]


class TestDeadLetterQueue:
    def test_replay_resets_attempt(self):
        dlq = DeadLetterQueue()
        event = build_event(PACKAGE_PERSISTED, "/test", {}, subject="pkg@1.0.0")
        event.attempt = 6
        dlq.add(event, error="fail", retry_count=6)

        replayed = dlq.replay(event.id)

        assert replayed.id == event.id
        assert replayed.attempt == 1
        assert dlq.depth == 0
        assert dlq.replay(event.id) is None

    def test_refailing_event_replaces_entry(self):
        dlq = DeadLetterQueue()
        event = build_event(PACKAGE_PERSISTED, "/test", {}, subject="pkg@1.0.0")
        dlq.add(event, error="first", retry_count=3)
        dlq.add(event, error="second", retry_count=3)
        assert dlq.depth == 1
        assert [e.error for e in dlq.for_subject("pkg@1.0.0")] == ["second"]

    def test_bounded(self):
        dlq = DeadLetterQueue(max_entries=2)
        events = [build_event(PACKAGE_PERSISTED, "/test", {"n": n}) for n in range(3)]
        for event in events:
            dlq.add(event, error="x", retry_count=1)
        assert [e.event.id for e in dlq.entries] == [events[1].id, events[2].id]


class TestSubscriptions:
    async def test_wildcard_receives_every_type(self):
        bus = InMemoryEventBus()
        seen = []

        async def handler(event: CloudEvent) -> None:
            seen.append(event.type)

        bus.subscribe("*", handler)
        await bus.publish(build_event(PACKAGE_PERSISTED, "/test", {}))
        await bus.publish(build_event(CATALOG_BUILT, "/test", {}))

        assert seen == [PACKAGE_PERSISTED, CATALOG_BUILT]

    async def test_unsubscribe(self):
        bus = InMemoryEventBus()
        seen = []

        async def handler(event: CloudEvent) -> None:
            seen.append(event)

        bus.subscribe(CATALOG_BUILT, handler)
        bus.unsubscribe(CATALOG_BUILT, handler)
        await bus.publish(build_event(CATALOG_BUILT, "/test", {}))

        assert seen == []

    async def test_failing_handler_does_not_block_others(self):
        bus = InMemoryEventBus(max_retries=1)
        seen = []

        async def failing(event: CloudEvent) -> None:
            raise RuntimeError("boom")

        async def healthy(event: CloudEvent) -> None:
            seen.append(event)

        bus.subscribe(CATALOG_BUILT, failing)
        bus.subscribe(CATALOG_BUILT, healthy)
        await bus.publish(build_event(CATALOG_BUILT, "/test", {}))

        assert len(seen) == 1
        assert bus.dlq.depth == 1


def test_from_json_ignores_extension_attributes():
    raw = build_event(CATALOG_BUILT, "/test", {}).to_json()
    restored = CloudEvent.from_json(raw.replace('"attempt"', '"traceparent": "00-abc", "attempt"', 1))
    assert restored.type == CATALOG_BUILT
