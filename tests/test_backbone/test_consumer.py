"""
Tests for the dispatcher, queue workers and the consumer.
"""

import asyncio

import pytest

from backbone.consumer import (
    Consumer,
    ConsumerState,
    Dispatcher,
    DispatchOutcome,
    HandlerRegistry,
    QueueWorker,
)
from backbone.dedup import DedupFilter, DedupStoreError
from backbone.events import OrderCancelled, OrderCreated
from backbone.topology import NOTIFICATION_BINDINGS, PRODUCT_BINDINGS
from fakes import FakeChannel, MemoryDedupStore, deliver, envelope_bytes


CANCELLED = {"order_id": "o-1", "user_id": "u-1"}
CREATED = {
    "order_id": "o-1",
    "user_id": "u-1",
    "items": [{"product_id": "P1", "quantity": 1}],
    "total_amount": 2.5,
}


class Recorder:
    """Handler that remembers every payload it was given."""

    def __init__(self):
        self.payloads = []

    def __call__(self, payload):
        self.payloads.append(payload)


class FailingStore:
    async def set_if_absent(self, key: str, ttl_seconds: int) -> bool:
        raise DedupStoreError("redis down")


class TestHandlerRegistry:

    def test_lookup(self):
        recorder = Recorder()
        registry = HandlerRegistry({"order.cancelled": recorder})

        assert registry["order.cancelled"] is recorder
        assert "order.created" not in registry
        assert len(registry) == 1

    def test_read_only(self):
        registry = HandlerRegistry({"order.cancelled": Recorder()})

        with pytest.raises(TypeError):
            registry["order.created"] = Recorder()

    def test_source_changes_do_not_leak_in(self):
        handlers = {"order.cancelled": Recorder()}
        registry = HandlerRegistry(handlers)

        handlers["order.created"] = Recorder()

        assert "order.created" not in registry

    def test_empty_event_rejected(self):
        with pytest.raises(ValueError):
            HandlerRegistry({"": Recorder()})

    def test_non_callable_rejected(self):
        with pytest.raises(TypeError):
            HandlerRegistry({"order.created": "not a handler"})


class TestDispatcher:
    """Tests for taking one message body to its handler."""

    @pytest.mark.asyncio
    async def test_dispatches_typed_payload(self):
        recorder = Recorder()
        dispatcher = Dispatcher(HandlerRegistry({"order.cancelled": recorder}))

        outcome = await dispatcher.dispatch("order.cancelled.notify", envelope_bytes("order.cancelled", CANCELLED))

        assert outcome == DispatchOutcome.DISPATCHED
        assert recorder.payloads == [OrderCancelled(order_id="o-1", user_id="u-1")]

    @pytest.mark.asyncio
    async def test_awaits_async_handler(self):
        seen = []

        async def handler(payload):
            await asyncio.sleep(0)
            seen.append(payload.order_id)

        dispatcher = Dispatcher(HandlerRegistry({"order.created": handler}))

        outcome = await dispatcher.dispatch("q", envelope_bytes("order.created", CREATED))

        assert outcome == DispatchOutcome.DISPATCHED
        assert seen == ["o-1"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        b"not json",
        b'{"data": {}}',
        b'{"event": "", "data": {}}',
        b'{"event": "order.created", "data": "x"}',
    ])
    async def test_malformed_body_is_dropped(self, body):
        recorder = Recorder()
        dispatcher = Dispatcher(HandlerRegistry({"order.created": recorder}))

        assert await dispatcher.dispatch("q", body) == DispatchOutcome.MALFORMED
        assert recorder.payloads == []

    @pytest.mark.asyncio
    async def test_payload_mismatch_is_malformed(self):
        recorder = Recorder()
        dispatcher = Dispatcher(HandlerRegistry({"order.created": recorder}))

        body = envelope_bytes("order.created", {"order_id": "o-1"})

        assert await dispatcher.dispatch("q", body) == DispatchOutcome.MALFORMED
        assert recorder.payloads == []

    @pytest.mark.asyncio
    async def test_event_without_handler_is_dropped(self):
        dispatcher = Dispatcher(HandlerRegistry({"order.created": Recorder()}))

        outcome = await dispatcher.dispatch("q", envelope_bytes("order.cancelled", CANCELLED))

        assert outcome == DispatchOutcome.UNHANDLED

    @pytest.mark.asyncio
    async def test_handler_failure_is_contained(self, caplog):
        def handler(payload):
            raise RuntimeError("boom")

        dispatcher = Dispatcher(HandlerRegistry({"order.cancelled": handler}))

        outcome = await dispatcher.dispatch("q", envelope_bytes("order.cancelled", CANCELLED))

        assert outcome == DispatchOutcome.HANDLER_FAILED
        assert "Handler for 'order.cancelled' failed on q" in caplog.text

    @pytest.mark.asyncio
    async def test_duplicate_bytes_dispatched_once(self):
        recorder = Recorder()
        dispatcher = Dispatcher(
            HandlerRegistry({"order.cancelled": recorder}),
            dedup=DedupFilter(MemoryDedupStore()),
        )
        body = envelope_bytes("order.cancelled", CANCELLED)

        first = await dispatcher.dispatch("q", body)
        second = await dispatcher.dispatch("q", body)

        assert (first, second) == (DispatchOutcome.DISPATCHED, DispatchOutcome.DUPLICATE)
        assert len(recorder.payloads) == 1

    @pytest.mark.asyncio
    async def test_same_data_new_timestamp_is_not_duplicate(self):
        recorder = Recorder()
        dispatcher = Dispatcher(
            HandlerRegistry({"order.cancelled": recorder}),
            dedup=DedupFilter(MemoryDedupStore()),
        )

        await dispatcher.dispatch("q", b'{"event":"order.cancelled","timestamp":"2024-01-01T00:00:00Z","data":{"order_id":"o-1","user_id":"u-1"}}')
        await dispatcher.dispatch("q", b'{"event":"order.cancelled","timestamp":"2024-01-01T00:00:01Z","data":{"order_id":"o-1","user_id":"u-1"}}')

        assert len(recorder.payloads) == 2

    @pytest.mark.asyncio
    async def test_unreachable_dedup_store_still_dispatches(self):
        recorder = Recorder()
        dispatcher = Dispatcher(
            HandlerRegistry({"order.cancelled": recorder}),
            dedup=DedupFilter(FailingStore()),
        )
        body = envelope_bytes("order.cancelled", CANCELLED)

        await dispatcher.dispatch("q", body)
        await dispatcher.dispatch("q", body)

        assert len(recorder.payloads) == 2

    @pytest.mark.asyncio
    async def test_malformed_message_leaves_no_dedup_record(self):
        store = MemoryDedupStore()
        dispatcher = Dispatcher(
            HandlerRegistry({"order.cancelled": Recorder()}),
            dedup=DedupFilter(store),
        )

        await dispatcher.dispatch("q", b"not json")

        assert len(store) == 0


class TestQueueWorker:
    """Tests for in-order processing of one queue."""

    @pytest.mark.asyncio
    async def test_processes_in_delivery_order(self):
        order = []

        async def handler(payload):
            # the first message yields longest; order must still hold
            await asyncio.sleep(0.01 if payload.order_id == "o-1" else 0)
            order.append(payload.order_id)

        worker = QueueWorker("q", Dispatcher(HandlerRegistry({"order.cancelled": handler})))

        await worker.drain(deliver(
            envelope_bytes("order.cancelled", {"order_id": "o-1", "user_id": "u"}),
            envelope_bytes("order.cancelled", {"order_id": "o-2", "user_id": "u"}),
            envelope_bytes("order.cancelled", {"order_id": "o-3", "user_id": "u"}),
        ))

        assert order == ["o-1", "o-2", "o-3"]

    @pytest.mark.asyncio
    async def test_keeps_going_after_bad_messages(self):
        recorder = Recorder()

        def flaky(payload):
            if payload.order_id == "o-2":
                raise RuntimeError("boom")
            recorder(payload)

        worker = QueueWorker("q", Dispatcher(HandlerRegistry({"order.cancelled": flaky})))

        await worker.drain(deliver(
            b"garbage",
            envelope_bytes("order.cancelled", {"order_id": "o-2", "user_id": "u"}),
            envelope_bytes("order.cancelled", {"order_id": "o-3", "user_id": "u"}),
        ))

        assert [p.order_id for p in recorder.payloads] == ["o-3"]
        assert worker.processed[DispatchOutcome.MALFORMED] == 1
        assert worker.processed[DispatchOutcome.HANDLER_FAILED] == 1
        assert worker.processed[DispatchOutcome.DISPATCHED] == 1
        assert worker.total_processed == 3

    @pytest.mark.asyncio
    async def test_run_subscribes_with_auto_ack(self):
        channel = FakeChannel({"order.created.product": [envelope_bytes("order.created", CREATED)]})
        queue = await channel.declare_queue("order.created.product", durable=True)
        recorder = Recorder()
        worker = QueueWorker("order.created.product", Dispatcher(HandlerRegistry({"order.created": recorder})))

        await worker.run(queue)

        assert queue.iterator_kwargs == {"no_ack": True}
        assert len(recorder.payloads) == 1
        assert worker.state == ConsumerState.CLOSED


class TestConsumer:
    """Tests for declaring and running every queue of a service."""

    def test_missing_handler_rejected(self):
        with pytest.raises(ValueError, match="order.created"):
            Consumer(FakeChannel(), PRODUCT_BINDINGS, HandlerRegistry({}))

    @pytest.mark.asyncio
    async def test_start_before_declare_rejected(self):
        consumer = Consumer(FakeChannel(), PRODUCT_BINDINGS, HandlerRegistry({"order.created": Recorder()}))

        with pytest.raises(RuntimeError):
            consumer.start()

    @pytest.mark.asyncio
    async def test_declare_then_consume(self):
        channel = FakeChannel({"order.created.product": [
            envelope_bytes("order.created", CREATED),
            envelope_bytes("order.created", {**CREATED, "order_id": "o-2"}),
        ]})
        recorder = Recorder()
        consumer = Consumer(channel, PRODUCT_BINDINGS, HandlerRegistry({"order.created": recorder}))

        await consumer.declare()
        assert consumer.workers["order.created.product"].state == ConsumerState.DECLARED

        tasks = consumer.start()
        await asyncio.gather(*tasks)
        await consumer.close()

        assert [p.order_id for p in recorder.payloads] == ["o-1", "o-2"]
        assert all(isinstance(p, OrderCreated) for p in recorder.payloads)
        assert consumer.tasks == []
        assert consumer.workers["order.created.product"].state == ConsumerState.CLOSED

    @pytest.mark.asyncio
    async def test_one_task_per_queue(self):
        handlers = HandlerRegistry({b.routing_key: Recorder() for b in NOTIFICATION_BINDINGS})
        consumer = Consumer(FakeChannel(), NOTIFICATION_BINDINGS, handlers)
        await consumer.declare()

        tasks = consumer.start()

        assert sorted(t.get_name() for t in tasks) == sorted(
            f"consume:{b.queue}" for b in NOTIFICATION_BINDINGS
        )
        await consumer.close()

    @pytest.mark.asyncio
    async def test_start_twice_keeps_tasks(self):
        consumer = Consumer(FakeChannel(), PRODUCT_BINDINGS, HandlerRegistry({"order.created": Recorder()}))
        await consumer.declare()

        first = consumer.start()
        second = consumer.start()

        assert len(second) == 1
        assert second == first
        await consumer.close()

    @pytest.mark.asyncio
    async def test_slow_queue_does_not_block_others(self):
        release = asyncio.Event()
        seen = []

        async def slow(payload):
            await release.wait()
            seen.append("created")

        def fast(payload):
            seen.append("cancelled")
            release.set()

        channel = FakeChannel({
            "order.created.notify": [envelope_bytes("order.created", CREATED)],
            "order.cancelled.notify": [envelope_bytes("order.cancelled", CANCELLED)],
        })
        handlers = {b.routing_key: Recorder() for b in NOTIFICATION_BINDINGS}
        handlers.update({"order.created": slow, "order.cancelled": fast})
        consumer = Consumer(channel, NOTIFICATION_BINDINGS, HandlerRegistry(handlers))
        await consumer.declare()

        await asyncio.wait_for(asyncio.gather(*consumer.start()), timeout=1)
        await consumer.close()

        assert seen == ["cancelled", "created"]
