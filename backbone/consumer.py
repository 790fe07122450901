"""
Consumer and dispatcher: the receiving half of the backbone.

A consumer subscribes to its service's queues and runs one worker per queue for
the lifetime of the process. For every message a worker:

1. parses the envelope (malformed bodies are logged and dropped)
2. decodes the data into the payload model for the event
3. asks the dedup filter, if one is configured, whether the exact bytes were
   already dispatched (duplicates are logged and dropped)
4. calls the handler registered for the event and waits for it to finish

Worker lifecycle:

    IDLE -> DECLARED -> SUBSCRIBED -> (RECEIVING <-> DISPATCHING) -> CLOSED

Design decisions:
- Auto-ack: the broker considers a message consumed as soon as it reaches the
  process, before the handler runs. A handler failure or a crash mid-handling
  loses that message. Processing is at-most-once per delivery.
- One worker per queue, messages handled strictly in delivery order. Queues run
  concurrently with no ordering between them and no global concurrency cap.
- A worker only waits for the next message; it never times out a handler. A
  hanging handler stalls its own queue and nothing else.
- Handler exceptions are logged and swallowed. No retry, requeue or dead letter.
- The handler table is built once at startup and is read-only afterwards.
"""

import asyncio
import inspect
import logging
from collections.abc import Mapping
from enum import Enum
from types import MappingProxyType
from typing import Any, AsyncIterable, Awaitable, Callable, Iterable, Optional, Union

from aio_pika.abc import AbstractChannel, AbstractQueue

from backbone.dedup import DedupFilter
from backbone.envelope import Envelope, EnvelopeError
from backbone.events import EventPayload, PayloadError, decode_payload
from backbone.topology import Binding, declare_bindings, validate_bindings

logger = logging.getLogger("consumer")


# A handler receives the typed payload for its event. It may be a plain
# function or a coroutine function.
EventHandler = Callable[[EventPayload], Union[None, Awaitable[None]]]


class ConsumerState(str, Enum):
    """Lifecycle of a queue worker."""
    IDLE = "idle"
    DECLARED = "declared"
    SUBSCRIBED = "subscribed"
    RECEIVING = "receiving"
    DISPATCHING = "dispatching"
    CLOSED = "closed"


class DispatchOutcome(str, Enum):
    """What happened to one delivered message."""
    DISPATCHED = "dispatched"
    MALFORMED = "malformed"
    DUPLICATE = "duplicate"
    UNHANDLED = "unhandled"
    HANDLER_FAILED = "handler_failed"


class HandlerRegistry(Mapping[str, EventHandler]):
    """
    Read-only table of event name -> handler.

    Built once when the service starts; there is no way to add or remove a
    handler afterwards.
    """

    def __init__(self, handlers: Mapping[str, EventHandler]):
        for event, handler in handlers.items():
            if not event:
                raise ValueError("handler registered for an empty event name")
            if not callable(handler):
                raise TypeError(f"handler for '{event}' is not callable")
        self._handlers = MappingProxyType(dict(handlers))

    def __getitem__(self, event: str) -> EventHandler:
        return self._handlers[event]

    def __iter__(self):
        return iter(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)

    def __repr__(self) -> str:
        return f"HandlerRegistry({sorted(self._handlers)})"


class Dispatcher:
    """
    Takes one raw message body from a queue to its handler.

    The dispatcher holds no per-queue state, so workers can share one.
    """

    def __init__(self, handlers: HandlerRegistry, dedup: Optional[DedupFilter] = None):
        self.handlers = handlers
        self.dedup = dedup

    async def dispatch(self, queue_name: str, body: bytes) -> DispatchOutcome:
        """
        Process one message body.

        Never raises for bad input or handler failures; the outcome says what
        happened so the worker can keep going.
        """
        try:
            envelope = Envelope.from_bytes(body)
            payload = decode_payload(envelope)
        except (EnvelopeError, PayloadError) as e:
            logger.warning(f"Dropping malformed message from {queue_name}: {e}")
            return DispatchOutcome.MALFORMED

        handler = self.handlers.get(envelope.event)
        if handler is None:
            logger.warning(f"No handler for '{envelope.event}' on {queue_name}, dropping")
            return DispatchOutcome.UNHANDLED

        if self.dedup is not None and await self.dedup.is_duplicate(envelope.event, body):
            logger.info(f"Skipping duplicate event from {queue_name}: {envelope.event}")
            return DispatchOutcome.DUPLICATE

        logger.info(f"Received event from {queue_name}: {envelope.event}")

        try:
            result = handler(payload)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Handler for '{envelope.event}' failed on {queue_name}")
            return DispatchOutcome.HANDLER_FAILED

        return DispatchOutcome.DISPATCHED


class QueueWorker:
    """
    The single worker that drains one queue, in order.

    Attributes:
        queue_name: Queue this worker consumes
        state: Current lifecycle state
        processed: Count of messages per outcome
    """

    def __init__(self, queue_name: str, dispatcher: Dispatcher):
        self.queue_name = queue_name
        self.dispatcher = dispatcher
        self.state = ConsumerState.IDLE
        self.processed: dict[DispatchOutcome, int] = {outcome: 0 for outcome in DispatchOutcome}

    async def drain(self, messages: AsyncIterable[Any]) -> None:
        """
        Dispatch messages one at a time until the source is exhausted.

        Each item only needs a `body` attribute, so tests can feed plain
        objects instead of broker messages.
        """
        async for message in messages:
            self.state = ConsumerState.DISPATCHING
            outcome = await self.dispatcher.dispatch(self.queue_name, message.body)
            self.processed[outcome] += 1
            self.state = ConsumerState.RECEIVING

    async def run(self, queue: AbstractQueue) -> None:
        """
        Subscribe with automatic acknowledgement and drain until closed.

        Returns when the queue iterator ends or the task is cancelled.
        """
        self.state = ConsumerState.SUBSCRIBED
        logger.info(f"Consuming from {self.queue_name}...")
        try:
            async with queue.iterator(no_ack=True) as messages:
                self.state = ConsumerState.RECEIVING
                await self.drain(messages)
        finally:
            self.state = ConsumerState.CLOSED
            logger.info(f"Stopped consuming from {self.queue_name}")

    @property
    def total_processed(self) -> int:
        return sum(self.processed.values())


class Consumer:
    """
    Subscribes a service to its queues.

    Example:
        consumer = Consumer(channel, NOTIFICATION_BINDINGS, HandlerRegistry({
            "user.registered": notifications.handle_user_registered,
            ...
        }), dedup=dedup_filter)
        await consumer.declare()
        consumer.start()
        ...
        await consumer.close()
    """

    def __init__(
        self,
        channel: AbstractChannel,
        bindings: Iterable[Binding],
        handlers: HandlerRegistry,
        dedup: Optional[DedupFilter] = None,
    ):
        """
        Args:
            channel: Open channel to declare and consume on
            bindings: The service's rows of the routing table
            handlers: Handler for every routing key in bindings
            dedup: Optional duplicate filter shared by all workers

        Raises:
            ValueError: If bindings are inconsistent or a routing key has no handler
        """
        self.channel = channel
        self.bindings = validate_bindings(bindings)
        missing = sorted({b.routing_key for b in self.bindings if b.routing_key not in handlers})
        if missing:
            raise ValueError(f"no handler registered for: {', '.join(missing)}")

        self.dispatcher = Dispatcher(handlers, dedup)
        self.workers: dict[str, QueueWorker] = {
            b.queue: QueueWorker(b.queue, self.dispatcher) for b in self.bindings
        }
        self._queues: dict[str, AbstractQueue] = {}
        self._tasks: list[asyncio.Task] = []

    async def declare(self) -> None:
        """Declare the topology for every binding. Errors here are fatal."""
        self._queues = await declare_bindings(self.channel, self.bindings)
        for worker in self.workers.values():
            worker.state = ConsumerState.DECLARED

    def start(self) -> list[asyncio.Task]:
        """Start one worker task per queue. Must be called from a running loop."""
        if not self._queues:
            raise RuntimeError("declare() must complete before start()")
        if self._tasks:
            logger.warning("Consumer already started")
            return self._tasks

        for name, queue in self._queues.items():
            task = asyncio.create_task(self.workers[name].run(queue), name=f"consume:{name}")
            self._tasks.append(task)

        logger.info(f"All consumers started ({len(self._tasks)} queues)")
        return self._tasks

    @property
    def tasks(self) -> list[asyncio.Task]:
        return list(self._tasks)

    async def close(self) -> None:
        """Stop every worker. In-flight messages are not requeued."""
        for task in self._tasks:
            task.cancel()
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, Exception):
                logger.error(f"Worker {task.get_name()} ended with error: {result}")
        self._tasks = []
        for worker in self.workers.values():
            worker.state = ConsumerState.CLOSED
