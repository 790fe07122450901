"""
Service runtime: connects one service to the backbone and keeps it there.

Startup order matters. Nothing is consumed until the whole topology exists:

1. connect to the broker and open a channel (no publisher confirms)
2. declare the service's own exchange and build its Publisher, if it produces
3. connect to the dedup cache, if configured
4. build the handler table (handlers usually need the publisher)
5. declare the consumer topology, then start one worker per queue

Any failure in 1-5 propagates out of start() after cleaning up, so the process
exits instead of serving traffic on a half-built backbone.
"""

import asyncio
import logging
from typing import Callable, Iterable, Optional

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractRobustConnection
from aio_pika.exceptions import AMQPError

from backbone.config import BrokerSettings, Settings
from backbone.consumer import Consumer, HandlerRegistry
from backbone.dedup import DedupFilter, RedisDedupStore
from backbone.publisher import Publisher
from backbone.topology import Binding

logger = logging.getLogger("runtime")

# Builds the handler table once the publisher exists
HandlerFactory = Callable[[Optional[Publisher]], HandlerRegistry]


class BrokerConnectionError(Exception):
    """Raised when the broker cannot be reached at startup."""


async def connect(settings: BrokerSettings) -> AbstractRobustConnection:
    """
    Open a robust connection to the broker.

    Raises:
        BrokerConnectionError: If the broker is unreachable
    """
    try:
        connection = await aio_pika.connect_robust(settings.url)
    except (AMQPError, ConnectionError, OSError) as e:
        raise BrokerConnectionError(
            f"failed to connect to RabbitMQ at {settings.host}:{settings.port}: {e}"
        ) from e
    logger.info(f"RabbitMQ connected ({settings.host}:{settings.port})")
    return connection


class ServiceRuntime:
    """
    Owns the broker connection, the publisher and the consumer of one service.

    Example:
        runtime = ServiceRuntime(
            settings,
            producer_exchange="product.exchange",
            bindings=PRODUCT_BINDINGS,
            handler_factory=lambda publisher: HandlerRegistry({...}),
        )
        await runtime.start()
        ...
        await runtime.stop()
    """

    def __init__(
        self,
        settings: Settings,
        producer_exchange: Optional[str] = None,
        bindings: Iterable[Binding] = (),
        handler_factory: Optional[HandlerFactory] = None,
    ):
        """
        Args:
            settings: Connection and dedup settings
            producer_exchange: Exchange this service publishes to, if any
            bindings: Queues this service consumes, if any
            handler_factory: Builds handlers for the bindings; required when
                bindings is not empty
        """
        self.settings = settings
        self.producer_exchange = producer_exchange
        self.bindings = tuple(bindings)
        self.handler_factory = handler_factory

        if self.bindings and handler_factory is None:
            raise ValueError("a service with bindings needs a handler_factory")

        self.connection: Optional[AbstractRobustConnection] = None
        self.channel: Optional[AbstractChannel] = None
        self.publisher: Optional[Publisher] = None
        self.consumer: Optional[Consumer] = None
        self.dedup_store: Optional[RedisDedupStore] = None
        self._closed = asyncio.Event()

    @property
    def name(self) -> str:
        return self.settings.service_name

    async def start(self) -> None:
        """Bring the service onto the backbone. Fatal errors propagate."""
        try:
            await self._start()
        except BaseException:
            await self.stop()
            raise
        logger.info(f"{self.name} is on the backbone")

    async def _start(self) -> None:
        self.connection = await connect(self.settings.broker)
        self.channel = await self.connection.channel(publisher_confirms=False)

        if self.producer_exchange:
            self.publisher = await Publisher.declare(self.channel, self.producer_exchange)

        if not self.bindings:
            return

        dedup = None
        if self.settings.cache is not None:
            cache = self.settings.cache
            self.dedup_store = RedisDedupStore.from_url(
                cache.url,
                socket_timeout=cache.socket_timeout,
                socket_connect_timeout=cache.connect_timeout,
            )
            await self.dedup_store.ping()
            dedup = DedupFilter(self.dedup_store, ttl_seconds=self.settings.dedup_ttl_seconds)
            logger.info("Redis connected, deduplication enabled")
        else:
            logger.warning(f"No dedup cache configured for {self.name}; every message is treated as unique")

        self.consumer = Consumer(
            self.channel,
            self.bindings,
            self.handler_factory(self.publisher),
            dedup=dedup,
        )
        await self.consumer.declare()
        self.consumer.start()

    async def stop(self) -> None:
        """Stop workers and close the cache and broker connections."""
        if self.consumer is not None:
            await self.consumer.close()
            self.consumer = None
        if self.dedup_store is not None:
            await self.dedup_store.close()
            self.dedup_store = None
        if self.connection is not None and not self.connection.is_closed:
            await self.connection.close()
        self.connection = None
        self.channel = None
        self.publisher = None
        self._closed.set()

    async def wait_closed(self) -> None:
        """Block until stop() has run."""
        await self._closed.wait()
