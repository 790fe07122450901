"""
Publisher: turns a domain fact into an enveloped message on the broker.

A publisher is bound to the one exchange its service owns. publish() wraps the
data in an Envelope with a fresh UTC timestamp, serializes it and sends it with
the event name as the routing key.

Design decisions:
- Messages are persistent, but publish() does not wait for a broker-side
  confirmation; it only waits for the local send (the channel is opened
  without publisher confirms)
- Failures are never retried here and never raised; they come back as a
  PublishResult so each call site decides whether to log and continue or to
  fail the operation that triggered the event
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from aio_pika import DeliveryMode, Message
from aio_pika.abc import AbstractChannel, AbstractExchange
from aio_pika.exceptions import AMQPError

from backbone.envelope import Envelope
from backbone.events import EventPayload, encode_payload
from backbone.topology import declare_exchange

logger = logging.getLogger("publisher")


class PublishError(Exception):
    """A connection-level failure while sending a message."""


@dataclass
class PublishResult:
    """
    Outcome of a publish call.

    Attributes:
        routing_key: The event that was published
        error: The failure, or None if the local send succeeded
    """
    routing_key: str
    error: Optional[PublishError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def __str__(self) -> str:
        status = "ok" if self.ok else f"error: {self.error}"
        return f"PublishResult({self.routing_key}, {status})"


class Publisher:
    """
    Publishes events to the exchange owned by one service.

    Example:
        publisher = await Publisher.declare(channel, "order.exchange")
        result = await publisher.publish("order.created", OrderCreated(...))
        if not result.ok:
            logger.warning(f"order.created lost: {result.error}")
    """

    def __init__(self, exchange: AbstractExchange):
        self.exchange = exchange

    @property
    def exchange_name(self) -> str:
        return self.exchange.name

    @classmethod
    async def declare(cls, channel: AbstractChannel, exchange_name: str) -> "Publisher":
        """Declare the owned exchange (idempotent) and return a publisher for it."""
        exchange = await declare_exchange(channel, exchange_name)
        logger.info(f"Publisher ready on {exchange_name}")
        return cls(exchange)

    @staticmethod
    def build_message(envelope: Envelope) -> Message:
        return Message(
            envelope.to_bytes(),
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
            timestamp=envelope.timestamp,
        )

    async def publish(
        self,
        routing_key: str,
        data: Union[EventPayload, Mapping[str, Any]],
    ) -> PublishResult:
        """
        Publish one event.

        Args:
            routing_key: Event name, used as the routing key
            data: Typed payload or a plain mapping of event fields

        Returns:
            PublishResult; check .ok before relying on downstream effects

        Raises:
            ValueError: If routing_key is empty
        """
        if not routing_key:
            raise ValueError("routing key must not be empty")

        envelope = Envelope(event=routing_key, data=encode_payload(data))
        message = self.build_message(envelope)

        try:
            await self.exchange.publish(message, routing_key=routing_key, mandatory=False)
        except (AMQPError, ConnectionError, RuntimeError) as e:
            logger.error(f"Failed to publish {routing_key} to {self.exchange_name}: {e}")
            return PublishResult(routing_key, error=PublishError(str(e) or type(e).__name__))

        logger.info(f"Published event: {routing_key}")
        return PublishResult(routing_key)
