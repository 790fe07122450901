"""
Exchange and queue topology.

Who receives what is decided here and nowhere else. Each producing domain owns
one topic exchange. Each consuming service declares its own durable queues and
binds each one to the producer's exchange with the exact event name it wants.
Wildcard routing keys are not used.

Design decisions:
- Declarations are idempotent: re-declaring with identical parameters is a
  no-op on the broker, so every process declares its topology on every start
- The broker is the source of truth for topology, not the application
- Any declaration failure is fatal; a service never runs on half a topology

Routing table:

    exchange          routing key            queue
    user.exchange     user.registered        user.registered.notify
    order.exchange    order.created          order.created.notify
    order.exchange    order.created          order.created.product
    order.exchange    order.completed        order.completed.notify
    order.exchange    order.cancelled        order.cancelled.notify
    product.exchange  product.out_of_stock   product.outofstock.notify
    product.exchange  inventory.updated      inventory.updated.order
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from aio_pika import ExchangeType
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractQueue
from aio_pika.exceptions import AMQPError

from backbone.events import EventTypes

logger = logging.getLogger("topology")


class Exchanges:
    """Exchange names, one per producing domain."""
    USER = "user.exchange"
    ORDER = "order.exchange"
    PRODUCT = "product.exchange"


class TopologyError(Exception):
    """Raised when an exchange, queue or binding cannot be declared."""


@dataclass(frozen=True)
class Binding:
    """One row of the routing table: a queue bound to an exchange by one key."""
    exchange: str
    queue: str
    routing_key: str
    exchange_kind: str = ExchangeType.TOPIC.value

    def __str__(self) -> str:
        return f"{self.exchange} --[{self.routing_key}]--> {self.queue}"


# =============================================================================
# Bindings per consuming service
# =============================================================================

NOTIFICATION_BINDINGS: tuple[Binding, ...] = (
    Binding(Exchanges.USER, "user.registered.notify", EventTypes.USER_REGISTERED),
    Binding(Exchanges.ORDER, "order.created.notify", EventTypes.ORDER_CREATED),
    Binding(Exchanges.ORDER, "order.completed.notify", EventTypes.ORDER_COMPLETED),
    Binding(Exchanges.ORDER, "order.cancelled.notify", EventTypes.ORDER_CANCELLED),
    Binding(Exchanges.PRODUCT, "product.outofstock.notify", EventTypes.PRODUCT_OUT_OF_STOCK),
)

PRODUCT_BINDINGS: tuple[Binding, ...] = (
    Binding(Exchanges.ORDER, "order.created.product", EventTypes.ORDER_CREATED),
)

ORDER_BINDINGS: tuple[Binding, ...] = (
    Binding(Exchanges.PRODUCT, "inventory.updated.order", EventTypes.INVENTORY_UPDATED),
)

TOPOLOGY: tuple[Binding, ...] = NOTIFICATION_BINDINGS + PRODUCT_BINDINGS + ORDER_BINDINGS

# Producing service -> the one exchange it owns
PRODUCER_EXCHANGES: dict[str, str] = {
    "user-service": Exchanges.USER,
    "order-service": Exchanges.ORDER,
    "product-service": Exchanges.PRODUCT,
}

_EVENT_EXCHANGES: dict[str, str] = {
    EventTypes.USER_REGISTERED: Exchanges.USER,
    EventTypes.USER_UPDATED: Exchanges.USER,
    EventTypes.USER_DELETED: Exchanges.USER,
    EventTypes.ORDER_CREATED: Exchanges.ORDER,
    EventTypes.ORDER_COMPLETED: Exchanges.ORDER,
    EventTypes.ORDER_CANCELLED: Exchanges.ORDER,
    EventTypes.PRODUCT_CREATED: Exchanges.PRODUCT,
    EventTypes.INVENTORY_UPDATED: Exchanges.PRODUCT,
    EventTypes.PRODUCT_OUT_OF_STOCK: Exchanges.PRODUCT,
}


def exchange_for(event: str) -> Optional[str]:
    """Get the exchange that owns an event name, or None if nobody publishes it."""
    return _EVENT_EXCHANGES.get(event)


def validate_bindings(bindings: Iterable[Binding]) -> tuple[Binding, ...]:
    """
    Check a consumer's bindings before anything is declared.

    Raises:
        ValueError: If a queue name repeats or an exchange is not a topic exchange
    """
    bindings = tuple(bindings)
    seen: set[str] = set()
    for binding in bindings:
        if binding.queue in seen:
            raise ValueError(f"queue '{binding.queue}' is declared more than once")
        if binding.exchange_kind != ExchangeType.TOPIC.value:
            raise ValueError(f"exchange '{binding.exchange}' must be a topic exchange")
        seen.add(binding.queue)
    return bindings


# =============================================================================
# Declaration
# =============================================================================

async def declare_exchange(channel: AbstractChannel, name: str) -> AbstractExchange:
    """
    Declare a durable topic exchange.

    Raises:
        TopologyError: If the broker rejects the declaration
    """
    try:
        exchange = await channel.declare_exchange(name, ExchangeType.TOPIC, durable=True)
    except (AMQPError, ConnectionError) as e:
        raise TopologyError(f"failed to declare exchange {name}: {e}") from e
    logger.debug(f"Declared exchange {name}")
    return exchange


async def declare_bindings(
    channel: AbstractChannel,
    bindings: Iterable[Binding],
) -> dict[str, AbstractQueue]:
    """
    Declare every exchange, queue and binding a consumer needs.

    Args:
        channel: Open channel to declare on
        bindings: The consumer's rows of the routing table

    Returns:
        Declared queues keyed by queue name, in binding order

    Raises:
        ValueError: If the bindings are inconsistent
        TopologyError: If any declaration fails
    """
    bindings = validate_bindings(bindings)

    exchanges: dict[str, AbstractExchange] = {}
    queues: dict[str, AbstractQueue] = {}

    for binding in bindings:
        if binding.exchange not in exchanges:
            exchanges[binding.exchange] = await declare_exchange(channel, binding.exchange)

        try:
            queue = await channel.declare_queue(binding.queue, durable=True)
            await queue.bind(exchanges[binding.exchange], routing_key=binding.routing_key)
        except (AMQPError, ConnectionError) as e:
            raise TopologyError(f"failed to declare or bind queue {binding.queue}: {e}") from e

        queues[binding.queue] = queue
        logger.info(f"Bound {binding}")

    return queues
