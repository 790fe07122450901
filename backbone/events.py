"""
Event definitions for the backbone.

This module defines every domain event a service may publish, together with the
typed payload each one carries. Events represent facts about things that have
already happened.

Design decisions:
- Event names are dotted and past tense ("order.created", not "create.order")
- The event name is also the routing key, so names are part of the topology
- Each event name maps to exactly one payload model; consumers never poke at
  raw dictionaries
- Payload models ignore unknown fields, so a publisher may add fields without
  breaking older consumers; removing or renaming a field is a breaking change
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from backbone.envelope import Envelope


# =============================================================================
# Event Type Constants
# =============================================================================

class EventTypes:
    """Routing keys for every event on the backbone."""
    # User events (user.exchange)
    USER_REGISTERED = "user.registered"
    USER_UPDATED = "user.updated"
    USER_DELETED = "user.deleted"

    # Order events (order.exchange)
    ORDER_CREATED = "order.created"
    ORDER_COMPLETED = "order.completed"
    ORDER_CANCELLED = "order.cancelled"

    # Catalog events (product.exchange)
    PRODUCT_CREATED = "product.created"
    INVENTORY_UPDATED = "inventory.updated"
    PRODUCT_OUT_OF_STOCK = "product.out_of_stock"


class PayloadError(ValueError):
    """Raised when envelope data does not match the event's payload contract."""


class EventPayload(BaseModel):
    """Base class for typed event payloads."""
    model_config = ConfigDict(frozen=True, extra="ignore")


# =============================================================================
# User Events
# =============================================================================

class UserRegistered(EventPayload):
    """Published when an account is created. Drives the welcome email."""
    user_id: str
    username: str
    email: str


class UserUpdated(EventPayload):
    user_id: str
    username: str
    email: str


class UserDeleted(EventPayload):
    user_id: str


# =============================================================================
# Order Events
# =============================================================================

class OrderItemRef(BaseModel):
    """A product and the quantity ordered, as carried by order.created."""
    product_id: str
    quantity: int

    model_config = ConfigDict(frozen=True, extra="ignore")


class OrderCreated(EventPayload):
    """
    Published when an order is placed.

    Consumed by the catalog (to decrement stock) and by notifications
    (to confirm the order).
    """
    order_id: str
    user_id: str
    items: list[OrderItemRef] = Field(default_factory=list)
    total_amount: float


class OrderCompleted(EventPayload):
    order_id: str
    user_id: str


class OrderCancelled(EventPayload):
    order_id: str
    user_id: str


# =============================================================================
# Catalog Events
# =============================================================================

class ProductCreated(EventPayload):
    product_id: str
    product_name: str
    price: float


class InventoryUpdated(EventPayload):
    """
    Published whenever stock changes.

    is_low_stock is computed by the publisher (quantity_remaining < 10) so
    consumers do not need to know the threshold.
    """
    product_id: str
    quantity_remaining: int
    is_low_stock: bool


class ProductOutOfStock(EventPayload):
    product_id: str
    product_name: str


# =============================================================================
# Event name -> payload model
# =============================================================================

PAYLOAD_TYPES: dict[str, type[EventPayload]] = {
    EventTypes.USER_REGISTERED: UserRegistered,
    EventTypes.USER_UPDATED: UserUpdated,
    EventTypes.USER_DELETED: UserDeleted,
    EventTypes.ORDER_CREATED: OrderCreated,
    EventTypes.ORDER_COMPLETED: OrderCompleted,
    EventTypes.ORDER_CANCELLED: OrderCancelled,
    EventTypes.PRODUCT_CREATED: ProductCreated,
    EventTypes.INVENTORY_UPDATED: InventoryUpdated,
    EventTypes.PRODUCT_OUT_OF_STOCK: ProductOutOfStock,
}


def payload_type(event: str) -> Optional[type[EventPayload]]:
    """Get the payload model for an event name, or None if the event is unknown."""
    return PAYLOAD_TYPES.get(event)


def decode_payload(envelope: Envelope) -> EventPayload:
    """
    Decode an envelope's data into the payload model for its event.

    Raises:
        PayloadError: If the event is unknown or the data does not validate
    """
    model = payload_type(envelope.event)
    if model is None:
        raise PayloadError(f"unknown event '{envelope.event}'")
    try:
        return model.model_validate(envelope.data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise PayloadError(f"invalid '{envelope.event}' payload: {fields}") from e


def encode_payload(data: Any) -> dict[str, Any]:
    """Turn a payload model (or an already plain mapping) into envelope data."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    return dict(data)
