"""
Domain models for the services around the backbone.

Each service owns its own slice of these models:
- User service owns users
- Product service owns products and inventory
- Order service owns orders and order items
- Notification service owns notification logs

Design decisions:
- Using Pydantic for validation and serialization
- Identifiers are UUID strings, matching what travels in event payloads
- Models are intentionally small; only fields that events or notifications use
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


# =============================================================================
# Enums
# =============================================================================

class OrderStatus(str, Enum):
    """Order lifecycle states."""
    PENDING = "pending"           # Order placed, stock being reserved
    COMPLETED = "completed"       # Order delivered
    CANCELLED = "cancelled"       # Order was cancelled


class NotificationStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


# =============================================================================
# User Service
# =============================================================================

class User(BaseModel):
    """An account. Registration is what triggers the welcome email."""
    id: str = Field(default_factory=_new_id)
    username: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: Optional[datetime] = None


# =============================================================================
# Product Service
# =============================================================================

class Product(BaseModel):
    """A catalog entry. Stock lives separately in Inventory."""
    id: str = Field(default_factory=_new_id)
    name: str = Field(..., min_length=1)
    description: str = ""
    price: float = Field(..., gt=0)
    created_at: datetime = Field(default_factory=_utc_now)


class Inventory(BaseModel):
    """
    Stock level for one product.

    Quantity never goes below zero; decrements past zero are clamped.
    """
    product_id: str
    quantity: int = Field(default=0, ge=0)
    updated_at: datetime = Field(default_factory=_utc_now)


# =============================================================================
# Order Service
# =============================================================================

class OrderItem(BaseModel):
    """One product line in an order, priced at the time of ordering."""
    product_id: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)

    @property
    def subtotal(self) -> float:
        return self.price * self.quantity


class Order(BaseModel):
    """A customer purchase."""
    id: str = Field(default_factory=_new_id)
    user_id: str
    status: OrderStatus = OrderStatus.PENDING
    total_amount: float = Field(default=0.0, ge=0)
    items: list[OrderItem] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(use_enum_values=True)


# =============================================================================
# Notification Service
# =============================================================================

class NotifLog(BaseModel):
    """
    Record of one notification sent to a user.

    The notification service keeps these so a user's notifications can be
    listed; they are the only visible trace that an event was handled.
    """
    id: str = Field(default_factory=_new_id)
    user_id: str
    type: str = "email"
    subject: str
    body: str
    status: NotificationStatus = NotificationStatus.SENT
    sent_at: datetime = Field(default_factory=_utc_now)

    model_config = ConfigDict(use_enum_values=True)
