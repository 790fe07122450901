"""
Shared domain code for the services around the backbone.

- Domain models (User, Product, Inventory, Order, NotifLog)
- In-memory data store
- Notification templates
"""

from shared.models import (
    Inventory,
    NotifLog,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    User,
)
from shared.data_store import DataStore

__all__ = [
    "DataStore",
    "Inventory",
    "NotifLog",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Product",
    "User",
]
