"""
In-memory data store for the services around the backbone.

Persistence is not what this repository is about, so every service keeps its
state in a DataStore. In a real deployment each service would own its own
database; here each service can be given its own DataStore instance (or share
one in a single-process demo).

Design decisions:
- Plain dictionaries keyed by id, one per entity
- Updates replace the stored model with an updated copy
- Methods return None (or False) for unknown ids instead of raising; callers
  decide whether that is an error
- Not thread-safe; all access happens on one asyncio event loop
"""

from datetime import datetime, timezone
from typing import Optional

from shared.models import (
    Inventory,
    NotifLog,
    Order,
    OrderStatus,
    Product,
    User,
)


class DataStore:
    """
    Central in-memory store.

    Example:
        store = DataStore()
        product = store.add_product(Product(name="Keyboard", price=49.0), quantity=12)
        inventory = store.decrement_stock(product.id, 3)  # quantity 9
    """

    def __init__(self):
        self._users: dict[str, User] = {}
        self._products: dict[str, Product] = {}
        self._inventory: dict[str, Inventory] = {}
        self._orders: dict[str, Order] = {}
        self._notifications: list[NotifLog] = []

    # =========================================================================
    # User Operations
    # =========================================================================

    def add_user(self, user: User) -> User:
        self._users[user.id] = user
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def update_user(
        self,
        user_id: str,
        username: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[User]:
        """Update the given fields; returns the updated user or None if not found."""
        user = self._users.get(user_id)
        if not user:
            return None
        changes = {"updated_at": datetime.now(timezone.utc)}
        if username:
            changes["username"] = username
        if email:
            changes["email"] = email
        updated = user.model_copy(update=changes)
        self._users[user_id] = updated
        return updated

    def delete_user(self, user_id: str) -> bool:
        return self._users.pop(user_id, None) is not None

    # =========================================================================
    # Product and Inventory Operations
    # =========================================================================

    def add_product(self, product: Product, quantity: int = 0) -> Product:
        """Store a product together with its initial stock level."""
        self._products[product.id] = product
        self._inventory[product.id] = Inventory(product_id=product.id, quantity=quantity)
        return product

    def get_product(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    def get_products(self) -> list[Product]:
        return list(self._products.values())

    def get_inventory(self, product_id: str) -> Optional[Inventory]:
        return self._inventory.get(product_id)

    def set_stock(self, product_id: str, quantity: int) -> Optional[Inventory]:
        """Overwrite the stock level. Returns None if the product has no inventory row."""
        if product_id not in self._inventory:
            return None
        updated = Inventory(product_id=product_id, quantity=quantity)
        self._inventory[product_id] = updated
        return updated

    def decrement_stock(self, product_id: str, amount: int) -> Optional[Inventory]:
        """
        Take `amount` units out of stock, never going below zero.

        Returns:
            The updated inventory, or None if the product has no inventory row
        """
        inventory = self._inventory.get(product_id)
        if inventory is None:
            return None
        return self.set_stock(product_id, max(inventory.quantity - amount, 0))

    # =========================================================================
    # Order Operations
    # =========================================================================

    def add_order(self, order: Order) -> Order:
        self._orders[order.id] = order
        return order

    def get_order(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def get_orders_by_user(self, user_id: str) -> list[Order]:
        return [o for o in self._orders.values() if o.user_id == user_id]

    def update_order_status(self, order_id: str, status: OrderStatus) -> Optional[Order]:
        order = self._orders.get(order_id)
        if not order:
            return None
        updated = order.model_copy(update={
            "status": OrderStatus(status).value,
            "updated_at": datetime.now(timezone.utc),
        })
        self._orders[order_id] = updated
        return updated

    # =========================================================================
    # Notification Operations
    # =========================================================================

    def save_notification(self, log: NotifLog) -> NotifLog:
        self._notifications.append(log)
        return log

    def get_notifications_by_user(self, user_id: str) -> list[NotifLog]:
        """Notifications for a user, newest first."""
        logs = [n for n in self._notifications if n.user_id == user_id]
        return sorted(logs, key=lambda n: n.sent_at, reverse=True)

    def get_notifications(self) -> list[NotifLog]:
        return list(self._notifications)
