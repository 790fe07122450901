"""
Order service: owns orders.

Publishes to order.exchange:
- order.created   when an order is placed
- order.completed when an order is delivered
- order.cancelled when an order is cancelled

Consumes inventory.updated (queue inventory.updated.order) and raises a low
stock alert in its log.

Key point:
- Placing an order does not check or reserve stock synchronously. The product
  service reacts to order.created on its own.
"""

import logging
from typing import Iterable, Mapping, Optional

from backbone.events import (
    EventTypes,
    InventoryUpdated,
    OrderCancelled,
    OrderCompleted,
    OrderCreated,
    OrderItemRef,
)
from backbone.publisher import Publisher
from shared.data_store import DataStore
from shared.models import Order, OrderItem, OrderStatus

logger = logging.getLogger("order_service")


class OrderError(Exception):
    """Raised when an order operation is rejected."""


class OrderService:
    """
    Orders, announced as events.

    Publish failures are logged and the order operation still succeeds; a
    lost order.created means stock is not decremented and no confirmation is
    sent.
    """

    def __init__(self, publisher: Publisher, data_store: Optional[DataStore] = None):
        self.publisher = publisher
        self.data_store = data_store or DataStore()
        # inventory.updated events that reported low stock, oldest first
        self.low_stock_alerts: list[InventoryUpdated] = []

    async def place_order(self, user_id: str, items: Iterable[Mapping]) -> Order:
        """
        Place an order and publish order.created.

        Args:
            user_id: Who is ordering
            items: Mappings with product_id, quantity and price

        Raises:
            OrderError: If there are no items
        """
        order_items = [OrderItem(**item) for item in items]
        if not order_items:
            raise OrderError("an order needs at least one item")

        order = self.data_store.add_order(Order(
            user_id=user_id,
            items=order_items,
            total_amount=sum(item.subtotal for item in order_items),
        ))
        logger.info(f"Order {order.id} placed by {user_id}: {len(order_items)} item(s)")

        result = await self.publisher.publish(EventTypes.ORDER_CREATED, OrderCreated(
            order_id=order.id,
            user_id=order.user_id,
            items=[
                OrderItemRef(product_id=item.product_id, quantity=item.quantity)
                for item in order.items
            ],
            total_amount=order.total_amount,
        ))
        if not result.ok:
            logger.warning(f"order.created for {order.id} was not published: {result.error}")

        return order

    async def complete_order(self, order_id: str) -> Order:
        """
        Mark an order as delivered and publish order.completed.

        Raises:
            OrderError: If the order is unknown or was cancelled
        """
        order = self._get_order(order_id)
        if order.status == OrderStatus.CANCELLED:
            raise OrderError(f"order {order_id} is cancelled")
        if order.status == OrderStatus.COMPLETED:
            logger.warning(f"Order already completed: {order_id}")
            return order

        updated = self.data_store.update_order_status(order_id, OrderStatus.COMPLETED)
        await self.publisher.publish(EventTypes.ORDER_COMPLETED, OrderCompleted(
            order_id=order_id,
            user_id=order.user_id,
        ))
        return updated

    async def cancel_order(self, order_id: str) -> Order:
        """
        Cancel an order and publish order.cancelled.

        Raises:
            OrderError: If the order is unknown or already cancelled
        """
        order = self._get_order(order_id)
        if order.status == OrderStatus.CANCELLED:
            raise OrderError("order already cancelled")

        updated = self.data_store.update_order_status(order_id, OrderStatus.CANCELLED)
        logger.info(f"Order {order_id} cancelled")

        await self.publisher.publish(EventTypes.ORDER_CANCELLED, OrderCancelled(
            order_id=order_id,
            user_id=order.user_id,
        ))
        return updated

    def get_user_orders(self, user_id: str) -> list[Order]:
        return self.data_store.get_orders_by_user(user_id)

    def _get_order(self, order_id: str) -> Order:
        order = self.data_store.get_order(order_id)
        if not order:
            raise OrderError("order not found")
        return order

    # =========================================================================
    # Event Handlers
    # =========================================================================

    def handle_inventory_updated(self, payload: InventoryUpdated) -> None:
        logger.info(
            f"Received inventory.updated: product_id={payload.product_id}, "
            f"remaining={payload.quantity_remaining}, low_stock={payload.is_low_stock}"
        )
        if payload.is_low_stock:
            self.low_stock_alerts.append(payload)
            logger.warning(
                f"Low stock alert for product {payload.product_id}: "
                f"{payload.quantity_remaining} remaining"
            )

    def handlers(self) -> dict:
        return {EventTypes.INVENTORY_UPDATED: self.handle_inventory_updated}
