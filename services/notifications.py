"""
Notification service: turns other services' events into notifications.

This service subscribes to events and decides what to send. It never gets
called directly by the services that cause the notifications.

Queues (all with deduplication when a cache is configured):
- user.registered.notify     -> welcome email
- order.created.notify       -> order confirmation
- order.completed.notify     -> order delivered
- order.cancelled.notify     -> order cancelled
- product.outofstock.notify  -> stock alert to the admin account

Design decisions:
- All "when to notify" logic is here, not in the publishing services
- Adding a notification type means adding a handler and a binding here
- Handlers validate what they need (a UUID user id) and log and skip
  otherwise; a bad event never reaches the dispatcher as an exception
- Sending an email is recorded as a NotifLog; delivery itself is out of scope
"""

import logging
from typing import Optional
from uuid import UUID

from backbone.events import (
    EventTypes,
    OrderCancelled,
    OrderCompleted,
    OrderCreated,
    ProductOutOfStock,
    UserRegistered,
)
from shared.data_store import DataStore
from shared.models import NotifLog
from shared.templates import NotificationType, render_notification

logger = logging.getLogger("notification_service")

# Stock alerts go to a fixed admin account
ADMIN_USER_ID = "00000000-0000-0000-0000-000000000001"


def _parse_user_id(user_id: str) -> Optional[str]:
    """Canonical form of a UUID user id, or None if it is not a UUID."""
    try:
        return str(UUID(user_id))
    except ValueError:
        return None


class NotificationService:
    """
    Event-driven notification service.

    Example:
        service = NotificationService(data_store)
        registry = HandlerRegistry(service.handlers())
        # registry is handed to the Consumer for NOTIFICATION_BINDINGS
    """

    def __init__(self, data_store: Optional[DataStore] = None):
        self.data_store = data_store or DataStore()

    # =========================================================================
    # Event Handlers
    # =========================================================================

    def handle_user_registered(self, payload: UserRegistered) -> None:
        user_id = _parse_user_id(payload.user_id)
        if user_id is None:
            logger.warning(f"Invalid user_id in user.registered: {payload.user_id}")
            return

        self._send(
            user_id,
            NotificationType.WELCOME,
            username=payload.username,
            email=payload.email,
        )
        logger.info(f"Welcome email sent to user {payload.username} ({payload.email})")

    def handle_order_created(self, payload: OrderCreated) -> None:
        user_id = _parse_user_id(payload.user_id)
        if user_id is None:
            logger.warning(f"Invalid user_id in order.created: {payload.user_id}")
            return

        self._send(user_id, NotificationType.ORDER_CONFIRMATION, order_id=payload.order_id)
        logger.info(f"Order confirmation sent for order {payload.order_id}")

    def handle_order_completed(self, payload: OrderCompleted) -> None:
        user_id = _parse_user_id(payload.user_id)
        if user_id is None:
            logger.warning(f"Invalid user_id in order.completed: {payload.user_id}")
            return

        self._send(user_id, NotificationType.ORDER_DELIVERED, order_id=payload.order_id)
        logger.info(f"Order completed notification sent for order {payload.order_id}")

    def handle_order_cancelled(self, payload: OrderCancelled) -> None:
        user_id = _parse_user_id(payload.user_id)
        if user_id is None:
            logger.warning(f"Invalid user_id in order.cancelled: {payload.user_id}")
            return

        self._send(user_id, NotificationType.ORDER_CANCELLED, order_id=payload.order_id)
        logger.info(f"Order cancelled notification sent for order {payload.order_id}")

    def handle_product_out_of_stock(self, payload: ProductOutOfStock) -> None:
        self._send(
            ADMIN_USER_ID,
            NotificationType.STOCK_ALERT,
            product_id=payload.product_id,
            product_name=payload.product_name,
        )
        logger.info(f"Stock alert sent for product {payload.product_name} ({payload.product_id})")

    def handlers(self) -> dict:
        """Event handlers this service registers on the backbone."""
        return {
            EventTypes.USER_REGISTERED: self.handle_user_registered,
            EventTypes.ORDER_CREATED: self.handle_order_created,
            EventTypes.ORDER_COMPLETED: self.handle_order_completed,
            EventTypes.ORDER_CANCELLED: self.handle_order_cancelled,
            EventTypes.PRODUCT_OUT_OF_STOCK: self.handle_product_out_of_stock,
        }

    # =========================================================================
    # Queries
    # =========================================================================

    def get_user_notifications(self, user_id: str) -> list[NotifLog]:
        return self.data_store.get_notifications_by_user(user_id)

    def _send(self, user_id: str, notification_type: NotificationType, **context) -> NotifLog:
        subject, body = render_notification(notification_type, **context)
        return self.data_store.save_notification(NotifLog(
            user_id=user_id,
            subject=subject,
            body=body,
        ))
