"""
Notification message templates.

Templates are plain strings with {variable} placeholders rendered with
str.format. The notification service picks a template per event and records
the rendered subject and body in a NotifLog.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class NotificationType(str, Enum):
    """One notification type per event the notification service reacts to."""
    WELCOME = "welcome"
    ORDER_CONFIRMATION = "order_confirmation"
    ORDER_DELIVERED = "order_delivered"
    ORDER_CANCELLED = "order_cancelled"
    STOCK_ALERT = "stock_alert"


@dataclass
class NotificationTemplate:
    """An email subject and body pair."""
    notification_type: NotificationType
    subject: str
    body: str

    def render(self, **kwargs) -> tuple[str, str]:
        """
        Render the template with provided variables.

        Returns:
            Tuple of (subject, body)
        """
        return self.subject.format(**kwargs), self.body.format(**kwargs)


TEMPLATES: dict[NotificationType, NotificationTemplate] = {
    NotificationType.WELCOME: NotificationTemplate(
        notification_type=NotificationType.WELCOME,
        subject="Welcome to our platform!",
        body="Welcome {username}! Your account has been created with email {email}",
    ),
    NotificationType.ORDER_CONFIRMATION: NotificationTemplate(
        notification_type=NotificationType.ORDER_CONFIRMATION,
        subject="Order Confirmation",
        body="Your order #{order_id} has been placed successfully.",
    ),
    NotificationType.ORDER_DELIVERED: NotificationTemplate(
        notification_type=NotificationType.ORDER_DELIVERED,
        subject="Order Delivered",
        body="Your order #{order_id} has been delivered.",
    ),
    NotificationType.ORDER_CANCELLED: NotificationTemplate(
        notification_type=NotificationType.ORDER_CANCELLED,
        subject="Order Cancelled",
        body="Your order #{order_id} has been cancelled.",
    ),
    NotificationType.STOCK_ALERT: NotificationTemplate(
        notification_type=NotificationType.STOCK_ALERT,
        subject="Stock Alert: {product_name}",
        body="Product {product_name} (ID: {product_id}) is out of stock.",
    ),
}


def get_template(notification_type: NotificationType) -> Optional[NotificationTemplate]:
    return TEMPLATES.get(notification_type)


def render_notification(notification_type: NotificationType, **context) -> tuple[str, str]:
    """
    Render a notification.

    Raises:
        ValueError: If no template exists for the type
        KeyError: If a placeholder is missing from context
    """
    template = get_template(notification_type)
    if not template:
        raise ValueError(f"No template found for notification type: {notification_type}")
    return template.render(**context)
