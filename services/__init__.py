"""
Domain services that sit on the backbone.

Each service announces facts about its own domain and reacts to facts from
other domains. None of them calls another service directly.
"""

from services.notifications import NotificationService
from services.orders import OrderService
from services.products import ProductService
from services.users import UserService

__all__ = [
    "NotificationService",
    "OrderService",
    "ProductService",
    "UserService",
]
