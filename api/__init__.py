"""
HTTP surface of the notification service.

Exposes a health check and a user's notification history, and boots the
service's backbone runtime in the application lifespan.
"""

from api.main import create_app

__all__ = ["create_app"]
