"""
FastAPI application for the notification service.

The HTTP side is deliberately small: the interesting work happens on the
backbone, where the notification service consumes events. The lifespan hook
starts the backbone before the app accepts requests and stops it on shutdown;
if the backbone cannot start, the app does not start either.

Run with:
    uv run uvicorn api.main:app_from_env --factory

Environment variables are read by backbone.config.Settings.from_env.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional, Protocol
from uuid import UUID

from fastapi import FastAPI

from backbone.config import Settings, configure_logging
from services.notifications import NotificationService
from services.wiring import ServiceHost
from shared.models import NotifLog

logger = logging.getLogger("api")


class Lifecycle(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...


def create_app(
    notifications: NotificationService,
    runtime: Optional[Lifecycle] = None,
) -> FastAPI:
    """
    Build the notification service app.

    Args:
        notifications: Service whose notification history is exposed
        runtime: Started before serving and stopped on shutdown, if given
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if runtime is not None:
            await runtime.start()
        logger.info("Notification service API ready")
        yield
        if runtime is not None:
            await runtime.stop()
        logger.info("Notification service API stopped")

    app = FastAPI(
        title="Notification Service",
        description="Notifications produced from user, order and catalog events.",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/health", tags=["Health"])
    def health_check():
        return {"service": "notification-service", "status": "running"}

    @app.get(
        "/notifications/user/{user_id}",
        response_model=list[NotifLog],
        tags=["Notifications"],
    )
    def get_user_notifications(user_id: UUID):
        """Notifications sent to a user, newest first."""
        return notifications.get_user_notifications(str(user_id))

    return app


def app_from_env() -> FastAPI:
    """App factory for uvicorn: wires the notification service from the environment."""
    settings = Settings.from_env("notification-service")
    configure_logging(settings.log_level)
    host = ServiceHost("notification-service", settings)
    return create_app(host.service, runtime=host)
