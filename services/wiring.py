"""
Wiring: which service publishes where, consumes what, and with which handlers.

    service               publishes to       consumes
    user-service          user.exchange      -
    order-service         order.exchange     inventory.updated.order
    product-service       product.exchange   order.created.product
    notification-service  -                  user.registered.notify, order.created.notify,
                                             order.completed.notify, order.cancelled.notify,
                                             product.outofstock.notify

Only the notification service deduplicates. Dedup keys name the event and the
body but not the queue, so two services sharing one cache would each see the
other's order.created as a duplicate.
"""

import logging
from typing import Optional

from backbone.config import Settings
from backbone.consumer import HandlerRegistry
from backbone.publisher import Publisher
from backbone.runtime import ServiceRuntime
from backbone.topology import (
    NOTIFICATION_BINDINGS,
    ORDER_BINDINGS,
    PRODUCER_EXCHANGES,
    PRODUCT_BINDINGS,
    Binding,
)
from services.notifications import NotificationService
from services.orders import OrderService
from services.products import ProductService
from services.users import UserService
from shared.data_store import DataStore

logger = logging.getLogger("wiring")

SERVICE_BINDINGS: dict[str, tuple[Binding, ...]] = {
    "user-service": (),
    "order-service": ORDER_BINDINGS,
    "product-service": PRODUCT_BINDINGS,
    "notification-service": NOTIFICATION_BINDINGS,
}

SERVICE_NAMES = tuple(SERVICE_BINDINGS)

DEDUP_SERVICES = frozenset({"notification-service"})


class ServiceHost:
    """
    One domain service attached to its backbone runtime.

    The domain service is created once the publisher exists, because
    producing services need it to announce their events. The notification
    service publishes nothing and is available immediately.

    Attributes:
        name: Service name, one of SERVICE_NAMES
        data_store: The service's state
        runtime: Broker/cache connection owner
        service: The domain service (None until start() for producers)
    """

    def __init__(self, name: str, settings: Settings, data_store: Optional[DataStore] = None):
        if name not in SERVICE_BINDINGS:
            raise ValueError(f"Unknown service: {name}. Valid services: {', '.join(SERVICE_NAMES)}")

        self.name = name
        self.data_store = data_store or DataStore()
        self.service = None

        if name == "notification-service":
            self.service = NotificationService(self.data_store)

        if name not in DEDUP_SERVICES and settings.cache is not None:
            logger.info(f"{name} does not deduplicate; ignoring cache settings")
            settings = settings.model_copy(update={"cache": None})

        bindings = SERVICE_BINDINGS[name]
        self.runtime = ServiceRuntime(
            settings,
            producer_exchange=PRODUCER_EXCHANGES.get(name),
            bindings=bindings,
            handler_factory=self._build_handlers if bindings else None,
        )

    def _create_service(self, publisher: Optional[Publisher]):
        if self.service is not None:
            return self.service
        if self.name == "user-service":
            return UserService(publisher, self.data_store)
        if self.name == "order-service":
            return OrderService(publisher, self.data_store)
        return ProductService(publisher, self.data_store)

    def _build_handlers(self, publisher: Optional[Publisher]) -> HandlerRegistry:
        self.service = self._create_service(publisher)
        return HandlerRegistry(self.service.handlers())

    async def start(self) -> None:
        await self.runtime.start()
        if self.service is None:
            self.service = self._create_service(self.runtime.publisher)
        logger.info(f"{self.name} started")

    async def stop(self) -> None:
        await self.runtime.stop()

    async def serve(self) -> None:
        """Run until cancelled."""
        await self.start()
        try:
            await self.runtime.wait_closed()
        finally:
            await self.stop()
