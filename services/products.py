"""
Product service: owns the catalog and stock levels.

Publishes to product.exchange:
- product.created      when a product is added
- inventory.updated    whenever stock changes
- product.out_of_stock when stock reaches zero

Consumes order.created (queue order.created.product) and takes each ordered
quantity out of stock.

Key point:
- The order service never calls this service. It announces order.created and
  stock follows from that event.
- Stock changes are announced with is_low_stock already computed, so nobody
  downstream needs to know the threshold.
"""

import logging
from typing import Optional

from backbone.events import (
    EventTypes,
    InventoryUpdated,
    OrderCreated,
    ProductCreated,
    ProductOutOfStock,
)
from backbone.publisher import Publisher
from shared.data_store import DataStore
from shared.models import Inventory, Product

logger = logging.getLogger("product_service")

# Stock strictly below this is "low"
LOW_STOCK_THRESHOLD = 10


class StockError(Exception):
    """Raised when stock cannot be changed for a product."""


def is_low_stock(quantity: int) -> bool:
    return quantity < LOW_STOCK_THRESHOLD


class ProductService:
    """
    Catalog and inventory, announced as events.

    Example:
        service = ProductService(publisher, data_store)
        product = await service.create_product("Router", price=99.0, quantity=5)

        # Ordering 5 routers elsewhere publishes order.created; the consumer
        # calls handle_order_created, stock drops to 0 and both
        # inventory.updated and product.out_of_stock go out.
    """

    def __init__(self, publisher: Publisher, data_store: Optional[DataStore] = None):
        self.publisher = publisher
        self.data_store = data_store or DataStore()

    async def create_product(
        self,
        name: str,
        price: float,
        quantity: int = 0,
        description: str = "",
    ) -> Product:
        """Add a product with its initial stock and publish product.created."""
        product = self.data_store.add_product(
            Product(name=name, price=price, description=description),
            quantity=quantity,
        )

        await self.publisher.publish(EventTypes.PRODUCT_CREATED, ProductCreated(
            product_id=product.id,
            product_name=product.name,
            price=product.price,
        ))
        return product

    async def update_stock(self, product_id: str, quantity: int) -> Inventory:
        """
        Set the stock level and publish inventory.updated.

        Raises:
            StockError: If the product is unknown or quantity is negative
        """
        if quantity < 0:
            raise StockError(f"quantity must not be negative: {quantity}")

        inventory = self.data_store.set_stock(product_id, quantity)
        if inventory is None:
            raise StockError(f"product not found: {product_id}")

        logger.info(f"Stock for {product_id} set to {inventory.quantity}")
        await self._announce_stock(inventory)
        return inventory

    async def decrement_stock(self, product_id: str, amount: int) -> Inventory:
        """
        Take stock out, clamped at zero, and announce the new level.

        Publishes inventory.updated and, if nothing is left,
        product.out_of_stock.

        Raises:
            StockError: If the product is unknown
        """
        inventory = self.data_store.decrement_stock(product_id, amount)
        if inventory is None:
            raise StockError(f"product not found: {product_id}")

        logger.info(f"Stock for {product_id} decremented by {amount}, {inventory.quantity} left")
        await self._announce_stock(inventory)

        if inventory.quantity == 0:
            product = self.data_store.get_product(product_id)
            name = product.name if product else product_id
            await self.publisher.publish(EventTypes.PRODUCT_OUT_OF_STOCK, ProductOutOfStock(
                product_id=product_id,
                product_name=name,
            ))

        return inventory

    async def _announce_stock(self, inventory: Inventory) -> None:
        await self.publisher.publish(EventTypes.INVENTORY_UPDATED, InventoryUpdated(
            product_id=inventory.product_id,
            quantity_remaining=inventory.quantity,
            is_low_stock=is_low_stock(inventory.quantity),
        ))

    # =========================================================================
    # Event Handlers
    # =========================================================================

    async def handle_order_created(self, payload: OrderCreated) -> None:
        """
        Decrement stock for every item in a new order.

        A bad item is logged and skipped; the remaining items still apply.
        """
        logger.info(f"Received order.created: order_id={payload.order_id}")

        for item in payload.items:
            try:
                await self.decrement_stock(item.product_id, item.quantity)
            except StockError as e:
                logger.error(f"Failed to decrement stock for product {item.product_id}: {e}")

    def handlers(self) -> dict:
        """Event handlers this service registers on the backbone."""
        return {EventTypes.ORDER_CREATED: self.handle_order_created}
