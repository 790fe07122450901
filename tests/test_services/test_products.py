"""
Tests for the product service: stock changes and the events they announce.
"""

import pytest

from backbone.events import OrderCreated, OrderItemRef
from backbone.publisher import Publisher
from fakes import RecordingExchange
from services.products import LOW_STOCK_THRESHOLD, ProductService, StockError, is_low_stock


@pytest.fixture
def products(product_publisher, data_store) -> ProductService:
    return ProductService(product_publisher, data_store)


def order_for(*items: tuple[str, int]) -> OrderCreated:
    return OrderCreated(
        order_id="o-1",
        user_id="u-1",
        items=[OrderItemRef(product_id=p, quantity=q) for p, q in items],
        total_amount=1.0,
    )


class TestLowStock:

    @pytest.mark.parametrize("quantity,expected", [
        (0, True),
        (9, True),
        (10, False),
        (11, False),
    ])
    def test_threshold(self, quantity, expected):
        assert LOW_STOCK_THRESHOLD == 10
        assert is_low_stock(quantity) is expected


class TestCreateProduct:

    @pytest.mark.asyncio
    async def test_create_publishes_product_created(self, products, product_exchange, data_store):
        product = await products.create_product("Router", price=99.0, quantity=12)

        assert data_store.get_inventory(product.id).quantity == 12
        envelope = product_exchange.envelopes()[0]
        assert envelope.event == "product.created"
        assert envelope.data == {"product_id": product.id, "product_name": "Router", "price": 99.0}


class TestStockUpdates:
    """Tests for update_stock and decrement_stock."""

    @pytest.mark.asyncio
    async def test_update_stock_announces_level(self, products, product_exchange, widget):
        await products.update_stock(widget.id, 25)

        envelope = product_exchange.envelopes()[0]
        assert envelope.event == "inventory.updated"
        assert envelope.data == {"product_id": "P1", "quantity_remaining": 25, "is_low_stock": False}

    @pytest.mark.asyncio
    async def test_update_stock_rejects_negative(self, products, product_exchange, widget):
        with pytest.raises(StockError):
            await products.update_stock(widget.id, -1)

        assert product_exchange.published == []

    @pytest.mark.asyncio
    async def test_update_unknown_product(self, products):
        with pytest.raises(StockError, match="not found"):
            await products.update_stock("missing", 3)

    @pytest.mark.asyncio
    async def test_decrement_above_zero(self, products, product_exchange, widget, data_store):
        inventory = await products.decrement_stock(widget.id, 2)

        assert inventory.quantity == 3
        assert data_store.get_inventory("P1").quantity == 3
        assert product_exchange.routing_keys == ["inventory.updated"]
        assert product_exchange.envelopes()[0].data["is_low_stock"] is True

    @pytest.mark.asyncio
    async def test_low_stock_boundary(self, products, product_exchange, widget, data_store):
        data_store.set_stock(widget.id, 11)

        await products.decrement_stock(widget.id, 1)
        await products.decrement_stock(widget.id, 1)

        flags = [(e.data["quantity_remaining"], e.data["is_low_stock"]) for e in product_exchange.envelopes()]
        assert flags == [(10, False), (9, True)]

    @pytest.mark.asyncio
    async def test_decrement_to_zero_announces_out_of_stock(self, products, product_exchange, widget):
        await products.decrement_stock(widget.id, 5)

        assert product_exchange.routing_keys == ["inventory.updated", "product.out_of_stock"]
        updated, out_of_stock = product_exchange.envelopes()
        assert updated.data == {"product_id": "P1", "quantity_remaining": 0, "is_low_stock": True}
        assert out_of_stock.data == {"product_id": "P1", "product_name": "Widget"}

    @pytest.mark.asyncio
    async def test_decrement_clamps_at_zero(self, products, product_exchange, widget, data_store):
        inventory = await products.decrement_stock(widget.id, 8)

        assert inventory.quantity == 0
        assert data_store.get_inventory("P1").quantity == 0
        assert "product.out_of_stock" in product_exchange.routing_keys

    @pytest.mark.asyncio
    async def test_decrement_unknown_product(self, products, product_exchange):
        with pytest.raises(StockError):
            await products.decrement_stock("missing", 1)

        assert product_exchange.published == []


class TestHandleOrderCreated:
    """The product service reacts to order.created by taking stock out."""

    @pytest.mark.asyncio
    async def test_each_item_decrements_stock(self, products, data_store, widget):
        data_store.add_product(widget.model_copy(update={"id": "P2", "name": "Gadget"}), quantity=20)

        await products.handle_order_created(order_for(("P1", 1), ("P2", 5)))

        assert data_store.get_inventory("P1").quantity == 4
        assert data_store.get_inventory("P2").quantity == 15

    @pytest.mark.asyncio
    async def test_unknown_item_does_not_stop_the_rest(self, products, data_store, widget, caplog):
        await products.handle_order_created(order_for(("missing", 1), ("P1", 2)))

        assert data_store.get_inventory("P1").quantity == 3
        assert "Failed to decrement stock for product missing" in caplog.text

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_raise(self, data_store, widget):
        products = ProductService(
            Publisher(RecordingExchange("product.exchange", fail_with=ConnectionError("down"))),
            data_store,
        )

        await products.handle_order_created(order_for(("P1", 5)))

        assert data_store.get_inventory("P1").quantity == 0

    def test_handlers(self, products):
        assert set(products.handlers()) == {"order.created"}
