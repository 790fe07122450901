"""
Shared pytest fixtures for the backbone and service tests.

The broker and cache doubles live in fakes.py.
"""

import pytest

from backbone.publisher import Publisher
from fakes import RecordingExchange
from shared.data_store import DataStore
from shared.models import Product


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def data_store() -> DataStore:
    """Fresh, empty DataStore for each test."""
    return DataStore()


@pytest.fixture
def user_exchange() -> RecordingExchange:
    return RecordingExchange("user.exchange")


@pytest.fixture
def order_exchange() -> RecordingExchange:
    return RecordingExchange("order.exchange")


@pytest.fixture
def product_exchange() -> RecordingExchange:
    return RecordingExchange("product.exchange")


@pytest.fixture
def user_publisher(user_exchange) -> Publisher:
    return Publisher(user_exchange)


@pytest.fixture
def order_publisher(order_exchange) -> Publisher:
    return Publisher(order_exchange)


@pytest.fixture
def product_publisher(product_exchange) -> Publisher:
    return Publisher(product_exchange)


@pytest.fixture
def widget(data_store: DataStore) -> Product:
    """Product P1 with 5 units in stock."""
    return data_store.add_product(Product(id="P1", name="Widget", price=2.5), quantity=5)


@pytest.fixture
def alice_user_id() -> str:
    return "6f1c2a9e-3b1d-4c55-9a0e-2d7f1e4b8c01"
