"""Shared pytest fixtures and configuration for all tests."""

import os
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import pytest

# main.py only builds the real application outside of test runs
os.environ.setdefault("ENVIRONMENT", "test")

from restaurant_table_service.models.order_models import (  # noqa: E402
    OrderLineItem,
    OrderStatus,
    PaymentMethod,
    TableOrder,
    WaiterRequest,
)
from restaurant_table_service.models.payment_models import Cart, PaymentInfo  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    """Fixture providing a manually advanced clock."""
    return FakeClock()


@pytest.fixture
def mock_table_id() -> str:
    """Fixture providing a standard test table id."""
    return "12"


@pytest.fixture
def mock_order_record() -> dict[str, Any]:
    """Fixture providing an order record as served by the remote store."""
    return {
        "id": 101,
        "table": "12",
        "items": [
            {"item": "Rolex", "menu_item_id": 4, "quantity": 2, "price": "5000"},
            {"item": "Passion Juice", "menu_item_id": 9, "quantity": 1, "price": "5000"},
        ],
        "total_price": "15000",
        "status": "pending",
        "payment_method": "cash",
        "created_at": "2024-06-01T12:00:00+00:00",
    }


@pytest.fixture
def mock_waiter_request_record() -> dict[str, Any]:
    """Fixture providing a waiter request record as served by the remote store."""
    return {
        "id": 7,
        "table_number": "12",
        "message": "Customer needs assistance",
        "status": "pending",
        "created_at": "2024-06-01T12:05:00+00:00",
        "acknowledged_at": None,
        "completed_at": None,
    }


@pytest.fixture
def sample_order() -> TableOrder:
    """Fixture providing a pending cash order for table 12."""
    return TableOrder(
        id=101,
        table_id="12",
        items=[
            OrderLineItem(menu_item_id="4", name="Rolex", quantity=2, unit_price=Decimal("5000")),
            OrderLineItem(
                menu_item_id="9", name="Passion Juice", quantity=1, unit_price=Decimal("5000")
            ),
        ],
        total_amount=Decimal("15000"),
        status=OrderStatus.PENDING,
        payment_method=PaymentMethod.CASH,
        created_at=datetime(2024, 6, 1, 12, 0, tzinfo=UTC),
    )


@pytest.fixture
def sample_waiter_request() -> WaiterRequest:
    """Fixture providing a pending waiter request for table 12."""
    return WaiterRequest(
        id=7,
        table_id="12",
        message="Customer needs assistance",
        created_at=datetime(2024, 6, 1, 12, 5, tzinfo=UTC),
    )


@pytest.fixture
def sample_cart() -> Cart:
    """Fixture providing a cart totalling UGX 15,000."""
    cart = Cart(table_id="12")
    cart.add_item("4", "Rolex", Decimal("5000"), quantity=2)
    cart.add_item("9", "Passion Juice", Decimal("5000"))
    return cart


@pytest.fixture
def cash_payment() -> PaymentInfo:
    """Fixture providing cash payer details."""
    return PaymentInfo(method=PaymentMethod.CASH, customer_name="Amina", phone_number="0772123456")


@pytest.fixture
def mtn_payment() -> PaymentInfo:
    """Fixture providing MTN Mobile Money payer details."""
    return PaymentInfo(
        method=PaymentMethod.MTN_MOMO, customer_name="Amina", phone_number="256772123456"
    )
