"""Table order and waiter request models.

These models mirror the JSON shapes served by the restaurant's remote store
(`/menuOrder` and `/waiter-request`) and provide converters in both
directions.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class OrderStatus(str, Enum):
    """Enumeration of table order status values."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class WaiterRequestStatus(str, Enum):
    """Enumeration of waiter request status values."""

    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    COMPLETED = "completed"


class PaymentMethod(str, Enum):
    """Supported payment methods (cash and two mobile-money providers)."""

    CASH = "cash"
    MTN_MOMO = "mtn_momo"
    AIRTEL_MONEY = "airtel_money"

    @property
    def display_name(self) -> str:
        return PAYMENT_METHOD_NAMES[self]


PAYMENT_METHOD_NAMES: dict[PaymentMethod, str] = {
    PaymentMethod.CASH: "Cash",
    PaymentMethod.MTN_MOMO: "MTN Mobile Money",
    PaymentMethod.AIRTEL_MONEY: "Airtel Money",
}


class OrderLineItem(BaseModel):
    """A single line of a table order."""

    model_config = ConfigDict(json_encoders={Decimal: str})

    menu_item_id: str | None = Field(None, description="Menu item reference")
    name: str = Field(..., description="Menu item name at time of ordering")
    quantity: int = Field(..., description="Number of portions", gt=0)
    unit_price: Decimal = Field(..., description="Price per portion", ge=0)
    special_request: str | None = Field(None, description="Free-text kitchen instructions")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class TableOrder(BaseModel):
    """An order placed from a table terminal.

    The total always equals the sum of line-item subtotals.
    """

    model_config = ConfigDict(json_encoders={Decimal: str})

    id: int = Field(..., description="Remote store identifier")
    table_id: str = Field(..., description="Table the order was placed from")
    items: list[OrderLineItem] = Field(default_factory=list, description="Ordered line items")
    total_amount: Decimal = Field(..., description="Order total", ge=0)
    status: OrderStatus = Field(default=OrderStatus.PENDING, description="Current order status")
    payment_method: PaymentMethod = Field(..., description="How the order is paid")
    created_at: datetime = Field(..., description="Creation timestamp")
    correlation_id: str | None = Field(None, description="Client-generated submission id")

    @model_validator(mode="after")
    def validate_total(self) -> "TableOrder":
        """Validate that total_amount matches the line items."""
        expected = sum((item.subtotal for item in self.items), Decimal("0"))
        if self.items and expected != self.total_amount:
            raise ValueError(
                f"total_amount {self.total_amount} does not match line items sum {expected}"
            )
        return self

    @classmethod
    def from_api_item(cls, item: dict[str, Any]) -> "TableOrder":
        """Create a TableOrder from a remote store record.

        Args:
            item: JSON object from the `/menuOrder` collection

        Returns:
            TableOrder: Parsed model instance
        """
        line_items = [
            OrderLineItem(
                menu_item_id=(
                    str(line["menu_item_id"]) if line.get("menu_item_id") is not None else None
                ),
                name=line.get("item") or line.get("name", ""),
                quantity=line["quantity"],
                unit_price=Decimal(str(line["price"])),
                special_request=line.get("special_request") or None,
            )
            for line in item.get("items", [])
        ]

        return cls(
            id=item["id"],
            table_id=str(item["table"]),
            items=line_items,
            total_amount=Decimal(str(item["total_price"])),
            status=OrderStatus(item["status"]),
            payment_method=PaymentMethod(item["payment_method"]),
            created_at=datetime.fromisoformat(item["created_at"]),
            correlation_id=item.get("correlation_id"),
        )


class WaiterRequest(BaseModel):
    """A table's request for service staff."""

    id: int = Field(..., description="Remote store identifier")
    table_id: str = Field(..., description="Table asking for assistance")
    message: str = Field(..., description="Free-text request")
    status: WaiterRequestStatus = Field(
        default=WaiterRequestStatus.PENDING, description="Current request status"
    )
    created_at: datetime = Field(..., description="Creation timestamp")
    acknowledged_at: datetime | None = Field(None, description="When staff acknowledged it")
    completed_at: datetime | None = Field(None, description="When staff completed it")

    @classmethod
    def from_api_item(cls, item: dict[str, Any]) -> "WaiterRequest":
        """Create a WaiterRequest from a remote store record.

        Args:
            item: JSON object from the `/waiter-request` collection

        Returns:
            WaiterRequest: Parsed model instance
        """
        data: dict[str, Any] = {
            "id": item["id"],
            "table_id": str(item["table_number"]),
            "message": item.get("message", ""),
            "status": WaiterRequestStatus(item["status"]),
            "created_at": datetime.fromisoformat(item["created_at"]),
        }

        if item.get("acknowledged_at"):
            data["acknowledged_at"] = datetime.fromisoformat(item["acknowledged_at"])

        if item.get("completed_at"):
            data["completed_at"] = datetime.fromisoformat(item["completed_at"])

        return cls(**data)
