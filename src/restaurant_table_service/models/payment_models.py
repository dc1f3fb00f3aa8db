"""Cart, payment and order placement models.

None of these are persisted: a cart lives on the customer terminal and a
payment request/response pair exists only for one checkout call.
"""

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field

from restaurant_table_service.models.order_models import PaymentMethod, TableOrder


class PaymentStatus(str, Enum):
    """Enumeration of payment status values."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TransactionState(str, Enum):
    """States of one payment-then-order orchestration."""

    IDLE = "idle"
    VALIDATING_INPUT = "validating_input"
    VALIDATION_FAILED = "validation_failed"
    AWAITING_GATEWAY = "awaiting_gateway"
    GATEWAY_SUCCEEDED = "gateway_succeeded"
    GATEWAY_FAILED = "gateway_failed"
    SUBMITTING_ORDER = "submitting_order"
    ORDER_CREATED = "order_created"
    SUBMISSION_FAILED = "submission_failed"
    ABORTED = "aborted"


class CartItem(BaseModel):
    """A menu item in the customer's cart."""

    model_config = ConfigDict(json_encoders={Decimal: str})

    menu_item_id: str = Field(..., description="Menu item reference")
    name: str = Field(..., description="Menu item name")
    unit_price: Decimal = Field(..., description="Price per portion", ge=0)
    quantity: int = Field(..., description="Number of portions", gt=0)
    special_request: str | None = Field(None, description="Free-text kitchen instructions")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


class Cart(BaseModel):
    """Items a table intends to order."""

    table_id: str = Field(..., description="Table the cart belongs to")
    items: list[CartItem] = Field(default_factory=list, description="Cart lines")

    @property
    def total(self) -> Decimal:
        return sum((item.subtotal for item in self.items), Decimal("0"))

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def add_item(
        self,
        menu_item_id: str,
        name: str,
        unit_price: Decimal,
        quantity: int = 1,
        special_request: str | None = None,
    ) -> CartItem:
        """Add portions, merging into an existing line with the same item and request.

        Returns:
            The cart line that now holds the portions
        """
        for index, item in enumerate(self.items):
            if item.menu_item_id == menu_item_id and item.special_request == special_request:
                merged = item.model_copy(update={"quantity": item.quantity + quantity})
                self.items[index] = merged
                return merged

        line = CartItem(
            menu_item_id=menu_item_id,
            name=name,
            unit_price=unit_price,
            quantity=quantity,
            special_request=special_request,
        )
        self.items.append(line)
        return line

    def update_quantity(self, index: int, quantity: int) -> None:
        """Set a line's quantity; zero or less removes the line."""
        if quantity <= 0:
            self.remove_item(index)
            return
        self.items[index] = self.items[index].model_copy(update={"quantity": quantity})

    def remove_item(self, index: int) -> None:
        del self.items[index]


class PaymentInfo(BaseModel):
    """Payer details captured at checkout."""

    method: PaymentMethod = Field(..., description="Selected payment method")
    customer_name: str = Field("", description="Payer name")
    phone_number: str = Field("", description="Payer phone number")
    email: str | None = Field(None, description="Optional contact email")


class PaymentRequest(BaseModel):
    """Request sent to the payment gateway."""

    amount: Decimal = Field(..., description="Amount to charge", ge=0)
    currency: str = Field(default="UGX", description="ISO currency code")
    phone_number: str | None = Field(None, description="Payer phone for mobile money")
    payment_method: PaymentMethod = Field(..., description="Payment method")
    order_correlation_id: str = Field(..., description="Client-generated order correlation id")
    customer_name: str = Field(..., description="Payer name")
    description: str = Field(..., description="Charge description")


class PaymentResponse(BaseModel):
    """Gateway response for a single payment attempt."""

    success: bool = Field(..., description="Whether the payment concluded successfully")
    transaction_id: str | None = Field(None, description="Gateway transaction id")
    message: str = Field(..., description="Human readable outcome")
    status: PaymentStatus = Field(..., description="Payment status")
    payment_method: PaymentMethod = Field(..., description="Echo of the payment method")


class OrderPlacementResult(BaseModel):
    """Outcome of a successful payment-then-order orchestration."""

    order: TableOrder
    payment: PaymentResponse
    correlation_id: str
    state: TransactionState = TransactionState.ORDER_CREATED
