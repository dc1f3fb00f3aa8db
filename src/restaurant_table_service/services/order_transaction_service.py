"""Payment-then-order checkout orchestration.

An order is only ever written after its payment has resolved: cash needs no
charge, mobile money must conclude successfully first. The sequence is

    IDLE -> VALIDATING_INPUT -> AWAITING_GATEWAY -> GATEWAY_SUCCEEDED
         -> SUBMITTING_ORDER -> ORDER_CREATED

with VALIDATION_FAILED and GATEWAY_FAILED both ending in ABORTED before any
order write. A failed write after a successful payment is escalated and
raised as SubmissionError; it is never replaced by a locally invented id.
"""

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from restaurant_table_service.adapters.payment_gateway import PaymentGateway
from restaurant_table_service.errors import (
    GatewayError,
    RemoteWriteError,
    RetryInProgressError,
    SubmissionError,
    ValidationError,
)
from restaurant_table_service.models.escalation_models import EscalationStatus
from restaurant_table_service.models.order_models import (
    OrderLineItem,
    OrderStatus,
    PaymentMethod,
    TableOrder,
    WaiterRequest,
    WaiterRequestStatus,
)
from restaurant_table_service.models.payment_models import (
    Cart,
    OrderPlacementResult,
    PaymentInfo,
    PaymentRequest,
    PaymentResponse,
    TransactionState,
)
from restaurant_table_service.observability import traced
from restaurant_table_service.observability.metrics import (
    record_checkout_duration,
    record_payment_outcome,
    record_submission_failure,
)
from restaurant_table_service.services.escalation_service import EscalationService
from restaurant_table_service.services.notification_bus import NotificationBus
from restaurant_table_service.services.phone_validator import PhoneNumberValidator
from restaurant_table_service.services.remote_store_client import RemoteStoreClient

logger = logging.getLogger(__name__)

DEFAULT_WAITER_MESSAGE = "Customer needs assistance"


class OrderTransactionService:
    """Single entry point for placing an order from a table."""

    def __init__(
        self,
        remote_store: RemoteStoreClient,
        payment_gateway: PaymentGateway,
        notification_bus: NotificationBus,
        escalation_service: EscalationService,
        phone_validator: PhoneNumberValidator | None = None,
        currency: str = "UGX",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            remote_store: Client used to create the order
            payment_gateway: Gateway that charges the payer
            notification_bus: Bus receiving new_order and payment_success events
            escalation_service: Where paid-but-unrecorded checkouts are filed
            phone_validator: Phone rules for mobile-money payers
            currency: Currency code sent to the gateway
            clock: Wall clock (epoch seconds) used for correlation ids
        """
        self.remote_store = remote_store
        self.payment_gateway = payment_gateway
        self.notification_bus = notification_bus
        self.escalation_service = escalation_service
        self.phone_validator = phone_validator or PhoneNumberValidator()
        self.currency = currency
        self.clock = clock

    def correlation_id_for(self, table_id: str) -> str:
        """Build the submission correlation id from table and submission time."""
        return f"TABLE_{table_id}_{int(self.clock() * 1000)}"

    @traced("checkout.submit_order_with_payment")
    async def submit_order_with_payment(
        self, cart: Cart, payment_info: PaymentInfo
    ) -> OrderPlacementResult:
        """Charge the payer, then record the order.

        Args:
            cart: Items and table being ordered for
            payment_info: Payment method and payer details

        Returns:
            OrderPlacementResult with the created order and payment response

        Raises:
            ValidationError: Bad input; nothing was charged or written
            GatewayError: Payment declined or failed; no order was written
            SubmissionError: Payment succeeded but the order write failed
        """
        started = time.monotonic()
        self._enter(TransactionState.IDLE, cart.table_id)
        self._enter(TransactionState.VALIDATING_INPUT, cart.table_id)
        try:
            self.validate(cart, payment_info)
        except ValidationError as e:
            self._enter(TransactionState.VALIDATION_FAILED, cart.table_id)
            self._enter(TransactionState.ABORTED, cart.table_id)
            logger.info(f"Checkout for table {cart.table_id} rejected: {e.field}: {e}")
            e.state = TransactionState.ABORTED.value
            raise

        correlation_id = self.correlation_id_for(cart.table_id)
        request = PaymentRequest(
            amount=cart.total,
            currency=self.currency,
            phone_number=self._payer_phone(payment_info),
            payment_method=payment_info.method,
            order_correlation_id=correlation_id,
            customer_name=payment_info.customer_name.strip(),
            description=f"Order for Table {cart.table_id} - {len(cart.items)} items",
        )

        self._enter(TransactionState.AWAITING_GATEWAY, correlation_id)
        payment = await self._charge(request)
        self._enter(TransactionState.GATEWAY_SUCCEEDED, correlation_id)

        payload = self.build_order_payload(cart, payment_info, correlation_id, payment)
        order = await self._submit(payload, cart, payment_info, correlation_id, payment)

        self._enter(TransactionState.ORDER_CREATED, correlation_id)
        self._announce(order, payment_info.method)
        record_checkout_duration(payment_info.method.value, time.monotonic() - started)
        logger.info(
            f"Order #{order.id} created for table {order.table_id} "
            f"({payment_info.method.value}, {correlation_id})"
        )
        return OrderPlacementResult(order=order, payment=payment, correlation_id=correlation_id)

    @traced("checkout.retry_submission")
    async def retry_submission(self, escalation_id: str) -> TableOrder:
        """Resubmit the stored payload of an escalation with its original correlation id.

        The escalation is claimed before the write, so concurrent retries of the
        same escalation create at most one order. A failed attempt releases the
        claim and leaves the escalation open.

        Raises:
            ValidationError: If the escalation does not exist or is already resolved
            RetryInProgressError: If another retry currently holds the escalation
            SubmissionError: If the order write fails again
        """
        escalation = await self.escalation_service.get_escalation(escalation_id)
        if escalation is None:
            raise ValidationError("escalation_id", f"Escalation {escalation_id} not found")
        if escalation.status == EscalationStatus.RESOLVED:
            raise ValidationError("escalation_id", f"Escalation {escalation_id} already resolved")

        if not await self.escalation_service.claim_for_retry(escalation_id):
            raise RetryInProgressError(escalation_id)
        logger.info(f"Retrying submission {escalation.correlation_id} ({escalation_id})")

        cause: Exception | None = None
        try:
            created = await self.remote_store.create_order(escalation.order_payload)
        except RemoteWriteError as e:
            failure, cause = f"Retry failed: {e}", e
        except Exception as e:
            logger.exception(f"Unexpected error resubmitting {escalation.correlation_id}")
            failure, cause = f"Retry failed: {type(e).__name__}: {e}", e
        else:
            order = self._order_from_payload(created, escalation.order_payload)
            if order is not None:
                await self.escalation_service.mark_resolved(escalation_id, order.id)
                self._announce(order, order.payment_method)
                return order
            failure = "Retry failed: remote store did not confirm an order id"

        await self.escalation_service.release_claim(escalation_id, failure)
        raise SubmissionError(
            failure,
            correlation_id=escalation.correlation_id,
            transaction_id=escalation.transaction_id,
            escalation_id=escalation_id,
            cause=cause,
            state=TransactionState.SUBMISSION_FAILED.value,
        ) from cause

    async def request_waiter(
        self, table_id: str, message: str = DEFAULT_WAITER_MESSAGE
    ) -> WaiterRequest | None:
        """Call a waiter to a table and alert the floor staff.

        Returns:
            The stored request, or None if the store did not echo a parseable record

        Raises:
            ValidationError: If no table is given
            RemoteWriteError: If the store rejected the request
        """
        if not table_id.strip():
            raise ValidationError("table_id", "A table is required to call a waiter")

        message = message.strip() or DEFAULT_WAITER_MESSAGE
        created = await self.remote_store.create_waiter_request(
            {
                "table_number": table_id,
                "message": message,
                "status": WaiterRequestStatus.PENDING.value,
            }
        )

        request: WaiterRequest | None = None
        try:
            request = WaiterRequest.from_api_item(created)
        except (PydanticValidationError, KeyError, ValueError, TypeError):
            logger.warning(f"Waiter request for table {table_id} stored without a parseable echo")

        self.notification_bus.notify_waiter_request(
            table_id, message, request.id if request else None
        )
        return request

    def validate(self, cart: Cart, payment_info: PaymentInfo) -> None:
        """Check checkout input before any side effect.

        Raises:
            ValidationError: Naming the first missing or invalid field
        """
        if not cart.table_id.strip():
            raise ValidationError("table_id", "A table is required to place an order")
        if not cart.items:
            raise ValidationError("cart", "Please add items to cart before placing order")
        if not payment_info.customer_name.strip():
            raise ValidationError("customer_name", "Please provide your name")
        if not payment_info.phone_number.strip():
            raise ValidationError("phone_number", "Please provide your phone number")
        if payment_info.method != PaymentMethod.CASH and not self.phone_validator.validate(
            payment_info.phone_number
        ):
            raise ValidationError(
                "phone_number",
                "Please enter a valid phone number for mobile money payment",
            )

    def build_order_payload(
        self,
        cart: Cart,
        payment_info: PaymentInfo,
        correlation_id: str,
        payment: PaymentResponse,
    ) -> dict[str, Any]:
        """Build the remote store payload. Money values are decimal strings."""
        return {
            "table_id": cart.table_id,
            "total_amount": str(cart.total),
            "status": OrderStatus.PENDING.value,
            "payment_method": payment_info.method.value,
            "customer_name": payment_info.customer_name.strip(),
            "customer_phone": payment_info.phone_number.strip(),
            "customer_email": payment_info.email or "",
            "correlation_id": correlation_id,
            "transaction_id": payment.transaction_id or "",
            "items": [
                {
                    "menu_item_id": item.menu_item_id,
                    "name": item.name,
                    "quantity": item.quantity,
                    "price": str(item.unit_price),
                    "special_requests": item.special_request or "",
                }
                for item in cart.items
            ],
        }

    async def _charge(self, request: PaymentRequest) -> PaymentResponse:
        method = request.payment_method.value
        try:
            payment = await self.payment_gateway.process_payment(request)
        except Exception as e:
            self._enter(TransactionState.GATEWAY_FAILED, request.order_correlation_id)
            self._enter(TransactionState.ABORTED, request.order_correlation_id)
            record_payment_outcome(method, "error")
            logger.error(f"Payment gateway error for {request.order_correlation_id}: {e}")
            raise GatewayError(
                "Payment processing failed. Please try again.",
                method,
                state=TransactionState.ABORTED.value,
            ) from e

        record_payment_outcome(method, payment.status.value)
        if not payment.success:
            self._enter(TransactionState.GATEWAY_FAILED, request.order_correlation_id)
            self._enter(TransactionState.ABORTED, request.order_correlation_id)
            logger.info(f"Payment declined for {request.order_correlation_id}: {payment.message}")
            raise GatewayError(
                payment.message, method, payment.status.value, state=TransactionState.ABORTED.value
            )

        return payment

    async def _submit(
        self,
        payload: dict[str, Any],
        cart: Cart,
        payment_info: PaymentInfo,
        correlation_id: str,
        payment: PaymentResponse,
    ) -> TableOrder:
        self._enter(TransactionState.SUBMITTING_ORDER, correlation_id)
        failure: str
        cause: Exception | None = None
        try:
            created = await self.remote_store.create_order(payload)
        except RemoteWriteError as e:
            failure = f"Order submission failed after payment: {e}"
            cause = e
        except Exception as e:
            # The payment has concluded, so any failure here still needs escalating.
            logger.exception(f"Unexpected error submitting {correlation_id}")
            failure = f"Order submission failed after payment: {type(e).__name__}: {e}"
            cause = e
        else:
            order = self._order_from_payload(created, payload)
            if order is not None:
                return order
            failure = (
                "Order submission failed after payment: "
                "remote store did not confirm an order id"
            )

        self._enter(TransactionState.SUBMISSION_FAILED, correlation_id)
        record_submission_failure(payment_info.method.value)
        escalation_id = await self.escalation_service.record_submission_failure(
            correlation_id=correlation_id,
            table_id=cart.table_id,
            payment_method=payment_info.method.value,
            amount=cart.total,
            order_payload=payload,
            error_details=failure,
            transaction_id=payment.transaction_id,
        )
        raise SubmissionError(
            failure,
            correlation_id=correlation_id,
            transaction_id=payment.transaction_id,
            escalation_id=escalation_id,
            cause=cause,
            state=TransactionState.SUBMISSION_FAILED.value,
        )

    def _order_from_payload(
        self, created: dict[str, Any], payload: dict[str, Any]
    ) -> TableOrder | None:
        """Build the created order from the store's echo, falling back to the sent payload.

        Returns None when the store did not return a usable order id or timestamp.
        """
        if created.get("id") is None:
            return None

        try:
            return TableOrder.from_api_item(created)
        except (PydanticValidationError, KeyError, ValueError, TypeError):
            logger.debug("Create response is not a full order record, using submitted payload")

        created_at = created.get("created_at")
        try:
            return TableOrder(
                id=int(created["id"]),
                table_id=payload["table_id"],
                items=[
                    OrderLineItem(
                        menu_item_id=line["menu_item_id"],
                        name=line["name"],
                        quantity=line["quantity"],
                        unit_price=line["price"],
                        special_request=line["special_requests"] or None,
                    )
                    for line in payload["items"]
                ],
                total_amount=payload["total_amount"],
                status=OrderStatus.PENDING,
                payment_method=PaymentMethod(payload["payment_method"]),
                created_at=(
                    datetime.fromisoformat(created_at) if created_at else datetime.now(UTC)
                ),
                correlation_id=payload["correlation_id"],
            )
        except (PydanticValidationError, KeyError, ValueError, TypeError) as e:
            logger.warning(f"Create response {created!r} is not a usable order confirmation: {e}")
            return None

    def _announce(self, order: TableOrder, payment_method: PaymentMethod) -> None:
        self.notification_bus.notify_new_order(order.table_id, order.id, order.total_amount)
        self.notification_bus.notify_payment_success(
            order.table_id, order.id, payment_method, order.total_amount
        )

    def _payer_phone(self, payment_info: PaymentInfo) -> str | None:
        """Mobile-money payers are charged on the international form of their number."""
        phone = payment_info.phone_number.strip()
        if not phone or payment_info.method == PaymentMethod.CASH:
            return phone or None
        return self.phone_validator.format(phone)

    def _enter(self, state: TransactionState, reference: str) -> None:
        logger.debug(f"Checkout {reference}: {state.value}")
