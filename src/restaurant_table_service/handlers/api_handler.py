"""FastAPI application exposing the table service to terminals and staff consoles."""

import logging
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime
from decimal import Decimal

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from restaurant_table_service.auth.api_dependencies import require_staff_key
from restaurant_table_service.auth.api_key_validator import APIKeyValidator
from restaurant_table_service.errors import (
    GatewayError,
    IllegalTransitionError,
    RemoteWriteError,
    RetryInProgressError,
    SubmissionError,
    TransientFetchError,
    ValidationError,
)
from restaurant_table_service.models.escalation_models import SubmissionEscalation
from restaurant_table_service.models.menu_models import Category, MenuItem
from restaurant_table_service.models.notification_models import Notification, NotificationType
from restaurant_table_service.models.order_models import (
    OrderStatus,
    PaymentMethod,
    TableOrder,
    WaiterRequest,
    WaiterRequestStatus,
)
from restaurant_table_service.models.payment_models import (
    Cart,
    PaymentInfo,
    PaymentResponse,
    TransactionState,
)
from restaurant_table_service.services.alert_sinks import RecentNotificationsFeed
from restaurant_table_service.services.escalation_service import EscalationService
from restaurant_table_service.services.notification_bus import NotificationBus
from restaurant_table_service.services.order_tracker import OrderTracker
from restaurant_table_service.services.order_transaction_service import (
    DEFAULT_WAITER_MESSAGE,
    OrderTransactionService,
)
from restaurant_table_service.services.polling_controller import (
    PollingCoordinator,
    SnapshotMarker,
    SyncState,
)
from restaurant_table_service.services.remote_store_client import RemoteStoreClient
from restaurant_table_service.services.status_machine import (
    PriorityLevel,
    PriorityQueue,
    can_cancel,
    elapsed_minutes,
    estimated_remaining,
    is_terminal,
    kitchen_queue,
    legal_next_status,
    priority,
)
from restaurant_table_service.services.status_update_service import StatusUpdateService

logger = logging.getLogger(__name__)

Lifespan = Callable[[FastAPI], AbstractAsyncContextManager[None]]


class PollerHealth(BaseModel):
    """Freshness of one polling loop."""

    entity: str
    view: str
    running: bool
    state: SyncState
    stale: bool
    consecutive_failures: int
    last_error: str | None = None


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    pollers: list[PollerHealth] = Field(default_factory=list)


class OrderStatusView(BaseModel):
    """Single-order tracking view."""

    order_id: int
    state: SyncState
    stale: bool
    order: TableOrder | None = None
    next_status: OrderStatus | None = None
    estimated_minutes_remaining: int | None = None


class CheckoutItem(BaseModel):
    """One cart line submitted at checkout."""

    menu_item_id: str
    name: str
    unit_price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., gt=0)
    special_request: str | None = None


class CheckoutRequest(BaseModel):
    """Request body for placing an order from a table."""

    table_id: str
    items: list[CheckoutItem]
    payment: PaymentInfo


class CheckoutResponse(BaseModel):
    """Successful checkout."""

    order: TableOrder
    correlation_id: str
    transaction_id: str | None
    payment_message: str
    state: TransactionState


class StatusChangeRequest(BaseModel):
    """Request body for an order status change."""

    status: OrderStatus


class WaiterStatusChangeRequest(BaseModel):
    """Request body for a waiter request status change."""

    status: WaiterRequestStatus


class WaiterCallRequest(BaseModel):
    """Request body for calling a waiter."""

    table_id: str
    message: str = DEFAULT_WAITER_MESSAGE


class WaiterCallResponse(BaseModel):
    """Result of calling a waiter."""

    table_id: str
    success: bool
    request: WaiterRequest | None = None


class QueuedWaiterRequest(BaseModel):
    """A waiter request with its current urgency."""

    request: WaiterRequest
    priority: PriorityLevel
    waiting_minutes: int


class KitchenTicket(BaseModel):
    """An active order with its current urgency."""

    order: TableOrder
    priority: PriorityLevel
    waiting_minutes: int


class StatusRulesResponse(BaseModel):
    """What may happen next to an order in a given status."""

    status: OrderStatus
    next_status: OrderStatus | None
    can_cancel: bool
    terminal: bool
    estimated_minutes_remaining: int


class PaymentMethodOption(BaseModel):
    """A payment method offered at checkout."""

    id: PaymentMethod
    name: str
    description: str


class PhoneCheckResponse(BaseModel):
    """Mobile-money eligibility of a phone number."""

    phone_number: str
    valid: bool
    payment_method: PaymentMethod | None = None


class MenuView(BaseModel):
    """Orderable menu for the customer terminal."""

    stale: bool
    categories: list[Category]
    items: list[MenuItem]


class EscalationRetryResponse(BaseModel):
    """Response model for an escalation retry."""

    escalation_id: str
    success: bool
    message: str
    order_id: int | None = None


def _pending(detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=202, content={"state": SyncState.LOADING.value, "detail": detail}
    )


def create_app(
    notification_bus: NotificationBus,
    transaction_service: OrderTransactionService,
    status_service: StatusUpdateService,
    escalation_service: EscalationService,
    remote_store: RemoteStoreClient,
    coordinator: PollingCoordinator,
    order_tracker: OrderTracker,
    api_keys: list[str],
    recent_feed: RecentNotificationsFeed | None = None,
    lifespan: Lifespan | None = None,
    clock: Callable[[], datetime] = lambda: datetime.now(UTC),
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        notification_bus: Bus whose log backs the notification routes
        transaction_service: Checkout orchestrator
        status_service: Staff status changes
        escalation_service: Submission escalation queue
        remote_store: Remote store client, used for fresh reads before writes
        coordinator: Background polling controllers (kitchen, management)
        order_tracker: Per-order polling views
        api_keys: Accepted keys for staff routes
        recent_feed: Banner feed of recent notifications, built from the bus if omitted
        lifespan: Startup/shutdown hook starting and stopping the pollers
        clock: Current time, used for queue priorities

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="Restaurant Table Service API",
        description="Table ordering, checkout, kitchen and waiter console API",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.notification_bus = notification_bus
    app.state.transaction_service = transaction_service
    app.state.status_service = status_service
    app.state.escalation_service = escalation_service
    app.state.remote_store = remote_store
    app.state.coordinator = coordinator
    app.state.order_tracker = order_tracker
    if recent_feed is None:
        recent_feed = RecentNotificationsFeed(notification_bus)
    app.state.recent_feed = recent_feed
    app.state.api_key_validator = APIKeyValidator(api_keys=api_keys)

    staff_key = require_staff_key(app.state.api_key_validator)

    async def find_order(order_id: int) -> TableOrder:
        try:
            orders = await app.state.remote_store.list_orders()
        except TransientFetchError as e:
            raise HTTPException(status_code=503, detail=f"Remote store unavailable: {e}") from e
        for order in orders:
            if order.id == order_id:
                return order
        raise HTTPException(status_code=404, detail=f"Order {order_id} not found")

    async def find_waiter_request(request_id: int) -> WaiterRequest:
        try:
            requests = await app.state.remote_store.list_waiter_requests()
        except TransientFetchError as e:
            raise HTTPException(status_code=503, detail=f"Remote store unavailable: {e}") from e
        for request in requests:
            if request.id == request_id:
                return request
        raise HTTPException(status_code=404, detail=f"Waiter request {request_id} not found")

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check() -> HealthResponse:
        pollers = [
            PollerHealth(
                entity=controller.entity_key,
                view=controller.view,
                running=controller.running,
                state=controller.state,
                stale=controller.stale,
                consecutive_failures=controller.consecutive_failures,
                last_error=controller.last_error,
            )
            for controller in app.state.coordinator.controllers
        ]
        degraded = any(p.stale for p in pollers)
        return HealthResponse(status="degraded" if degraded else "healthy", pollers=pollers)

    @app.get("/menu", response_model=MenuView, tags=["Menu"])
    async def get_menu() -> MenuView | JSONResponse:
        """Available menu items and their categories, from the slow menu pollers."""
        menu = app.state.coordinator.get("menu", "customer")
        categories = app.state.coordinator.get("categories", "customer")
        if menu is None or categories is None:
            return _pending("Menu is loading")
        items, groups = menu.current(), categories.current()
        if isinstance(items, SnapshotMarker) or isinstance(groups, SnapshotMarker):
            return _pending("Menu is loading")

        return MenuView(
            stale=menu.stale or categories.stale,
            categories=groups,
            items=[item for item in items if item.available],
        )

    @app.get("/notifications", response_model=list[Notification], tags=["Notifications"])
    async def list_notifications(
        notification_type: NotificationType | None = Query(None, alias="type"),
        _api_key: str = Depends(staff_key),
    ) -> list[Notification]:
        """Retained notifications, newest first."""
        if notification_type is not None:
            return app.state.notification_bus.get_notifications_by_type(notification_type)
        return app.state.notification_bus.get_notifications()

    @app.delete("/notifications/{notification_id}", status_code=204, tags=["Notifications"])
    async def dismiss_notification(
        notification_id: str,
        _api_key: str = Depends(staff_key),
    ) -> None:
        if not app.state.notification_bus.remove_notification(notification_id):
            raise HTTPException(
                status_code=404, detail=f"Notification {notification_id} not found"
            )

    @app.delete("/notifications", status_code=204, tags=["Notifications"])
    async def clear_notifications(_api_key: str = Depends(staff_key)) -> None:
        app.state.notification_bus.clear_all()

    @app.get("/notifications/recent", response_model=list[Notification], tags=["Notifications"])
    async def recent_notifications(_api_key: str = Depends(staff_key)) -> list[Notification]:
        """The operator banner: the few most recent live notifications."""
        return app.state.recent_feed.items

    @app.get("/orders/{order_id}/status", response_model=OrderStatusView, tags=["Orders"])
    async def get_order_status(order_id: int) -> OrderStatusView | JSONResponse:
        """Track one order.

        The first request starts a polling view for the order and answers 202
        until its first fetch lands. Afterwards the last known state is
        returned, flagged stale when recent fetches failed.
        """
        controller = app.state.order_tracker.track(order_id)
        current = controller.current()

        if current is SnapshotMarker.LOADING:
            return _pending(f"Order {order_id} is loading")
        if current is SnapshotMarker.NOT_FOUND:
            raise HTTPException(status_code=404, detail=f"Order {order_id} not found")

        return OrderStatusView(
            order_id=order_id,
            state=SyncState.READY,
            stale=controller.stale,
            order=current,
            next_status=legal_next_status(current.status),
            estimated_minutes_remaining=estimated_remaining(current.status),
        )

    @app.delete("/orders/{order_id}/status", status_code=204, tags=["Orders"])
    async def stop_tracking_order(order_id: int) -> None:
        if not app.state.order_tracker.untrack(order_id):
            raise HTTPException(status_code=404, detail=f"Order {order_id} is not tracked")

    @app.post("/checkout", response_model=CheckoutResponse, status_code=201, tags=["Checkout"])
    async def checkout(body: CheckoutRequest) -> CheckoutResponse:
        """Charge the table and place its order.

        Returns 422 for bad input, 402 when the payment is declined and 502
        when the payment went through but the order could not be recorded.
        """
        cart = Cart(table_id=body.table_id)
        for item in body.items:
            cart.add_item(
                menu_item_id=item.menu_item_id,
                name=item.name,
                unit_price=item.unit_price,
                quantity=item.quantity,
                special_request=item.special_request,
            )

        try:
            result = await app.state.transaction_service.submit_order_with_payment(
                cart, body.payment
            )
        except ValidationError as e:
            raise HTTPException(
                status_code=422, detail={"field": e.field, "message": str(e)}
            ) from e
        except GatewayError as e:
            raise HTTPException(
                status_code=402,
                detail={
                    "message": str(e),
                    "payment_method": e.payment_method,
                    "status": e.status,
                },
            ) from e
        except SubmissionError as e:
            raise HTTPException(
                status_code=502,
                detail={
                    "message": str(e),
                    "correlation_id": e.correlation_id,
                    "transaction_id": e.transaction_id,
                    "escalation_id": e.escalation_id,
                },
            ) from e

        return CheckoutResponse(
            order=result.order,
            correlation_id=result.correlation_id,
            transaction_id=result.payment.transaction_id,
            payment_message=result.payment.message,
            state=result.state,
        )

    @app.get("/payment-methods", response_model=list[PaymentMethodOption], tags=["Checkout"])
    async def list_payment_methods() -> list[PaymentMethodOption]:
        gateway = app.state.transaction_service.payment_gateway
        return [PaymentMethodOption(**method) for method in gateway.supported_payment_methods()]

    @app.get("/payment-methods/detect", response_model=PhoneCheckResponse, tags=["Checkout"])
    async def detect_payment_method(
        phone_number: str = Query(..., min_length=1),
    ) -> PhoneCheckResponse:
        """Suggest the mobile-money provider for a number as the customer types it."""
        validator = app.state.transaction_service.phone_validator
        valid = validator.validate(phone_number)
        return PhoneCheckResponse(
            phone_number=validator.format(phone_number) if valid else phone_number.strip(),
            valid=valid,
            payment_method=validator.detect_payment_method(phone_number) if valid else None,
        )

    @app.get("/payments/{transaction_id}", response_model=PaymentResponse, tags=["Checkout"])
    async def get_payment_status(
        transaction_id: str,
        method: PaymentMethod,
        _api_key: str = Depends(staff_key),
    ) -> PaymentResponse:
        """Look up a payment with the gateway, e.g. while working an escalation."""
        gateway = app.state.transaction_service.payment_gateway
        try:
            response: PaymentResponse = await gateway.check_payment_status(transaction_id, method)
        except Exception as e:
            logger.exception(f"Payment status lookup failed for {transaction_id}")
            raise HTTPException(status_code=502, detail="Payment status unavailable") from e
        return response

    @app.patch("/orders/{order_id}/status", response_model=TableOrder, tags=["Orders"])
    async def change_order_status(
        order_id: int,
        body: StatusChangeRequest,
        _api_key: str = Depends(staff_key),
    ) -> TableOrder:
        order = await find_order(order_id)
        try:
            updated: TableOrder = await app.state.status_service.update_order_status(
                order, body.status
            )
        except IllegalTransitionError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except RemoteWriteError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        return updated

    async def _apply_order_change(
        order_id: int, change: Callable[[TableOrder], Awaitable[TableOrder]]
    ) -> TableOrder:
        order = await find_order(order_id)
        try:
            return await change(order)
        except IllegalTransitionError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except RemoteWriteError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e

    @app.post("/orders/{order_id}/advance", response_model=TableOrder, tags=["Orders"])
    async def advance_order(order_id: int, _api_key: str = Depends(staff_key)) -> TableOrder:
        """Move an order one step along the kitchen flow."""
        return await _apply_order_change(order_id, app.state.status_service.advance_order)

    @app.post("/orders/{order_id}/cancel", response_model=TableOrder, tags=["Orders"])
    async def cancel_order(order_id: int, _api_key: str = Depends(staff_key)) -> TableOrder:
        return await _apply_order_change(order_id, app.state.status_service.cancel_order)

    @app.get("/kitchen/queue", response_model=dict[str, list[KitchenTicket]], tags=["Orders"])
    async def get_kitchen_queue(
        _api_key: str = Depends(staff_key),
    ) -> dict[str, list[KitchenTicket]] | JSONResponse:
        """Active orders grouped by status, oldest first, from the kitchen poller."""
        controller = app.state.coordinator.get("orders", "kitchen")
        current = controller.current() if controller is not None else SnapshotMarker.LOADING
        if isinstance(current, SnapshotMarker):
            return _pending("Kitchen orders are loading")

        now = clock()
        return {
            status.value: [
                KitchenTicket(
                    order=order,
                    priority=priority(order.created_at, now, PriorityQueue.KITCHEN),
                    waiting_minutes=elapsed_minutes(order.created_at, now),
                )
                for order in orders
            ]
            for status, orders in kitchen_queue(current).items()
        }

    @app.post(
        "/waiter-requests", response_model=WaiterCallResponse, status_code=201, tags=["Waiters"]
    )
    async def call_waiter(body: WaiterCallRequest) -> WaiterCallResponse:
        try:
            request = await app.state.transaction_service.request_waiter(
                body.table_id, body.message
            )
        except ValidationError as e:
            raise HTTPException(
                status_code=422, detail={"field": e.field, "message": str(e)}
            ) from e
        except RemoteWriteError as e:
            raise HTTPException(
                status_code=502, detail="Failed to call waiter. Please try again."
            ) from e
        return WaiterCallResponse(table_id=body.table_id, success=True, request=request)

    @app.get(
        "/waiter-requests/queue", response_model=list[QueuedWaiterRequest], tags=["Waiters"]
    )
    async def get_waiter_queue(
        _api_key: str = Depends(staff_key),
    ) -> list[QueuedWaiterRequest] | JSONResponse:
        """Open waiter requests, most urgent first."""
        controller = app.state.coordinator.get("waiter_requests", "management")
        current = controller.current() if controller is not None else SnapshotMarker.LOADING
        if isinstance(current, SnapshotMarker):
            return _pending("Waiter requests are loading")

        now = clock()
        open_requests = sorted(
            (r for r in current if r.status != WaiterRequestStatus.COMPLETED),
            key=lambda r: r.created_at,
        )
        return [
            QueuedWaiterRequest(
                request=request,
                priority=priority(request.created_at, now, PriorityQueue.WAITER_REQUESTS),
                waiting_minutes=elapsed_minutes(request.created_at, now),
            )
            for request in open_requests
        ]

    @app.patch(
        "/waiter-requests/{request_id}/status", response_model=WaiterRequest, tags=["Waiters"]
    )
    async def change_waiter_request_status(
        request_id: int,
        body: WaiterStatusChangeRequest,
        _api_key: str = Depends(staff_key),
    ) -> WaiterRequest:
        request = await find_waiter_request(request_id)
        try:
            updated: WaiterRequest = await app.state.status_service.update_waiter_request_status(
                request, body.status
            )
        except IllegalTransitionError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except RemoteWriteError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        return updated

    @app.get("/status-rules/{status}", response_model=StatusRulesResponse, tags=["Orders"])
    async def get_status_rules(status: OrderStatus) -> StatusRulesResponse:
        next_status = legal_next_status(status)
        return StatusRulesResponse(
            status=status,
            next_status=next_status,  # type: ignore[arg-type]
            can_cancel=can_cancel(status),
            terminal=is_terminal(status),
            estimated_minutes_remaining=estimated_remaining(status),
        )

    @app.get("/escalations", response_model=list[SubmissionEscalation], tags=["Escalations"])
    async def list_escalations(
        limit: int = 50,
        _api_key: str = Depends(staff_key),
    ) -> list[SubmissionEscalation]:
        """Open escalations: payments taken without an order on file."""
        escalations: list[SubmissionEscalation] = (
            await app.state.escalation_service.list_open_escalations(limit=limit)
        )
        return escalations

    @app.post(
        "/escalations/{escalation_id}/retry",
        response_model=EscalationRetryResponse,
        tags=["Escalations"],
    )
    async def retry_escalation(
        escalation_id: str,
        _api_key: str = Depends(staff_key),
    ) -> EscalationRetryResponse:
        escalation = await app.state.escalation_service.get_escalation(escalation_id)
        if escalation is None:
            raise HTTPException(status_code=404, detail=f"Escalation {escalation_id} not found")

        logger.info(f"Retrying escalation {escalation_id}")
        try:
            order = await app.state.transaction_service.retry_submission(escalation_id)
        except (ValidationError, RetryInProgressError) as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except SubmissionError as e:
            return EscalationRetryResponse(
                escalation_id=escalation_id, success=False, message=str(e)
            )

        return EscalationRetryResponse(
            escalation_id=escalation_id,
            success=True,
            message=f"Order #{order.id} recorded",
            order_id=order.id,
        )

    return app

