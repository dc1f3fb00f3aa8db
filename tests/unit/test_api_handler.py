"""Unit tests for the FastAPI table service endpoints."""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from restaurant_table_service.adapters.payment_gateway import (
    PaymentGateway,
    SimulatedPaymentGateway,
)
from restaurant_table_service.errors import (
    GatewayError,
    IllegalTransitionError,
    RemoteWriteError,
    RetryInProgressError,
    SubmissionError,
    TransientFetchError,
    ValidationError,
)
from restaurant_table_service.handlers.api_handler import create_app
from restaurant_table_service.models.escalation_models import SubmissionEscalation
from restaurant_table_service.models.menu_models import Category, MenuItem
from restaurant_table_service.models.order_models import (
    OrderStatus,
    PaymentMethod,
    TableOrder,
    WaiterRequest,
    WaiterRequestStatus,
)
from restaurant_table_service.models.payment_models import (
    OrderPlacementResult,
    PaymentResponse,
    PaymentStatus,
)
from restaurant_table_service.services.escalation_service import EscalationService
from restaurant_table_service.services.notification_bus import NotificationBus
from restaurant_table_service.services.order_tracker import OrderTracker
from restaurant_table_service.services.order_transaction_service import OrderTransactionService
from restaurant_table_service.services.phone_validator import PhoneNumberValidator
from restaurant_table_service.services.polling_controller import (
    LOADING,
    NOT_FOUND,
    PollingController,
    PollingCoordinator,
    SyncState,
)
from restaurant_table_service.services.remote_store_client import RemoteStoreClient
from restaurant_table_service.services.status_update_service import StatusUpdateService

NOW = datetime(2024, 6, 1, 12, 30, tzinfo=UTC)
STAFF = {"X-API-Key": "test-api-key"}


def mock_controller(
    current: Any = LOADING,
    entity: str = "orders",
    view: str = "kitchen",
    stale: bool = False,
) -> MagicMock:
    controller = MagicMock(spec=PollingController)
    controller.current.return_value = current
    controller.entity_key = entity
    controller.view = view
    controller.running = True
    controller.state = SyncState.LOADING if current is LOADING else SyncState.READY
    controller.stale = stale
    controller.consecutive_failures = 2 if stale else 0
    controller.last_error = "timeout" if stale else None
    return controller


@pytest.fixture
def bus(fake_clock) -> NotificationBus:
    """Create a bus driven by a fake clock."""
    return NotificationBus(clock=fake_clock)


@pytest.fixture
def client(bus: NotificationBus) -> TestClient:
    """Create a test client with mocked services."""
    coordinator = MagicMock(spec=PollingCoordinator)
    coordinator.controllers = []
    coordinator.get.return_value = None

    app = create_app(
        notification_bus=bus,
        transaction_service=MagicMock(spec=OrderTransactionService),
        status_service=MagicMock(spec=StatusUpdateService),
        escalation_service=MagicMock(spec=EscalationService),
        remote_store=MagicMock(spec=RemoteStoreClient),
        coordinator=coordinator,
        order_tracker=MagicMock(spec=OrderTracker),
        api_keys=["test-api-key"],
        clock=lambda: NOW,
    )
    return TestClient(app)


@pytest.mark.unit
class TestHealthEndpoint:
    """Test suite for the health check endpoint."""

    def test_health_check(self, client: TestClient) -> None:
        """Test that fresh pollers report healthy."""
        client.app.state.coordinator.controllers = [mock_controller(current=[])]

        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["pollers"][0]["entity"] == "orders"
        assert data["pollers"][0]["state"] == "ready"

    def test_health_check_degraded_when_stale(self, client: TestClient) -> None:
        """Test that a stale poller degrades the service."""
        client.app.state.coordinator.controllers = [mock_controller(current=[], stale=True)]

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["pollers"][0]["last_error"] == "timeout"


@pytest.mark.unit
class TestNotificationEndpoints:
    """Test suite for the notification log endpoints."""

    def test_requires_staff_key(self, client: TestClient) -> None:
        """Test that the log is not public."""
        assert client.get("/notifications").status_code == 401
        assert client.get("/notifications", headers={"X-API-Key": "wrong"}).status_code == 401

    def test_list_and_filter(self, client: TestClient, bus: NotificationBus) -> None:
        """Test listing newest first and filtering by type."""
        bus.notify_waiter_request("4", "Need water")
        bus.notify_new_order("4", 12, Decimal("9000"))

        response = client.get("/notifications", headers=STAFF)
        filtered = client.get("/notifications?type=waiter_request", headers=STAFF)

        assert [n["type"] for n in response.json()] == ["new_order", "waiter_request"]
        assert [n["message"] for n in filtered.json()] == ["Need water"]

    def test_dismiss_and_clear(self, client: TestClient, bus: NotificationBus) -> None:
        """Test dismissing one notification and clearing the rest."""
        first = bus.notify_new_order("4", 12, Decimal("9000"))
        bus.notify_new_order("5", 13, Decimal("9000"))

        assert client.delete(f"/notifications/{first.id}", headers=STAFF).status_code == 204
        assert client.delete(f"/notifications/{first.id}", headers=STAFF).status_code == 404
        assert len(bus.get_notifications()) == 1

        assert client.delete("/notifications", headers=STAFF).status_code == 204
        assert bus.get_notifications() == []


@pytest.mark.unit
class TestOrderTrackingEndpoints:
    """Test suite for single-order tracking."""

    def test_loading(self, client: TestClient) -> None:
        """Test that the first lookup answers 202 while loading."""
        client.app.state.order_tracker.track.return_value = mock_controller(LOADING)

        response = client.get("/orders/101/status")

        assert response.status_code == 202
        assert response.json()["state"] == "loading"
        client.app.state.order_tracker.track.assert_called_once_with(101)

    def test_not_found(self, client: TestClient) -> None:
        """Test an order missing from the store."""
        client.app.state.order_tracker.track.return_value = mock_controller(NOT_FOUND)

        assert client.get("/orders/999/status").status_code == 404

    def test_ready(self, client: TestClient, sample_order: TableOrder) -> None:
        """Test the tracked order view."""
        client.app.state.order_tracker.track.return_value = mock_controller(sample_order)

        response = client.get("/orders/101/status")

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "ready"
        assert data["stale"] is False
        assert data["order"]["id"] == 101
        assert data["next_status"] == "confirmed"
        assert data["estimated_minutes_remaining"] == 25

    def test_stop_tracking(self, client: TestClient) -> None:
        """Test removing a tracking view."""
        client.app.state.order_tracker.untrack.side_effect = [True, False]

        assert client.delete("/orders/101/status").status_code == 204
        assert client.delete("/orders/101/status").status_code == 404


@pytest.mark.unit
class TestCheckoutEndpoint:
    """Test suite for POST /checkout."""

    @pytest.fixture
    def body(self) -> dict[str, Any]:
        """Create a valid checkout body."""
        return {
            "table_id": "12",
            "items": [
                {"menu_item_id": "4", "name": "Rolex", "unit_price": "5000", "quantity": 2},
                {"menu_item_id": "9", "name": "Passion Juice", "unit_price": "5000", "quantity": 1},
            ],
            "payment": {
                "method": "mtn_momo",
                "customer_name": "Amina",
                "phone_number": "256772123456",
            },
        }

    def test_checkout_success(
        self, client: TestClient, body: dict[str, Any], sample_order: TableOrder
    ) -> None:
        """Test a successful checkout."""
        service = client.app.state.transaction_service
        service.submit_order_with_payment = AsyncMock(
            return_value=OrderPlacementResult(
                order=sample_order,
                payment=PaymentResponse(
                    success=True,
                    transaction_id="MTN_1",
                    message="Payment successful via MTN Mobile Money",
                    status=PaymentStatus.COMPLETED,
                    payment_method=PaymentMethod.MTN_MOMO,
                ),
                correlation_id="TABLE_12_1717243200000",
            )
        )

        response = client.post("/checkout", json=body)

        assert response.status_code == 201
        data = response.json()
        assert data["order"]["id"] == 101
        assert data["correlation_id"] == "TABLE_12_1717243200000"
        assert data["transaction_id"] == "MTN_1"
        assert data["state"] == "order_created"

        cart, payment = service.submit_order_with_payment.call_args.args
        assert cart.table_id == "12"
        assert cart.total == Decimal("15000")
        assert payment.method == PaymentMethod.MTN_MOMO

    def test_checkout_validation_error(self, client: TestClient, body: dict[str, Any]) -> None:
        """Test that bad input maps to 422 naming the field."""
        client.app.state.transaction_service.submit_order_with_payment = AsyncMock(
            side_effect=ValidationError("phone_number", "Please provide your phone number")
        )

        response = client.post("/checkout", json=body)

        assert response.status_code == 422
        assert response.json()["detail"] == {
            "field": "phone_number",
            "message": "Please provide your phone number",
        }

    def test_checkout_payment_declined(self, client: TestClient, body: dict[str, Any]) -> None:
        """Test that a decline maps to 402."""
        client.app.state.transaction_service.submit_order_with_payment = AsyncMock(
            side_effect=GatewayError("Payment failed.", "mtn_momo")
        )

        response = client.post("/checkout", json=body)

        assert response.status_code == 402
        assert response.json()["detail"]["payment_method"] == "mtn_momo"
        assert response.json()["detail"]["status"] == "failed"

    def test_checkout_submission_failure(self, client: TestClient, body: dict[str, Any]) -> None:
        """Test that a paid but unrecorded checkout maps to 502 with its escalation."""
        client.app.state.transaction_service.submit_order_with_payment = AsyncMock(
            side_effect=SubmissionError(
                "Order submission failed after payment: boom",
                correlation_id="TABLE_12_1",
                transaction_id="MTN_1",
                escalation_id="esc_1",
            )
        )

        response = client.post("/checkout", json=body)

        assert response.status_code == 502
        detail = response.json()["detail"]
        assert detail["escalation_id"] == "esc_1"
        assert detail["transaction_id"] == "MTN_1"

    def test_checkout_rejects_malformed_body(self, client: TestClient) -> None:
        """Test request schema validation."""
        response = client.post("/checkout", json={"table_id": "12"})

        assert response.status_code == 422
        client.app.state.transaction_service.submit_order_with_payment.assert_not_called()


@pytest.mark.unit
class TestOrderStatusChangeEndpoint:
    """Test suite for PATCH /orders/{id}/status."""

    def test_change_status(self, client: TestClient, sample_order: TableOrder) -> None:
        """Test a legal change."""
        client.app.state.remote_store.list_orders = AsyncMock(return_value=[sample_order])
        confirmed = sample_order.model_copy(update={"status": OrderStatus.CONFIRMED})
        client.app.state.status_service.update_order_status = AsyncMock(return_value=confirmed)

        response = client.patch("/orders/101/status", json={"status": "confirmed"}, headers=STAFF)

        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"
        client.app.state.status_service.update_order_status.assert_awaited_once_with(
            sample_order, OrderStatus.CONFIRMED
        )

    def test_requires_staff_key(self, client: TestClient) -> None:
        """Test that status changes are staff only."""
        response = client.patch("/orders/101/status", json={"status": "confirmed"})

        assert response.status_code == 401

    def test_illegal_transition(self, client: TestClient, sample_order: TableOrder) -> None:
        """Test that an illegal change maps to 409."""
        client.app.state.remote_store.list_orders = AsyncMock(return_value=[sample_order])
        client.app.state.status_service.update_order_status = AsyncMock(
            side_effect=IllegalTransitionError("order", "pending", "ready")
        )

        response = client.patch("/orders/101/status", json={"status": "ready"}, headers=STAFF)

        assert response.status_code == 409
        assert response.json()["detail"] == "Illegal order transition: pending -> ready"

    def test_unknown_order(self, client: TestClient, sample_order: TableOrder) -> None:
        """Test a change for an order the store does not have."""
        client.app.state.remote_store.list_orders = AsyncMock(return_value=[sample_order])

        response = client.patch("/orders/5/status", json={"status": "ready"}, headers=STAFF)

        assert response.status_code == 404

    def test_store_unreachable(self, client: TestClient) -> None:
        """Test that a failed lookup maps to 503."""
        client.app.state.remote_store.list_orders = AsyncMock(
            side_effect=TransientFetchError("timeout")
        )

        response = client.patch("/orders/101/status", json={"status": "ready"}, headers=STAFF)

        assert response.status_code == 503

    def test_write_rejected(self, client: TestClient, sample_order: TableOrder) -> None:
        """Test that a rejected write maps to 502."""
        client.app.state.remote_store.list_orders = AsyncMock(return_value=[sample_order])
        client.app.state.status_service.update_order_status = AsyncMock(
            side_effect=RemoteWriteError("PATCH failed", 500)
        )

        response = client.patch("/orders/101/status", json={"status": "confirmed"}, headers=STAFF)

        assert response.status_code == 502


@pytest.mark.unit
class TestKitchenQueueEndpoint:
    """Test suite for GET /kitchen/queue."""

    def test_loading(self, client: TestClient) -> None:
        """Test the answer before the kitchen poller has data."""
        response = client.get("/kitchen/queue", headers=STAFF)

        assert response.status_code == 202

    def test_queue(self, client: TestClient, sample_order: TableOrder) -> None:
        """Test grouping and priorities."""
        delivered = sample_order.model_copy(update={"id": 102, "status": OrderStatus.DELIVERED})
        client.app.state.coordinator.get.return_value = mock_controller([sample_order, delivered])

        response = client.get("/kitchen/queue", headers=STAFF)

        assert response.status_code == 200
        data = response.json()
        assert list(data) == ["pending", "confirmed", "preparing", "ready"]
        assert len(data["pending"]) == 1
        assert data["pending"][0]["order"]["id"] == 101
        assert data["pending"][0]["waiting_minutes"] == 30
        assert data["pending"][0]["priority"] == "high"
        client.app.state.coordinator.get.assert_called_with("orders", "kitchen")


@pytest.mark.unit
class TestWaiterEndpoints:
    """Test suite for the waiter request endpoints."""

    def test_call_waiter(self, client: TestClient, sample_waiter_request: WaiterRequest) -> None:
        """Test calling a waiter from a table."""
        client.app.state.transaction_service.request_waiter = AsyncMock(
            return_value=sample_waiter_request
        )

        response = client.post("/waiter-requests", json={"table_id": "12"})

        assert response.status_code == 201
        assert response.json()["success"] is True
        assert response.json()["request"]["id"] == 7
        client.app.state.transaction_service.request_waiter.assert_awaited_once_with(
            "12", "Customer needs assistance"
        )

    def test_call_waiter_store_failure(self, client: TestClient) -> None:
        """Test that a failed write maps to 502."""
        client.app.state.transaction_service.request_waiter = AsyncMock(
            side_effect=RemoteWriteError("down")
        )

        response = client.post("/waiter-requests", json={"table_id": "12"})

        assert response.status_code == 502
        assert response.json()["detail"] == "Failed to call waiter. Please try again."

    def test_waiter_queue(self, client: TestClient, sample_waiter_request: WaiterRequest) -> None:
        """Test that open requests are listed oldest first with priorities."""
        older = sample_waiter_request.model_copy(
            update={
                "id": 6,
                "status": WaiterRequestStatus.ACKNOWLEDGED,
                "created_at": datetime(2024, 6, 1, 12, 20, tzinfo=UTC),
            }
        )
        done = sample_waiter_request.model_copy(
            update={"id": 5, "status": WaiterRequestStatus.COMPLETED}
        )
        client.app.state.coordinator.get.return_value = mock_controller(
            [sample_waiter_request, older, done], entity="waiter_requests", view="management"
        )

        response = client.get("/waiter-requests/queue", headers=STAFF)

        assert response.status_code == 200
        data = response.json()
        assert [entry["request"]["id"] for entry in data] == [7, 6]
        assert data[0]["waiting_minutes"] == 25
        assert data[0]["priority"] == "high"
        assert data[1]["priority"] == "medium"

    def test_change_waiter_request_status(
        self, client: TestClient, sample_waiter_request: WaiterRequest
    ) -> None:
        """Test acknowledging a request."""
        acknowledged = sample_waiter_request.model_copy(
            update={"status": WaiterRequestStatus.ACKNOWLEDGED}
        )
        client.app.state.remote_store.list_waiter_requests = AsyncMock(
            return_value=[sample_waiter_request]
        )
        client.app.state.status_service.update_waiter_request_status = AsyncMock(
            return_value=acknowledged
        )

        response = client.patch(
            "/waiter-requests/7/status", json={"status": "acknowledged"}, headers=STAFF
        )

        assert response.status_code == 200
        assert response.json()["status"] == "acknowledged"

    def test_change_waiter_request_status_illegal(
        self, client: TestClient, sample_waiter_request: WaiterRequest
    ) -> None:
        """Test that skipping acknowledgement maps to 409."""
        client.app.state.remote_store.list_waiter_requests = AsyncMock(
            return_value=[sample_waiter_request]
        )
        client.app.state.status_service.update_waiter_request_status = AsyncMock(
            side_effect=IllegalTransitionError("waiter_request", "pending", "completed")
        )

        response = client.patch(
            "/waiter-requests/7/status", json={"status": "completed"}, headers=STAFF
        )

        assert response.status_code == 409


@pytest.mark.unit
class TestStatusRulesEndpoint:
    """Test suite for GET /status-rules/{status}."""

    def test_status_rules(self, client: TestClient) -> None:
        """Test the rules for a mid-flow status."""
        response = client.get("/status-rules/preparing")

        assert response.status_code == 200
        assert response.json() == {
            "status": "preparing",
            "next_status": "ready",
            "can_cancel": True,
            "terminal": False,
            "estimated_minutes_remaining": 15,
        }

    def test_status_rules_terminal(self, client: TestClient) -> None:
        """Test the rules for a finished order."""
        data = client.get("/status-rules/delivered").json()

        assert data["next_status"] is None
        assert data["terminal"] is True
        assert data["can_cancel"] is False

    def test_unknown_status(self, client: TestClient) -> None:
        """Test that unknown statuses are rejected."""
        assert client.get("/status-rules/lost").status_code == 422


@pytest.mark.unit
class TestEscalationEndpoints:
    """Test suite for the escalation endpoints."""

    @pytest.fixture
    def escalation(self) -> SubmissionEscalation:
        """Create an open escalation."""
        return SubmissionEscalation(
            escalation_id="esc_1",
            created_at=datetime(2024, 6, 1, 12, 0, tzinfo=UTC),
            correlation_id="TABLE_12_1",
            table_id="12",
            payment_method="mtn_momo",
            transaction_id="MTN_1",
            amount=Decimal("15000"),
            order_payload={"table_id": "12"},
            error_details="boom",
        )

    def test_list_escalations(
        self, client: TestClient, escalation: SubmissionEscalation
    ) -> None:
        """Test listing open escalations."""
        client.app.state.escalation_service.list_open_escalations = AsyncMock(
            return_value=[escalation]
        )

        response = client.get("/escalations?limit=5", headers=STAFF)

        assert response.status_code == 200
        assert response.json()[0]["escalation_id"] == "esc_1"
        client.app.state.escalation_service.list_open_escalations.assert_awaited_once_with(
            limit=5
        )

    def test_list_escalations_unauthorized(self, client: TestClient) -> None:
        """Test that escalations are staff only."""
        assert client.get("/escalations").status_code == 401

    def test_retry_success(
        self, client: TestClient, escalation: SubmissionEscalation, sample_order: TableOrder
    ) -> None:
        """Test a successful resubmission."""
        client.app.state.escalation_service.get_escalation = AsyncMock(return_value=escalation)
        client.app.state.transaction_service.retry_submission = AsyncMock(
            return_value=sample_order
        )

        response = client.post("/escalations/esc_1/retry", headers=STAFF)

        assert response.status_code == 200
        assert response.json() == {
            "escalation_id": "esc_1",
            "success": True,
            "message": "Order #101 recorded",
            "order_id": 101,
        }

    def test_retry_failure(self, client: TestClient, escalation: SubmissionEscalation) -> None:
        """Test a resubmission that fails again."""
        client.app.state.escalation_service.get_escalation = AsyncMock(return_value=escalation)
        client.app.state.transaction_service.retry_submission = AsyncMock(
            side_effect=SubmissionError("Retry failed: down", correlation_id="TABLE_12_1")
        )

        response = client.post("/escalations/esc_1/retry", headers=STAFF)

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["order_id"] is None

    def test_retry_not_found(self, client: TestClient) -> None:
        """Test retrying an unknown escalation."""
        client.app.state.escalation_service.get_escalation = AsyncMock(return_value=None)

        response = client.post("/escalations/esc_missing/retry", headers=STAFF)

        assert response.status_code == 404

    def test_retry_already_resolved(
        self, client: TestClient, escalation: SubmissionEscalation
    ) -> None:
        """Test that a resolved escalation cannot be retried."""
        client.app.state.escalation_service.get_escalation = AsyncMock(return_value=escalation)
        client.app.state.transaction_service.retry_submission = AsyncMock(
            side_effect=ValidationError("escalation_id", "Escalation esc_1 already resolved")
        )

        response = client.post("/escalations/esc_1/retry", headers=STAFF)

        assert response.status_code == 409

    def test_retry_in_progress(
        self, client: TestClient, escalation: SubmissionEscalation
    ) -> None:
        """Test that a second retry of the same escalation is rejected with 409."""
        client.app.state.escalation_service.get_escalation = AsyncMock(return_value=escalation)
        client.app.state.transaction_service.retry_submission = AsyncMock(
            side_effect=RetryInProgressError("esc_1")
        )

        response = client.post("/escalations/esc_1/retry", headers=STAFF)

        assert response.status_code == 409
        assert response.json()["detail"] == "Escalation esc_1 is already being retried"


@pytest.mark.unit
class TestRecentNotificationsEndpoint:
    """Test suite for the operator banner feed."""

    def test_recent_notifications(
        self, client: TestClient, bus: NotificationBus, fake_clock
    ) -> None:
        """Test that the feed lists live notifications only, newest first."""
        bus.notify_waiter_request("5", "Need water")
        urgent = bus.notify_new_order("4", 12, Decimal("9000"))

        fake_clock.advance(11)
        response = client.get("/notifications/recent", headers=STAFF)

        assert response.status_code == 200
        assert [n["id"] for n in response.json()] == [urgent.id]

    def test_requires_staff_key(self, client: TestClient) -> None:
        """Test that the feed is not public."""
        assert client.get("/notifications/recent").status_code == 401


@pytest.mark.unit
class TestMenuEndpoint:
    """Test suite for the customer menu."""

    def test_loading_until_both_pollers_have_data(self, client: TestClient) -> None:
        """Test that the menu answers 202 before its first fetch."""
        assert client.get("/menu").status_code == 202

        menu = mock_controller(LOADING, entity="menu", view="customer")
        categories = mock_controller([], entity="categories", view="customer")
        client.app.state.coordinator.get.side_effect = lambda entity, view: {
            "menu": menu,
            "categories": categories,
        }[entity]

        assert client.get("/menu").status_code == 202

    def test_available_items_only(self, client: TestClient) -> None:
        """Test that unavailable items are hidden from customers."""
        items = [
            MenuItem(id="4", name="Rolex", price=Decimal("5000"), category_id="2"),
            MenuItem(id="5", name="Chapati", price=Decimal("1000"), available=False),
        ]
        controllers = {
            "menu": mock_controller(items, entity="menu", view="customer"),
            "categories": mock_controller(
                [Category(id="2", name="Breakfast")],
                entity="categories",
                view="customer",
                stale=True,
            ),
        }
        client.app.state.coordinator.get.side_effect = lambda entity, view: controllers[entity]

        response = client.get("/menu")

        assert response.status_code == 200
        data = response.json()
        assert [item["name"] for item in data["items"]] == ["Rolex"]
        assert data["categories"][0]["name"] == "Breakfast"
        assert data["stale"] is True


@pytest.mark.unit
class TestPaymentEndpoints:
    """Test suite for payment method discovery and lookups."""

    def test_list_payment_methods(self, client: TestClient) -> None:
        """Test the methods offered at checkout."""
        client.app.state.transaction_service.payment_gateway = SimulatedPaymentGateway(
            simulate_delays=False
        )

        response = client.get("/payment-methods")

        assert response.status_code == 200
        assert [m["id"] for m in response.json()] == ["cash", "mtn_momo", "airtel_money"]

    @pytest.mark.parametrize(
        ("phone", "expected"),
        [
            ("0772 123 456", ("256772123456", True, "mtn_momo")),
            ("0701234567", ("256701234567", True, "airtel_money")),
            ("12345", ("12345", False, None)),
        ],
    )
    def test_detect_payment_method(
        self, client: TestClient, phone: str, expected: tuple[str, bool, str | None]
    ) -> None:
        """Test provider detection and normalization of a typed number."""
        client.app.state.transaction_service.phone_validator = PhoneNumberValidator()

        response = client.get("/payment-methods/detect", params={"phone_number": phone})

        assert response.status_code == 200
        assert response.json() == dict(zip(("phone_number", "valid", "payment_method"), expected))

    def test_payment_status(self, client: TestClient) -> None:
        """Test looking up an earlier payment with the gateway."""
        gateway = MagicMock(spec=PaymentGateway)
        gateway.check_payment_status = AsyncMock(
            return_value=PaymentResponse(
                success=True,
                transaction_id="MTN_1",
                message="Payment completed successfully",
                status=PaymentStatus.COMPLETED,
                payment_method=PaymentMethod.MTN_MOMO,
            )
        )
        client.app.state.transaction_service.payment_gateway = gateway

        response = client.get("/payments/MTN_1?method=mtn_momo", headers=STAFF)

        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        gateway.check_payment_status.assert_awaited_once_with("MTN_1", PaymentMethod.MTN_MOMO)

    def test_payment_status_gateway_failure(self, client: TestClient) -> None:
        """Test that a failing lookup is reported as a bad gateway."""
        gateway = MagicMock(spec=PaymentGateway)
        gateway.check_payment_status = AsyncMock(side_effect=ConnectionError("provider down"))
        client.app.state.transaction_service.payment_gateway = gateway

        response = client.get("/payments/MTN_1?method=mtn_momo", headers=STAFF)

        assert response.status_code == 502

    def test_payment_status_requires_staff_key(self, client: TestClient) -> None:
        """Test that payment lookups are staff only."""
        assert client.get("/payments/MTN_1?method=mtn_momo").status_code == 401


@pytest.mark.unit
class TestOrderStepEndpoints:
    """Test suite for advancing and cancelling orders."""

    def test_advance(self, client: TestClient, sample_order: TableOrder) -> None:
        """Test moving an order one step along the kitchen flow."""
        confirmed = sample_order.model_copy(update={"status": OrderStatus.CONFIRMED})
        client.app.state.remote_store.list_orders = AsyncMock(return_value=[sample_order])
        client.app.state.status_service.advance_order = AsyncMock(return_value=confirmed)

        response = client.post("/orders/101/advance", headers=STAFF)

        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"
        client.app.state.status_service.advance_order.assert_awaited_once_with(sample_order)

    def test_advance_terminal_order(self, client: TestClient, sample_order: TableOrder) -> None:
        """Test that a delivered order cannot advance."""
        client.app.state.remote_store.list_orders = AsyncMock(return_value=[sample_order])
        client.app.state.status_service.advance_order = AsyncMock(
            side_effect=IllegalTransitionError("order", "delivered", "next")
        )

        assert client.post("/orders/101/advance", headers=STAFF).status_code == 409

    def test_cancel(self, client: TestClient, sample_order: TableOrder) -> None:
        """Test cancelling an order."""
        cancelled = sample_order.model_copy(update={"status": OrderStatus.CANCELLED})
        client.app.state.remote_store.list_orders = AsyncMock(return_value=[sample_order])
        client.app.state.status_service.cancel_order = AsyncMock(return_value=cancelled)

        response = client.post("/orders/101/cancel", headers=STAFF)

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_cancel_write_failure(self, client: TestClient, sample_order: TableOrder) -> None:
        """Test that a rejected write is reported as a bad gateway."""
        client.app.state.remote_store.list_orders = AsyncMock(return_value=[sample_order])
        client.app.state.status_service.cancel_order = AsyncMock(
            side_effect=RemoteWriteError("PATCH failed", status_code=500)
        )

        assert client.post("/orders/101/cancel", headers=STAFF).status_code == 502

    def test_unknown_order(self, client: TestClient) -> None:
        """Test stepping an order the store does not have."""
        client.app.state.remote_store.list_orders = AsyncMock(return_value=[])

        assert client.post("/orders/999/cancel", headers=STAFF).status_code == 404
