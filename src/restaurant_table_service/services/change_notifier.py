"""Turns polling snapshot differences into operator notifications."""

import logging
from collections.abc import Callable
from typing import Any

from restaurant_table_service.models.notification_models import Notification, NotificationType
from restaurant_table_service.models.order_models import (
    OrderStatus,
    TableOrder,
    WaiterRequest,
    WaiterRequestStatus,
)
from restaurant_table_service.services.notification_bus import NotificationBus
from restaurant_table_service.services.polling_controller import PollingController, SnapshotDiff

logger = logging.getLogger(__name__)

ORDER_STATUS_LABELS: dict[OrderStatus, str] = {
    OrderStatus.PENDING: "Order Received",
    OrderStatus.CONFIRMED: "Order Confirmed",
    OrderStatus.PREPARING: "Being Prepared",
    OrderStatus.READY: "Ready for Pickup",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELLED: "Cancelled",
}
MAX_REMEMBERED = 500


class ChangeNotifier:
    """Publishes new orders, status changes and waiter calls seen by polling.

    The first snapshot of a controller is treated as a baseline and not
    announced. Orders already announced on the bus (for instance by the
    checkout orchestrator in this same process) are not announced twice;
    the same holds for status changes and waiter calls made through this
    process.

    Remembered ids are forgotten once the item leaves the polled snapshot,
    and each kind keeps at most MAX_REMEMBERED entries, oldest dropped first.
    """

    def __init__(self, bus: NotificationBus) -> None:
        self.bus = bus
        # Insertion-ordered dicts used as sets so the oldest entry can be evicted
        self._announced_orders: dict[int, None] = {}
        self._announced_statuses: dict[tuple[int, str], None] = {}
        self._announced_requests: dict[int, None] = {}
        self._detach: list[Callable[[], None]] = [bus.subscribe(self._track_announced)]

    def attach(self, controller: PollingController[Any]) -> None:
        """Listen to a controller according to the entity it polls."""
        if controller.entity_key == "orders":
            self._detach.append(controller.add_change_listener(self.on_orders_changed))
        elif controller.entity_key == "waiter_requests":
            self._detach.append(controller.add_change_listener(self.on_waiter_requests_changed))
        else:
            logger.debug(f"No notifications defined for entity {controller.entity_key}")

    def close(self) -> None:
        for detach in self._detach:
            detach()
        self._detach = []

    def on_orders_changed(self, diff: SnapshotDiff[TableOrder]) -> None:
        self._forget_orders({order.id for order in diff.removed})
        if diff.initial:
            for order in diff.added:
                _remember(self._announced_orders, order.id)
            return

        for order in diff.added:
            if order.id in self._announced_orders:
                continue
            self.bus.notify_new_order(order.table_id, order.id, order.total_amount)

        for previous, current in diff.changed:
            if previous.status == current.status:
                continue
            key = (current.id, current.status.value)
            if key in self._announced_statuses:
                del self._announced_statuses[key]
                continue
            label = ORDER_STATUS_LABELS.get(current.status, current.status.value)
            self.bus.notify_order_status(
                current.table_id,
                current.id,
                current.status,
                f"Order #{current.id} for Table {current.table_id}: {label}",
            )

    def on_waiter_requests_changed(self, diff: SnapshotDiff[WaiterRequest]) -> None:
        for request in diff.removed:
            self._announced_requests.pop(request.id, None)
        if diff.initial:
            for request in diff.added:
                _remember(self._announced_requests, request.id)
            return
        for request in diff.added:
            if request.status != WaiterRequestStatus.PENDING:
                continue
            if request.id in self._announced_requests:
                continue
            self.bus.notify_waiter_request(request.table_id, request.message, request.id)

    def _forget_orders(self, order_ids: set[int]) -> None:
        if not order_ids:
            return
        for order_id in order_ids:
            self._announced_orders.pop(order_id, None)
        self._announced_statuses = {
            key: None for key in self._announced_statuses if key[0] not in order_ids
        }

    def _track_announced(self, notification: Notification) -> None:
        order_id = notification.order_id
        if notification.type == NotificationType.NEW_ORDER and order_id is not None:
            _remember(self._announced_orders, order_id)
        elif notification.type == NotificationType.ORDER_STATUS and order_id is not None:
            status = notification.data.get("status")
            if status:
                _remember(self._announced_statuses, (order_id, status))
        elif notification.type == NotificationType.WAITER_REQUEST:
            request_id = notification.data.get("request_id")
            if request_id is not None:
                _remember(self._announced_requests, request_id)


def _remember(announced: dict[Any, None], key: Any) -> None:
    announced.pop(key, None)
    announced[key] = None
    while len(announced) > MAX_REMEMBERED:
        del announced[next(iter(announced))]
