"""In-process notification fan-out bus.

The bus decouples producers (polling deltas, the checkout orchestrator,
operator actions) from consumers (banners, sounds, OS notifications). It is a
plain injectable instance: build one at process start and pass it to
producers and consumers.

All mutations run synchronously inside one event-loop turn, in the order
append -> truncate -> dispatch -> schedule-expiry, so subscribers never see a
notification that the log does not hold.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from restaurant_table_service.models.notification_models import (
    Notification,
    NotificationEvent,
    NotificationPriority,
    NotificationType,
)
from restaurant_table_service.models.order_models import OrderStatus, PaymentMethod
from restaurant_table_service.observability.metrics import record_notification

logger = logging.getLogger(__name__)

Listener = Callable[[Notification], None]

DEFAULT_MAX_NOTIFICATIONS = 50
DEFAULT_TTL_SECONDS = 10.0

ORDER_STATUS_PRIORITIES: dict[OrderStatus, NotificationPriority] = {
    OrderStatus.CONFIRMED: NotificationPriority.MEDIUM,
    OrderStatus.PREPARING: NotificationPriority.MEDIUM,
    OrderStatus.READY: NotificationPriority.HIGH,
    OrderStatus.DELIVERED: NotificationPriority.LOW,
}


def format_amount(amount: Decimal | int | float) -> str:
    """Format a money amount with thousands separators, dropping zero decimals."""
    value = Decimal(str(amount))
    if value == value.to_integral_value():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def generate_notification_id() -> str:
    return f"notif_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class NotificationBus:
    """Bounded, auto-expiring notification log with synchronous fan-out.

    Non-urgent notifications are removed `ttl_seconds` after creation. Urgent
    ones stay until dismissed. The log never holds more than
    `max_notifications` entries; the oldest are evicted first.
    """

    def __init__(
        self,
        max_notifications: int = DEFAULT_MAX_NOTIFICATIONS,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the bus.

        Args:
            max_notifications: Maximum number of retained notifications
            ttl_seconds: Lifetime of non-urgent notifications
            clock: Monotonic clock used for expiry deadlines
        """
        if max_notifications <= 0:
            raise ValueError("max_notifications must be positive")

        self.max_notifications = max_notifications
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._notifications: list[Notification] = []
        self._listeners: list[Listener] = []
        self._deadlines: dict[str, float] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for every future notification.

        Args:
            listener: Callable invoked with a copy of each notification

        Returns:
            A callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            self._listeners = [existing for existing in self._listeners if existing is not listener]

        return unsubscribe

    def notify(self, event: NotificationEvent) -> Notification:
        """Stamp, retain and dispatch a notification.

        Args:
            event: Producer-supplied notification without id or timestamp

        Returns:
            The retained Notification
        """
        notification = Notification(
            **event.model_dump(),
            id=generate_notification_id(),
            timestamp=datetime.now(UTC),
        )

        self._notifications.insert(0, notification)
        self._truncate()
        self._dispatch(notification)
        self._schedule_expiry(notification)

        record_notification(notification.type.value, notification.priority.value)
        logger.debug(f"Notification {notification.id} emitted: {notification.title}")
        return notification

    def remove_notification(self, notification_id: str) -> bool:
        """Remove a notification from the log.

        Args:
            notification_id: Id of the notification to dismiss

        Returns:
            True if a notification was removed, False if it was not retained
        """
        self._forget_expiry(notification_id)
        remaining = [n for n in self._notifications if n.id != notification_id]
        removed = len(remaining) != len(self._notifications)
        self._notifications = remaining
        return removed

    def clear_all(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._deadlines.clear()
        self._notifications = []

    def get_notifications(self) -> list[Notification]:
        """Return copies of the retained notifications, newest first."""
        self._prune_expired()
        return [n.model_copy(deep=True) for n in self._notifications]

    def get_notifications_by_type(self, notification_type: NotificationType) -> list[Notification]:
        return [n for n in self.get_notifications() if n.type == notification_type]

    def notify_waiter_request(
        self, table_id: str, message: str, request_id: int | None = None
    ) -> Notification:
        data: dict[str, Any] = {"table_id": table_id, "message": message}
        if request_id is not None:
            data["request_id"] = request_id
        return self.notify(
            NotificationEvent(
                type=NotificationType.WAITER_REQUEST,
                title=f"Table {table_id} Needs Assistance",
                message=message,
                table_id=table_id,
                priority=NotificationPriority.HIGH,
                data=data,
            )
        )

    def notify_new_order(self, table_id: str, order_id: int, total: Decimal) -> Notification:
        return self.notify(
            NotificationEvent(
                type=NotificationType.NEW_ORDER,
                title=f"New Order from Table {table_id}",
                message=f"Order #{order_id} - UGX {format_amount(total)}",
                table_id=table_id,
                order_id=order_id,
                priority=NotificationPriority.URGENT,
                data={"table_id": table_id, "order_id": order_id, "total": str(total)},
            )
        )

    def notify_order_status(
        self,
        table_id: str,
        order_id: int,
        status: OrderStatus,
        message: str,
    ) -> Notification:
        """Announce an order status change.

        Priority follows the status: ready is high, delivered is low,
        everything else medium.
        """
        return self.notify(
            NotificationEvent(
                type=NotificationType.ORDER_STATUS,
                title=f"Order #{order_id} Status Update",
                message=message,
                table_id=table_id,
                order_id=order_id,
                priority=ORDER_STATUS_PRIORITIES.get(status, NotificationPriority.MEDIUM),
                data={"table_id": table_id, "order_id": order_id, "status": status.value},
            )
        )

    def notify_payment_success(
        self,
        table_id: str,
        order_id: int,
        payment_method: PaymentMethod,
        amount: Decimal,
    ) -> Notification:
        return self.notify(
            NotificationEvent(
                type=NotificationType.PAYMENT_SUCCESS,
                title=f"Payment Successful - Table {table_id}",
                message=(
                    f"{payment_method.display_name} payment of "
                    f"UGX {format_amount(amount)} completed"
                ),
                table_id=table_id,
                order_id=order_id,
                priority=NotificationPriority.MEDIUM,
                data={
                    "table_id": table_id,
                    "order_id": order_id,
                    "payment_method": payment_method.value,
                    "amount": str(amount),
                },
            )
        )

    def _truncate(self) -> None:
        if len(self._notifications) <= self.max_notifications:
            return
        evicted = self._notifications[self.max_notifications :]
        self._notifications = self._notifications[: self.max_notifications]
        for notification in evicted:
            self._forget_expiry(notification.id)

    def _dispatch(self, notification: Notification) -> None:
        for listener in list(self._listeners):
            try:
                listener(notification.model_copy(deep=True))
            except Exception:
                logger.exception(f"Notification listener failed for {notification.id}")

    def _schedule_expiry(self, notification: Notification) -> None:
        if notification.priority == NotificationPriority.URGENT:
            return
        if not any(n.id == notification.id for n in self._notifications):
            return

        self._deadlines[notification.id] = self._clock() + self.ttl_seconds
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the deadline is enforced on the next read
            return
        self._timers[notification.id] = loop.call_later(
            self.ttl_seconds, self.remove_notification, notification.id
        )

    def _forget_expiry(self, notification_id: str) -> None:
        self._deadlines.pop(notification_id, None)
        handle = self._timers.pop(notification_id, None)
        if handle is not None:
            handle.cancel()

    def _prune_expired(self) -> None:
        now = self._clock()
        expired = [nid for nid, deadline in self._deadlines.items() if deadline <= now]
        for notification_id in expired:
            self.remove_notification(notification_id)
