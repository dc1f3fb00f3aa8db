"""Order and waiter request state machines.

Pure functions over status values. Every (status, target) pair either yields
the target or raises IllegalTransitionError, so no caller can regress an
order's status by accident. Priority thresholds are local policy constants,
not negotiated with the remote store.
"""

from collections.abc import Iterable
from datetime import UTC, datetime
from enum import Enum

from restaurant_table_service.errors import IllegalTransitionError
from restaurant_table_service.models.order_models import (
    OrderStatus,
    TableOrder,
    WaiterRequestStatus,
)

ORDER_FLOW: dict[OrderStatus, OrderStatus] = {
    OrderStatus.PENDING: OrderStatus.CONFIRMED,
    OrderStatus.CONFIRMED: OrderStatus.PREPARING,
    OrderStatus.PREPARING: OrderStatus.READY,
    OrderStatus.READY: OrderStatus.DELIVERED,
}

WAITER_REQUEST_FLOW: dict[WaiterRequestStatus, WaiterRequestStatus] = {
    WaiterRequestStatus.PENDING: WaiterRequestStatus.ACKNOWLEDGED,
    WaiterRequestStatus.ACKNOWLEDGED: WaiterRequestStatus.COMPLETED,
}

TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Minutes, display only
ESTIMATED_MINUTES_REMAINING: dict[OrderStatus, int] = {
    OrderStatus.PENDING: 25,
    OrderStatus.CONFIRMED: 20,
    OrderStatus.PREPARING: 15,
    OrderStatus.READY: 5,
    OrderStatus.DELIVERED: 0,
    OrderStatus.CANCELLED: 0,
}


class PriorityLevel(str, Enum):
    """Urgency derived from how long an item has been waiting."""

    NORMAL = "normal"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class PriorityQueue(str, Enum):
    """Which policy table to apply when deriving a priority."""

    WAITER_REQUESTS = "waiter_requests"
    KITCHEN = "kitchen"


# (exclusive lower bound in minutes, level), checked from the top down
WAITER_REQUEST_THRESHOLDS: tuple[tuple[int, PriorityLevel], ...] = (
    (15, PriorityLevel.HIGH),
    (5, PriorityLevel.MEDIUM),
)

KITCHEN_THRESHOLDS: tuple[tuple[int, PriorityLevel], ...] = (
    (30, PriorityLevel.URGENT),
    (20, PriorityLevel.HIGH),
    (10, PriorityLevel.MEDIUM),
)


def legal_next_status(
    current: OrderStatus | WaiterRequestStatus,
) -> OrderStatus | WaiterRequestStatus | None:
    """Return the next forward status, or None if the status is terminal.

    Args:
        current: An order or waiter request status

    Returns:
        The next status in the fixed sequence, None once terminal
    """
    if isinstance(current, OrderStatus):
        return ORDER_FLOW.get(current)
    return WAITER_REQUEST_FLOW.get(current)


def can_cancel(current: OrderStatus) -> bool:
    """Whether an order in this status may still be cancelled."""
    return current not in TERMINAL_ORDER_STATUSES


def is_terminal(current: OrderStatus | WaiterRequestStatus) -> bool:
    return legal_next_status(current) is None


def transition_order(current: OrderStatus, target: OrderStatus) -> OrderStatus:
    """Validate an order status change.

    Args:
        current: Status the order is in now
        target: Requested status

    Returns:
        The target status when the change is legal

    Raises:
        IllegalTransitionError: If the change skips, regresses or leaves a terminal state
    """
    if target == OrderStatus.CANCELLED and can_cancel(current):
        return target
    if ORDER_FLOW.get(current) == target:
        return target
    raise IllegalTransitionError("order", current.value, target.value)


def transition_waiter_request(
    current: WaiterRequestStatus, target: WaiterRequestStatus
) -> WaiterRequestStatus:
    """Validate a waiter request status change.

    Raises:
        IllegalTransitionError: If the change is not the single next step
    """
    if WAITER_REQUEST_FLOW.get(current) == target:
        return target
    raise IllegalTransitionError("waiter_request", current.value, target.value)


def elapsed_minutes(created_at: datetime, now: datetime) -> int:
    """Whole minutes elapsed since creation, floored and never negative.

    Naive timestamps from the remote store are taken to be UTC.
    """
    if created_at.tzinfo is None and now.tzinfo is not None:
        created_at = created_at.replace(tzinfo=UTC)
    elif now.tzinfo is None and created_at.tzinfo is not None:
        now = now.replace(tzinfo=UTC)
    seconds = (now - created_at).total_seconds()
    return max(0, int(seconds // 60))


def _level_for(minutes: int, thresholds: tuple[tuple[int, PriorityLevel], ...]) -> PriorityLevel:
    for bound, level in thresholds:
        if minutes > bound:
            return level
    return PriorityLevel.NORMAL


def waiter_request_priority(created_at: datetime, now: datetime) -> PriorityLevel:
    return _level_for(elapsed_minutes(created_at, now), WAITER_REQUEST_THRESHOLDS)


def kitchen_priority(created_at: datetime, now: datetime) -> PriorityLevel:
    return _level_for(elapsed_minutes(created_at, now), KITCHEN_THRESHOLDS)


def priority(
    created_at: datetime,
    now: datetime,
    queue: PriorityQueue = PriorityQueue.WAITER_REQUESTS,
) -> PriorityLevel:
    """Derive urgency from elapsed time.

    Args:
        created_at: When the order or request was created
        now: Reference time
        queue: Policy table to use (waiter requests or kitchen queue)

    Returns:
        PriorityLevel for the elapsed whole minutes
    """
    if queue == PriorityQueue.KITCHEN:
        return kitchen_priority(created_at, now)
    return waiter_request_priority(created_at, now)


def estimated_remaining(status: OrderStatus) -> int:
    """Approximate minutes until delivery for display. Not a scheduling guarantee."""
    return ESTIMATED_MINUTES_REMAINING.get(status, 0)


def kitchen_queue(orders: Iterable[TableOrder]) -> dict[OrderStatus, list[TableOrder]]:
    """Group active orders by status for the kitchen display, oldest first."""
    grouped: dict[OrderStatus, list[TableOrder]] = {status: [] for status in ORDER_FLOW}
    for order in sorted(orders, key=lambda o: o.created_at):
        if order.status in TERMINAL_ORDER_STATUSES:
            continue
        grouped[order.status].append(order)
    return grouped
