"""Staff-driven status changes for orders and waiter requests."""

import logging
from datetime import UTC, datetime

from restaurant_table_service.errors import IllegalTransitionError
from restaurant_table_service.models.order_models import (
    OrderStatus,
    TableOrder,
    WaiterRequest,
    WaiterRequestStatus,
)
from restaurant_table_service.observability import traced
from restaurant_table_service.services.change_notifier import ORDER_STATUS_LABELS
from restaurant_table_service.services.notification_bus import NotificationBus
from restaurant_table_service.services.remote_store_client import RemoteStoreClient
from restaurant_table_service.services.status_machine import (
    ORDER_FLOW,
    transition_order,
    transition_waiter_request,
)

logger = logging.getLogger(__name__)


class StatusUpdateService:
    """Validates, writes and announces status changes.

    Illegal changes are rejected before the remote store is contacted.
    """

    def __init__(self, remote_store: RemoteStoreClient, notification_bus: NotificationBus) -> None:
        self.remote_store = remote_store
        self.notification_bus = notification_bus

    @traced("status.update_order")
    async def update_order_status(self, order: TableOrder, target: OrderStatus) -> TableOrder:
        """Move an order to a new status.

        Args:
            order: Order as last seen by the caller
            target: Requested status

        Returns:
            The updated order (the store's echo when it sent one)

        Raises:
            IllegalTransitionError: If the change skips, regresses or leaves a terminal state
            RemoteWriteError: If the store rejected the update
        """
        transition_order(order.status, target)

        echoed = await self.remote_store.update_order_status(order.id, target)
        updated = echoed or order.model_copy(update={"status": target})

        label = ORDER_STATUS_LABELS.get(target, target.value)
        self.notification_bus.notify_order_status(
            updated.table_id,
            updated.id,
            target,
            f"Order #{updated.id} for Table {updated.table_id}: {label}",
        )
        logger.info(f"Order #{order.id}: {order.status.value} -> {target.value}")
        return updated

    async def advance_order(self, order: TableOrder) -> TableOrder:
        """Move an order one step forward along the kitchen flow."""
        target = ORDER_FLOW.get(order.status)
        if target is None:
            raise IllegalTransitionError("order", order.status.value, "next")
        return await self.update_order_status(order, target)

    async def cancel_order(self, order: TableOrder) -> TableOrder:
        return await self.update_order_status(order, OrderStatus.CANCELLED)

    @traced("status.update_waiter_request")
    async def update_waiter_request_status(
        self, request: WaiterRequest, target: WaiterRequestStatus
    ) -> WaiterRequest:
        """Acknowledge or complete a waiter request.

        Raises:
            IllegalTransitionError: If the change is not the single next step
            RemoteWriteError: If the store rejected the update
        """
        transition_waiter_request(request.status, target)

        echoed = await self.remote_store.update_waiter_request_status(request.id, target)
        if echoed is not None:
            updated = echoed
        else:
            stamp = datetime.now(UTC)
            changes: dict[str, object] = {"status": target}
            if target == WaiterRequestStatus.ACKNOWLEDGED:
                changes["acknowledged_at"] = stamp
            elif target == WaiterRequestStatus.COMPLETED:
                changes["completed_at"] = stamp
            updated = request.model_copy(update=changes)

        logger.info(
            f"Waiter request #{request.id} (table {request.table_id}): "
            f"{request.status.value} -> {target.value}"
        )
        return updated
