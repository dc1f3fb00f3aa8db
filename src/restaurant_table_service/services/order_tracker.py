"""Single-order tracking views.

A customer watching one order gets its own polling loop in single-item mode,
registered under an `order_tracker:<id>` view so it can be torn down on its
own. The number of live trackers is bounded; the oldest is dropped first.
"""

import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable

from restaurant_table_service.models.order_models import TableOrder
from restaurant_table_service.services.polling_controller import (
    PollingController,
    PollingCoordinator,
    by_id,
    interval_for,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_TRACKED_ORDERS = 100


class OrderTracker:
    """Starts and stops per-order polling controllers on demand."""

    def __init__(
        self,
        coordinator: PollingCoordinator,
        fetch_orders: Callable[[], Awaitable[list[TableOrder]]],
        interval_seconds: float | None = None,
        max_tracked: int = DEFAULT_MAX_TRACKED_ORDERS,
    ) -> None:
        self.coordinator = coordinator
        self.fetch_orders = fetch_orders
        self.interval_seconds = interval_seconds or interval_for("orders", "order_tracker")
        self.max_tracked = max_tracked
        self._tracked: OrderedDict[int, str] = OrderedDict()

    @staticmethod
    def view_for(order_id: int) -> str:
        return f"order_tracker:{order_id}"

    @property
    def tracked(self) -> list[int]:
        return list(self._tracked)

    def track(self, order_id: int) -> PollingController[TableOrder]:
        """Return the running controller for an order, starting one if needed.

        Must be called from within the running event loop.
        """
        view = self.view_for(order_id)
        controller = self.coordinator.get("orders", view)
        if controller is not None:
            self._tracked.move_to_end(order_id)
            return controller

        while len(self._tracked) >= self.max_tracked:
            oldest, oldest_view = self._tracked.popitem(last=False)
            logger.info(f"Dropping tracker for order #{oldest} to make room")
            self.coordinator.stop_view(oldest_view)

        controller = self.coordinator.register(
            PollingController(
                "orders",
                self.fetch_orders,
                self.interval_seconds,
                view=view,
                item_filter=by_id(order_id),
            )
        )
        self._tracked[order_id] = view
        controller.start()
        return controller

    def untrack(self, order_id: int) -> bool:
        view = self._tracked.pop(order_id, None)
        if view is None:
            return False
        self.coordinator.stop_view(view)
        return True

    def untrack_all(self) -> None:
        for order_id in list(self._tracked):
            self.untrack(order_id)
