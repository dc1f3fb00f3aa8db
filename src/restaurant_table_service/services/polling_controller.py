"""Polling synchronization controllers.

There is no push channel from the remote store, so every client view keeps
its copy of a collection fresh by polling it. A PollingController owns one
recurring refresh loop for one (entity, view) pair:

- a successful fetch replaces the snapshot outright (remote state wins),
- a failed fetch keeps the previous snapshot and marks it stale,
- fetch N+1 never starts before fetch N has been applied,
- stop() bumps a generation counter so a fetch still in flight when its view
  goes away is discarded instead of applied.

Controllers share nothing with each other, so loops for different entities
run fully independently on the event loop.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from restaurant_table_service.errors import TransientFetchError
from restaurant_table_service.observability.metrics import record_poll_failure, record_poll_success

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Seconds between ticks per (entity, view). Kitchen and waiter-request views
# are the most time sensitive.
POLL_INTERVAL_SECONDS: dict[tuple[str, str], float] = {
    ("orders", "kitchen"): 2.0,
    ("orders", "order_tracker"): 2.0,
    ("waiter_requests", "management"): 2.0,
    ("orders", "management"): 3.0,
    ("menu", "customer"): 30.0,
    ("categories", "customer"): 30.0,
}
DEFAULT_POLL_INTERVAL_SECONDS = 5.0


def interval_for(entity: str, view: str) -> float:
    return POLL_INTERVAL_SECONDS.get((entity, view), DEFAULT_POLL_INTERVAL_SECONDS)


class SnapshotMarker(Enum):
    """Placeholders returned by current() when there is no item to show."""

    LOADING = "loading"
    NOT_FOUND = "not_found"


LOADING = SnapshotMarker.LOADING
NOT_FOUND = SnapshotMarker.NOT_FOUND


class SyncState(str, Enum):
    """What a consumer should render for a controller."""

    LOADING = "loading"
    READY = "ready"
    NOT_FOUND = "not_found"


@dataclass
class SnapshotDiff(Generic[T]):
    """Difference between two consecutive snapshots, matched by key.

    Attributes:
        entity: Entity collection the snapshots belong to
        added: Items present now but not before
        removed: Items present before but not now
        changed: (previous, current) pairs whose content differs
        initial: True for the first successful fetch of a controller
    """

    entity: str
    added: list[T] = field(default_factory=list)
    removed: list[T] = field(default_factory=list)
    changed: list[tuple[T, T]] = field(default_factory=list)
    initial: bool = False

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)


def _default_key(item: Any) -> Hashable:
    return item.id


def diff_snapshots(
    entity: str,
    previous: Sequence[T],
    current: Sequence[T],
    key: Callable[[T], Hashable] = _default_key,
    initial: bool = False,
) -> SnapshotDiff[T]:
    """Compute added, removed and changed items between two snapshots."""
    before = {key(item): item for item in previous}
    after = {key(item): item for item in current}

    diff: SnapshotDiff[T] = SnapshotDiff(entity=entity, initial=initial)
    for item_key, item in after.items():
        old = before.get(item_key)
        if old is None:
            diff.added.append(item)
        elif old != item:
            diff.changed.append((old, item))
    diff.removed = [item for item_key, item in before.items() if item_key not in after]
    return diff


def by_id(item_id: Any) -> Callable[[Any], bool]:
    """Filter selecting the single item with the given id."""
    return lambda item: item.id == item_id


ChangeListener = Callable[[SnapshotDiff[Any]], None]


class PollingController(Generic[T]):
    """One cancellable polling loop over a remote collection.

    In single-item mode (an `item_filter` is given) current() returns the
    matching item, or NOT_FOUND when the fetched collection does not contain
    it, so consumers can tell "not found" apart from "still loading".
    """

    def __init__(
        self,
        entity_key: str,
        fetch: Callable[[], Awaitable[list[T]]],
        interval_seconds: float,
        view: str = "default",
        item_filter: Callable[[T], bool] | None = None,
        key: Callable[[T], Hashable] = _default_key,
        stale_after_failures: int = 1,
    ) -> None:
        """Initialize the controller. Polling does not begin until start().

        Args:
            entity_key: Name of the polled collection (e.g., "orders")
            fetch: Coroutine function returning the full remote collection
            interval_seconds: Pause between the end of one tick and the next fetch
            view: Name of the view that owns this loop
            item_filter: Predicate selecting a single item (single-item mode)
            key: Identity function used to diff snapshots
            stale_after_failures: Consecutive failures before data is reported stale
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self.entity_key = entity_key
        self.view = view
        self.fetch = fetch
        self.interval_seconds = interval_seconds
        self.item_filter = item_filter
        self.key = key
        self.stale_after_failures = stale_after_failures

        self._snapshot: list[T] | None = None
        self._stale = False
        self._consecutive_failures = 0
        self._last_success_at: datetime | None = None
        self._last_error: str | None = None

        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._retired: set[asyncio.Task[None]] = set()
        self._in_flight = False
        self._tick_lock = asyncio.Lock()
        self._listeners: list[ChangeListener] = []

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def stale(self) -> bool:
        return self._stale

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def last_success_at(self) -> datetime | None:
        return self._last_success_at

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def state(self) -> SyncState:
        if self._snapshot is None:
            return SyncState.LOADING
        if self.item_filter is not None and not self._snapshot:
            return SyncState.NOT_FOUND
        return SyncState.READY

    def current(self) -> list[T] | T | SnapshotMarker:
        """Return the latest snapshot.

        Returns:
            LOADING before the first successful fetch; in single-item mode the
            item or NOT_FOUND; otherwise a copy of the collection
        """
        if self._snapshot is None:
            return LOADING
        if self.item_filter is not None:
            return self._snapshot[0] if self._snapshot else NOT_FOUND
        return list(self._snapshot)

    def add_change_listener(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a callback for snapshot differences.

        Returns:
            A callable that removes the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            self._listeners = [existing for existing in self._listeners if existing is not listener]

        return remove

    def start(self) -> None:
        """Start the polling loop on the running event loop. No-op if already running."""
        if self.running:
            return
        generation = self._generation
        self._task = asyncio.get_running_loop().create_task(
            self._run(generation), name=f"poll:{self.entity_key}:{self.view}"
        )
        logger.info(
            f"Polling {self.entity_key} for {self.view} every {self.interval_seconds}s "
            f"(generation {generation})"
        )

    def stop(self) -> None:
        """Stop polling.

        A fetch already in flight is allowed to finish, but its result is
        discarded. A loop that is only sleeping is cancelled immediately.
        """
        self._generation += 1
        task, self._task = self._task, None
        if task is None or task.done():
            return

        if not self._in_flight:
            task.cancel()
        self._retired.add(task)
        task.add_done_callback(self._retired.discard)
        logger.info(f"Stopped polling {self.entity_key} for {self.view}")

    async def wait_closed(self) -> None:
        """Wait until loops retired by stop() have fully exited."""
        if self._retired:
            await asyncio.gather(*list(self._retired), return_exceptions=True)

    async def refresh(self) -> None:
        """Run one tick now, e.g. right after a local mutation."""
        await self._tick(self._generation)

    async def _run(self, generation: int) -> None:
        while generation == self._generation:
            await self._tick(generation)
            if generation != self._generation:
                break
            await asyncio.sleep(self.interval_seconds)

    async def _tick(self, generation: int) -> None:
        async with self._tick_lock:
            if generation != self._generation:
                return

            self._in_flight = True
            try:
                rows = await self.fetch()
            except TransientFetchError as e:
                self._on_failure(generation, e)
                return
            except Exception as e:
                logger.exception(f"Unexpected error polling {self.entity_key} for {self.view}")
                self._on_failure(generation, e)
                return
            finally:
                self._in_flight = False

            if generation != self._generation:
                logger.debug(
                    f"Discarding {self.entity_key} result for {self.view}: "
                    f"generation {generation} retired"
                )
                return

            self._apply(rows)

    def _apply(self, rows: list[T]) -> None:
        if self.item_filter is not None:
            rows = [row for row in rows if self.item_filter(row)][:1]
        else:
            rows = list(rows)

        previous = self._snapshot
        self._snapshot = rows
        self._consecutive_failures = 0
        self._last_error = None
        self._last_success_at = datetime.now(UTC)
        if self._stale:
            logger.info(f"{self.entity_key} for {self.view} is fresh again")
        self._stale = False
        record_poll_success(self.entity_key)

        diff = diff_snapshots(
            self.entity_key, previous or [], rows, key=self.key, initial=previous is None
        )
        if diff.initial or not diff.is_empty:
            self._publish(diff)

    def _on_failure(self, generation: int, error: Exception) -> None:
        if generation != self._generation:
            return

        self._consecutive_failures += 1
        self._last_error = str(error)
        record_poll_failure(self.entity_key, type(error).__name__)
        logger.warning(
            f"Polling {self.entity_key} for {self.view} failed "
            f"({self._consecutive_failures} in a row), keeping previous snapshot: {error}"
        )
        if self._consecutive_failures >= self.stale_after_failures and not self._stale:
            self._stale = True
            logger.warning(f"{self.entity_key} for {self.view} is now stale")

    def _publish(self, diff: SnapshotDiff[T]) -> None:
        for listener in list(self._listeners):
            try:
                listener(diff)
            except Exception:
                logger.exception(f"Change listener failed for {self.entity_key}/{self.view}")


class PollingCoordinator:
    """Registry of the polling controllers of one client process, keyed by (entity, view)."""

    def __init__(self) -> None:
        self._controllers: dict[tuple[str, str], PollingController[Any]] = {}
        self._retired: list[PollingController[Any]] = []

    @property
    def controllers(self) -> list[PollingController[Any]]:
        return list(self._controllers.values())

    def register(self, controller: PollingController[T]) -> PollingController[T]:
        """Add a controller, stopping any controller it replaces."""
        key = (controller.entity_key, controller.view)
        existing = self._controllers.get(key)
        if existing is not None and existing is not controller:
            self._retire(existing)
        self._controllers[key] = controller
        return controller

    def get(self, entity_key: str, view: str) -> PollingController[Any] | None:
        return self._controllers.get((entity_key, view))

    def start_all(self) -> None:
        for controller in self._controllers.values():
            controller.start()

    def stop_view(self, view: str) -> None:
        """Stop and forget every controller owned by a torn-down view."""
        for key in [k for k in self._controllers if k[1] == view]:
            self._retire(self._controllers.pop(key))

    def stop_all(self) -> None:
        for controller in self._controllers.values():
            controller.stop()

    async def wait_closed(self) -> None:
        controllers = [*self._controllers.values(), *self._retired]
        await asyncio.gather(*(c.wait_closed() for c in controllers))
        self._retired.clear()

    def _retire(self, controller: PollingController[Any]) -> None:
        controller.stop()
        self._retired.append(controller)
