"""Best-effort side-effect consumers of the notification bus.

Sound cues and OS-level notifications are subscribers like any other. A
failure to play audio or to obtain notification permission is logged and
dropped here; it never reaches the bus, the log or other subscribers.
"""

import asyncio
import logging
import shutil
import subprocess
import sys
from collections.abc import Callable
from typing import Any, Protocol

from restaurant_table_service.models.notification_models import (
    Notification,
    NotificationPriority,
)
from restaurant_table_service.services.notification_bus import NotificationBus

logger = logging.getLogger(__name__)

TONE_FREQUENCIES_HZ: dict[NotificationPriority, int] = {
    NotificationPriority.LOW: 400,
    NotificationPriority.MEDIUM: 600,
    NotificationPriority.HIGH: 800,
    NotificationPriority.URGENT: 1000,
}
TONE_DURATION_SECONDS = 0.5
DESKTOP_AUTO_CLOSE_SECONDS = 5.0
NOTIFY_SEND_TIMEOUT_SECONDS = 2.0
AUDIBLE_PRIORITIES = frozenset({NotificationPriority.HIGH, NotificationPriority.URGENT})

TonePlayer = Callable[[int, float], None]


class NotificationSurface(Protocol):
    """Operating-environment notification surface (permission gated)."""

    def permission(self) -> str:
        """Current permission: 'default', 'granted' or 'denied'."""
        ...

    def request_permission(self) -> str: ...

    def show(
        self,
        title: str,
        body: str,
        tag: str,
        require_interaction: bool,
        silent: bool,
    ) -> Any:
        """Display a notification and return a handle with a close() method."""
        ...


class SoundAlertSink:
    """Plays a short tone for high and urgent notifications."""

    def __init__(self, player: TonePlayer) -> None:
        """Initialize the sink.

        Args:
            player: Callable taking (frequency_hz, duration_seconds)
        """
        self.player = player

    def __call__(self, notification: Notification) -> None:
        if notification.priority not in AUDIBLE_PRIORITIES:
            return
        try:
            self.player(TONE_FREQUENCIES_HZ[notification.priority], TONE_DURATION_SECONDS)
        except Exception as e:
            logger.warning(f"Audio notification not supported: {e}")


class DesktopNotificationSink:
    """Mirrors notifications to the OS notification surface when permitted."""

    def __init__(self, surface: NotificationSurface) -> None:
        self.surface = surface

    def __call__(self, notification: Notification) -> None:
        try:
            permission = self.surface.permission()
            if permission == "default":
                permission = self.surface.request_permission()
            if permission != "granted":
                logger.debug(f"OS notifications not permitted ({permission})")
                return

            urgent = notification.priority == NotificationPriority.URGENT
            handle = self.surface.show(
                title=notification.title,
                body=notification.message,
                tag=notification.type.value,
                require_interaction=urgent,
                silent=notification.priority == NotificationPriority.LOW,
            )
        except Exception as e:
            logger.warning(f"OS notification failed for {notification.id}: {e}")
            return

        if not urgent and handle is not None:
            self._schedule_close(handle)

    def _schedule_close(self, handle: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        loop.call_later(DESKTOP_AUTO_CLOSE_SECONDS, self._close, handle)

    @staticmethod
    def _close(handle: Any) -> None:
        try:
            handle.close()
        except Exception as e:
            logger.warning(f"Failed to close OS notification: {e}")


def terminal_bell(frequency_hz: int, duration_seconds: float) -> None:
    """Ring the console bell of the terminal running the service.

    The bell has a single pitch, so frequency and duration are ignored.
    """
    sys.stdout.write("\a")
    sys.stdout.flush()


class NotifySendSurface:
    """Desktop notifications through the freedesktop `notify-send` command."""

    def __init__(self, command: str = "notify-send") -> None:
        self.command = shutil.which(command)

    def permission(self) -> str:
        return "granted" if self.command else "denied"

    def request_permission(self) -> str:
        return self.permission()

    def show(
        self,
        title: str,
        body: str,
        tag: str,
        require_interaction: bool,
        silent: bool,
    ) -> None:
        if self.command is None:
            raise RuntimeError("notify-send is not installed")
        urgency = "critical" if require_interaction else "low" if silent else "normal"
        subprocess.run(
            [self.command, f"--urgency={urgency}", f"--category={tag}", title, body],
            check=True,
            timeout=NOTIFY_SEND_TIMEOUT_SECONDS,
        )


class RecentNotificationsFeed:
    """The short list of recent notifications shown in an operator banner."""

    def __init__(self, bus: NotificationBus, limit: int = 10) -> None:
        """Seed the feed from the bus log and subscribe to new notifications.

        Args:
            bus: Notification bus to follow
            limit: Number of notifications kept in the feed
        """
        self.bus = bus
        self.limit = limit
        self._items: list[Notification] = bus.get_notifications()[:limit]
        self._unsubscribe = bus.subscribe(self._on_notification)

    @property
    def items(self) -> list[Notification]:
        """Feed entries still retained by the bus, newest first."""
        live = {notification.id for notification in self.bus.get_notifications()}
        self._items = [n for n in self._items if n.id in live]
        return list(self._items)

    def _on_notification(self, notification: Notification) -> None:
        self._items = [notification, *self._items][: self.limit]

    def dismiss(self, notification_id: str) -> None:
        self.bus.remove_notification(notification_id)
        self._items = [n for n in self._items if n.id != notification_id]

    def clear(self) -> None:
        self.bus.clear_all()
        self._items = []

    def close(self) -> None:
        self._unsubscribe()


def attach_default_sinks(
    bus: NotificationBus,
    player: TonePlayer | None = None,
    surface: NotificationSurface | None = None,
) -> list[Callable[[], None]]:
    """Subscribe the sound and OS notification sinks that are available.

    Returns:
        Unsubscribe callables for every attached sink
    """
    unsubscribers: list[Callable[[], None]] = []
    if player is not None:
        unsubscribers.append(bus.subscribe(SoundAlertSink(player)))
    if surface is not None:
        unsubscribers.append(bus.subscribe(DesktopNotificationSink(surface)))
    logger.info(f"Attached {len(unsubscribers)} alert sink(s) to notification bus")
    return unsubscribers
