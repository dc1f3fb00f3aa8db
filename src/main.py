"""Main application entry point for the restaurant table service.

This module wires the remote store client, polling controllers, notification
bus and checkout orchestrator into the FastAPI console API, for running the
service locally or in production.
"""

import logging
import os
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

import boto3
from fastapi import FastAPI

from restaurant_table_service.adapters.payment_gateway import SimulatedPaymentGateway
from restaurant_table_service.handlers.api_handler import create_app
from restaurant_table_service.observability import configure_logging, setup_observability
from restaurant_table_service.repositories.escalation_repository import EscalationRepository
from restaurant_table_service.services.alert_sinks import (
    NotifySendSurface,
    RecentNotificationsFeed,
    attach_default_sinks,
    terminal_bell,
)
from restaurant_table_service.services.change_notifier import ChangeNotifier
from restaurant_table_service.services.escalation_service import EscalationService
from restaurant_table_service.services.notification_bus import NotificationBus
from restaurant_table_service.services.order_tracker import OrderTracker
from restaurant_table_service.services.order_transaction_service import OrderTransactionService
from restaurant_table_service.services.polling_controller import (
    PollingController,
    PollingCoordinator,
    interval_for,
)
from restaurant_table_service.services.remote_store_client import RemoteStoreClient
from restaurant_table_service.services.status_update_service import StatusUpdateService

logger = logging.getLogger(__name__)

# (entity, view) pairs polled in the background for the staff consoles and the menu
BACKGROUND_VIEWS: tuple[tuple[str, str], ...] = (
    ("orders", "kitchen"),
    ("orders", "management"),
    ("waiter_requests", "management"),
    ("menu", "customer"),
    ("categories", "customer"),
)


def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() == "true"


def get_dynamodb_resource() -> Any:
    """Create DynamoDB resource with appropriate configuration.

    Returns:
        Boto3 DynamoDB resource configured for environment
    """
    endpoint_url = os.getenv("DYNAMODB_ENDPOINT")
    region = os.getenv("AWS_REGION", "us-east-1")

    if endpoint_url:
        logger.info(f"Using local DynamoDB at {endpoint_url}")
        return boto3.resource(
            "dynamodb",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )

    logger.info(f"Using AWS DynamoDB in region {region}")
    return boto3.resource("dynamodb", region_name=region)


def create_remote_store_client() -> RemoteStoreClient:
    """Create the remote store client from environment variables."""
    base_url = os.getenv("REMOTE_STORE_URL", "http://localhost:8000")
    client = RemoteStoreClient(
        base_url=base_url,
        timeout_seconds=float(os.getenv("REMOTE_STORE_TIMEOUT_SECONDS", "10")),
        read_retries=int(os.getenv("READ_RETRIES", "1")),
        retry_delay_seconds=float(os.getenv("RETRY_DELAY_SECONDS", "1")),
    )
    logger.info(f"Remote store client configured - URL: {client.api_url}")
    return client


def create_background_pollers(
    remote_store: RemoteStoreClient, coordinator: PollingCoordinator
) -> None:
    """Register the background polling loops. They start with the app lifespan."""
    fetchers = {
        "orders": remote_store.list_orders,
        "waiter_requests": remote_store.list_waiter_requests,
        "menu": remote_store.list_menu_items,
        "categories": remote_store.list_categories,
    }
    for entity, view in BACKGROUND_VIEWS:
        coordinator.register(
            PollingController(entity, fetchers[entity], interval_for(entity, view), view=view)
        )


def create_alert_sinks(notification_bus: NotificationBus) -> list[Callable[[], None]]:
    """Attach the console bell and desktop notification sinks enabled in the environment.

    Both are off by default; they only make sense when the service runs on a
    kitchen or front-of-house workstation.
    """
    player = terminal_bell if _env_flag("ALERT_SOUND", "false") else None
    surface = NotifySendSurface() if _env_flag("DESKTOP_NOTIFICATIONS", "false") else None
    return attach_default_sinks(notification_bus, player=player, surface=surface)


def build_lifespan(
    coordinator: PollingCoordinator,
    order_tracker: OrderTracker,
    change_notifier: ChangeNotifier,
    enable_polling: bool,
    on_shutdown: Sequence[Callable[[], None]] = (),
) -> Callable[[FastAPI], AbstractAsyncContextManager[None]]:
    """Start polling with the application and tear every loop down on shutdown."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if enable_polling:
            coordinator.start_all()
            logger.info(f"Started {len(coordinator.controllers)} background pollers")
        else:
            logger.warning("Background polling disabled - staff queues will stay loading")

        try:
            yield
        finally:
            order_tracker.untrack_all()
            coordinator.stop_all()
            await coordinator.wait_closed()
            change_notifier.close()
            for close in on_shutdown:
                close()
            logger.info("Polling stopped")

    return lifespan


def create_application() -> FastAPI:
    """Create and configure the FastAPI application with all dependencies.

    This factory function:
    1. Configures logging
    2. Creates the remote store client and the escalation repository
    3. Creates the notification bus and the services around it
    4. Registers the background pollers, the change notifier and the alert sinks
    5. Creates FastAPI app with the console endpoints
    6. Sets up observability

    Returns:
        Configured FastAPI application instance
    """
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))

    logger.info("Initializing restaurant table service...")

    remote_store = create_remote_store_client()

    dynamodb_resource = get_dynamodb_resource()
    escalations_table = os.getenv(
        "DYNAMODB_ESCALATIONS_TABLE", "restaurant-order-escalations"
    )
    escalation_service = EscalationService(
        escalation_repository=EscalationRepository(
            dynamodb_resource=dynamodb_resource, table_name=escalations_table
        )
    )
    logger.info(f"Escalation repository configured - table: {escalations_table}")

    notification_bus = NotificationBus(
        max_notifications=int(os.getenv("NOTIFICATION_LOG_SIZE", "50")),
        ttl_seconds=float(os.getenv("NOTIFICATION_TTL_SECONDS", "10")),
    )

    gateway = SimulatedPaymentGateway(
        simulate_delays=_env_flag("PAYMENT_SIMULATION_DELAYS"),
    )
    transaction_service = OrderTransactionService(
        remote_store=remote_store,
        payment_gateway=gateway,
        notification_bus=notification_bus,
        escalation_service=escalation_service,
    )
    status_service = StatusUpdateService(
        remote_store=remote_store, notification_bus=notification_bus
    )

    logger.info("Services initialized")

    coordinator = PollingCoordinator()
    create_background_pollers(remote_store, coordinator)
    order_tracker = OrderTracker(coordinator, remote_store.list_orders)

    change_notifier = ChangeNotifier(notification_bus)
    for entity in ("orders", "waiter_requests"):
        controller = coordinator.get(entity, "management")
        if controller is not None:
            change_notifier.attach(controller)

    recent_feed = RecentNotificationsFeed(notification_bus)
    alert_sinks = create_alert_sinks(notification_bus)

    api_keys_str = os.getenv("ADMIN_API_KEY", "")
    api_keys = [key.strip() for key in api_keys_str.split(",") if key.strip()]

    if not api_keys:
        logger.warning("No ADMIN_API_KEY configured - staff endpoints will not be accessible")
        api_keys = ["dummy-key-for-development"]

    app = create_app(
        notification_bus=notification_bus,
        transaction_service=transaction_service,
        status_service=status_service,
        escalation_service=escalation_service,
        remote_store=remote_store,
        coordinator=coordinator,
        order_tracker=order_tracker,
        api_keys=api_keys,
        recent_feed=recent_feed,
        lifespan=build_lifespan(
            coordinator,
            order_tracker,
            change_notifier,
            enable_polling=_env_flag("ENABLE_BACKGROUND_POLLING"),
            on_shutdown=[recent_feed.close, *alert_sinks],
        ),
    )

    setup_observability(app)

    logger.info("Restaurant table service initialized successfully")

    return app


# Only build the application outside of test runs, so importing this module
# during test collection has no side effects.
if os.getenv("ENVIRONMENT") != "test":  # noqa: SIM108
    app = create_application()
else:
    app = FastAPI()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8001"))
    host = os.getenv("HOST", "0.0.0.0")

    logger.info(f"Starting development server on {host}:{port}")
    logger.info(f"API documentation available at http://{host}:{port}/docs")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=True,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
