"""Client for the restaurant's remote store REST API.

The remote store is the only shared source of truth between the customer,
kitchen and management roles. Every call is plain request/response and each
response is treated as the whole truth for that instant.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any, TypeVar

import httpx
from pydantic import ValidationError as PydanticValidationError

from restaurant_table_service.errors import RemoteWriteError, TransientFetchError
from restaurant_table_service.models.menu_models import Category, MenuItem
from restaurant_table_service.models.order_models import (
    OrderStatus,
    TableOrder,
    WaiterRequest,
    WaiterRequestStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _error_message(error: httpx.HTTPError) -> str:
    """Prefer the server's `error` / `detail` field over a generic status message."""
    if isinstance(error, httpx.HTTPStatusError):
        try:
            body = error.response.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and (body.get("error") or body.get("detail")):
            return str(body.get("error") or body.get("detail"))
        return f"HTTP error! status: {error.response.status_code}"
    return str(error) or type(error).__name__


def _status_code(error: httpx.HTTPError) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


class RemoteStoreClient:
    """HTTP client for orders, waiter requests and menu data.

    Reads are retried `read_retries` times before surfacing a
    TransientFetchError. Writes are never retried here: repeating a create
    could record the same order twice.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        read_retries: int = 1,
        retry_delay_seconds: float = 1.0,
    ) -> None:
        """Initialize the remote store client.

        Args:
            base_url: Remote store root URL (e.g., "http://localhost:8000")
            timeout_seconds: Per-request timeout
            read_retries: Extra attempts for failed reads
            retry_delay_seconds: Pause between read attempts
        """
        self.base_url = base_url.rstrip("/")
        self.api_url = f"{self.base_url}/api"
        self.timeout_seconds = timeout_seconds
        self.read_retries = read_retries
        self.retry_delay_seconds = retry_delay_seconds

    async def list_orders(self) -> list[TableOrder]:
        rows = await self._get_json("/menuOrder")
        return self._parse_rows(rows, TableOrder.from_api_item, "order")

    async def update_order_status(self, order_id: int, status: OrderStatus) -> TableOrder | None:
        """Write a new status for an order.

        Args:
            order_id: Remote order id
            status: Status to store

        Returns:
            The updated order if the store echoed a parseable record, None otherwise

        Raises:
            RemoteWriteError: If the store rejected the update or was unreachable
        """
        body = await self._send("PATCH", f"/menuOrder/{order_id}/", {"status": status.value})
        return self._parse_one(body, TableOrder.from_api_item, "order")

    async def create_order(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Create an order from a checkout payload.

        Args:
            payload: Cart payload including correlation id and payment method

        Returns:
            The raw record returned by the store

        Raises:
            RemoteWriteError: If the store rejected the order or was unreachable
        """
        body = await self._send("POST", "/cart", payload)
        return body if isinstance(body, dict) else {}

    async def list_waiter_requests(self) -> list[WaiterRequest]:
        rows = await self._get_json("/waiter-request")
        return self._parse_rows(rows, WaiterRequest.from_api_item, "waiter request")

    async def update_waiter_request_status(
        self, request_id: int, status: WaiterRequestStatus
    ) -> WaiterRequest | None:
        body = await self._send("PATCH", f"/waiter-request/{request_id}/", {"status": status.value})
        return self._parse_one(body, WaiterRequest.from_api_item, "waiter request")

    async def create_waiter_request(self, payload: dict[str, Any]) -> dict[str, Any]:
        body = await self._send("POST", "/waiter-request", payload)
        return body if isinstance(body, dict) else {}

    async def list_menu_items(self) -> list[MenuItem]:
        rows = await self._get_json("/menu")
        return self._parse_rows(rows, MenuItem.from_api_item, "menu item")

    async def list_categories(self) -> list[Category]:
        rows = await self._get_json("/categories")
        return self._parse_rows(rows, Category.from_api_item, "category")

    async def _get_json(self, path: str) -> Any:
        url = f"{self.api_url}{path}"
        attempts = self.read_retries + 1
        failure = "no attempt made"
        status_code: int | None = None

        for attempt in range(1, attempts + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.get(url)
                    response.raise_for_status()
                    return response.json()

            except (httpx.HTTPStatusError, httpx.RequestError) as e:
                failure, status_code = _error_message(e), _status_code(e)
            except ValueError:
                failure = f"response body is not JSON (status {response.status_code})"
                status_code = response.status_code

            if attempt < attempts:
                logger.warning(
                    f"GET {path} failed (attempt {attempt}/{attempts}), retrying: {failure}"
                )
                await asyncio.sleep(self.retry_delay_seconds)

        raise TransientFetchError(f"Failed to fetch {path}: {failure}", status_code=status_code)

    async def _send(self, method: str, path: str, payload: dict[str, Any]) -> Any:
        url = f"{self.api_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                if method == "POST":
                    response = await client.post(url, json=payload)
                else:
                    response = await client.patch(url, json=payload)
                response.raise_for_status()

        except (httpx.HTTPStatusError, httpx.RequestError) as e:
            logger.error(f"{method} {path} failed: {_error_message(e)}")
            raise RemoteWriteError(
                f"{method} {path} failed: {_error_message(e)}",
                status_code=_status_code(e),
            ) from e

        if response.status_code == 204:
            return None
        try:
            return response.json()
        except ValueError as e:
            # The write may have been applied; the caller cannot tell from this response.
            logger.error(f"{method} {path} returned {response.status_code} with a non-JSON body")
            raise RemoteWriteError(
                f"{method} {path} failed: response body is not JSON "
                f"(status {response.status_code})",
                status_code=response.status_code,
            ) from e

    @staticmethod
    def _parse_rows(rows: Any, parser: Callable[[dict[str, Any]], T], entity: str) -> list[T]:
        if isinstance(rows, dict):
            rows = rows.get("results", [])

        parsed: list[T] = []
        for row in rows or []:
            try:
                parsed.append(parser(row))
            except (PydanticValidationError, KeyError, ValueError, TypeError) as e:
                row_id = row.get("id") if isinstance(row, dict) else None
                logger.warning(f"Skipping malformed {entity} record {row_id}: {e}")
        return parsed

    @staticmethod
    def _parse_one(body: Any, parser: Callable[[dict[str, Any]], T], entity: str) -> T | None:
        if not isinstance(body, dict):
            return None
        try:
            return parser(body)
        except (PydanticValidationError, KeyError, ValueError, TypeError) as e:
            logger.warning(f"Could not parse updated {entity} record: {e}")
            return None
