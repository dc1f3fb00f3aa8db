"""Payment gateway adapters.

The gateway is a simulated external dependency: there is no real settlement.
A real provider integration (token acquisition, charge request, status
polling) would subclass PaymentGateway and keep the same request/response
contract.

Following the adapter convention, expected failures (declined payments) are
reported in the response, not raised.
"""

import asyncio
import logging
import random
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from restaurant_table_service.models.order_models import PaymentMethod
from restaurant_table_service.models.payment_models import (
    PaymentRequest,
    PaymentResponse,
    PaymentStatus,
)

logger = logging.getLogger(__name__)

Outcome = Callable[[PaymentMethod, float], bool]
Sleep = Callable[[float], Awaitable[None]]


class PaymentGateway(ABC):
    """Abstract base class for payment gateways."""

    def __init__(self, gateway_name: str) -> None:
        """Initialize the gateway.

        Args:
            gateway_name: Name used in logs and metrics
        """
        self.gateway_name = gateway_name

    @abstractmethod
    async def process_payment(self, request: PaymentRequest) -> PaymentResponse:
        """Charge the payer.

        Args:
            request: Payment request built by the checkout orchestrator

        Returns:
            PaymentResponse: success flag, status and message

        Note:
            Declines are returned as unsuccessful responses. Let exceptions
            bubble up only for unexpected errors.
        """
        pass

    @abstractmethod
    async def check_payment_status(
        self, transaction_id: str, payment_method: PaymentMethod
    ) -> PaymentResponse:
        """Look up the status of an earlier payment."""
        pass

    def supported_payment_methods(self) -> list[dict[str, str]]:
        """Payment methods offered to customers, in display order."""
        return [dict(method) for method in SUPPORTED_PAYMENT_METHODS]


@dataclass(frozen=True)
class SimulationProfile:
    """Latency and reliability of one simulated payment method."""

    delay_seconds: float
    success_probability: float
    transaction_prefix: str
    success_message: str
    failure_message: str


DEFAULT_PROFILES: dict[PaymentMethod, SimulationProfile] = {
    PaymentMethod.CASH: SimulationProfile(
        delay_seconds=1.0,
        success_probability=1.0,
        transaction_prefix="CASH",
        success_message="Cash payment accepted. Please pay when your order arrives.",
        failure_message="Cash payment could not be recorded. Please try again.",
    ),
    PaymentMethod.MTN_MOMO: SimulationProfile(
        delay_seconds=2.0,
        success_probability=0.9,
        transaction_prefix="MTN",
        success_message="Payment successful via MTN Mobile Money",
        failure_message=(
            "Payment failed. Please check your MTN Mobile Money balance and try again."
        ),
    ),
    PaymentMethod.AIRTEL_MONEY: SimulationProfile(
        delay_seconds=2.5,
        success_probability=0.85,
        transaction_prefix="AIRTEL",
        success_message="Payment successful via Airtel Money",
        failure_message="Payment failed. Please check your Airtel Money balance and try again.",
    ),
}

SUPPORTED_PAYMENT_METHODS: list[dict[str, str]] = [
    {
        "id": PaymentMethod.CASH.value,
        "name": "Cash on Delivery",
        "description": "Pay with cash when your order arrives",
    },
    {
        "id": PaymentMethod.MTN_MOMO.value,
        "name": "MTN Mobile Money",
        "description": "Pay with MTN Mobile Money (077, 078, 076)",
    },
    {
        "id": PaymentMethod.AIRTEL_MONEY.value,
        "name": "Airtel Money",
        "description": "Pay with Airtel Money (075, 070, 074)",
    },
]


def random_outcome(_payment_method: PaymentMethod, success_probability: float) -> bool:
    """Default outcome: succeed with the profile's probability."""
    return random.random() < success_probability


async def _no_delay(_seconds: float) -> None:
    return None


class SimulatedPaymentGateway(PaymentGateway):
    """Gateway that models provider latency and partial failure.

    The outcome function and the sleep function are injectable so tests can
    force success or failure without randomness or real delays.
    """

    def __init__(
        self,
        outcome: Outcome = random_outcome,
        sleep: Sleep = asyncio.sleep,
        profiles: dict[PaymentMethod, SimulationProfile] | None = None,
        simulate_delays: bool = True,
    ) -> None:
        """Initialize the simulated gateway.

        Args:
            outcome: Callable deciding success from (method, success probability)
            sleep: Coroutine used for the artificial delay
            profiles: Per-method latency and reliability (defaults to DEFAULT_PROFILES)
            simulate_delays: Set False to skip the artificial delay entirely
        """
        super().__init__("simulated")
        self.outcome = outcome
        self.sleep = sleep if simulate_delays else _no_delay
        self.profiles = profiles or DEFAULT_PROFILES

    async def process_payment(self, request: PaymentRequest) -> PaymentResponse:
        profile = self.profiles[request.payment_method]
        logger.info(
            f"Processing {request.payment_method.value} payment for "
            f"{request.order_correlation_id} ({request.amount} {request.currency})"
        )

        await self.sleep(profile.delay_seconds)

        if self.outcome(request.payment_method, profile.success_probability):
            return PaymentResponse(
                success=True,
                transaction_id=f"{profile.transaction_prefix}_{int(time.time() * 1000)}",
                message=profile.success_message,
                status=PaymentStatus.COMPLETED,
                payment_method=request.payment_method,
            )

        return PaymentResponse(
            success=False,
            message=profile.failure_message,
            status=PaymentStatus.FAILED,
            payment_method=request.payment_method,
        )

    async def check_payment_status(
        self, transaction_id: str, payment_method: PaymentMethod
    ) -> PaymentResponse:
        await self.sleep(1.0)
        return PaymentResponse(
            success=True,
            transaction_id=transaction_id,
            message="Payment completed successfully",
            status=PaymentStatus.COMPLETED,
            payment_method=payment_method,
        )

