"""Error taxonomy for the table service core.

Transient fetch errors are absorbed by the polling controller. Every other
error propagates to the immediate caller so it can be reported to the user.
None of them is fatal: each is recoverable by retrying the operation.
Checkout errors carry the transaction state the attempt ended in.
"""

from typing import Any


class TableServiceError(Exception):
    """Base class for all table service errors."""


class TransientFetchError(TableServiceError):
    """Remote store could not be read (network failure or non-2xx response)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteWriteError(TableServiceError):
    """Remote store rejected or failed a write (create / status update)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class IllegalTransitionError(TableServiceError):
    """Requested status change is not permitted by the state machine."""

    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__(f"Illegal {entity} transition: {current} -> {target}")
        self.entity = entity
        self.current = current
        self.target = target


class ValidationError(TableServiceError):
    """Bad user input, detected before any side effect."""

    def __init__(self, field: str, message: str, state: str | None = None) -> None:
        super().__init__(message)
        self.field = field
        self.state = state


class GatewayError(TableServiceError):
    """Payment was declined or the gateway failed. No order was submitted."""

    def __init__(
        self,
        message: str,
        payment_method: str,
        status: str = "failed",
        state: str | None = None,
    ) -> None:
        super().__init__(message)
        self.payment_method = payment_method
        self.status = status
        self.state = state


class SubmissionError(TableServiceError):
    """Payment succeeded but the order could not be written.

    The charge may already be considered taken, so this state is always
    recorded for escalation and must be retried or resolved by an operator.
    """

    def __init__(
        self,
        message: str,
        correlation_id: str,
        transaction_id: str | None = None,
        escalation_id: str | None = None,
        cause: Any = None,
        state: str | None = None,
    ) -> None:
        super().__init__(message)
        self.correlation_id = correlation_id
        self.transaction_id = transaction_id
        self.escalation_id = escalation_id
        self.cause = cause
        self.state = state


class RetryInProgressError(TableServiceError):
    """Another resubmission of the same escalation holds the claim."""

    def __init__(self, escalation_id: str) -> None:
        super().__init__(f"Escalation {escalation_id} is already being retried")
        self.escalation_id = escalation_id
