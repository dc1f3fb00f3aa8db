"""Submission escalation model.

An escalation records a checkout where the payment concluded successfully but
the order could not be written to the remote store. It keeps the exact order
payload so a retry reuses the same correlation id.
Stored in DynamoDB with escalation_id as partition key.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


def _restore_numbers(value: Any) -> Any:
    """DynamoDB hands numbers back as Decimal; the payload needs plain JSON values."""
    if isinstance(value, dict):
        return {key: _restore_numbers(inner) for key, inner in value.items()}
    if isinstance(value, list):
        return [_restore_numbers(inner) for inner in value]
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else str(value)
    return value


class EscalationStatus(str, Enum):
    """Enumeration of escalation status values."""

    OPEN = "open"
    RETRYING = "retrying"
    RESOLVED = "resolved"


class SubmissionEscalation(BaseModel):
    """A paid checkout without a recorded order."""

    escalation_id: str = Field(..., description="Unique escalation identifier")
    created_at: datetime = Field(..., description="Escalation creation timestamp")
    correlation_id: str = Field(..., description="Order correlation id used for submission")
    table_id: str = Field(..., description="Table that placed the order")
    payment_method: str = Field(..., description="Payment method used")
    transaction_id: str | None = Field(None, description="Gateway transaction id")
    amount: Decimal = Field(..., description="Amount charged", ge=0)
    order_payload: dict[str, Any] = Field(..., description="Order payload to resubmit")
    error_details: str = Field(..., description="Why the submission failed")
    retry_count: int = Field(default=0, description="Number of resubmission attempts", ge=0)
    status: EscalationStatus = Field(default=EscalationStatus.OPEN, description="Escalation state")
    resolved_order_id: int | None = Field(None, description="Order id once resubmitted")
    claimed_at: datetime | None = Field(None, description="When a resubmission claimed it")

    @field_validator("retry_count")
    @classmethod
    def validate_retry_count(cls, v: int) -> int:
        """Validate that retry_count is non-negative."""
        if v < 0:
            raise ValueError("retry_count must be non-negative")
        return v

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Convert to DynamoDB item format.

        Returns:
            dict: DynamoDB-compatible representation
        """
        item: dict[str, Any] = {
            "escalation_id": self.escalation_id,
            "created_at": self.created_at.isoformat(),
            "correlation_id": self.correlation_id,
            "table_id": self.table_id,
            "payment_method": self.payment_method,
            "amount": self.amount,
            "order_payload": self.order_payload,
            "error_details": self.error_details,
            "retry_count": self.retry_count,
            "status": self.status.value,
        }

        if self.transaction_id is not None:
            item["transaction_id"] = self.transaction_id

        if self.resolved_order_id is not None:
            item["resolved_order_id"] = self.resolved_order_id

        if self.claimed_at is not None:
            item["claimed_at"] = self.claimed_at.isoformat()

        return item

    @classmethod
    def from_dynamodb_item(cls, item: dict[str, Any]) -> "SubmissionEscalation":
        """Create SubmissionEscalation from DynamoDB item.

        Args:
            item: DynamoDB item dictionary

        Returns:
            SubmissionEscalation: Parsed model instance
        """
        data: dict[str, Any] = {
            "escalation_id": item["escalation_id"],
            "created_at": datetime.fromisoformat(item["created_at"]),
            "correlation_id": item["correlation_id"],
            "table_id": item["table_id"],
            "payment_method": item["payment_method"],
            "amount": Decimal(str(item["amount"])),
            "order_payload": _restore_numbers(item["order_payload"]),
            "error_details": item["error_details"],
            "retry_count": int(item.get("retry_count", 0)),
            "status": EscalationStatus(item.get("status", EscalationStatus.OPEN.value)),
        }

        if "transaction_id" in item:
            data["transaction_id"] = item["transaction_id"]

        if "resolved_order_id" in item:
            data["resolved_order_id"] = int(item["resolved_order_id"])

        if "claimed_at" in item:
            data["claimed_at"] = datetime.fromisoformat(item["claimed_at"])

        return cls(**data)
