"""Escalation queue for paid checkouts whose order was never recorded."""

import logging
import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

from restaurant_table_service.models.escalation_models import (
    EscalationStatus,
    SubmissionEscalation,
)
from restaurant_table_service.observability.metrics import record_escalation_change
from restaurant_table_service.repositories.escalation_repository import EscalationRepository

logger = logging.getLogger(__name__)

RETRY_CLAIM_TIMEOUT = timedelta(minutes=5)


class EscalationService:
    """Service for recording and resolving submission escalations.

    A submission escalation means money may be considered taken without an
    order on file. Each one stays open until a resubmission succeeds or an
    operator resolves it from the console.
    """

    def __init__(self, escalation_repository: EscalationRepository) -> None:
        """Initialize the EscalationService.

        Args:
            escalation_repository: Repository for storing escalations
        """
        self.escalation_repository = escalation_repository

    async def record_submission_failure(
        self,
        correlation_id: str,
        table_id: str,
        payment_method: str,
        amount: Decimal,
        order_payload: dict[str, Any],
        error_details: str,
        transaction_id: str | None = None,
    ) -> str | None:
        """Record a paid checkout that failed to create its order.

        Args:
            correlation_id: Correlation id of the failed submission
            table_id: Table that placed the order
            payment_method: Payment method used
            amount: Amount charged
            order_payload: Exact payload to resubmit
            error_details: Description of the failure
            transaction_id: Gateway transaction id, if any

        Returns:
            The escalation ID if saved successfully, None otherwise
        """
        escalation_id = f"esc_{uuid.uuid4().hex[:12]}"

        escalation = SubmissionEscalation(
            escalation_id=escalation_id,
            created_at=datetime.now(UTC),
            correlation_id=correlation_id,
            table_id=table_id,
            payment_method=payment_method,
            transaction_id=transaction_id,
            amount=amount,
            order_payload=order_payload,
            error_details=error_details,
        )

        if not self.escalation_repository.save_escalation(escalation):
            logger.error(
                f"Could not persist escalation for {correlation_id} "
                f"(transaction {transaction_id}); operator follow-up required"
            )
            return None

        record_escalation_change(1)
        logger.error(
            f"Escalation {escalation_id} opened: payment {transaction_id} for "
            f"{correlation_id} has no order on file"
        )
        return escalation_id

    async def get_escalation(self, escalation_id: str) -> SubmissionEscalation | None:
        return self.escalation_repository.get_escalation(escalation_id)

    async def list_open_escalations(self, limit: int = 50) -> list[SubmissionEscalation]:
        escalations = self.escalation_repository.list_escalations(
            status=EscalationStatus.OPEN, limit=limit
        )
        return escalations if escalations else []

    async def claim_for_retry(self, escalation_id: str) -> bool:
        """Claim an escalation for a single resubmission.

        A claim left behind by a crashed resubmission can be taken over once it
        is older than RETRY_CLAIM_TIMEOUT.

        Returns:
            True if this caller may resubmit, False if another retry holds it
        """
        now = datetime.now(UTC)
        return self.escalation_repository.claim_for_retry(
            escalation_id, claimed_at=now, stale_before=now - RETRY_CLAIM_TIMEOUT
        )

    async def release_claim(self, escalation_id: str, error_details: str) -> bool:
        released = self.escalation_repository.release_claim(escalation_id, error_details)
        if released:
            logger.warning(f"Escalation {escalation_id} reopened after failed retry")
        return released

    async def mark_resolved(self, escalation_id: str, order_id: int) -> bool:
        resolved = self.escalation_repository.mark_resolved(
            escalation_id, order_id, datetime.now(UTC)
        )
        if resolved:
            record_escalation_change(-1)
            logger.info(f"Escalation {escalation_id} resolved with order #{order_id}")
        return resolved
