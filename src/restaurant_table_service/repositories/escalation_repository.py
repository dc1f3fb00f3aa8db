"""DynamoDB repository for submission escalations.

Following the repository convention, expected storage failures are logged
and reported with simple return values (None/False) rather than raised.
"""

import logging
from datetime import datetime

from botocore.exceptions import ClientError
from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource, Table

from restaurant_table_service.models.escalation_models import (
    EscalationStatus,
    SubmissionEscalation,
)

logger = logging.getLogger(__name__)


class EscalationRepository:
    """Repository for submission escalation records.

    Manages records in DynamoDB with escalation_id as partition key and a
    Global Secondary Index on status for the open-escalation queue.
    """

    def __init__(self, dynamodb_resource: DynamoDBServiceResource, table_name: str) -> None:
        """Initialize repository.

        Args:
            dynamodb_resource: Boto3 DynamoDB resource
            table_name: Name of the DynamoDB table
        """
        self.dynamodb = dynamodb_resource
        self.table_name = table_name
        self.table: Table = dynamodb_resource.Table(table_name)

    def save_escalation(self, escalation: SubmissionEscalation) -> bool:
        """Save or overwrite an escalation.

        Args:
            escalation: SubmissionEscalation to save

        Returns:
            bool: True if save succeeded, False otherwise
        """
        try:
            self.table.put_item(Item=escalation.to_dynamodb_item())
            return True

        except ClientError as e:
            logger.error(f"Failed to save escalation: {e}")  # pragma: no cover
            return False

    def get_escalation(self, escalation_id: str) -> SubmissionEscalation | None:
        """Retrieve an escalation by ID.

        Args:
            escalation_id: Escalation identifier

        Returns:
            SubmissionEscalation if found, None otherwise
        """
        try:
            response = self.table.get_item(Key={"escalation_id": escalation_id})

            if "Item" not in response:
                return None

            return SubmissionEscalation.from_dynamodb_item(response["Item"])

        except ClientError as e:
            logger.error(f"Failed to get escalation: {e}")  # pragma: no cover
            return None

    def list_escalations(
        self, status: EscalationStatus = EscalationStatus.OPEN, limit: int = 50
    ) -> list[SubmissionEscalation]:
        """List escalations in a given status, most recent first.

        Args:
            status: Status to filter on
            limit: Maximum number of escalations to return

        Returns:
            list: List of SubmissionEscalation objects (empty list if none found)
        """
        try:
            response = self.table.query(
                IndexName="status-index",
                KeyConditionExpression="#status = :status",
                ExpressionAttributeNames={"#status": "status"},
                ExpressionAttributeValues={":status": status.value},
                Limit=limit,
                ScanIndexForward=False,
            )

            return [
                SubmissionEscalation.from_dynamodb_item(item) for item in response.get("Items", [])
            ]

        except ClientError as e:
            logger.error(f"Failed to list escalations: {e}")  # pragma: no cover
            return []

    def claim_for_retry(
        self, escalation_id: str, claimed_at: datetime, stale_before: datetime
    ) -> bool:
        """Move an open escalation to retrying and count the attempt.

        The update is conditional so only one resubmission holds the claim. A
        retrying claim older than stale_before is treated as abandoned.

        Args:
            escalation_id: Escalation identifier
            claimed_at: When this resubmission started
            stale_before: Claims made before this time may be taken over

        Returns:
            bool: True if this caller now holds the claim, False otherwise
        """
        try:
            self.table.update_item(
                Key={"escalation_id": escalation_id},
                UpdateExpression="SET #status = :retrying, claimed_at = :now ADD retry_count :one",
                ConditionExpression=(
                    "#status = :open OR (#status = :retrying AND claimed_at < :stale_before)"
                ),
                ExpressionAttributeNames={"#status": "status"},
                ExpressionAttributeValues={
                    ":open": EscalationStatus.OPEN.value,
                    ":retrying": EscalationStatus.RETRYING.value,
                    ":now": claimed_at.isoformat(),
                    ":stale_before": stale_before.isoformat(),
                    ":one": 1,
                },
            )
            return True

        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                logger.info(f"Escalation {escalation_id} is not open for retry")
                return False
            logger.error(f"Failed to claim escalation: {e}")  # pragma: no cover
            return False

    def release_claim(self, escalation_id: str, error_details: str) -> bool:
        """Return a retrying escalation to open after a failed resubmission.

        Args:
            escalation_id: Escalation identifier
            error_details: Why the resubmission failed

        Returns:
            bool: True if update succeeded, False otherwise
        """
        try:
            self.table.update_item(
                Key={"escalation_id": escalation_id},
                UpdateExpression="SET #status = :open, error_details = :details REMOVE claimed_at",
                ConditionExpression="#status = :retrying",
                ExpressionAttributeNames={"#status": "status"},
                ExpressionAttributeValues={
                    ":open": EscalationStatus.OPEN.value,
                    ":retrying": EscalationStatus.RETRYING.value,
                    ":details": error_details,
                },
            )
            return True

        except ClientError as e:
            logger.error(f"Failed to release escalation claim: {e}")  # pragma: no cover
            return False

    def mark_resolved(self, escalation_id: str, order_id: int, resolved_at: datetime) -> bool:
        """Close an escalation once its order has been recorded.

        Args:
            escalation_id: Escalation identifier
            order_id: Id of the order created on resubmission
            resolved_at: When the order was recorded

        Returns:
            bool: True if update succeeded, False otherwise
        """
        try:
            self.table.update_item(
                Key={"escalation_id": escalation_id},
                UpdateExpression=(
                    "SET #status = :status, resolved_order_id = :order_id, resolved_at = :at"
                ),
                ExpressionAttributeNames={"#status": "status"},
                ExpressionAttributeValues={
                    ":status": EscalationStatus.RESOLVED.value,
                    ":order_id": order_id,
                    ":at": resolved_at.isoformat(),
                },
            )
            return True

        except ClientError as e:
            logger.error(f"Failed to resolve escalation: {e}")  # pragma: no cover
            return False
