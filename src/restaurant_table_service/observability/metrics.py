"""Custom metrics for the table service core."""

from opentelemetry import metrics

meter = metrics.get_meter("table-svc")

poll_success_counter = meter.create_counter(
    name="poll_success_total",
    description="Total number of successful polling ticks by entity",
    unit="1",
)

poll_failure_counter = meter.create_counter(
    name="poll_failure_total",
    description="Total number of failed polling ticks by entity",
    unit="1",
)

notifications_counter = meter.create_counter(
    name="notifications_emitted_total",
    description="Notifications accepted by the bus by type and priority",
    unit="1",
)

payment_outcome_counter = meter.create_counter(
    name="payment_outcome_total",
    description="Payment gateway outcomes by method and status",
    unit="1",
)

submission_failure_counter = meter.create_counter(
    name="order_submission_failure_total",
    description="Orders that failed to submit after a successful payment",
    unit="1",
)

open_escalations = meter.create_up_down_counter(
    name="open_escalations",
    description="Current number of unresolved submission escalations",
    unit="1",
)

checkout_duration_histogram = meter.create_histogram(
    name="checkout_duration_seconds",
    description="Duration of payment-then-order checkouts by method",
    unit="s",
)


def record_poll_success(entity: str) -> None:
    poll_success_counter.add(1, {"entity": entity})


def record_poll_failure(entity: str, error_type: str) -> None:
    """Record a failed polling tick.

    Args:
        entity: Entity collection that was polled
        error_type: Type of error that occurred
    """
    poll_failure_counter.add(1, {"entity": entity, "error_type": error_type})


def record_notification(notification_type: str, priority: str) -> None:
    notifications_counter.add(1, {"type": notification_type, "priority": priority})


def record_payment_outcome(payment_method: str, status: str) -> None:
    payment_outcome_counter.add(1, {"payment_method": payment_method, "status": status})


def record_submission_failure(payment_method: str) -> None:
    submission_failure_counter.add(1, {"payment_method": payment_method})


def record_escalation_change(change: int) -> None:
    """Record a change in the number of open escalations.

    Args:
        change: Positive when an escalation opens, negative when one resolves
    """
    open_escalations.add(change)


def record_checkout_duration(payment_method: str, duration_seconds: float) -> None:
    checkout_duration_histogram.record(duration_seconds, {"payment_method": payment_method})
