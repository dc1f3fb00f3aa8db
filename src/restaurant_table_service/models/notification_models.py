"""Notification models for the in-process fan-out bus."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    """Kinds of operator notification."""

    WAITER_REQUEST = "waiter_request"
    NEW_ORDER = "new_order"
    ORDER_STATUS = "order_status"
    PAYMENT_SUCCESS = "payment_success"


class NotificationPriority(str, Enum):
    """Notification priority, from least to most intrusive."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class NotificationEvent(BaseModel):
    """A notification as submitted by a producer, before the bus stamps it."""

    type: NotificationType = Field(..., description="Notification kind")
    title: str = Field(..., description="Short headline")
    message: str = Field(..., description="Body text")
    table_id: str | None = Field(None, description="Related table, if any")
    order_id: int | None = Field(None, description="Related order, if any")
    priority: NotificationPriority = Field(..., description="Delivery priority")
    data: dict[str, Any] = Field(default_factory=dict, description="Opaque producer payload")


class Notification(NotificationEvent):
    """A notification retained in the bus log."""

    id: str = Field(..., description="Process-unique identifier")
    timestamp: datetime = Field(..., description="When the bus accepted the notification")
