"""Notifications schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class NotificationRead(BaseModel):
    """Notification response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    event_type: str
    booking_id: UUID | None
    title: str
    body: str
    is_read: bool
    read_at: datetime | None
    created_at: datetime


class NotificationDeliveryMetricsRead(BaseModel):
    """Delivery pipeline snapshot."""

    notifications_total: int
    notifications_unread: int
    outbox_total: int
    outbox_pending: int
    outbox_processed: int
    outbox_failed: int
    outbox_dead_letter: int
    max_retries: int
