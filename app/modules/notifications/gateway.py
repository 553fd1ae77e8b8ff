"""Notification delivery gateways."""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from app.core.cache import CacheBackend
from app.modules.notifications.events import BookingNotification, NotificationEvent, render_message
from app.modules.notifications.repository import NotificationsRepository
from app.shared.exceptions import NotificationDeliveryException

logger = logging.getLogger(__name__)


class NotificationGateway(Protocol):
    """Deliver one event; returns how many recipients were reached."""

    async def notify(self, event: NotificationEvent) -> int:
        ...


class InAppNotificationGateway:
    """Persist one inbox entry per recipient."""

    def __init__(self, repository: NotificationsRepository) -> None:
        self.repository = repository

    async def notify(self, event: NotificationEvent) -> int:
        title, body = render_message(event)
        booking_id = event.booking_id if isinstance(event, BookingNotification) else None
        delivered = 0
        try:
            for user_id in event.recipients():
                await self.repository.create_notification(
                    user_id=user_id,
                    event_type=event.type,
                    title=title,
                    body=body,
                    booking_id=booking_id,
                )
                delivered += 1
        except SQLAlchemyError as exc:
            raise NotificationDeliveryException(f"In-app delivery failed for {event.type}") from exc
        return delivered


class DedupingNotificationGateway:
    """Drop repeats of the same event seen within ``ttl_seconds``."""

    def __init__(self, inner: NotificationGateway, cache: CacheBackend, *, ttl_seconds: int) -> None:
        self.inner = inner
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def notify(self, event: NotificationEvent) -> int:
        key = f"notify:{event.dedupe_key}"
        if not await self.cache.add(key, "1", self.ttl_seconds):
            logger.info("Skipping duplicate notification %s", key)
            return 0
        try:
            return await self.inner.notify(event)
        except Exception:
            await self.cache.delete(key)
            raise
