"""Outbox consumer that hands domain events to the notification gateway."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from app.modules.notifications.events import resolve_event
from app.modules.notifications.gateway import NotificationGateway
from app.modules.outbox.models import OutboxEvent
from app.modules.outbox.repository import OutboxRepository
from app.shared.exceptions import NotificationDeliveryException
from app.shared.utils import utc_now

logger = logging.getLogger(__name__)


class NotificationsOutboxWorker:
    """Process outbox events and deliver notifications."""

    def __init__(
        self,
        outbox_repository: OutboxRepository,
        gateway: NotificationGateway,
        *,
        batch_size: int = 100,
        max_retries: int = 5,
        base_backoff_seconds: int = 30,
        max_backoff_seconds: int = 300,
        now_provider=utc_now,
    ) -> None:
        self.outbox_repository = outbox_repository
        self.gateway = gateway
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.base_backoff_seconds = base_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.now_provider = now_provider

    async def run_once(self) -> dict[str, int]:
        """Run one processing cycle."""
        stats = {"requeued": 0, "processed": 0, "failed": 0, "dispatched": 0}
        stats["requeued"] = await self._requeue_retryable_failed_events()

        events = await self.outbox_repository.list_pending_outbox(limit=self.batch_size)
        for event in events:
            try:
                notification_event = resolve_event(event)
                if notification_event is not None:
                    stats["dispatched"] += await self.gateway.notify(notification_event)
            except (NotificationDeliveryException, ValueError) as exc:
                logger.warning("Outbox event %s (%s) not delivered: %s", event.id, event.event_type, exc)
                await self.outbox_repository.mark_outbox_failed(event, str(exc))
                stats["failed"] += 1
                continue
            await self.outbox_repository.mark_outbox_processed(event, self.now_provider())
            stats["processed"] += 1
        return stats

    async def _requeue_retryable_failed_events(self) -> int:
        now = self.now_provider()
        failed_events = await self.outbox_repository.list_failed_outbox(
            limit=self.batch_size,
            max_retries=self.max_retries,
        )
        requeued = 0
        for event in failed_events:
            if self._is_backoff_elapsed(event, now):
                await self.outbox_repository.mark_outbox_pending(event)
                requeued += 1
        return requeued

    def _is_backoff_elapsed(self, event: OutboxEvent, now: datetime) -> bool:
        retries = max(event.retries, 1)
        backoff_seconds = min(
            self.max_backoff_seconds,
            self.base_backoff_seconds * (2 ** (retries - 1)),
        )
        last_attempt_at = event.updated_at or event.occurred_at
        return now >= last_attempt_at + timedelta(seconds=backoff_seconds)
