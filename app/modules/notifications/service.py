"""Notifications business logic layer."""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db_session
from app.core.enums import OutboxStatusEnum, RoleEnum
from app.modules.identity.schemas import Principal
from app.modules.notifications.models import Notification
from app.modules.notifications.repository import NotificationsRepository
from app.modules.notifications.schemas import NotificationDeliveryMetricsRead
from app.modules.outbox.repository import OutboxRepository
from app.shared.exceptions import NotFoundException, UnauthorizedException
from app.shared.utils import utc_now

settings = get_settings()


class NotificationsService:
    """Notifications domain service."""

    def __init__(
        self,
        repository: NotificationsRepository,
        outbox_repository: OutboxRepository,
    ) -> None:
        self.repository = repository
        self.outbox_repository = outbox_repository

    async def list_my_notifications(
        self,
        actor: Principal,
        unread_only: bool,
        limit: int,
        offset: int,
    ) -> tuple[list[Notification], int]:
        """List notifications for current user."""
        return await self.repository.list_notifications_for_user(actor.id, unread_only, limit, offset)

    async def mark_read(self, notification_id: UUID, actor: Principal) -> Notification:
        notification = await self.repository.get_notification_by_id(notification_id)
        if notification is None:
            raise NotFoundException("Notification not found")
        if notification.user_id != actor.id:
            raise UnauthorizedException("Only the recipient can read this notification")
        if notification.is_read:
            return notification
        return await self.repository.mark_read(notification, utc_now())

    async def cleanup_read(self, now: datetime) -> int:
        """Delete read notifications past the retention period."""
        cutoff = now - timedelta(days=settings.notification_retention_days)
        return await self.repository.delete_read_older_than(cutoff)

    async def get_delivery_metrics(self, actor: Principal, max_retries: int) -> NotificationDeliveryMetricsRead:
        """Return delivery pipeline snapshot (admin only)."""
        if actor.role != RoleEnum.ADMIN:
            raise UnauthorizedException("Only admin can view delivery metrics")

        read_counts = await self.repository.count_by_read_state()
        outbox_counts = await self.outbox_repository.count_outbox_by_status()
        dead_letter = await self.outbox_repository.count_dead_letter_outbox(max_retries=max_retries)

        outbox_pending = outbox_counts.get(OutboxStatusEnum.PENDING, 0)
        outbox_processed = outbox_counts.get(OutboxStatusEnum.PROCESSED, 0)
        outbox_failed = outbox_counts.get(OutboxStatusEnum.FAILED, 0)

        return NotificationDeliveryMetricsRead(
            notifications_total=read_counts.get(True, 0) + read_counts.get(False, 0),
            notifications_unread=read_counts.get(False, 0),
            outbox_total=outbox_pending + outbox_processed + outbox_failed,
            outbox_pending=outbox_pending,
            outbox_processed=outbox_processed,
            outbox_failed=outbox_failed,
            outbox_dead_letter=dead_letter,
            max_retries=max_retries,
        )


async def get_notifications_service(session: AsyncSession = Depends(get_db_session)) -> NotificationsService:
    """Dependency provider for notifications service."""
    return NotificationsService(
        repository=NotificationsRepository(session),
        outbox_repository=OutboxRepository(session),
    )
