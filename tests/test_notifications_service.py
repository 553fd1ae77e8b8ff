from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest

import app.modules.notifications.service as notifications_service_module
from app.core.enums import OutboxStatusEnum, RoleEnum
from app.modules.identity.schemas import Principal
from app.modules.notifications.service import NotificationsService
from app.shared.exceptions import NotFoundException, UnauthorizedException

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@dataclass
class FakeNotification:
    id: UUID
    user_id: UUID
    is_read: bool = False
    read_at: datetime | None = None


@dataclass
class FakeNotificationsRepository:
    notifications: dict[UUID, FakeNotification] = field(default_factory=dict)
    read_counts: dict[bool, int] = field(default_factory=dict)
    cleanup_cutoffs: list[datetime] = field(default_factory=list)

    async def get_notification_by_id(self, notification_id: UUID) -> FakeNotification | None:
        return self.notifications.get(notification_id)

    async def mark_read(self, notification: FakeNotification, read_at: datetime) -> FakeNotification:
        notification.is_read = True
        notification.read_at = read_at
        return notification

    async def count_by_read_state(self) -> dict[bool, int]:
        return self.read_counts

    async def delete_read_older_than(self, cutoff: datetime) -> int:
        self.cleanup_cutoffs.append(cutoff)
        return 3


@dataclass
class FakeOutboxRepository:
    outbox_counts: dict[OutboxStatusEnum, int] = field(default_factory=dict)
    dead_letter: int = 0

    async def count_outbox_by_status(self) -> dict[OutboxStatusEnum, int]:
        return self.outbox_counts

    async def count_dead_letter_outbox(self, max_retries: int) -> int:
        return self.dead_letter


def make_actor(role: RoleEnum, user_id: UUID | None = None) -> Principal:
    return Principal(id=user_id or uuid4(), role=role)


@pytest.mark.asyncio
async def test_mark_read_is_idempotent_for_recipient(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(notifications_service_module, "utc_now", lambda: NOW)
    owner = make_actor(RoleEnum.MENTEE)
    notification = FakeNotification(id=uuid4(), user_id=owner.id)
    service = NotificationsService(
        FakeNotificationsRepository(notifications={notification.id: notification}),  # type: ignore[arg-type]
        FakeOutboxRepository(),  # type: ignore[arg-type]
    )

    await service.mark_read(notification.id, owner)
    monkeypatch.setattr(notifications_service_module, "utc_now", lambda: NOW + timedelta(hours=1))
    await service.mark_read(notification.id, owner)

    assert notification.is_read is True
    assert notification.read_at == NOW


@pytest.mark.asyncio
async def test_mark_read_rejects_other_users_and_unknown_ids() -> None:
    notification = FakeNotification(id=uuid4(), user_id=uuid4())
    service = NotificationsService(
        FakeNotificationsRepository(notifications={notification.id: notification}),  # type: ignore[arg-type]
        FakeOutboxRepository(),  # type: ignore[arg-type]
    )

    with pytest.raises(UnauthorizedException):
        await service.mark_read(notification.id, make_actor(RoleEnum.MENTOR))
    with pytest.raises(NotFoundException):
        await service.mark_read(uuid4(), make_actor(RoleEnum.MENTOR))
    assert notification.is_read is False


@pytest.mark.asyncio
async def test_cleanup_uses_retention_period() -> None:
    repository = FakeNotificationsRepository()
    service = NotificationsService(repository, FakeOutboxRepository())  # type: ignore[arg-type]

    removed = await service.cleanup_read(NOW)

    assert removed == 3
    assert repository.cleanup_cutoffs == [
        NOW - timedelta(days=notifications_service_module.settings.notification_retention_days),
    ]


@pytest.mark.asyncio
async def test_delivery_metrics_aggregates_inbox_and_outbox_counts() -> None:
    service = NotificationsService(
        FakeNotificationsRepository(read_counts={True: 7, False: 3}),  # type: ignore[arg-type]
        FakeOutboxRepository(
            outbox_counts={
                OutboxStatusEnum.PENDING: 4,
                OutboxStatusEnum.PROCESSED: 10,
                OutboxStatusEnum.FAILED: 5,
            },
            dead_letter=2,
        ),  # type: ignore[arg-type]
    )

    metrics = await service.get_delivery_metrics(make_actor(RoleEnum.ADMIN), max_retries=5)

    assert metrics.notifications_total == 10
    assert metrics.notifications_unread == 3
    assert metrics.outbox_total == 19
    assert metrics.outbox_pending == 4
    assert metrics.outbox_processed == 10
    assert metrics.outbox_failed == 5
    assert metrics.outbox_dead_letter == 2
    assert metrics.max_retries == 5


@pytest.mark.asyncio
async def test_delivery_metrics_defaults_missing_counts_to_zero() -> None:
    service = NotificationsService(
        FakeNotificationsRepository(),  # type: ignore[arg-type]
        FakeOutboxRepository(),  # type: ignore[arg-type]
    )

    metrics = await service.get_delivery_metrics(make_actor(RoleEnum.ADMIN), max_retries=3)

    assert metrics.notifications_total == 0
    assert metrics.outbox_total == 0
    assert metrics.outbox_dead_letter == 0


@pytest.mark.asyncio
async def test_delivery_metrics_is_admin_only() -> None:
    service = NotificationsService(
        FakeNotificationsRepository(),  # type: ignore[arg-type]
        FakeOutboxRepository(),  # type: ignore[arg-type]
    )

    with pytest.raises(UnauthorizedException):
        await service.get_delivery_metrics(make_actor(RoleEnum.MENTOR), max_retries=5)
