"""Time-driven booking transitions run by the job scheduler."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import session_scope
from app.core.scheduler import JobPhase
from app.modules.booking.models import Booking
from app.modules.booking.repository import BookingRepository
from app.modules.booking.service import REMINDER_1H, REMINDER_24H, BookingService, build_booking_service
from app.modules.notifications.repository import NotificationsRepository
from app.modules.notifications.service import NotificationsService
from app.modules.outbox.repository import OutboxRepository
from app.modules.scheduling.repository import SchedulingRepository
from app.modules.scheduling.service import SchedulingService

logger = logging.getLogger(__name__)

BOOKING_JOB_NAME = "booking-lifecycle"
BOOKING_JOB_PHASES = (
    "expire_stale_bookings",
    "auto_decline_bookings",
    "send_reminders",
    "start_due_sessions",
    "finalize_ended_sessions",
    "close_past_occurrences",
    "cleanup_notifications",
)


class BookingJobs:
    """One instance per phase transaction; every booking is handled in its own savepoint."""

    def __init__(
        self,
        service: BookingService,
        booking_repository: BookingRepository,
        scheduling_service: SchedulingService,
        notifications_service: NotificationsService,
    ) -> None:
        self.service = service
        self.booking_repository = booking_repository
        self.scheduling_service = scheduling_service
        self.notifications_service = notifications_service

    async def _process(
        self,
        phase: str,
        bookings: Iterable[Booking],
        handler: Callable[[Booking], Awaitable[object]],
    ) -> int:
        processed = 0
        for booking in bookings:
            try:
                async with self.booking_repository.savepoint():
                    outcome = await handler(booking)
            except Exception:
                logger.exception("Phase %s failed for booking %s", phase, booking.id)
                continue
            if outcome is not False:
                processed += 1
        return processed

    async def expire_stale_bookings(self, now: datetime) -> int:
        bookings = await self.booking_repository.find_expired_payment_pending(now)
        return await self._process(
            "expire_stale_bookings",
            bookings,
            lambda booking: self.service.expire_payment(booking, now),
        )

    async def auto_decline_bookings(self, now: datetime) -> int:
        bookings = await self.booking_repository.find_pending_past_deadline(now)
        return await self._process(
            "auto_decline_bookings",
            bookings,
            lambda booking: self.service.auto_decline(booking, now),
        )

    async def send_reminders(self, now: datetime) -> int:
        policy = self.service.policy
        sent = 0
        for kind, flag, lead in (
            (REMINDER_24H, "reminded_24h", policy.reminder_24h_lead),
            (REMINDER_1H, "reminded_1h", policy.reminder_1h_lead),
        ):
            bookings = await self.booking_repository.find_due_reminders(now, lead_until=now + lead, flag=flag)
            sent += await self._process(
                f"send_reminders_{kind}",
                bookings,
                lambda booking, kind=kind: self.service.send_reminder(booking, now, kind),
            )
        return sent

    async def start_due_sessions(self, now: datetime) -> int:
        bookings = await self.booking_repository.find_due_to_start(now)
        return await self._process(
            "start_due_sessions",
            bookings,
            lambda booking: self.service.start_session(booking, now),
        )

    async def finalize_ended_sessions(self, now: datetime) -> int:
        bookings = await self.booking_repository.find_ended(now)
        return await self._process(
            "finalize_ended_sessions",
            bookings,
            lambda booking: self.service.finalize_session(booking, now),
        )

    async def close_past_occurrences(self, now: datetime) -> int:
        return await self.scheduling_service.close_past_open_occurrences(now)

    async def cleanup_notifications(self, now: datetime) -> int:
        return await self.notifications_service.cleanup_read(now)


def build_booking_jobs(session: AsyncSession) -> BookingJobs:
    outbox_repository = OutboxRepository(session)
    service = build_booking_service(session)
    return BookingJobs(
        service=service,
        booking_repository=service.booking_repository,
        scheduling_service=SchedulingService(SchedulingRepository(session), outbox_repository),
        notifications_service=NotificationsService(NotificationsRepository(session), outbox_repository),
    )


def build_booking_phases(session_factory=session_scope) -> list[JobPhase]:
    """Bind every phase to a fresh session so each commits or rolls back on its own."""

    def bind(name: str) -> JobPhase:
        async def run(now: datetime) -> int:
            async with session_factory() as session:
                jobs = build_booking_jobs(session)
                return await getattr(jobs, name)(now)

        return JobPhase(name=name, run=run)

    return [bind(name) for name in BOOKING_JOB_PHASES]
