"""Booking repository layer."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction
from sqlalchemy.orm import selectinload

from app.core.enums import BookingStatusEnum, RoleEnum
from app.modules.booking.models import Booking
from app.modules.scheduling.models import AvailabilityOccurrence

DEFAULT_JOB_BATCH_SIZE = 200
_OCCURRENCE_WITH_SLOT = selectinload(Booking.occurrence).selectinload(AvailabilityOccurrence.slot)


class BookingRepository:
    """DB operations for booking domain."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def savepoint(self) -> AsyncSessionTransaction:
        """Nested transaction that confines one job item's changes."""
        return self.session.begin_nested()

    async def create_booking(self, **fields) -> Booking:
        booking = Booking(**fields)
        self.session.add(booking)
        await self.session.flush()
        await self.session.refresh(booking, attribute_names=["occurrence"])
        return booking

    async def get_booking_by_id(self, booking_id: UUID, *, lock: bool = False) -> Booking | None:
        stmt = select(Booking).options(_OCCURRENCE_WITH_SLOT).where(Booking.id == booking_id)
        if lock:
            stmt = stmt.with_for_update(of=Booking)
        return await self.session.scalar(stmt)

    async def list_bookings(
        self,
        user_id: UUID,
        role: RoleEnum,
        status: BookingStatusEnum | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Booking], int]:
        base_stmt: Select[tuple[Booking]] = select(Booking)

        if role == RoleEnum.MENTEE:
            base_stmt = base_stmt.where(Booking.mentee_id == user_id)
        elif role == RoleEnum.MENTOR:
            base_stmt = base_stmt.where(Booking.mentor_id == user_id)
        if status is not None:
            base_stmt = base_stmt.where(Booking.status == status)

        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = base_stmt.order_by(Booking.start_at.desc()).limit(limit).offset(offset)
        items = list((await self.session.scalars(stmt)).all())
        return items, total

    async def _due(self, *criteria, limit: int) -> list[Booking]:
        # Rows held by a request in flight are picked up on the next tick.
        stmt = (
            select(Booking)
            .options(_OCCURRENCE_WITH_SLOT)
            .where(*criteria)
            .order_by(Booking.start_at.asc())
            .limit(limit)
            .with_for_update(of=Booking, skip_locked=True)
        )
        return list((await self.session.scalars(stmt)).all())

    async def find_expired_payment_pending(
        self,
        now: datetime,
        limit: int = DEFAULT_JOB_BATCH_SIZE,
    ) -> list[Booking]:
        return await self._due(
            Booking.status == BookingStatusEnum.PAYMENT_PENDING,
            Booking.expires_at.is_not(None),
            Booking.expires_at <= now,
            limit=limit,
        )

    async def find_pending_past_deadline(
        self,
        now: datetime,
        limit: int = DEFAULT_JOB_BATCH_SIZE,
    ) -> list[Booking]:
        return await self._due(
            Booking.status == BookingStatusEnum.PENDING,
            Booking.mentor_response_deadline.is_not(None),
            Booking.mentor_response_deadline <= now,
            limit=limit,
        )

    async def find_due_reminders(
        self,
        now: datetime,
        *,
        lead_until: datetime,
        flag: str,
        limit: int = DEFAULT_JOB_BATCH_SIZE,
    ) -> list[Booking]:
        """Confirmed bookings starting in ``(now, lead_until]`` whose reminder ``flag`` is unset."""
        column = getattr(Booking, flag)
        return await self._due(
            Booking.status == BookingStatusEnum.CONFIRMED,
            column.is_(False),
            Booking.start_at > now,
            Booking.start_at <= lead_until,
            limit=limit,
        )

    async def find_due_to_start(
        self,
        now: datetime,
        limit: int = DEFAULT_JOB_BATCH_SIZE,
    ) -> list[Booking]:
        return await self._due(
            Booking.status == BookingStatusEnum.CONFIRMED,
            Booking.start_at <= now,
            Booking.end_at > now,
            limit=limit,
        )

    async def find_ended(
        self,
        now: datetime,
        limit: int = DEFAULT_JOB_BATCH_SIZE,
    ) -> list[Booking]:
        return await self._due(
            Booking.status.in_((BookingStatusEnum.CONFIRMED, BookingStatusEnum.IN_PROGRESS)),
            Booking.end_at <= now,
            limit=limit,
        )

    async def save(self, booking: Booking) -> Booking:
        await self.session.flush()
        return booking
