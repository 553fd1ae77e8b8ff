"""Scheduling repository layer."""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, func, or_, select, text, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction
from sqlalchemy.orm import selectinload

from app.core.enums import OccurrenceStatusEnum, SlotStatusEnum, SlotVisibilityEnum
from app.modules.booking.models import Booking
from app.modules.scheduling.conflicts import ExistingOccurrence
from app.modules.scheduling.models import AvailabilityOccurrence, AvailabilitySlot
from app.modules.scheduling.recurrence import Candidate
from app.shared.exceptions import ConflictException, TransientInfraException

LOCK_NOT_AVAILABLE_SQLSTATE = "55P03"
# Buffers are capped well below this, so older occurrences cannot reach a new window.
FOOTPRINT_LOOKBACK = timedelta(days=1)


def _is_lock_timeout(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == LOCK_NOT_AVAILABLE_SQLSTATE


class SchedulingRepository:
    """DB access for scheduling domain."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def savepoint(self) -> AsyncSessionTransaction:
        return self.session.begin_nested()

    async def create_slot(self, **fields) -> AvailabilitySlot:
        slot = AvailabilitySlot(**fields)
        self.session.add(slot)
        await self.session.flush()
        return slot

    async def get_slot_by_id(self, slot_id: UUID) -> AvailabilitySlot | None:
        stmt = select(AvailabilitySlot).where(AvailabilitySlot.id == slot_id)
        return await self.session.scalar(stmt)

    async def list_slots_by_mentor(
        self,
        mentor_id: UUID,
        limit: int,
        offset: int,
    ) -> tuple[list[AvailabilitySlot], int]:
        base_stmt = select(AvailabilitySlot).where(AvailabilitySlot.mentor_id == mentor_id)
        count_stmt = select(func.count()).select_from(base_stmt.subquery())
        total = int((await self.session.scalar(count_stmt)) or 0)

        stmt = base_stmt.order_by(AvailabilitySlot.created_at.desc()).limit(limit).offset(offset)
        items = list((await self.session.scalars(stmt)).all())
        return items, total

    async def save_slot(self, slot: AvailabilitySlot) -> AvailabilitySlot:
        await self.session.flush()
        return slot

    async def delete_slot(self, slot: AvailabilitySlot) -> None:
        nested_transaction = await self.session.begin_nested()
        try:
            await self.session.execute(
                delete(AvailabilityOccurrence).where(AvailabilityOccurrence.slot_id == slot.id),
            )
            await self.session.delete(slot)
            await self.session.flush()
        except IntegrityError as exc:
            await nested_transaction.rollback()
            raise ConflictException("Slot occurrences are referenced by bookings") from exc
        await nested_transaction.commit()

    async def lock_mentor_calendar(self, mentor_id: UUID) -> None:
        """Serialize publishes of one mentor until the surrounding transaction ends."""
        await self.session.execute(
            text("SELECT pg_advisory_xact_lock(hashtextextended(:key, 0))"),
            {"key": f"mentor_calendar:{mentor_id}"},
        )

    async def list_mentor_footprints(
        self,
        mentor_id: UUID,
        *,
        since: datetime,
    ) -> list[ExistingOccurrence]:
        """Non-cancelled occurrences of every slot of the mentor with current slot buffers."""
        stmt = (
            select(
                AvailabilityOccurrence.id,
                AvailabilityOccurrence.slot_id,
                AvailabilitySlot.title,
                AvailabilityOccurrence.start_at,
                AvailabilityOccurrence.end_at,
                AvailabilitySlot.buffer_before_min,
                AvailabilitySlot.buffer_after_min,
            )
            .join(AvailabilitySlot, AvailabilitySlot.id == AvailabilityOccurrence.slot_id)
            .where(
                AvailabilityOccurrence.mentor_id == mentor_id,
                AvailabilityOccurrence.status != OccurrenceStatusEnum.CANCELLED,
                AvailabilityOccurrence.end_at >= since - FOOTPRINT_LOOKBACK,
            )
            .order_by(AvailabilityOccurrence.start_at.asc())
        )
        rows = (await self.session.execute(stmt)).all()
        return [
            ExistingOccurrence(
                occurrence_id=row[0],
                slot_id=row[1],
                slot_title=row[2],
                start=row[3],
                end=row[4],
                buffer_before_min=row[5],
                buffer_after_min=row[6],
            )
            for row in rows
        ]

    async def add_occurrences(
        self,
        slot: AvailabilitySlot,
        candidates: list[Candidate],
    ) -> list[AvailabilityOccurrence]:
        occurrences = [
            AvailabilityOccurrence(
                slot_id=slot.id,
                mentor_id=slot.mentor_id,
                start_at=candidate.start,
                end_at=candidate.end,
                status=OccurrenceStatusEnum.OPEN,
            )
            for candidate in candidates
        ]
        self.session.add_all(occurrences)
        await self.session.flush()
        return occurrences

    async def count_slot_occurrences(
        self,
        slot_id: UUID,
        statuses: tuple[OccurrenceStatusEnum, ...],
    ) -> int:
        stmt = select(func.count()).where(
            AvailabilityOccurrence.slot_id == slot_id,
            AvailabilityOccurrence.status.in_(statuses),
        )
        return int((await self.session.scalar(stmt)) or 0)

    async def cancel_future_open_occurrences(self, slot_id: UUID, now: datetime) -> int:
        stmt = (
            update(AvailabilityOccurrence)
            .where(
                AvailabilityOccurrence.slot_id == slot_id,
                AvailabilityOccurrence.status == OccurrenceStatusEnum.OPEN,
                AvailabilityOccurrence.start_at > now,
            )
            .values(
                status=OccurrenceStatusEnum.CANCELLED,
                version=AvailabilityOccurrence.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def retire_future_open_occurrences(self, slot_id: UUID, now: datetime) -> int:
        """Drop future open occurrences; ones an earlier booking points at are cancelled instead."""
        future_open = (
            AvailabilityOccurrence.slot_id == slot_id,
            AvailabilityOccurrence.status == OccurrenceStatusEnum.OPEN,
            AvailabilityOccurrence.start_at > now,
        )
        has_booking = select(Booking.id).where(Booking.occurrence_id == AvailabilityOccurrence.id).exists()
        cancelled = await self.session.execute(
            update(AvailabilityOccurrence)
            .where(*future_open, has_booking)
            .values(
                status=OccurrenceStatusEnum.CANCELLED,
                version=AvailabilityOccurrence.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False),
        )
        deleted = await self.session.execute(
            delete(AvailabilityOccurrence)
            .where(*future_open, ~has_booking)
            .execution_options(synchronize_session=False),
        )
        return int(cancelled.rowcount or 0) + int(deleted.rowcount or 0)

    async def count_occurrences_with_bookings(self, slot_id: UUID) -> int:
        stmt = (
            select(func.count(func.distinct(Booking.occurrence_id)))
            .join(AvailabilityOccurrence, AvailabilityOccurrence.id == Booking.occurrence_id)
            .where(AvailabilityOccurrence.slot_id == slot_id)
        )
        return int((await self.session.scalar(stmt)) or 0)

    async def close_past_open_occurrences(self, now: datetime) -> int:
        stmt = (
            update(AvailabilityOccurrence)
            .where(
                AvailabilityOccurrence.status == OccurrenceStatusEnum.OPEN,
                AvailabilityOccurrence.start_at <= now,
            )
            .values(
                status=OccurrenceStatusEnum.CANCELLED,
                version=AvailabilityOccurrence.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def get_occurrence_by_id(self, occurrence_id: UUID) -> AvailabilityOccurrence | None:
        stmt = (
            select(AvailabilityOccurrence)
            .options(selectinload(AvailabilityOccurrence.slot))
            .where(AvailabilityOccurrence.id == occurrence_id)
        )
        return await self.session.scalar(stmt)

    async def lock_occurrence(
        self,
        occurrence_id: UUID,
        *,
        lock_timeout_ms: int,
    ) -> AvailabilityOccurrence | None:
        """Row-lock an occurrence, giving up quickly when another booking holds it."""
        await self.session.execute(text(f"SET LOCAL lock_timeout = '{int(lock_timeout_ms)}ms'"))
        stmt = (
            select(AvailabilityOccurrence)
            .options(selectinload(AvailabilityOccurrence.slot))
            .where(AvailabilityOccurrence.id == occurrence_id)
            .with_for_update(of=AvailabilityOccurrence)
        )
        try:
            return await self.session.scalar(stmt)
        except DBAPIError as exc:
            if _is_lock_timeout(exc):
                raise TransientInfraException("Occurrence is busy, try again") from exc
            raise

    async def set_occurrence_status(
        self,
        occurrence: AvailabilityOccurrence,
        status: OccurrenceStatusEnum,
    ) -> AvailabilityOccurrence:
        occurrence.status = status
        await self.session.flush()
        return occurrence

    async def list_public_calendar(
        self,
        mentor_id: UUID,
        range_start: datetime,
        range_end: datetime,
    ) -> list[tuple[AvailabilityOccurrence, AvailabilitySlot]]:
        stmt = (
            select(AvailabilityOccurrence, AvailabilitySlot)
            .join(AvailabilitySlot, AvailabilitySlot.id == AvailabilityOccurrence.slot_id)
            .where(
                AvailabilityOccurrence.mentor_id == mentor_id,
                AvailabilityOccurrence.status != OccurrenceStatusEnum.CANCELLED,
                AvailabilityOccurrence.start_at < range_end,
                AvailabilityOccurrence.end_at > range_start,
                AvailabilitySlot.visibility == SlotVisibilityEnum.PUBLIC,
                AvailabilitySlot.status != SlotStatusEnum.DRAFT,
                or_(
                    AvailabilitySlot.status == SlotStatusEnum.PUBLISHED,
                    AvailabilityOccurrence.status != OccurrenceStatusEnum.OPEN,
                ),
            )
            .order_by(AvailabilityOccurrence.start_at.asc())
        )
        rows = (await self.session.execute(stmt)).all()
        return [(row[0], row[1]) for row in rows]
