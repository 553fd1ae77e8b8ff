"""Scheduling business logic layer."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db_session
from app.core.enums import CurrencyEnum, OccurrenceStatusEnum, RoleEnum, SlotStatusEnum
from app.modules.identity.schemas import Principal
from app.modules.outbox.repository import OutboxRepository
from app.modules.scheduling.conflicts import Conflict, find_conflicts, select_candidates
from app.modules.scheduling.models import AvailabilityOccurrence, AvailabilitySlot
from app.modules.scheduling.recurrence import (
    expand_slot,
    load_zone,
    normalize_exdates,
    parse_rrule,
    resolve_window,
)
from app.modules.scheduling.repository import SchedulingRepository
from app.modules.scheduling.schemas import (
    PublishBatchItemRead,
    PublishBatchRead,
    PublishResultRead,
    SlotCreate,
    SlotUpdate,
)
from app.shared.exceptions import (
    AppException,
    BusinessRuleException,
    ConflictException,
    NotFoundException,
    UnauthorizedException,
    ValidationException,
)
from app.shared.utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)
settings = get_settings()

START_SKEW = timedelta(seconds=30)
MAX_CALENDAR_RANGE = timedelta(days=366)
SCHEDULE_FIELDS = frozenset(
    {
        "timezone",
        "start_at",
        "end_at",
        "rrule",
        "exdates",
        "buffer_before_min",
        "buffer_after_min",
        "publish_horizon_days",
    },
)
NON_CANCELABLE_OCCURRENCE_STATUSES = (OccurrenceStatusEnum.RESERVED, OccurrenceStatusEnum.BOOKED)


class SchedulingService:
    """Availability slots, their occurrences and the public calendar."""

    def __init__(
        self,
        repository: SchedulingRepository,
        outbox_repository: OutboxRepository,
    ) -> None:
        self.repository = repository
        self.outbox_repository = outbox_repository

    @staticmethod
    def _ensure_slot_access(slot: AvailabilitySlot, actor: Principal) -> None:
        if actor.role == RoleEnum.ADMIN:
            return
        if actor.role == RoleEnum.MENTOR and slot.mentor_id == actor.id:
            return
        raise UnauthorizedException("You cannot manage this slot")

    async def _get_slot_for_actor(self, slot_id: UUID, actor: Principal) -> AvailabilitySlot:
        slot = await self.repository.get_slot_by_id(slot_id)
        if slot is None:
            raise NotFoundException("Slot not found")
        self._ensure_slot_access(slot, actor)
        return slot

    @staticmethod
    def _validate_schedule(
        *,
        timezone: str,
        start_at: datetime,
        end_at: datetime,
        rrule: str | None,
        horizon_days: int,
    ) -> None:
        zone = load_zone(timezone)
        if end_at <= start_at:
            raise ValidationException("end_at must be after start_at")
        if horizon_days > settings.max_publish_horizon_days:
            raise ValidationException(
                f"publish_horizon_days must not exceed {settings.max_publish_horizon_days}",
            )
        if rrule:
            parse_rrule(rrule, start_at.astimezone(zone))

    async def create_slot(self, payload: SlotCreate, actor: Principal) -> AvailabilitySlot:
        """Create a draft slot for the calling mentor."""
        if actor.role != RoleEnum.MENTOR:
            raise UnauthorizedException("Only mentors can create availability slots")

        start_at = ensure_utc(payload.start_at)
        end_at = ensure_utc(payload.end_at)
        horizon_days = payload.publish_horizon_days or settings.default_publish_horizon_days
        rrule = payload.rrule.strip() if payload.rrule and payload.rrule.strip() else None

        if start_at < utc_now() - START_SKEW:
            raise ValidationException("start_at must be in the future")
        self._validate_schedule(
            timezone=payload.timezone,
            start_at=start_at,
            end_at=end_at,
            rrule=rrule,
            horizon_days=horizon_days,
        )

        return await self.repository.create_slot(
            mentor_id=actor.id,
            title=payload.title.strip(),
            description=payload.description,
            timezone=payload.timezone.strip(),
            start_at=start_at,
            end_at=end_at,
            rrule=rrule,
            exdates=normalize_exdates(payload.exdates, payload.timezone) if rrule else [],
            buffer_before_min=payload.buffer_before_min,
            buffer_after_min=payload.buffer_after_min,
            visibility=payload.visibility,
            status=SlotStatusEnum.DRAFT,
            publish_horizon_days=horizon_days,
            price_minor=payload.price_minor,
            currency=payload.currency or CurrencyEnum(settings.default_currency),
        )

    async def update_slot(
        self,
        slot_id: UUID,
        payload: SlotUpdate,
        actor: Principal,
    ) -> AvailabilitySlot:
        """Patch a slot; a published slot is re-expanded when its schedule changes."""
        slot = await self._get_slot_for_actor(slot_id, actor)
        if slot.status == SlotStatusEnum.ARCHIVED:
            raise BusinessRuleException("Archived slots cannot be changed")

        changes = payload.model_dump(exclude_unset=True)
        if "title" in changes and changes["title"] is None:
            raise ValidationException("title cannot be empty")

        timezone = changes.get("timezone") or slot.timezone
        start_at = ensure_utc(changes["start_at"]) if changes.get("start_at") else slot.start_at
        end_at = ensure_utc(changes["end_at"]) if changes.get("end_at") else slot.end_at
        rrule = changes["rrule"] if "rrule" in changes else slot.rrule
        rrule = rrule.strip() if rrule and rrule.strip() else None
        horizon_days = changes.get("publish_horizon_days") or slot.publish_horizon_days

        if "start_at" in changes and start_at < utc_now() - START_SKEW:
            raise ValidationException("start_at must be in the future")
        self._validate_schedule(
            timezone=timezone,
            start_at=start_at,
            end_at=end_at,
            rrule=rrule,
            horizon_days=horizon_days,
        )

        exdates = slot.exdates
        if changes.get("exdates") is not None:
            exdates = normalize_exdates(changes["exdates"], timezone)
        if rrule is None:
            exdates = []

        schedule_changed = bool(SCHEDULE_FIELDS & changes.keys())
        for field_name in ("title", "description", "visibility", "price_minor"):
            if field_name in changes and changes[field_name] is not None:
                setattr(slot, field_name, changes[field_name])
        if "description" in changes and changes["description"] is None:
            slot.description = None
        slot.timezone = timezone.strip()
        slot.start_at = start_at
        slot.end_at = end_at
        slot.rrule = rrule
        slot.exdates = exdates
        if changes.get("buffer_before_min") is not None:
            slot.buffer_before_min = changes["buffer_before_min"]
        if changes.get("buffer_after_min") is not None:
            slot.buffer_after_min = changes["buffer_after_min"]
        slot.publish_horizon_days = horizon_days
        await self.repository.save_slot(slot)

        if schedule_changed and slot.status == SlotStatusEnum.PUBLISHED:
            now = utc_now()
            removed = await self.repository.retire_future_open_occurrences(slot.id, now)
            outcome = await self._publish(slot, now, strict=False)
            logger.info(
                "Slot %s rescheduled: removed=%s created=%s skipped=%s",
                slot.id,
                removed,
                outcome.occurrences_created,
                outcome.skipped_conflict,
            )
        return slot

    async def _publish(self, slot: AvailabilitySlot, now: datetime, *, strict: bool) -> PublishResultRead:
        await self.repository.lock_mentor_calendar(slot.mentor_id)

        window = resolve_window(now, slot.publish_horizon_days)
        candidates = expand_slot(slot, window)
        existing = await self.repository.list_mentor_footprints(slot.mentor_id, since=window[0])
        selection = select_candidates(
            candidates,
            existing,
            slot.buffer_before_min,
            slot.buffer_after_min,
        )
        if strict and selection.conflicts:
            raise ConflictException(
                "Slot overlaps existing availability",
                details={"conflicts": [conflict.as_detail() for conflict in selection.conflicts]},
            )

        await self.repository.add_occurrences(slot, selection.accepted)
        slot.status = SlotStatusEnum.PUBLISHED
        if slot.published_at is None:
            slot.published_at = now
        await self.repository.save_slot(slot)

        await self.outbox_repository.create_outbox_event(
            aggregate_type="availability_slot",
            aggregate_id=str(slot.id),
            event_type="slot.published",
            payload={
                "slot_id": str(slot.id),
                "mentor_id": str(slot.mentor_id),
                "occurrences_created": len(selection.accepted),
                "skipped_conflict": selection.skipped_conflict,
            },
        )
        logger.info(
            "Published slot %s: candidates=%s created=%s skipped=%s",
            slot.id,
            len(candidates),
            len(selection.accepted),
            selection.skipped_conflict,
        )
        return PublishResultRead(
            published=True,
            occurrences_created=len(selection.accepted),
            skipped_conflict=selection.skipped_conflict,
            rrule=slot.rrule,
            horizon_days=slot.publish_horizon_days,
        )

    async def publish_slot(
        self,
        slot_id: UUID,
        actor: Principal,
        *,
        strict: bool = False,
    ) -> PublishResultRead:
        """Generate occurrences; conflicting candidates are skipped unless strict mode is requested."""
        slot = await self._get_slot_for_actor(slot_id, actor)
        if slot.status == SlotStatusEnum.ARCHIVED:
            raise BusinessRuleException("Archived slots cannot be published")
        if slot.status == SlotStatusEnum.PAUSED:
            raise BusinessRuleException("Paused slots must be resumed instead of published")
        return await self._publish(slot, utc_now(), strict=strict)

    async def publish_slots(
        self,
        slot_ids: list[UUID],
        actor: Principal,
        *,
        strict: bool = False,
    ) -> PublishBatchRead:
        """Publish slots one after another; a failing slot is rolled back and reported, the rest proceed."""
        results: list[PublishBatchItemRead] = []
        for slot_id in dict.fromkeys(slot_ids):
            try:
                async with self.repository.savepoint():
                    result = await self.publish_slot(slot_id, actor, strict=strict)
            except AppException as exc:
                logger.info("Batch publish skipped slot %s: %s", slot_id, exc.message)
                results.append(
                    PublishBatchItemRead(slot_id=slot_id, ok=False, error_code=exc.code, error=exc.message),
                )
                continue
            results.append(PublishBatchItemRead(slot_id=slot_id, ok=True, result=result))

        published = sum(1 for item in results if item.ok)
        return PublishBatchRead(published=published, failed=len(results) - published, results=results)

    async def check_conflicts(self, slot_id: UUID, actor: Principal) -> tuple[int, list[Conflict]]:
        """Dry run: report overlaps a publish would hit, without writing anything."""
        slot = await self._get_slot_for_actor(slot_id, actor)
        window = resolve_window(utc_now(), slot.publish_horizon_days)
        candidates = expand_slot(slot, window)
        existing = await self.repository.list_mentor_footprints(slot.mentor_id, since=window[0])
        conflicts = find_conflicts(candidates, existing, slot.buffer_before_min, slot.buffer_after_min)
        return len(candidates), conflicts

    async def pause_slot(self, slot_id: UUID, actor: Principal) -> AvailabilitySlot:
        """Stop offering a published slot; reserved and booked occurrences stay."""
        slot = await self._get_slot_for_actor(slot_id, actor)
        if slot.status != SlotStatusEnum.PUBLISHED:
            raise BusinessRuleException("Only published slots can be paused")
        cancelled = await self.repository.cancel_future_open_occurrences(slot.id, utc_now())
        slot.status = SlotStatusEnum.PAUSED
        await self.repository.save_slot(slot)
        logger.info("Paused slot %s, cancelled %s open occurrences", slot.id, cancelled)
        return slot

    async def resume_slot(self, slot_id: UUID, actor: Principal) -> PublishResultRead:
        """Re-publish a paused slot from now on."""
        slot = await self._get_slot_for_actor(slot_id, actor)
        if slot.status != SlotStatusEnum.PAUSED:
            raise BusinessRuleException("Only paused slots can be resumed")
        return await self._publish(slot, utc_now(), strict=False)

    async def archive_slot(self, slot_id: UUID, actor: Principal) -> AvailabilitySlot:
        slot = await self._get_slot_for_actor(slot_id, actor)
        if slot.status == SlotStatusEnum.ARCHIVED:
            raise ConflictException("Slot is already archived")
        cancelled = await self.repository.cancel_future_open_occurrences(slot.id, utc_now())
        slot.status = SlotStatusEnum.ARCHIVED
        await self.repository.save_slot(slot)
        logger.info("Archived slot %s, cancelled %s open occurrences", slot.id, cancelled)
        return slot

    async def delete_slot(self, slot_id: UUID, actor: Principal) -> bool:
        """Delete a slot that has no reserved or booked occurrence.

        Booking history keeps its occurrences alive, so a slot with past bookings is
        archived instead of removed. Returns whether the slot row was deleted.
        """
        slot = await self._get_slot_for_actor(slot_id, actor)
        blocking = await self.repository.count_slot_occurrences(slot.id, NON_CANCELABLE_OCCURRENCE_STATUSES)
        if blocking:
            raise ConflictException(
                "Slot has reserved or booked occurrences",
                details={"blocking_occurrences": blocking},
            )

        if await self.repository.count_occurrences_with_bookings(slot.id):
            cancelled = await self.repository.cancel_future_open_occurrences(slot.id, utc_now())
            slot.status = SlotStatusEnum.ARCHIVED
            await self.repository.save_slot(slot)
            logger.info("Slot %s has booking history, archived instead (cancelled=%s)", slot.id, cancelled)
            return False

        await self.repository.delete_slot(slot)
        return True

    async def cancel_occurrence(self, occurrence_id: UUID, actor: Principal) -> AvailabilityOccurrence:
        """Withdraw a single open occurrence."""
        occurrence = await self.repository.get_occurrence_by_id(occurrence_id)
        if occurrence is None:
            raise NotFoundException("Occurrence not found")
        self._ensure_slot_access(occurrence.slot, actor)
        if occurrence.status != OccurrenceStatusEnum.OPEN:
            raise ConflictException(f"Occurrence is {occurrence.status}, only open occurrences can be cancelled")
        return await self.repository.set_occurrence_status(occurrence, OccurrenceStatusEnum.CANCELLED)

    async def list_my_slots(
        self,
        actor: Principal,
        limit: int,
        offset: int,
    ) -> tuple[list[AvailabilitySlot], int]:
        if actor.role != RoleEnum.MENTOR:
            raise UnauthorizedException("Only mentors own availability slots")
        return await self.repository.list_slots_by_mentor(actor.id, limit, offset)

    async def get_public_calendar(
        self,
        mentor_id: UUID,
        range_start: datetime,
        range_end: datetime,
    ) -> list[tuple[AvailabilityOccurrence, AvailabilitySlot]]:
        """Public occurrences of a mentor overlapping ``[range_start, range_end)``."""
        range_start = ensure_utc(range_start)
        range_end = ensure_utc(range_end)
        if range_start >= range_end:
            raise ValidationException("from must be before to")
        if range_end - range_start > MAX_CALENDAR_RANGE:
            raise ValidationException("Calendar range must not exceed 366 days")
        return await self.repository.list_public_calendar(mentor_id, range_start, range_end)

    async def close_past_open_occurrences(self, now: datetime) -> int:
        """Cancel open occurrences whose start has passed without a booking."""
        return await self.repository.close_past_open_occurrences(now)


async def get_scheduling_service(session: AsyncSession = Depends(get_db_session)) -> SchedulingService:
    """Dependency provider for scheduling service."""
    return SchedulingService(SchedulingRepository(session), OutboxRepository(session))
