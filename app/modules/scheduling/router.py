"""Scheduling API router."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from app.modules.identity.service import get_current_user
from app.modules.scheduling.schemas import (
    CalendarOccurrenceRead,
    ConflictCheckRead,
    ConflictRead,
    OccurrenceRead,
    PublishBatchRead,
    PublishBatchRequest,
    PublishResultRead,
    SlotCreate,
    SlotRead,
    SlotUpdate,
)
from app.modules.scheduling.service import SchedulingService, get_scheduling_service
from app.shared.exceptions import ConflictException
from app.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(tags=["scheduling"])


@router.post("/availability-slots", response_model=SlotRead, status_code=status.HTTP_201_CREATED)
async def create_slot(
    payload: SlotCreate,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> SlotRead:
    """Create draft availability slot."""
    slot = await service.create_slot(payload, current_user)
    return SlotRead.model_validate(slot)


@router.get("/availability-slots/my", response_model=Page[SlotRead])
async def list_my_slots(
    pagination=Depends(get_pagination_params),
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> Page[SlotRead]:
    items, total = await service.list_my_slots(current_user, pagination.limit, pagination.offset)
    serialized = [SlotRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@router.patch("/availability-slots/{slot_id}", response_model=SlotRead)
async def update_slot(
    slot_id: UUID,
    payload: SlotUpdate,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> SlotRead:
    slot = await service.update_slot(slot_id, payload, current_user)
    return SlotRead.model_validate(slot)


@router.delete("/availability-slots/{slot_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_slot(
    slot_id: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> Response:
    """Delete slot unless one of its occurrences is reserved or booked; slots with booking history are archived."""
    await service.delete_slot(slot_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/availability-slots/publish-batch", response_model=PublishBatchRead)
async def publish_slots(
    payload: PublishBatchRequest,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> PublishBatchRead:
    """Publish several slots; each entry reports its own outcome."""
    return await service.publish_slots(payload.slot_ids, current_user, strict=payload.strict)


@router.post("/availability-slots/{slot_id}/publish", response_model=PublishResultRead)
async def publish_slot(
    slot_id: UUID,
    strict: bool = Query(default=False),
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> PublishResultRead:
    """Expand the slot into occurrences; strict mode fails with 409 instead of skipping conflicts."""
    return await service.publish_slot(slot_id, current_user, strict=strict)


@router.post("/availability-slots/{slot_id}/conflicts", response_model=ConflictCheckRead)
async def check_slot_conflicts(
    slot_id: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> ConflictCheckRead:
    """Dry-run publish; answers 409 with the overlapping occurrences when there are any."""
    candidates, conflicts = await service.check_conflicts(slot_id, current_user)
    report = ConflictCheckRead(
        candidates=candidates,
        conflicts=[ConflictRead.model_validate(conflict.as_detail()) for conflict in conflicts],
    )
    if conflicts:
        raise ConflictException(
            "Slot overlaps existing availability",
            details=report.model_dump(mode="json"),
        )
    return report


@router.post("/availability-slots/{slot_id}/pause", response_model=SlotRead)
async def pause_slot(
    slot_id: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> SlotRead:
    slot = await service.pause_slot(slot_id, current_user)
    return SlotRead.model_validate(slot)


@router.post("/availability-slots/{slot_id}/resume", response_model=PublishResultRead)
async def resume_slot(
    slot_id: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> PublishResultRead:
    return await service.resume_slot(slot_id, current_user)


@router.post("/availability-slots/{slot_id}/archive", response_model=SlotRead)
async def archive_slot(
    slot_id: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> SlotRead:
    slot = await service.archive_slot(slot_id, current_user)
    return SlotRead.model_validate(slot)


@router.delete("/availability-occurrences/{occurrence_id}", response_model=OccurrenceRead)
async def cancel_occurrence(
    occurrence_id: UUID,
    service: SchedulingService = Depends(get_scheduling_service),
    current_user=Depends(get_current_user),
) -> OccurrenceRead:
    """Withdraw one open occurrence."""
    occurrence = await service.cancel_occurrence(occurrence_id, current_user)
    return OccurrenceRead.model_validate(occurrence)


@router.get("/calendar", response_model=list[CalendarOccurrenceRead])
async def get_calendar(
    mentor_id: UUID = Query(alias="mentorId"),
    range_start: datetime = Query(alias="from"),
    range_end: datetime = Query(alias="to"),
    service: SchedulingService = Depends(get_scheduling_service),
) -> list[CalendarOccurrenceRead]:
    """Public occurrences of a mentor with their status."""
    rows = await service.get_public_calendar(mentor_id, range_start, range_end)
    return [
        CalendarOccurrenceRead(
            id=occurrence.id,
            slot_id=occurrence.slot_id,
            mentor_id=occurrence.mentor_id,
            start_at=occurrence.start_at,
            end_at=occurrence.end_at,
            status=occurrence.status,
            slot_title=slot.title,
            slot_description=slot.description,
            price_minor=slot.price_minor,
            currency=slot.currency,
        )
        for occurrence, slot in rows
    ]
