"""Scheduling schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.core.enums import CurrencyEnum, OccurrenceStatusEnum, SlotStatusEnum, SlotVisibilityEnum

MAX_BUFFER_MINUTES = 720
MAX_BATCH_PUBLISH = 50


class SlotCreate(BaseModel):
    """Create availability slot request."""

    title: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=4000)
    timezone: str = Field(min_length=1, max_length=64)
    start_at: datetime
    end_at: datetime
    rrule: str | None = Field(default=None, max_length=512)
    exdates: list[datetime] = Field(default_factory=list, max_length=500)
    buffer_before_min: int = Field(default=0, ge=0, le=MAX_BUFFER_MINUTES)
    buffer_after_min: int = Field(default=0, ge=0, le=MAX_BUFFER_MINUTES)
    visibility: SlotVisibilityEnum = SlotVisibilityEnum.PUBLIC
    publish_horizon_days: int | None = Field(default=None, ge=1)
    price_minor: int = Field(default=0, ge=0)
    currency: CurrencyEnum | None = None


class SlotUpdate(BaseModel):
    """Partial slot update; schedule changes on a published slot regenerate future open occurrences."""

    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=4000)
    timezone: str | None = Field(default=None, min_length=1, max_length=64)
    start_at: datetime | None = None
    end_at: datetime | None = None
    rrule: str | None = Field(default=None, max_length=512)
    exdates: list[datetime] | None = Field(default=None, max_length=500)
    buffer_before_min: int | None = Field(default=None, ge=0, le=MAX_BUFFER_MINUTES)
    buffer_after_min: int | None = Field(default=None, ge=0, le=MAX_BUFFER_MINUTES)
    visibility: SlotVisibilityEnum | None = None
    publish_horizon_days: int | None = Field(default=None, ge=1)
    price_minor: int | None = Field(default=None, ge=0)


class SlotRead(BaseModel):
    """Availability slot response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    mentor_id: UUID
    title: str
    description: str | None
    timezone: str
    start_at: datetime
    end_at: datetime
    rrule: str | None
    exdates: list[datetime]
    buffer_before_min: int
    buffer_after_min: int
    visibility: SlotVisibilityEnum
    status: SlotStatusEnum
    publish_horizon_days: int
    price_minor: int
    currency: CurrencyEnum
    published_at: datetime | None
    created_at: datetime
    updated_at: datetime


class PublishResultRead(BaseModel):
    """Outcome of a publish run."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    published: bool
    occurrences_created: int
    skipped_conflict: int
    rrule: str | None
    horizon_days: int


class ConflictRead(BaseModel):
    """One candidate/occurrence overlap found by a dry run."""

    candidate_start: datetime
    candidate_end: datetime
    occurrence_id: UUID | None = None
    slot_id: UUID | None = None
    slot_title: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    buffer_before_min: int | None = None
    buffer_after_min: int | None = None


class ConflictCheckRead(BaseModel):
    """Dry-run publish report."""

    candidates: int
    conflicts: list[ConflictRead]


class OccurrenceRead(BaseModel):
    """Occurrence response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    slot_id: UUID
    mentor_id: UUID
    start_at: datetime
    end_at: datetime
    status: OccurrenceStatusEnum


class CalendarOccurrenceRead(OccurrenceRead):
    """Public calendar entry with slot details."""

    slot_title: str
    slot_description: str | None
    price_minor: int
    currency: CurrencyEnum


class PublishBatchRequest(BaseModel):
    """Publish several slots in one call; each slot succeeds or fails on its own."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    slot_ids: list[UUID] = Field(min_length=1, max_length=MAX_BATCH_PUBLISH)
    strict: bool = False


class PublishBatchItemRead(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    slot_id: UUID
    ok: bool
    result: PublishResultRead | None = None
    error_code: str | None = None
    error: str | None = None


class PublishBatchRead(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    published: int
    failed: int
    results: list[PublishBatchItemRead]
