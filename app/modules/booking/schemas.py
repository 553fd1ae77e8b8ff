"""Booking schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import BookingStatusEnum, CurrencyEnum, NoShowPartyEnum, RoleEnum


class BookingCreateRequest(BaseModel):
    """Book one open occurrence."""

    occurrence_id: UUID
    topic: str | None = Field(default=None, max_length=255)
    notes: str | None = Field(default=None, max_length=4000)
    pay_with_wallet: bool = True


class BookingCancelRequest(BaseModel):
    """Cancel booking request."""

    reason: str | None = Field(default=None, max_length=512)


class BookingDeclineRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=512)


class BookingReviewRequest(BaseModel):
    """Mentee rating of a completed session."""

    rating: int = Field(ge=1, le=5)
    comment: str | None = Field(default=None, max_length=2000)


class BookingRead(BaseModel):
    """Booking response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    occurrence_id: UUID
    mentor_id: UUID
    mentee_id: UUID
    status: BookingStatusEnum
    start_at: datetime
    end_at: datetime
    topic: str | None
    notes: str | None
    price_minor: int
    currency: CurrencyEnum
    paid_minor: int
    refunded_minor: int
    expires_at: datetime | None
    mentor_response_deadline: datetime | None
    confirmed_at: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    cancelled_by: RoleEnum | None
    cancel_reason: str | None
    late_cancel: bool
    mentor_joined_at: datetime | None
    mentee_joined_at: datetime | None
    no_show_party: NoShowPartyEnum | None
    rating: int | None
    review_comment: str | None
    created_at: datetime
    updated_at: datetime
