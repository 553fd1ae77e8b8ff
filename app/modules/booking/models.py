"""Booking ORM models."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, CheckConstraint, DateTime, Enum as SAEnum, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base, BaseModelMixin
from app.core.enums import BookingStatusEnum, CurrencyEnum, NoShowPartyEnum, RoleEnum

if TYPE_CHECKING:
    from app.modules.scheduling.models import AvailabilityOccurrence

ACTIVE_STATUS_SQL = "status IN ('PAYMENT_PENDING', 'PENDING', 'CONFIRMED', 'IN_PROGRESS')"


class Booking(BaseModelMixin, Base):
    """Mentee booking of one occurrence."""

    __tablename__ = "bookings"
    __table_args__ = (
        Index(
            "uq_bookings_active_occurrence",
            "occurrence_id",
            unique=True,
            postgresql_where=text(ACTIVE_STATUS_SQL),
        ),
        Index("ix_bookings_status_start", "status", "start_at"),
        CheckConstraint("rating IS NULL OR (rating BETWEEN 1 AND 5)", name="rating_range"),
        CheckConstraint("paid_minor >= 0 AND refunded_minor >= 0", name="money_non_negative"),
    )

    occurrence_id: Mapped[UUID] = mapped_column(
        ForeignKey("availability_occurrences.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    mentor_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    mentee_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    status: Mapped[BookingStatusEnum] = mapped_column(
        SAEnum(BookingStatusEnum, name="booking_status_enum", native_enum=False),
        default=BookingStatusEnum.PENDING,
        nullable=False,
        index=True,
    )
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    topic: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    price_minor: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    currency: Mapped[CurrencyEnum] = mapped_column(
        SAEnum(CurrencyEnum, name="currency_enum", native_enum=False),
        default=CurrencyEnum.VND,
        nullable=False,
    )
    payment_attempt: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    paid_minor: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    refunded_minor: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    mentor_response_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[RoleEnum | None] = mapped_column(
        SAEnum(RoleEnum, name="role_enum", native_enum=False),
        nullable=True,
    )
    cancel_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    late_cancel: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    reminded_24h: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reminded_1h: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    mentor_joined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    mentee_joined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    no_show_party: Mapped[NoShowPartyEnum | None] = mapped_column(
        SAEnum(NoShowPartyEnum, name="no_show_party_enum", native_enum=False),
        nullable=True,
    )

    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    review_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    occurrence: Mapped["AvailabilityOccurrence"] = relationship()
