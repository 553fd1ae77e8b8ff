"""Scheduling ORM models."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base, BaseModelMixin
from app.core.enums import CurrencyEnum, OccurrenceStatusEnum, SlotStatusEnum, SlotVisibilityEnum


class AvailabilitySlot(BaseModelMixin, Base):
    """Mentor-authored availability, one-off or recurring."""

    __tablename__ = "availability_slots"
    __table_args__ = (
        CheckConstraint("end_at > start_at", name="end_after_start"),
        CheckConstraint("buffer_before_min >= 0 AND buffer_after_min >= 0", name="buffers_non_negative"),
        CheckConstraint("price_minor >= 0", name="price_non_negative"),
    )

    mentor_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    rrule: Mapped[str | None] = mapped_column(String(512), nullable=True)
    exdates: Mapped[list[datetime]] = mapped_column(
        ARRAY(DateTime(timezone=True)),
        default=list,
        nullable=False,
    )
    buffer_before_min: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    buffer_after_min: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    visibility: Mapped[SlotVisibilityEnum] = mapped_column(
        SAEnum(SlotVisibilityEnum, name="slot_visibility_enum", native_enum=False),
        default=SlotVisibilityEnum.PUBLIC,
        nullable=False,
    )
    status: Mapped[SlotStatusEnum] = mapped_column(
        SAEnum(SlotStatusEnum, name="slot_status_enum", native_enum=False),
        default=SlotStatusEnum.DRAFT,
        nullable=False,
        index=True,
    )
    publish_horizon_days: Mapped[int] = mapped_column(Integer, default=90, nullable=False)
    price_minor: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    currency: Mapped[CurrencyEnum] = mapped_column(
        SAEnum(CurrencyEnum, name="currency_enum", native_enum=False),
        default=CurrencyEnum.VND,
        nullable=False,
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    occurrences: Mapped[list["AvailabilityOccurrence"]] = relationship(
        back_populates="slot",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class AvailabilityOccurrence(BaseModelMixin, Base):
    """Concrete bookable window generated from a slot."""

    __tablename__ = "availability_occurrences"
    __table_args__ = (
        CheckConstraint("end_at > start_at", name="end_after_start"),
        Index("ix_availability_occurrences_mentor_start", "mentor_id", "start_at"),
    )

    slot_id: Mapped[UUID] = mapped_column(
        ForeignKey("availability_slots.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    mentor_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[OccurrenceStatusEnum] = mapped_column(
        SAEnum(OccurrenceStatusEnum, name="occurrence_status_enum", native_enum=False),
        default=OccurrenceStatusEnum.OPEN,
        nullable=False,
        index=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    slot: Mapped[AvailabilitySlot] = relationship(back_populates="occurrences")

    __mapper_args__ = {"version_id_col": version}
