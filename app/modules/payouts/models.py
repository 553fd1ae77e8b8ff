"""Payout ORM models."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Enum as SAEnum, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, BaseModelMixin
from app.core.enums import CurrencyEnum, PayoutStatusEnum


class PayoutRequest(BaseModelMixin, Base):
    """Mentor request to move wallet earnings out to an external account."""

    __tablename__ = "payout_requests"
    __table_args__ = (
        UniqueConstraint("mentor_id", "client_request_id", name="uq_payout_requests_mentor_request"),
        CheckConstraint("amount_minor > 0", name="amount_positive"),
        Index("ix_payout_requests_mentor_created", "mentor_id", "created_at", "id"),
        Index("ix_payout_requests_status_created", "status", "created_at", "id"),
    )

    mentor_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False)
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[CurrencyEnum] = mapped_column(
        SAEnum(CurrencyEnum, name="currency_enum", native_enum=False),
        nullable=False,
    )
    status: Mapped[PayoutStatusEnum] = mapped_column(
        SAEnum(PayoutStatusEnum, name="payout_status_enum", native_enum=False),
        default=PayoutStatusEnum.PENDING,
        nullable=False,
    )
    client_request_id: Mapped[str] = mapped_column(String(128), nullable=False)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(PGUUID(as_uuid=True), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
