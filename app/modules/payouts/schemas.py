"""Payout schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import CurrencyEnum, PayoutStatusEnum


class PayoutCreateRequest(BaseModel):
    """Idempotent payout request."""

    model_config = ConfigDict(populate_by_name=True)

    amount_minor: int = Field(gt=0, alias="amountMinor")
    client_request_id: str = Field(min_length=1, max_length=128, alias="clientRequestId")
    currency: CurrencyEnum | None = None


class PayoutSettleRequest(BaseModel):
    """Final result reported by the payment provider."""

    outcome: Literal["paid", "failed"]
    reason: str | None = Field(default=None, max_length=512)


class PayoutRead(BaseModel):
    """Payout response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    mentor_id: UUID
    amount_minor: int
    currency: CurrencyEnum
    status: PayoutStatusEnum
    client_request_id: str
    attempt_count: int
    external_id: str | None
    failure_reason: str | None
    processed_at: datetime | None
    paid_at: datetime | None
    created_at: datetime
    updated_at: datetime
