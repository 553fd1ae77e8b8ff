"""Wallet schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import CurrencyEnum, TransactionSourceEnum, TransactionTypeEnum


class WalletRead(BaseModel):
    """Wallet response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: UUID
    balance_minor: int
    currency: CurrencyEnum
    updated_at: datetime


class WalletTopupRequest(BaseModel):
    """Idempotent top-up request."""

    model_config = ConfigDict(populate_by_name=True)

    amount_minor: int = Field(gt=0, alias="amountMinor")
    client_request_id: str = Field(min_length=1, max_length=128, alias="clientRequestId")
    currency: CurrencyEnum | None = None


class WalletDebitRequest(WalletTopupRequest):
    """Idempotent manual debit request."""

    payment_method_id: str | None = Field(default=None, max_length=128, alias="paymentMethodId")


class WalletTransactionRead(BaseModel):
    """Ledger entry response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    wallet_id: UUID
    type: TransactionTypeEnum
    source: TransactionSourceEnum
    amount_minor: int
    currency: CurrencyEnum
    balance_before_minor: int
    balance_after_minor: int
    client_request_id: str
    reference_type: str | None
    reference_id: str | None
    payment_method_id: str | None
    created_at: datetime


class WalletOperationRead(BaseModel):
    """Result of a ledger mutation."""

    wallet: WalletRead
    transaction: WalletTransactionRead
    idempotent: bool
