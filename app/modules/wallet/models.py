"""Wallet ORM models."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, Enum as SAEnum, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base, BaseModelMixin
from app.core.enums import CurrencyEnum, TransactionSourceEnum, TransactionTypeEnum


class Wallet(BaseModelMixin, Base):
    """One balance per user; mutated only through ledger transactions."""

    __tablename__ = "wallets"
    __table_args__ = (CheckConstraint("balance_minor >= 0", name="balance_non_negative"),)

    owner_id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), nullable=False, unique=True, index=True)
    balance_minor: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    currency: Mapped[CurrencyEnum] = mapped_column(
        SAEnum(CurrencyEnum, name="currency_enum", native_enum=False),
        default=CurrencyEnum.VND,
        nullable=False,
    )

    transactions: Mapped[list["WalletTransaction"]] = relationship(back_populates="wallet")


class WalletTransaction(BaseModelMixin, Base):
    """Append-only ledger entry."""

    __tablename__ = "wallet_transactions"
    __table_args__ = (
        UniqueConstraint("wallet_id", "client_request_id", name="uq_wallet_transactions_wallet_request"),
        CheckConstraint("amount_minor > 0", name="amount_positive"),
        CheckConstraint("balance_after_minor >= 0", name="balance_after_non_negative"),
        Index("ix_wallet_transactions_wallet_created", "wallet_id", "created_at", "id"),
    )

    wallet_id: Mapped[UUID] = mapped_column(ForeignKey("wallets.id", ondelete="RESTRICT"), nullable=False)
    type: Mapped[TransactionTypeEnum] = mapped_column(
        SAEnum(TransactionTypeEnum, name="transaction_type_enum", native_enum=False),
        nullable=False,
    )
    source: Mapped[TransactionSourceEnum] = mapped_column(
        SAEnum(TransactionSourceEnum, name="transaction_source_enum", native_enum=False),
        nullable=False,
    )
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[CurrencyEnum] = mapped_column(
        SAEnum(CurrencyEnum, name="currency_enum", native_enum=False),
        nullable=False,
    )
    balance_before_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    client_request_id: Mapped[str] = mapped_column(String(128), nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    payment_method_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    wallet: Mapped[Wallet] = relationship(back_populates="transactions")
