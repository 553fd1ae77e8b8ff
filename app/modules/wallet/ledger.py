"""Idempotent wallet ledger.

Every mutation runs inside the caller's transaction and follows the same steps:
lock the wallet row, look up the idempotency key, check funds, append exactly one
ledger row and move the balance. Replays of a known ``client_request_id`` return
the original row with ``idempotent=True`` and leave the balance untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from app.core.config import get_settings
from app.core.enums import CurrencyEnum, TransactionSourceEnum, TransactionTypeEnum
from app.core.metrics import record_ledger_operation
from app.modules.outbox.repository import OutboxRepository
from app.modules.wallet.models import Wallet, WalletTransaction
from app.modules.wallet.repository import WalletRepository
from app.shared.exceptions import ConflictException, InsufficientFundsException, ValidationException

logger = logging.getLogger(__name__)
settings = get_settings()

_EVENT_TYPES = {
    TransactionTypeEnum.CREDIT: "wallet.credited",
    TransactionTypeEnum.DEBIT: "wallet.debited",
    TransactionTypeEnum.REFUND: "wallet.refunded",
}


@dataclass(slots=True)
class LedgerResult:
    transaction: WalletTransaction
    wallet: Wallet
    idempotent: bool


def booking_payment_key(booking_id: UUID, attempt: int) -> str:
    return f"booking_payment:{booking_id}:{attempt}"


def booking_refund_key(booking_id: UUID, attempt: int) -> str:
    return f"booking_refund:{booking_id}:{attempt}"


def booking_earn_key(booking_id: UUID, attempt: int) -> str:
    return f"booking_earn:{booking_id}:{attempt}"


def payout_debit_key(payout_id: UUID, attempt: int) -> str:
    return f"payout:{payout_id}:{attempt}"


def payout_refund_key(payout_id: UUID, attempt: int) -> str:
    return f"payout_refund:{payout_id}:{attempt}"


class WalletLedger:
    """Credit, debit and refund operations keyed by client request id."""

    def __init__(
        self,
        wallet_repository: WalletRepository,
        outbox_repository: OutboxRepository,
        *,
        default_currency: CurrencyEnum | None = None,
    ) -> None:
        self.wallet_repository = wallet_repository
        self.outbox_repository = outbox_repository
        self.default_currency = default_currency or CurrencyEnum(settings.default_currency)

    async def credit(
        self,
        owner_id: UUID,
        amount_minor: int,
        source: TransactionSourceEnum,
        client_request_id: str,
        *,
        reference_type: str | None = None,
        reference_id: str | None = None,
        currency: CurrencyEnum | None = None,
    ) -> LedgerResult:
        """Add funds to the owner's wallet."""
        return await self._apply(
            owner_id,
            TransactionTypeEnum.CREDIT,
            amount_minor,
            source,
            client_request_id,
            reference_type=reference_type,
            reference_id=reference_id,
            currency=currency,
        )

    async def debit(
        self,
        owner_id: UUID,
        amount_minor: int,
        source: TransactionSourceEnum,
        client_request_id: str,
        *,
        reference_type: str | None = None,
        reference_id: str | None = None,
        payment_method_id: str | None = None,
        currency: CurrencyEnum | None = None,
    ) -> LedgerResult:
        """Take funds from the owner's wallet; never overdraws."""
        return await self._apply(
            owner_id,
            TransactionTypeEnum.DEBIT,
            amount_minor,
            source,
            client_request_id,
            reference_type=reference_type,
            reference_id=reference_id,
            payment_method_id=payment_method_id,
            currency=currency,
        )

    async def refund(
        self,
        owner_id: UUID,
        amount_minor: int,
        client_request_id: str,
        *,
        source: TransactionSourceEnum = TransactionSourceEnum.BOOKING_PAYMENT,
        reference_type: str | None = None,
        reference_id: str | None = None,
        currency: CurrencyEnum | None = None,
    ) -> LedgerResult:
        """Give back money taken by an earlier debit of the same source."""
        return await self._apply(
            owner_id,
            TransactionTypeEnum.REFUND,
            amount_minor,
            source,
            client_request_id,
            reference_type=reference_type,
            reference_id=reference_id,
            currency=currency,
        )

    async def _apply(
        self,
        owner_id: UUID,
        type_: TransactionTypeEnum,
        amount_minor: int,
        source: TransactionSourceEnum,
        client_request_id: str,
        *,
        reference_type: str | None = None,
        reference_id: str | None = None,
        payment_method_id: str | None = None,
        currency: CurrencyEnum | None = None,
    ) -> LedgerResult:
        if isinstance(amount_minor, bool) or not isinstance(amount_minor, int) or amount_minor <= 0:
            raise ValidationException("amount_minor must be a positive integer")
        client_request_id = (client_request_id or "").strip()
        if not client_request_id:
            raise ValidationException("client_request_id is required")

        wallet = await self.wallet_repository.get_or_create_wallet(
            owner_id,
            currency or self.default_currency,
            lock=True,
        )

        existing = await self.wallet_repository.get_transaction_by_request(wallet.id, client_request_id)
        if existing is not None:
            return self._replay(existing, wallet, type_, amount_minor, source)

        if currency is not None and currency != wallet.currency:
            raise ValidationException(
                f"Wallet currency is {wallet.currency}, cannot apply {currency}",
            )

        balance_before = wallet.balance_minor
        if type_ == TransactionTypeEnum.DEBIT:
            if balance_before < amount_minor:
                raise InsufficientFundsException(
                    "Insufficient wallet balance",
                    details={
                        "balance_minor": balance_before,
                        "required_minor": amount_minor,
                        "shortfall_minor": amount_minor - balance_before,
                        "currency": str(wallet.currency),
                    },
                )
            balance_after = balance_before - amount_minor
        else:
            balance_after = balance_before + amount_minor

        transaction = await self.wallet_repository.add_transaction(
            wallet,
            type_=type_,
            source=source,
            amount_minor=amount_minor,
            balance_before_minor=balance_before,
            balance_after_minor=balance_after,
            client_request_id=client_request_id,
            reference_type=reference_type,
            reference_id=reference_id,
            payment_method_id=payment_method_id,
        )
        if transaction is None:
            existing = await self.wallet_repository.get_transaction_by_request(wallet.id, client_request_id)
            if existing is None:
                raise ConflictException("Ledger entry collided but could not be re-read")
            return self._replay(existing, wallet, type_, amount_minor, source)

        await self.wallet_repository.set_balance(wallet, balance_after)
        await self.outbox_repository.create_outbox_event(
            aggregate_type="wallet",
            aggregate_id=str(wallet.id),
            event_type=_EVENT_TYPES[type_],
            payload={
                "wallet_id": str(wallet.id),
                "owner_id": str(owner_id),
                "transaction_id": str(transaction.id),
                "source": str(source),
                "amount_minor": amount_minor,
                "balance_after_minor": balance_after,
                "currency": str(wallet.currency),
                "reference_type": reference_type,
                "reference_id": reference_id,
            },
        )
        record_ledger_operation(str(type_), str(source), idempotent=False)
        logger.info(
            "Ledger %s %s wallet=%s amount=%s key=%s",
            type_,
            source,
            wallet.id,
            amount_minor,
            client_request_id,
        )
        return LedgerResult(transaction=transaction, wallet=wallet, idempotent=False)

    @staticmethod
    def _replay(
        existing: WalletTransaction,
        wallet: Wallet,
        type_: TransactionTypeEnum,
        amount_minor: int,
        source: TransactionSourceEnum,
    ) -> LedgerResult:
        if existing.type != type_ or existing.amount_minor != amount_minor or existing.source != source:
            raise ConflictException(
                "client_request_id was already used for a different operation",
                details={"transaction_id": str(existing.id)},
            )
        record_ledger_operation(str(type_), str(source), idempotent=True)
        return LedgerResult(transaction=existing, wallet=wallet, idempotent=True)
