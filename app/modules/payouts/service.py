"""Payout business logic layer.

A mentor asks for a payout, an admin approves it and the wallet is debited at that
moment, then the payment provider reports the final result. A failed transfer
gives the money back to the wallet and can be retried, which debits again under
a fresh attempt key.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db_session
from app.core.enums import CurrencyEnum, PayoutStatusEnum, RoleEnum, TransactionSourceEnum
from app.modules.identity.schemas import Principal
from app.modules.outbox.repository import OutboxRepository
from app.modules.payouts.models import PayoutRequest
from app.modules.payouts.repository import PayoutRepository
from app.modules.payouts.schemas import PayoutCreateRequest, PayoutSettleRequest
from app.modules.wallet.ledger import WalletLedger, payout_debit_key, payout_refund_key
from app.modules.wallet.repository import WalletRepository
from app.shared.exceptions import (
    ConflictException,
    InsufficientFundsException,
    NotFoundException,
    UnauthorizedException,
)
from app.shared.pagination import CursorParams, decode_cursor, encode_cursor
from app.shared.utils import utc_now

logger = logging.getLogger(__name__)
settings = get_settings()


class PayoutService:
    """Mentor payouts on top of the wallet ledger."""

    def __init__(
        self,
        repository: PayoutRepository,
        wallet_repository: WalletRepository,
        ledger: WalletLedger,
        outbox_repository: OutboxRepository,
    ) -> None:
        self.repository = repository
        self.wallet_repository = wallet_repository
        self.ledger = ledger
        self.outbox_repository = outbox_repository

    @staticmethod
    def _ensure_admin(actor: Principal) -> None:
        if actor.role != RoleEnum.ADMIN:
            raise UnauthorizedException("Only admins can process payouts")

    async def _get_payout_for_actor(self, payout_id: UUID, actor: Principal) -> PayoutRequest:
        payout = await self.repository.get_payout_by_id(payout_id, lock=True)
        if payout is None:
            raise NotFoundException("Payout not found")
        if actor.role != RoleEnum.ADMIN and payout.mentor_id != actor.id:
            raise UnauthorizedException("You cannot manage this payout")
        return payout

    async def _emit(self, payout: PayoutRequest, event_type: str, **extra) -> None:
        payload = {
            "payout_id": str(payout.id),
            "mentor_id": str(payout.mentor_id),
            "status": str(payout.status),
            "amount_minor": payout.amount_minor,
            "currency": str(payout.currency),
            "attempt": payout.attempt_count,
        }
        payload.update(extra)
        await self.outbox_repository.create_outbox_event(
            aggregate_type="payout",
            aggregate_id=str(payout.id),
            event_type=event_type,
            payload=payload,
        )

    async def _debit(self, payout: PayoutRequest) -> None:
        attempt = payout.attempt_count + 1
        await self.ledger.debit(
            payout.mentor_id,
            payout.amount_minor,
            TransactionSourceEnum.PAYOUT,
            payout_debit_key(payout.id, attempt),
            reference_type="payout",
            reference_id=str(payout.id),
            currency=payout.currency,
        )
        payout.attempt_count = attempt
        payout.status = PayoutStatusEnum.PROCESSING
        payout.external_id = f"PO-{payout.id}"
        payout.failure_reason = None
        payout.processed_at = utc_now()

    @staticmethod
    def _replay(existing: PayoutRequest, payload: PayoutCreateRequest) -> tuple[PayoutRequest, bool]:
        if existing.amount_minor != payload.amount_minor or (
            payload.currency is not None and existing.currency != payload.currency
        ):
            raise ConflictException(
                "clientRequestId was already used for a different payout",
                details={"payout_id": str(existing.id)},
            )
        return existing, True

    async def request_payout(self, payload: PayoutCreateRequest, actor: Principal) -> tuple[PayoutRequest, bool]:
        """Create a pending payout; replays of the same clientRequestId return the original request."""
        if actor.role != RoleEnum.MENTOR:
            raise UnauthorizedException("Only mentors can request payouts")

        existing = await self.repository.get_payout_by_request(actor.id, payload.client_request_id)
        if existing is not None:
            return self._replay(existing, payload)

        wallet = await self.wallet_repository.get_wallet_by_owner(actor.id)
        balance = wallet.balance_minor if wallet is not None else 0
        if balance < payload.amount_minor:
            raise InsufficientFundsException(
                "Insufficient wallet balance",
                details={
                    "balance_minor": balance,
                    "required_minor": payload.amount_minor,
                    "shortfall_minor": payload.amount_minor - balance,
                },
            )
        currency = payload.currency
        if currency is None:
            currency = wallet.currency if wallet is not None else CurrencyEnum(settings.default_currency)

        payout = await self.repository.create_payout(
            mentor_id=actor.id,
            amount_minor=payload.amount_minor,
            currency=currency,
            status=PayoutStatusEnum.PENDING,
            client_request_id=payload.client_request_id,
            attempt_count=0,
        )
        if payout is None:
            existing = await self.repository.get_payout_by_request(actor.id, payload.client_request_id)
            if existing is None:
                raise ConflictException("Payout request collided but could not be re-read")
            return self._replay(existing, payload)

        await self._emit(payout, "payout.requested")
        logger.info("Payout %s requested by mentor %s amount=%s", payout.id, actor.id, payout.amount_minor)
        return payout, False

    async def approve_payout(self, payout_id: UUID, actor: Principal) -> PayoutRequest:
        """Debit the mentor's wallet and hand the payout to the provider."""
        self._ensure_admin(actor)
        payout = await self._get_payout_for_actor(payout_id, actor)
        if payout.status != PayoutStatusEnum.PENDING:
            raise ConflictException(f"Payout is {payout.status}, only pending payouts can be approved")

        await self._debit(payout)
        payout.approved_by = actor.id
        await self.repository.save(payout)
        await self._emit(payout, "payout.processing")
        logger.info("Payout %s approved by %s", payout.id, actor.id)
        return payout

    async def retry_payout(self, payout_id: UUID, actor: Principal) -> PayoutRequest:
        self._ensure_admin(actor)
        payout = await self._get_payout_for_actor(payout_id, actor)
        if payout.status != PayoutStatusEnum.FAILED:
            raise ConflictException(f"Payout is {payout.status}, only failed payouts can be retried")

        await self._debit(payout)
        await self.repository.save(payout)
        await self._emit(payout, "payout.processing", retried=True)
        logger.info("Payout %s retried, attempt=%s", payout.id, payout.attempt_count)
        return payout

    async def settle_payout(self, payout_id: UUID, payload: PayoutSettleRequest, actor: Principal) -> PayoutRequest:
        """Record the provider result; a failure returns the money to the mentor's wallet.

        Repeating the result a payout already has is a no-op.
        """
        self._ensure_admin(actor)
        payout = await self._get_payout_for_actor(payout_id, actor)
        target = PayoutStatusEnum.PAID if payload.outcome == "paid" else PayoutStatusEnum.FAILED
        if payout.status == target:
            return payout
        if payout.status != PayoutStatusEnum.PROCESSING:
            raise ConflictException(f"Payout is {payout.status}, only processing payouts can be settled")

        if target == PayoutStatusEnum.FAILED:
            await self.ledger.refund(
                payout.mentor_id,
                payout.amount_minor,
                payout_refund_key(payout.id, payout.attempt_count),
                source=TransactionSourceEnum.PAYOUT,
                reference_type="payout",
                reference_id=str(payout.id),
                currency=payout.currency,
            )
            payout.failure_reason = payload.reason
        else:
            payout.paid_at = utc_now()
        payout.status = target
        await self.repository.save(payout)
        await self._emit(payout, f"payout.{target}", reason=payload.reason)
        logger.info("Payout %s settled as %s", payout.id, target)
        return payout

    async def cancel_payout(self, payout_id: UUID, actor: Principal) -> PayoutRequest:
        """Withdraw a payout nobody has approved yet; no money has moved."""
        payout = await self._get_payout_for_actor(payout_id, actor)
        if payout.status != PayoutStatusEnum.PENDING:
            raise ConflictException(f"Payout is {payout.status}, only pending payouts can be cancelled")
        payout.status = PayoutStatusEnum.CANCELLED
        await self.repository.save(payout)
        await self._emit(payout, "payout.cancelled")
        return payout

    async def list_payouts(
        self,
        actor: Principal,
        params: CursorParams,
        status: PayoutStatusEnum | None = None,
        *,
        mine: bool = True,
    ) -> tuple[list[PayoutRequest], str | None]:
        """One page of payouts, newest first; admins may list every mentor's requests."""
        if not mine:
            self._ensure_admin(actor)
        before = decode_cursor(params.cursor) if params.cursor else None
        rows = await self.repository.list_payouts(
            mentor_id=actor.id if mine else None,
            status=status,
            before=before,
            limit=params.limit + 1,
        )
        items = rows[: params.limit]
        next_cursor = None
        if len(rows) > params.limit:
            last = items[-1]
            next_cursor = encode_cursor(last.created_at, last.id)
        return items, next_cursor


async def get_payout_service(session: AsyncSession = Depends(get_db_session)) -> PayoutService:
    """Dependency provider for payout service."""
    wallet_repository = WalletRepository(session)
    outbox_repository = OutboxRepository(session)
    return PayoutService(
        repository=PayoutRepository(session),
        wallet_repository=wallet_repository,
        ledger=WalletLedger(wallet_repository, outbox_repository),
        outbox_repository=outbox_repository,
    )
