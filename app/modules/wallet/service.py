"""Wallet business logic layer."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db_session
from app.core.enums import CurrencyEnum, TransactionSourceEnum
from app.modules.identity.schemas import Principal
from app.modules.outbox.repository import OutboxRepository
from app.modules.wallet.ledger import LedgerResult, WalletLedger
from app.modules.wallet.models import Wallet, WalletTransaction
from app.modules.wallet.repository import WalletRepository
from app.modules.wallet.schemas import WalletDebitRequest, WalletTopupRequest
from app.shared.pagination import CursorParams, decode_cursor, encode_cursor

settings = get_settings()


class WalletService:
    """User-facing wallet operations on top of the ledger."""

    def __init__(self, repository: WalletRepository, ledger: WalletLedger) -> None:
        self.repository = repository
        self.ledger = ledger

    async def get_my_wallet(self, actor: Principal) -> Wallet:
        """Return caller's wallet, creating an empty one on first access."""
        return await self.repository.get_or_create_wallet(
            actor.id,
            CurrencyEnum(settings.default_currency),
        )

    async def topup(self, payload: WalletTopupRequest, actor: Principal) -> LedgerResult:
        return await self.ledger.credit(
            actor.id,
            payload.amount_minor,
            TransactionSourceEnum.MANUAL_TOPUP,
            payload.client_request_id,
            currency=payload.currency,
        )

    async def debit(self, payload: WalletDebitRequest, actor: Principal) -> LedgerResult:
        return await self.ledger.debit(
            actor.id,
            payload.amount_minor,
            TransactionSourceEnum.MANUAL_WITHDRAW,
            payload.client_request_id,
            payment_method_id=payload.payment_method_id,
            currency=payload.currency,
        )

    async def list_transactions(
        self,
        actor: Principal,
        params: CursorParams,
    ) -> tuple[list[WalletTransaction], str | None]:
        """Return one page of ledger history, newest first, and the cursor of the next page."""
        wallet = await self.repository.get_wallet_by_owner(actor.id)
        if wallet is None:
            return [], None

        before = decode_cursor(params.cursor) if params.cursor else None
        rows = await self.repository.list_transactions(wallet.id, before=before, limit=params.limit + 1)
        items = rows[: params.limit]
        next_cursor = None
        if len(rows) > params.limit:
            last = items[-1]
            next_cursor = encode_cursor(last.created_at, last.id)
        return items, next_cursor


async def get_wallet_service(session: AsyncSession = Depends(get_db_session)) -> WalletService:
    """Dependency provider for wallet service."""
    repository = WalletRepository(session)
    return WalletService(
        repository=repository,
        ledger=WalletLedger(repository, OutboxRepository(session)),
    )
