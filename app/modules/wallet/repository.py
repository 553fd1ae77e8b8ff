"""Wallet repository layer."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import CurrencyEnum, TransactionSourceEnum, TransactionTypeEnum
from app.modules.wallet.models import Wallet, WalletTransaction


class WalletRepository:
    """DB operations for wallets and their ledger."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _wallet_stmt(self, owner_id: UUID, *, lock: bool) -> Select[tuple[Wallet]]:
        stmt = select(Wallet).where(Wallet.owner_id == owner_id)
        if lock:
            stmt = stmt.with_for_update()
        return stmt

    async def get_wallet_by_owner(self, owner_id: UUID, *, lock: bool = False) -> Wallet | None:
        return await self.session.scalar(self._wallet_stmt(owner_id, lock=lock))

    async def get_or_create_wallet(
        self,
        owner_id: UUID,
        currency: CurrencyEnum,
        *,
        lock: bool = False,
    ) -> Wallet:
        """Return the owner's wallet, creating it on first use; concurrent creators converge."""
        stmt = self._wallet_stmt(owner_id, lock=lock)
        wallet = await self.session.scalar(stmt)
        if wallet is not None:
            return wallet

        nested_transaction = await self.session.begin_nested()
        wallet = Wallet(owner_id=owner_id, balance_minor=0, currency=currency)
        self.session.add(wallet)
        try:
            await self.session.flush()
        except IntegrityError:
            await nested_transaction.rollback()
            return (await self.session.scalars(stmt)).one()
        await nested_transaction.commit()

        if lock:
            return (await self.session.scalars(stmt)).one()
        return wallet

    async def get_transaction_by_request(
        self,
        wallet_id: UUID,
        client_request_id: str,
    ) -> WalletTransaction | None:
        stmt = select(WalletTransaction).where(
            WalletTransaction.wallet_id == wallet_id,
            WalletTransaction.client_request_id == client_request_id,
        )
        return await self.session.scalar(stmt)

    async def add_transaction(
        self,
        wallet: Wallet,
        *,
        type_: TransactionTypeEnum,
        source: TransactionSourceEnum,
        amount_minor: int,
        balance_before_minor: int,
        balance_after_minor: int,
        client_request_id: str,
        reference_type: str | None,
        reference_id: str | None,
        payment_method_id: str | None,
    ) -> WalletTransaction | None:
        """Append one ledger row; return None when the idempotency key is already taken."""
        nested_transaction = await self.session.begin_nested()
        transaction = WalletTransaction(
            wallet_id=wallet.id,
            type=type_,
            source=source,
            amount_minor=amount_minor,
            currency=wallet.currency,
            balance_before_minor=balance_before_minor,
            balance_after_minor=balance_after_minor,
            client_request_id=client_request_id,
            reference_type=reference_type,
            reference_id=reference_id,
            payment_method_id=payment_method_id,
        )
        self.session.add(transaction)
        try:
            await self.session.flush()
        except IntegrityError:
            await nested_transaction.rollback()
            return None
        await nested_transaction.commit()
        return transaction

    async def set_balance(self, wallet: Wallet, balance_minor: int) -> Wallet:
        wallet.balance_minor = balance_minor
        await self.session.flush()
        return wallet

    async def list_transactions(
        self,
        wallet_id: UUID,
        *,
        before: tuple[datetime, UUID] | None,
        limit: int,
    ) -> list[WalletTransaction]:
        """Return up to limit rows strictly older than the keyset position, newest first."""
        stmt = select(WalletTransaction).where(WalletTransaction.wallet_id == wallet_id)
        if before is not None:
            created_at, transaction_id = before
            stmt = stmt.where(
                or_(
                    WalletTransaction.created_at < created_at,
                    and_(
                        WalletTransaction.created_at == created_at,
                        WalletTransaction.id < transaction_id,
                    ),
                ),
            )
        stmt = stmt.order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc()).limit(limit)
        return list((await self.session.scalars(stmt)).all())
