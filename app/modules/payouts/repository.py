"""Payout repository layer."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import PayoutStatusEnum
from app.modules.payouts.models import PayoutRequest


class PayoutRepository:
    """DB operations for mentor payout requests."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_payout_by_id(self, payout_id: UUID, *, lock: bool = False) -> PayoutRequest | None:
        stmt = select(PayoutRequest).where(PayoutRequest.id == payout_id)
        if lock:
            stmt = stmt.with_for_update()
        return await self.session.scalar(stmt)

    async def get_payout_by_request(self, mentor_id: UUID, client_request_id: str) -> PayoutRequest | None:
        stmt = select(PayoutRequest).where(
            PayoutRequest.mentor_id == mentor_id,
            PayoutRequest.client_request_id == client_request_id,
        )
        return await self.session.scalar(stmt)

    async def create_payout(self, **fields) -> PayoutRequest | None:
        """Insert a payout request; return None when the mentor already used the request id."""
        nested_transaction = await self.session.begin_nested()
        payout = PayoutRequest(**fields)
        self.session.add(payout)
        try:
            await self.session.flush()
        except IntegrityError:
            await nested_transaction.rollback()
            return None
        await nested_transaction.commit()
        return payout

    async def save(self, payout: PayoutRequest) -> PayoutRequest:
        await self.session.flush()
        return payout

    async def list_payouts(
        self,
        *,
        mentor_id: UUID | None,
        status: PayoutStatusEnum | None,
        before: tuple[datetime, UUID] | None,
        limit: int,
    ) -> list[PayoutRequest]:
        """Return up to limit requests older than the keyset position, newest first."""
        stmt = select(PayoutRequest)
        if mentor_id is not None:
            stmt = stmt.where(PayoutRequest.mentor_id == mentor_id)
        if status is not None:
            stmt = stmt.where(PayoutRequest.status == status)
        if before is not None:
            created_at, payout_id = before
            stmt = stmt.where(
                or_(
                    PayoutRequest.created_at < created_at,
                    and_(PayoutRequest.created_at == created_at, PayoutRequest.id < payout_id),
                ),
            )
        stmt = stmt.order_by(PayoutRequest.created_at.desc(), PayoutRequest.id.desc()).limit(limit)
        return list((await self.session.scalars(stmt)).all())
