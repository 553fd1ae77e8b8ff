"""Payout API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from app.core.enums import PayoutStatusEnum, RoleEnum
from app.modules.identity.service import get_current_user, require_roles
from app.modules.payouts.schemas import PayoutCreateRequest, PayoutRead, PayoutSettleRequest
from app.modules.payouts.service import PayoutService, get_payout_service
from app.shared.pagination import CursorPage, get_cursor_params

router = APIRouter(prefix="/payouts", tags=["payouts"])
require_admin = require_roles(RoleEnum.ADMIN)


@router.post("", response_model=PayoutRead, status_code=status.HTTP_201_CREATED)
async def request_payout(
    payload: PayoutCreateRequest,
    response: Response,
    service: PayoutService = Depends(get_payout_service),
    current_user=Depends(require_roles(RoleEnum.MENTOR)),
) -> PayoutRead:
    """Ask for a payout of wallet earnings; replays with the same clientRequestId return the original."""
    payout, idempotent = await service.request_payout(payload, current_user)
    if idempotent:
        response.status_code = status.HTTP_200_OK
    return PayoutRead.model_validate(payout)


@router.get("/my", response_model=CursorPage[PayoutRead])
async def list_my_payouts(
    status_filter: PayoutStatusEnum | None = Query(default=None, alias="status"),
    params=Depends(get_cursor_params),
    service: PayoutService = Depends(get_payout_service),
    current_user=Depends(get_current_user),
) -> CursorPage[PayoutRead]:
    items, next_cursor = await service.list_payouts(current_user, params, status_filter)
    return CursorPage(
        items=[PayoutRead.model_validate(item) for item in items],
        next_cursor=next_cursor,
        limit=params.limit,
    )


@router.get("", response_model=CursorPage[PayoutRead])
async def list_payouts(
    status_filter: PayoutStatusEnum | None = Query(default=None, alias="status"),
    params=Depends(get_cursor_params),
    service: PayoutService = Depends(get_payout_service),
    current_user=Depends(require_admin),
) -> CursorPage[PayoutRead]:
    """Admin queue of payout requests, newest first."""
    items, next_cursor = await service.list_payouts(current_user, params, status_filter, mine=False)
    return CursorPage(
        items=[PayoutRead.model_validate(item) for item in items],
        next_cursor=next_cursor,
        limit=params.limit,
    )


@router.post("/{payout_id}/approve", response_model=PayoutRead)
async def approve_payout(
    payout_id: UUID,
    service: PayoutService = Depends(get_payout_service),
    current_user=Depends(require_admin),
) -> PayoutRead:
    """Debit the mentor's wallet and start the transfer."""
    payout = await service.approve_payout(payout_id, current_user)
    return PayoutRead.model_validate(payout)


@router.post("/{payout_id}/retry", response_model=PayoutRead)
async def retry_payout(
    payout_id: UUID,
    service: PayoutService = Depends(get_payout_service),
    current_user=Depends(require_admin),
) -> PayoutRead:
    payout = await service.retry_payout(payout_id, current_user)
    return PayoutRead.model_validate(payout)


@router.post("/{payout_id}/settle", response_model=PayoutRead)
async def settle_payout(
    payout_id: UUID,
    payload: PayoutSettleRequest,
    service: PayoutService = Depends(get_payout_service),
    current_user=Depends(require_admin),
) -> PayoutRead:
    """Record the provider's final result; failures are refunded to the wallet."""
    payout = await service.settle_payout(payout_id, payload, current_user)
    return PayoutRead.model_validate(payout)


@router.post("/{payout_id}/cancel", response_model=PayoutRead)
async def cancel_payout(
    payout_id: UUID,
    service: PayoutService = Depends(get_payout_service),
    current_user=Depends(get_current_user),
) -> PayoutRead:
    payout = await service.cancel_payout(payout_id, current_user)
    return PayoutRead.model_validate(payout)
