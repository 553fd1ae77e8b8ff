"""Wallet API router."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from app.modules.identity.service import get_current_user
from app.modules.wallet.ledger import LedgerResult
from app.modules.wallet.schemas import (
    WalletDebitRequest,
    WalletOperationRead,
    WalletRead,
    WalletTopupRequest,
    WalletTransactionRead,
)
from app.modules.wallet.service import WalletService, get_wallet_service
from app.shared.pagination import CursorPage, get_cursor_params

router = APIRouter(prefix="/wallet", tags=["wallet"])


def _operation_read(result: LedgerResult, response: Response) -> WalletOperationRead:
    response.status_code = status.HTTP_200_OK if result.idempotent else status.HTTP_201_CREATED
    return WalletOperationRead(
        wallet=WalletRead.model_validate(result.wallet),
        transaction=WalletTransactionRead.model_validate(result.transaction),
        idempotent=result.idempotent,
    )


@router.get("", response_model=WalletRead)
async def get_my_wallet(
    service: WalletService = Depends(get_wallet_service),
    current_user=Depends(get_current_user),
) -> WalletRead:
    """Return current user's wallet."""
    wallet = await service.get_my_wallet(current_user)
    return WalletRead.model_validate(wallet)


@router.post("/topups", response_model=WalletOperationRead, status_code=status.HTTP_201_CREATED)
async def topup_wallet(
    payload: WalletTopupRequest,
    response: Response,
    service: WalletService = Depends(get_wallet_service),
    current_user=Depends(get_current_user),
) -> WalletOperationRead:
    """Credit the wallet; replays with the same clientRequestId return the original entry."""
    result = await service.topup(payload, current_user)
    return _operation_read(result, response)


@router.post("/debits", response_model=WalletOperationRead, status_code=status.HTTP_201_CREATED)
async def debit_wallet(
    payload: WalletDebitRequest,
    response: Response,
    service: WalletService = Depends(get_wallet_service),
    current_user=Depends(get_current_user),
) -> WalletOperationRead:
    """Debit the wallet without overdraft."""
    result = await service.debit(payload, current_user)
    return _operation_read(result, response)


@router.get("/transactions", response_model=CursorPage[WalletTransactionRead])
async def list_wallet_transactions(
    params=Depends(get_cursor_params),
    service: WalletService = Depends(get_wallet_service),
    current_user=Depends(get_current_user),
) -> CursorPage[WalletTransactionRead]:
    """Cursor-paginated ledger history, newest first."""
    items, next_cursor = await service.list_transactions(current_user, params)
    return CursorPage(
        items=[WalletTransactionRead.model_validate(item) for item in items],
        next_cursor=next_cursor,
        limit=params.limit,
    )
