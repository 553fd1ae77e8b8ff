from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest

from app.core.enums import CurrencyEnum, RoleEnum, TransactionSourceEnum, TransactionTypeEnum
from app.modules.identity.schemas import Principal
from app.modules.wallet.ledger import WalletLedger, booking_payment_key
from app.modules.wallet.schemas import WalletDebitRequest, WalletTopupRequest
from app.modules.wallet.service import WalletService
from app.shared.exceptions import ConflictException, InsufficientFundsException, ValidationException
from app.shared.pagination import CursorParams, decode_cursor, encode_cursor


@dataclass
class FakeWallet:
    id: UUID
    owner_id: UUID
    currency: CurrencyEnum
    balance_minor: int = 0


@dataclass
class FakeTransaction:
    id: UUID
    wallet_id: UUID
    type: TransactionTypeEnum
    source: TransactionSourceEnum
    amount_minor: int
    balance_before_minor: int
    balance_after_minor: int
    client_request_id: str
    reference_type: str | None = None
    reference_id: str | None = None
    payment_method_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime(2026, 3, 1, tzinfo=UTC))


class FakeWalletRepository:
    def __init__(self) -> None:
        self.wallets: dict[UUID, FakeWallet] = {}
        self.transactions: list[FakeTransaction] = []
        self.lock_requests: list[bool] = []

    async def get_wallet_by_owner(self, owner_id: UUID, *, lock: bool = False) -> FakeWallet | None:
        return self.wallets.get(owner_id)

    async def get_or_create_wallet(
        self,
        owner_id: UUID,
        currency: CurrencyEnum,
        *,
        lock: bool = False,
    ) -> FakeWallet:
        self.lock_requests.append(lock)
        if owner_id not in self.wallets:
            self.wallets[owner_id] = FakeWallet(id=uuid4(), owner_id=owner_id, currency=currency)
        return self.wallets[owner_id]

    async def get_transaction_by_request(self, wallet_id: UUID, client_request_id: str) -> FakeTransaction | None:
        return next(
            (
                item
                for item in self.transactions
                if item.wallet_id == wallet_id and item.client_request_id == client_request_id
            ),
            None,
        )

    async def add_transaction(self, wallet: FakeWallet, *, type_, source, **fields) -> FakeTransaction:
        transaction = FakeTransaction(
            id=uuid4(),
            wallet_id=wallet.id,
            type=type_,
            source=source,
            created_at=datetime(2026, 3, 1, tzinfo=UTC) + timedelta(minutes=len(self.transactions)),
            **fields,
        )
        self.transactions.append(transaction)
        return transaction

    async def set_balance(self, wallet: FakeWallet, balance_minor: int) -> FakeWallet:
        wallet.balance_minor = balance_minor
        return wallet

    async def list_transactions(
        self,
        wallet_id: UUID,
        *,
        before: tuple[datetime, UUID] | None,
        limit: int,
    ) -> list[FakeTransaction]:
        rows = sorted(
            (item for item in self.transactions if item.wallet_id == wallet_id),
            key=lambda item: (item.created_at, item.id),
            reverse=True,
        )
        if before is not None:
            rows = [item for item in rows if (item.created_at, item.id) < before]
        return rows[:limit]


class FakeOutboxRepository:
    def __init__(self) -> None:
        self.events: list[dict] = []

    async def create_outbox_event(
        self,
        aggregate_type: str,
        aggregate_id: str,
        event_type: str,
        payload: dict,
    ) -> None:
        self.events.append({"event_type": event_type, "payload": payload})


def make_ledger() -> tuple[WalletLedger, FakeWalletRepository, FakeOutboxRepository]:
    repository = FakeWalletRepository()
    outbox = FakeOutboxRepository()
    return WalletLedger(repository, outbox, default_currency=CurrencyEnum.VND), repository, outbox


@pytest.mark.asyncio
async def test_credit_replay_returns_original_transaction() -> None:
    ledger, repository, outbox = make_ledger()
    owner_id = uuid4()

    first = await ledger.credit(owner_id, 500_000, TransactionSourceEnum.MANUAL_TOPUP, "topup-1")
    replay = await ledger.credit(owner_id, 500_000, TransactionSourceEnum.MANUAL_TOPUP, " topup-1 ")

    assert first.idempotent is False
    assert replay.idempotent is True
    assert replay.transaction.id == first.transaction.id
    assert repository.wallets[owner_id].balance_minor == 500_000
    assert len(repository.transactions) == 1
    assert [event["event_type"] for event in outbox.events] == ["wallet.credited"]
    assert repository.lock_requests == [True, True]


@pytest.mark.asyncio
async def test_reused_request_id_with_different_amount_conflicts() -> None:
    ledger, repository, _ = make_ledger()
    owner_id = uuid4()
    first = await ledger.credit(owner_id, 100, TransactionSourceEnum.MANUAL_TOPUP, "topup-1")

    with pytest.raises(ConflictException) as exc:
        await ledger.credit(owner_id, 200, TransactionSourceEnum.MANUAL_TOPUP, "topup-1")

    assert exc.value.details == {"transaction_id": str(first.transaction.id)}
    assert repository.wallets[owner_id].balance_minor == 100


@pytest.mark.asyncio
async def test_debit_never_overdraws() -> None:
    ledger, repository, outbox = make_ledger()
    owner_id = uuid4()
    await ledger.credit(owner_id, 300, TransactionSourceEnum.MANUAL_TOPUP, "topup-1")

    with pytest.raises(InsufficientFundsException) as exc:
        await ledger.debit(owner_id, 500, TransactionSourceEnum.BOOKING_PAYMENT, "pay-1")

    assert exc.value.details == {
        "balance_minor": 300,
        "required_minor": 500,
        "shortfall_minor": 200,
        "currency": "VND",
    }
    assert repository.wallets[owner_id].balance_minor == 300
    assert len(repository.transactions) == 1
    assert len(outbox.events) == 1


@pytest.mark.asyncio
async def test_debit_then_refund_records_balances() -> None:
    ledger, repository, outbox = make_ledger()
    owner_id = uuid4()
    booking_id = uuid4()
    await ledger.credit(owner_id, 1_000, TransactionSourceEnum.MANUAL_TOPUP, "topup-1")

    debit = await ledger.debit(
        owner_id,
        400,
        TransactionSourceEnum.BOOKING_PAYMENT,
        booking_payment_key(booking_id, 1),
        reference_type="booking",
        reference_id=str(booking_id),
    )
    refund = await ledger.refund(owner_id, 320, f"booking_refund:{booking_id}:1", reference_type="booking")

    assert debit.transaction.balance_before_minor == 1_000
    assert debit.transaction.balance_after_minor == 600
    assert refund.transaction.type == TransactionTypeEnum.REFUND
    assert refund.transaction.source == TransactionSourceEnum.BOOKING_PAYMENT
    assert repository.wallets[owner_id].balance_minor == 920
    assert outbox.events[1]["payload"]["reference_id"] == str(booking_id)
    assert [event["event_type"] for event in outbox.events] == [
        "wallet.credited",
        "wallet.debited",
        "wallet.refunded",
    ]


@pytest.mark.asyncio
async def test_debit_replay_returns_original_transaction_and_keeps_balance() -> None:
    ledger, repository, outbox = make_ledger()
    actor = Principal(id=uuid4(), role=RoleEnum.MENTEE)
    service = WalletService(repository, ledger)
    await service.topup(WalletTopupRequest(amount_minor=500, client_request_id="topup-1"), actor)
    withdraw = WalletDebitRequest(amount_minor=400, client_request_id="withdraw-1", payment_method_id="card-1")

    first = await service.debit(withdraw, actor)
    # Balance is now below the amount; a replay must still resolve to the original row.
    replay = await service.debit(withdraw, actor)

    assert first.idempotent is False
    assert replay.idempotent is True
    assert replay.transaction.id == first.transaction.id
    assert replay.transaction.source == TransactionSourceEnum.MANUAL_WITHDRAW
    assert repository.wallets[actor.id].balance_minor == 100
    assert len(repository.transactions) == 2
    assert [event["event_type"] for event in outbox.events] == ["wallet.credited", "wallet.debited"]

    with pytest.raises(ConflictException) as exc:
        await service.debit(withdraw.model_copy(update={"amount_minor": 50}), actor)
    assert exc.value.details == {"transaction_id": str(first.transaction.id)}
    assert exc.value.status_code == 409
    assert repository.wallets[actor.id].balance_minor == 100
    assert len(repository.transactions) == 2

@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -5, True])
async def test_amount_must_be_positive_integer(amount) -> None:
    ledger, repository, _ = make_ledger()

    with pytest.raises(ValidationException):
        await ledger.credit(uuid4(), amount, TransactionSourceEnum.MANUAL_TOPUP, "topup-1")
    assert repository.wallets == {}


@pytest.mark.asyncio
async def test_blank_request_id_is_rejected() -> None:
    ledger, _, _ = make_ledger()

    with pytest.raises(ValidationException):
        await ledger.credit(uuid4(), 10, TransactionSourceEnum.MANUAL_TOPUP, "   ")


@pytest.mark.asyncio
async def test_currency_mismatch_is_rejected() -> None:
    ledger, _, _ = make_ledger()
    owner_id = uuid4()
    await ledger.credit(owner_id, 10, TransactionSourceEnum.MANUAL_TOPUP, "topup-1")

    with pytest.raises(ValidationException):
        await ledger.credit(owner_id, 10, TransactionSourceEnum.MANUAL_TOPUP, "topup-2", currency=CurrencyEnum.USD)


@pytest.mark.asyncio
async def test_transaction_history_pages_with_cursor() -> None:
    ledger, repository, _ = make_ledger()
    actor = Principal(id=uuid4(), role=RoleEnum.MENTEE)
    service = WalletService(repository, ledger)
    for index in range(5):
        await ledger.credit(actor.id, 10 + index, TransactionSourceEnum.MANUAL_TOPUP, f"topup-{index}")

    first_page, cursor = await service.list_transactions(actor, CursorParams(cursor=None, limit=2))
    second_page, second_cursor = await service.list_transactions(actor, CursorParams(cursor=cursor, limit=2))
    last_page, last_cursor = await service.list_transactions(actor, CursorParams(cursor=second_cursor, limit=2))

    assert [item.amount_minor for item in first_page] == [14, 13]
    assert [item.amount_minor for item in second_page] == [12, 11]
    assert [item.amount_minor for item in last_page] == [10]
    assert last_cursor is None


@pytest.mark.asyncio
async def test_history_of_user_without_wallet_is_empty() -> None:
    ledger, repository, _ = make_ledger()
    service = WalletService(repository, ledger)

    items, cursor = await service.list_transactions(
        Principal(id=uuid4(), role=RoleEnum.MENTOR),
        CursorParams(cursor=None, limit=20),
    )

    assert items == []
    assert cursor is None


def test_cursor_round_trip_and_garbage() -> None:
    created_at = datetime(2026, 3, 1, 9, 30, tzinfo=UTC)
    item_id = uuid4()

    assert decode_cursor(encode_cursor(created_at, item_id)) == (created_at, item_id)
    with pytest.raises(ValidationException):
        decode_cursor("not-a-cursor")
