from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

import pytest

import app.modules.payouts.service as payout_service_module
from app.core.enums import CurrencyEnum, PayoutStatusEnum, RoleEnum, TransactionSourceEnum, TransactionTypeEnum
from app.modules.identity.schemas import Principal
from app.modules.payouts.schemas import PayoutCreateRequest, PayoutSettleRequest
from app.modules.payouts.service import PayoutService
from app.modules.wallet.ledger import WalletLedger
from app.shared.exceptions import ConflictException, InsufficientFundsException, UnauthorizedException
from app.shared.pagination import CursorParams

NOW = datetime(2026, 3, 15, 9, 0, tzinfo=UTC)


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
    client_request_id: str
    balance_before_minor: int
    balance_after_minor: int
    reference_type: str | None = None
    reference_id: str | None = None
    payment_method_id: str | None = None


@dataclass
class FakePayout:
    id: UUID
    mentor_id: UUID
    amount_minor: int
    currency: CurrencyEnum
    status: PayoutStatusEnum
    client_request_id: str
    attempt_count: int = 0
    external_id: str | None = None
    failure_reason: str | None = None
    approved_by: UUID | None = None
    processed_at: datetime | None = None
    paid_at: datetime | None = None
    created_at: datetime = field(default_factory=lambda: NOW)


class FakeWalletRepository:
    def __init__(self) -> None:
        self.wallets: dict[UUID, FakeWallet] = {}
        self.transactions: list[FakeTransaction] = []

    async def get_wallet_by_owner(self, owner_id: UUID, *, lock: bool = False) -> FakeWallet | None:
        return self.wallets.get(owner_id)

    async def get_or_create_wallet(self, owner_id: UUID, currency: CurrencyEnum, *, lock: bool = False) -> FakeWallet:
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
        transaction = FakeTransaction(id=uuid4(), wallet_id=wallet.id, type=type_, source=source, **fields)
        self.transactions.append(transaction)
        return transaction

    async def set_balance(self, wallet: FakeWallet, balance_minor: int) -> FakeWallet:
        wallet.balance_minor = balance_minor
        return wallet


class FakePayoutRepository:
    def __init__(self) -> None:
        self.payouts: list[FakePayout] = []

    async def get_payout_by_id(self, payout_id: UUID, *, lock: bool = False) -> FakePayout | None:
        return next((item for item in self.payouts if item.id == payout_id), None)

    async def get_payout_by_request(self, mentor_id: UUID, client_request_id: str) -> FakePayout | None:
        return next(
            (
                item
                for item in self.payouts
                if item.mentor_id == mentor_id and item.client_request_id == client_request_id
            ),
            None,
        )

    async def create_payout(self, **fields) -> FakePayout:
        payout = FakePayout(
            id=uuid4(),
            created_at=NOW + timedelta(minutes=len(self.payouts)),
            **fields,
        )
        self.payouts.append(payout)
        return payout

    async def save(self, payout: FakePayout) -> FakePayout:
        return payout

    async def list_payouts(
        self,
        *,
        mentor_id: UUID | None,
        status: PayoutStatusEnum | None,
        before: tuple[datetime, UUID] | None,
        limit: int,
    ) -> list[FakePayout]:
        rows = sorted(
            (
                item
                for item in self.payouts
                if (mentor_id is None or item.mentor_id == mentor_id) and (status is None or item.status == status)
            ),
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
        self.events.append(
            {
                "aggregate_type": aggregate_type,
                "aggregate_id": aggregate_id,
                "event_type": event_type,
                "payload": payload,
            },
        )


def make_service(balance_minor: int = 0, mentor_id: UUID | None = None):
    wallets = FakeWalletRepository()
    payouts = FakePayoutRepository()
    outbox = FakeOutboxRepository()
    mentor = Principal(id=mentor_id or uuid4(), role=RoleEnum.MENTOR)
    if balance_minor:
        wallets.wallets[mentor.id] = FakeWallet(
            id=uuid4(),
            owner_id=mentor.id,
            currency=CurrencyEnum.VND,
            balance_minor=balance_minor,
        )
    ledger = WalletLedger(wallets, outbox, default_currency=CurrencyEnum.VND)
    service = PayoutService(payouts, wallets, ledger, outbox)
    return service, mentor, wallets, payouts, outbox


def make_admin() -> Principal:
    return Principal(id=uuid4(), role=RoleEnum.ADMIN)


def payout_request(amount_minor: int, client_request_id: str = "payout-1") -> PayoutCreateRequest:
    return PayoutCreateRequest(amountMinor=amount_minor, clientRequestId=client_request_id)


@pytest.fixture(autouse=True)
def fixed_clock(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(payout_service_module, "utc_now", lambda: NOW)


@pytest.mark.asyncio
async def test_request_is_idempotent_and_does_not_move_money() -> None:
    service, mentor, wallets, payouts, outbox = make_service(balance_minor=100_000)

    first, first_replayed = await service.request_payout(payout_request(60_000), mentor)
    second, second_replayed = await service.request_payout(payout_request(60_000), mentor)

    assert first_replayed is False
    assert second_replayed is True
    assert second is first
    assert first.status == PayoutStatusEnum.PENDING
    assert first.currency == CurrencyEnum.VND
    assert len(payouts.payouts) == 1
    assert wallets.wallets[mentor.id].balance_minor == 100_000
    assert wallets.transactions == []
    assert [event["event_type"] for event in outbox.events] == ["payout.requested"]

    with pytest.raises(ConflictException) as exc:
        await service.request_payout(payout_request(10_000), mentor)
    assert exc.value.details == {"payout_id": str(first.id)}


@pytest.mark.asyncio
async def test_request_above_balance_is_rejected() -> None:
    service, mentor, _, payouts, _ = make_service(balance_minor=5_000)

    with pytest.raises(InsufficientFundsException) as exc:
        await service.request_payout(payout_request(8_000), mentor)

    assert exc.value.details["shortfall_minor"] == 3_000
    assert payouts.payouts == []


@pytest.mark.asyncio
async def test_only_mentors_request_and_only_admins_approve() -> None:
    service, mentor, _, _, _ = make_service(balance_minor=10_000)
    mentee = Principal(id=uuid4(), role=RoleEnum.MENTEE)

    with pytest.raises(UnauthorizedException):
        await service.request_payout(payout_request(1_000), mentee)

    payout, _ = await service.request_payout(payout_request(1_000), mentor)
    with pytest.raises(UnauthorizedException):
        await service.approve_payout(payout.id, mentor)


@pytest.mark.asyncio
async def test_approve_debits_wallet_once_and_moves_to_processing() -> None:
    service, mentor, wallets, _, outbox = make_service(balance_minor=100_000)
    admin = make_admin()
    payout, _ = await service.request_payout(payout_request(60_000), mentor)

    approved = await service.approve_payout(payout.id, admin)

    assert approved.status == PayoutStatusEnum.PROCESSING
    assert approved.attempt_count == 1
    assert approved.external_id == f"PO-{payout.id}"
    assert approved.approved_by == admin.id
    assert approved.processed_at == NOW
    assert wallets.wallets[mentor.id].balance_minor == 40_000
    (debit,) = wallets.transactions
    assert debit.type == TransactionTypeEnum.DEBIT
    assert debit.source == TransactionSourceEnum.PAYOUT
    assert debit.client_request_id == f"payout:{payout.id}:1"
    assert debit.reference_type == "payout"
    assert outbox.events[-1]["event_type"] == "payout.processing"

    with pytest.raises(ConflictException):
        await service.approve_payout(payout.id, admin)
    assert wallets.wallets[mentor.id].balance_minor == 40_000


@pytest.mark.asyncio
async def test_approve_fails_when_balance_was_spent_in_the_meantime() -> None:
    service, mentor, wallets, _, _ = make_service(balance_minor=50_000)
    payout, _ = await service.request_payout(payout_request(50_000), mentor)
    wallets.wallets[mentor.id].balance_minor = 10_000

    with pytest.raises(InsufficientFundsException):
        await service.approve_payout(payout.id, make_admin())

    assert payout.status == PayoutStatusEnum.PENDING
    assert payout.attempt_count == 0


@pytest.mark.asyncio
async def test_failed_transfer_is_refunded_and_retry_debits_again() -> None:
    service, mentor, wallets, _, outbox = make_service(balance_minor=100_000)
    admin = make_admin()
    payout, _ = await service.request_payout(payout_request(60_000), mentor)
    await service.approve_payout(payout.id, admin)

    failed = await service.settle_payout(payout.id, PayoutSettleRequest(outcome="failed", reason="bank rejected"), admin)

    assert failed.status == PayoutStatusEnum.FAILED
    assert failed.failure_reason == "bank rejected"
    assert wallets.wallets[mentor.id].balance_minor == 100_000
    refund = wallets.transactions[-1]
    assert refund.type == TransactionTypeEnum.REFUND
    assert refund.source == TransactionSourceEnum.PAYOUT
    assert refund.client_request_id == f"payout_refund:{payout.id}:1"

    again = await service.settle_payout(payout.id, PayoutSettleRequest(outcome="failed"), admin)
    assert again is failed
    assert len(wallets.transactions) == 2

    retried = await service.retry_payout(payout.id, admin)
    assert retried.status == PayoutStatusEnum.PROCESSING
    assert retried.attempt_count == 2
    assert retried.failure_reason is None
    assert wallets.transactions[-1].client_request_id == f"payout:{payout.id}:2"
    assert wallets.wallets[mentor.id].balance_minor == 40_000

    paid = await service.settle_payout(payout.id, PayoutSettleRequest(outcome="paid"), admin)
    assert paid.status == PayoutStatusEnum.PAID
    assert paid.paid_at == NOW
    assert wallets.wallets[mentor.id].balance_minor == 40_000
    assert outbox.events[-1]["event_type"] == "payout.paid"


@pytest.mark.asyncio
async def test_settle_and_retry_require_the_matching_state() -> None:
    service, mentor, _, _, _ = make_service(balance_minor=10_000)
    admin = make_admin()
    payout, _ = await service.request_payout(payout_request(5_000), mentor)

    with pytest.raises(ConflictException):
        await service.settle_payout(payout.id, PayoutSettleRequest(outcome="paid"), admin)
    with pytest.raises(ConflictException):
        await service.retry_payout(payout.id, admin)

    await service.approve_payout(payout.id, admin)
    await service.settle_payout(payout.id, PayoutSettleRequest(outcome="paid"), admin)
    with pytest.raises(ConflictException):
        await service.settle_payout(payout.id, PayoutSettleRequest(outcome="failed"), admin)


@pytest.mark.asyncio
async def test_mentor_cancels_only_own_pending_payout() -> None:
    service, mentor, wallets, _, _ = make_service(balance_minor=10_000)
    other_mentor = Principal(id=uuid4(), role=RoleEnum.MENTOR)
    payout, _ = await service.request_payout(payout_request(5_000), mentor)

    with pytest.raises(UnauthorizedException):
        await service.cancel_payout(payout.id, other_mentor)

    cancelled = await service.cancel_payout(payout.id, mentor)
    assert cancelled.status == PayoutStatusEnum.CANCELLED
    assert wallets.transactions == []

    with pytest.raises(ConflictException):
        await service.approve_payout(payout.id, make_admin())


@pytest.mark.asyncio
async def test_listing_pages_newest_first_and_admin_sees_all_mentors() -> None:
    service, mentor, wallets, payouts, _ = make_service(balance_minor=10_000)
    other_service, other_mentor, _, _, _ = make_service(balance_minor=10_000)
    other_service.repository = payouts
    for index in range(3):
        await service.request_payout(payout_request(1_000, f"payout-{index}"), mentor)
    await other_service.request_payout(payout_request(2_000), other_mentor)

    first_page, cursor = await service.list_payouts(mentor, CursorParams(cursor=None, limit=2))
    second_page, last_cursor = await service.list_payouts(mentor, CursorParams(cursor=cursor, limit=2))

    assert [item.client_request_id for item in first_page] == ["payout-2", "payout-1"]
    assert [item.client_request_id for item in second_page] == ["payout-0"]
    assert last_cursor is None

    everything, _ = await service.list_payouts(make_admin(), CursorParams(cursor=None, limit=10), mine=False)
    assert {item.mentor_id for item in everything} == {mentor.id, other_mentor.id}
    with pytest.raises(UnauthorizedException):
        await service.list_payouts(mentor, CursorParams(cursor=None, limit=10), mine=False)
