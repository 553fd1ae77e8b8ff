"""Booking business logic layer."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID, uuid4

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db_session
from app.core.enums import (
    BookingStatusEnum,
    NoShowPartyEnum,
    OccurrenceStatusEnum,
    RoleEnum,
    SlotStatusEnum,
    TransactionSourceEnum,
)
from app.modules.booking.models import Booking
from app.modules.booking.policy import (
    BookingPolicy,
    cancellation_refund,
    determine_no_show,
    ensure_transition,
    mentor_response_deadline,
    payment_expires_at,
    settle_session,
)
from app.modules.booking.repository import BookingRepository
from app.modules.booking.schemas import (
    BookingCancelRequest,
    BookingCreateRequest,
    BookingDeclineRequest,
    BookingReviewRequest,
)
from app.modules.identity.schemas import Principal
from app.modules.outbox.repository import OutboxRepository
from app.modules.scheduling.repository import SchedulingRepository
from app.modules.wallet.ledger import (
    WalletLedger,
    booking_earn_key,
    booking_payment_key,
    booking_refund_key,
)
from app.modules.wallet.repository import WalletRepository
from app.shared.exceptions import (
    BusinessRuleException,
    ConflictException,
    NotFoundException,
    UnauthorizedException,
)
from app.shared.utils import utc_now

logger = logging.getLogger(__name__)
settings = get_settings()

REMINDER_24H = "24h"
REMINDER_1H = "1h"


class BookingService:
    """Booking lifecycle: user actions plus the transitions driven by background jobs."""

    def __init__(
        self,
        booking_repository: BookingRepository,
        scheduling_repository: SchedulingRepository,
        ledger: WalletLedger,
        outbox_repository: OutboxRepository,
        policy: BookingPolicy | None = None,
    ) -> None:
        self.booking_repository = booking_repository
        self.scheduling_repository = scheduling_repository
        self.ledger = ledger
        self.outbox_repository = outbox_repository
        self.policy = policy or BookingPolicy.from_settings(settings)

    @staticmethod
    def _validate_actor_access(booking: Booking, actor: Principal) -> None:
        if actor.role == RoleEnum.ADMIN:
            return
        if actor.role == RoleEnum.MENTEE and booking.mentee_id == actor.id:
            return
        if actor.role == RoleEnum.MENTOR and booking.mentor_id == actor.id:
            return
        raise UnauthorizedException("You cannot manage this booking")

    async def _get_booking_for_actor(
        self,
        booking_id: UUID,
        actor: Principal,
        *,
        lock: bool = True,
    ) -> Booking:
        booking = await self.booking_repository.get_booking_by_id(booking_id, lock=lock)
        if booking is None:
            raise NotFoundException("Booking not found")
        self._validate_actor_access(booking, actor)
        return booking

    async def _emit(self, booking: Booking, event_type: str, **extra) -> None:
        payload = {
            "booking_id": str(booking.id),
            "occurrence_id": str(booking.occurrence_id),
            "mentor_id": str(booking.mentor_id),
            "mentee_id": str(booking.mentee_id),
            "status": str(booking.status),
            "start_at": booking.start_at.isoformat(),
            "end_at": booking.end_at.isoformat(),
        }
        payload.update(extra)
        await self.outbox_repository.create_outbox_event(
            aggregate_type="booking",
            aggregate_id=str(booking.id),
            event_type=event_type,
            payload=payload,
        )

    async def _release_occurrence(self, booking: Booking, now: datetime) -> None:
        occurrence = booking.occurrence
        if occurrence is None or occurrence.status not in (
            OccurrenceStatusEnum.RESERVED,
            OccurrenceStatusEnum.BOOKED,
        ):
            return
        # Only a published slot takes its occurrences back; paused and archived ones never reopen.
        reopen = occurrence.start_at > now and occurrence.slot.status == SlotStatusEnum.PUBLISHED
        target = OccurrenceStatusEnum.OPEN if reopen else OccurrenceStatusEnum.CANCELLED
        await self.scheduling_repository.set_occurrence_status(occurrence, target)

    async def _charge(self, booking: Booking) -> None:
        attempt = booking.payment_attempt + 1
        await self.ledger.debit(
            booking.mentee_id,
            booking.price_minor,
            TransactionSourceEnum.BOOKING_PAYMENT,
            booking_payment_key(booking.id, attempt),
            reference_type="booking",
            reference_id=str(booking.id),
            currency=booking.currency,
        )
        booking.payment_attempt = attempt
        booking.paid_minor = booking.price_minor

    async def _refund(self, booking: Booking, amount_minor: int) -> int:
        if amount_minor <= 0:
            return 0
        await self.ledger.refund(
            booking.mentee_id,
            amount_minor,
            booking_refund_key(booking.id, booking.payment_attempt),
            reference_type="booking",
            reference_id=str(booking.id),
            currency=booking.currency,
        )
        booking.refunded_minor += amount_minor
        return amount_minor

    async def _pay_mentor(self, booking: Booking, amount_minor: int) -> int:
        if amount_minor <= 0:
            return 0
        await self.ledger.credit(
            booking.mentor_id,
            amount_minor,
            TransactionSourceEnum.BOOKING_EARN,
            booking_earn_key(booking.id, booking.payment_attempt),
            reference_type="booking",
            reference_id=str(booking.id),
            currency=booking.currency,
        )
        return amount_minor

    @staticmethod
    def _held_minor(booking: Booking) -> int:
        return max(booking.paid_minor - booking.refunded_minor, 0)

    async def create_booking(self, payload: BookingCreateRequest, actor: Principal) -> Booking:
        """Reserve an open occurrence; paid bookings are charged now or wait for payment."""
        if actor.role != RoleEnum.MENTEE:
            raise UnauthorizedException("Only mentees can book sessions")

        occurrence = await self.scheduling_repository.lock_occurrence(
            payload.occurrence_id,
            lock_timeout_ms=self.policy.occurrence_lock_timeout_ms,
        )
        if occurrence is None:
            raise NotFoundException("Occurrence not found")
        if occurrence.mentor_id == actor.id:
            raise BusinessRuleException("Mentors cannot book their own availability")
        if occurrence.status != OccurrenceStatusEnum.OPEN:
            raise ConflictException(
                "Occurrence is not available",
                details={"occurrence_id": str(occurrence.id), "status": str(occurrence.status)},
            )
        slot = occurrence.slot
        if slot.status != SlotStatusEnum.PUBLISHED:
            raise ConflictException("Slot is not accepting bookings")

        now = utc_now()
        if occurrence.start_at <= now:
            raise BusinessRuleException("Cannot book a session in the past")

        booking_id = uuid4()
        status = BookingStatusEnum.PENDING
        payment_attempt = 0
        paid_minor = 0
        expires_at = None
        deadline = mentor_response_deadline(now, occurrence.start_at, self.policy)

        if slot.price_minor > 0 and payload.pay_with_wallet:
            # Charge first so a failed debit leaves the occurrence untouched.
            payment_attempt = 1
            await self.ledger.debit(
                actor.id,
                slot.price_minor,
                TransactionSourceEnum.BOOKING_PAYMENT,
                booking_payment_key(booking_id, payment_attempt),
                reference_type="booking",
                reference_id=str(booking_id),
                currency=slot.currency,
            )
            paid_minor = slot.price_minor
        elif slot.price_minor > 0:
            status = BookingStatusEnum.PAYMENT_PENDING
            expires_at = payment_expires_at(now, occurrence.start_at, self.policy)
            deadline = None

        await self.scheduling_repository.set_occurrence_status(occurrence, OccurrenceStatusEnum.RESERVED)
        booking = await self.booking_repository.create_booking(
            id=booking_id,
            occurrence_id=occurrence.id,
            mentor_id=occurrence.mentor_id,
            mentee_id=actor.id,
            status=status,
            start_at=occurrence.start_at,
            end_at=occurrence.end_at,
            topic=payload.topic,
            notes=payload.notes,
            price_minor=slot.price_minor,
            currency=slot.currency,
            payment_attempt=payment_attempt,
            paid_minor=paid_minor,
            refunded_minor=0,
            expires_at=expires_at,
            mentor_response_deadline=deadline,
        )
        await self._emit(booking, "booking.created")
        logger.info("Booking %s created for occurrence %s as %s", booking.id, occurrence.id, status)
        return booking

    async def pay_booking(self, booking_id: UUID, actor: Principal) -> Booking:
        """Settle a booking that waits for payment and hand it to the mentor."""
        booking = await self._get_booking_for_actor(booking_id, actor)
        if booking.mentee_id != actor.id:
            raise UnauthorizedException("Only the mentee can pay for this booking")
        if booking.status == BookingStatusEnum.PENDING and booking.paid_minor >= booking.price_minor:
            return booking

        ensure_transition(booking.status, BookingStatusEnum.PENDING)
        now = utc_now()
        if booking.expires_at is not None and booking.expires_at <= now:
            raise ConflictException("Payment window has expired")

        await self._charge(booking)
        booking.status = BookingStatusEnum.PENDING
        booking.expires_at = None
        booking.mentor_response_deadline = mentor_response_deadline(now, booking.start_at, self.policy)
        await self.booking_repository.save(booking)
        await self._emit(booking, "booking.paid", amount_minor=booking.paid_minor)
        return booking

    async def confirm_booking(self, booking_id: UUID, actor: Principal) -> Booking:
        booking = await self._get_booking_for_actor(booking_id, actor)
        if actor.role == RoleEnum.MENTEE:
            raise UnauthorizedException("Only the mentor can confirm this booking")
        ensure_transition(booking.status, BookingStatusEnum.CONFIRMED)

        now = utc_now()
        if booking.start_at <= now:
            raise BusinessRuleException("Session has already started")

        booking.status = BookingStatusEnum.CONFIRMED
        booking.confirmed_at = now
        booking.mentor_response_deadline = None
        await self.scheduling_repository.set_occurrence_status(booking.occurrence, OccurrenceStatusEnum.BOOKED)
        await self.booking_repository.save(booking)
        await self._emit(booking, "booking.confirmed")
        return booking

    async def decline_booking(
        self,
        booking_id: UUID,
        payload: BookingDeclineRequest,
        actor: Principal,
    ) -> Booking:
        """Mentor turns the request down; the mentee gets everything back."""
        booking = await self._get_booking_for_actor(booking_id, actor)
        if actor.role == RoleEnum.MENTEE:
            raise UnauthorizedException("Only the mentor can decline this booking")
        ensure_transition(booking.status, BookingStatusEnum.DECLINED)

        now = utc_now()
        refunded = await self._refund(booking, self._held_minor(booking))
        booking.status = BookingStatusEnum.DECLINED
        booking.cancel_reason = payload.reason
        booking.cancelled_by = actor.role
        booking.cancelled_at = now
        await self._release_occurrence(booking, now)
        await self.booking_repository.save(booking)
        await self._emit(booking, "booking.declined", refunded_minor=refunded, automatic=False)
        return booking

    async def cancel_booking(
        self,
        booking_id: UUID,
        payload: BookingCancelRequest,
        actor: Principal,
    ) -> Booking:
        """Cancel before the session starts, refunding according to who cancels and when."""
        booking = await self._get_booking_for_actor(booking_id, actor)
        ensure_transition(booking.status, BookingStatusEnum.CANCELLED)

        now = utc_now()
        if booking.start_at <= now:
            raise BusinessRuleException("Cannot cancel a session that has started")

        decision = cancellation_refund(
            held_minor=self._held_minor(booking),
            cancelled_by=actor.role,
            start_at=booking.start_at,
            now=now,
            policy=self.policy,
        )
        held = self._held_minor(booking)
        refunded = await self._refund(booking, decision.amount_minor)
        # The share a late-cancelling mentee forfeits goes to the mentor.
        earned = await self._pay_mentor(booking, held - refunded) if decision.late else 0

        booking.status = BookingStatusEnum.CANCELLED
        booking.cancelled_at = now
        booking.cancelled_by = actor.role
        booking.cancel_reason = payload.reason
        booking.late_cancel = decision.late
        await self._release_occurrence(booking, now)
        await self.booking_repository.save(booking)
        await self._emit(
            booking,
            "booking.cancelled",
            cancelled_by=str(actor.role),
            refunded_minor=refunded,
            earned_minor=earned,
            late=decision.late,
        )
        return booking

    async def mark_attendance(self, booking_id: UUID, actor: Principal) -> Booking:
        """Record that the caller joined the session."""
        booking = await self._get_booking_for_actor(booking_id, actor)
        if booking.status not in (BookingStatusEnum.CONFIRMED, BookingStatusEnum.IN_PROGRESS):
            raise ConflictException("Attendance can only be recorded for confirmed sessions")

        now = utc_now()
        if now < booking.start_at - self.policy.attendance_early_join or now >= booking.end_at:
            raise BusinessRuleException("Session is not open for joining")

        if actor.id == booking.mentor_id:
            booking.mentor_joined_at = booking.mentor_joined_at or now
        elif actor.id == booking.mentee_id:
            booking.mentee_joined_at = booking.mentee_joined_at or now
        else:
            raise UnauthorizedException("Only session participants can join")
        await self.booking_repository.save(booking)
        return booking

    async def submit_review(
        self,
        booking_id: UUID,
        payload: BookingReviewRequest,
        actor: Principal,
    ) -> Booking:
        booking = await self._get_booking_for_actor(booking_id, actor)
        if booking.mentee_id != actor.id:
            raise UnauthorizedException("Only the mentee can review this session")
        if booking.status != BookingStatusEnum.COMPLETED:
            raise BusinessRuleException("Only completed sessions can be reviewed")
        if booking.reviewed_at is not None:
            raise ConflictException("Session already reviewed")

        booking.rating = payload.rating
        booking.review_comment = payload.comment
        booking.reviewed_at = utc_now()
        await self.booking_repository.save(booking)
        await self._emit(booking, "booking.reviewed", rating=payload.rating)
        return booking

    async def get_booking(self, booking_id: UUID, actor: Principal) -> Booking:
        return await self._get_booking_for_actor(booking_id, actor, lock=False)

    async def list_bookings(
        self,
        actor: Principal,
        status: BookingStatusEnum | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Booking], int]:
        """List bookings for actor according to role."""
        return await self.booking_repository.list_bookings(actor.id, actor.role, status, limit, offset)

    async def expire_payment(self, booking: Booking, now: datetime) -> None:
        """Payment window elapsed without a charge."""
        ensure_transition(booking.status, BookingStatusEnum.FAILED)
        refunded = await self._refund(booking, self._held_minor(booking))
        booking.status = BookingStatusEnum.FAILED
        booking.cancelled_at = now
        booking.cancel_reason = "payment_timeout"
        await self._release_occurrence(booking, now)
        await self.booking_repository.save(booking)
        await self._emit(booking, "booking.expired", refunded_minor=refunded)

    async def auto_decline(self, booking: Booking, now: datetime) -> None:
        """Mentor let the decision window pass."""
        ensure_transition(booking.status, BookingStatusEnum.DECLINED)
        refunded = await self._refund(booking, self._held_minor(booking))
        booking.status = BookingStatusEnum.DECLINED
        booking.cancelled_at = now
        booking.cancel_reason = "mentor_response_timeout"
        await self._release_occurrence(booking, now)
        await self.booking_repository.save(booking)
        await self._emit(booking, "booking.declined", refunded_minor=refunded, automatic=True)

    async def send_reminder(self, booking: Booking, now: datetime, kind: str) -> bool:
        """Flip the reminder flag once; returns whether a reminder event was written."""
        if booking.status != BookingStatusEnum.CONFIRMED:
            return False
        flag = "reminded_24h" if kind == REMINDER_24H else "reminded_1h"
        if getattr(booking, flag):
            return False

        setattr(booking, flag, True)
        # A 24h reminder that is only due inside the 1h lead is folded into the 1h one.
        superseded = kind == REMINDER_24H and booking.start_at - now <= self.policy.reminder_1h_lead
        await self.booking_repository.save(booking)
        if superseded:
            return False
        await self._emit(booking, "booking.reminder", kind=kind)
        return True

    async def start_session(self, booking: Booking, now: datetime) -> None:
        ensure_transition(booking.status, BookingStatusEnum.IN_PROGRESS)
        booking.status = BookingStatusEnum.IN_PROGRESS
        booking.started_at = now
        await self.booking_repository.save(booking)

    async def finalize_session(self, booking: Booking, now: datetime) -> BookingStatusEnum:
        """Apply the no-show policy to an ended session and settle the held money."""
        party = determine_no_show(
            mentor_joined=booking.mentor_joined_at is not None,
            mentee_joined=booking.mentee_joined_at is not None,
            policy=self.policy,
        )
        target = BookingStatusEnum.COMPLETED if party is None else BookingStatusEnum.NO_SHOW
        ensure_transition(booking.status, target)

        settlement = settle_session(
            held_minor=self._held_minor(booking),
            no_show_party=party,
            policy=self.policy,
        )
        refunded = await self._refund(booking, settlement.refund_minor)
        earned = await self._pay_mentor(booking, settlement.earn_minor)

        booking.status = target
        booking.no_show_party = party
        booking.completed_at = now
        if booking.started_at is None:
            booking.started_at = booking.start_at
        await self.booking_repository.save(booking)

        if party is None:
            await self._emit(booking, "booking.completed", earned_minor=earned)
        else:
            await self._emit(
                booking,
                "booking.no_show",
                party=str(party),
                refunded_minor=refunded,
                earned_minor=earned,
            )
        if party == NoShowPartyEnum.BOTH:
            logger.info("Booking %s ended with neither side present", booking.id)
        return target


def build_booking_service(session: AsyncSession) -> BookingService:
    wallet_repository = WalletRepository(session)
    outbox_repository = OutboxRepository(session)
    return BookingService(
        booking_repository=BookingRepository(session),
        scheduling_repository=SchedulingRepository(session),
        ledger=WalletLedger(wallet_repository, outbox_repository),
        outbox_repository=outbox_repository,
    )


async def get_booking_service(session: AsyncSession = Depends(get_db_session)) -> BookingService:
    """Dependency provider for booking service."""
    return build_booking_service(session)
