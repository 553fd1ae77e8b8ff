"""Booking transition table and money rules."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from app.core.config import Settings
from app.core.enums import BookingStatusEnum, NoShowPartyEnum, RoleEnum
from app.shared.exceptions import ConflictException
from app.shared.utils import percent_of

ALLOWED_TRANSITIONS: dict[BookingStatusEnum, frozenset[BookingStatusEnum]] = {
    BookingStatusEnum.PAYMENT_PENDING: frozenset(
        {BookingStatusEnum.PENDING, BookingStatusEnum.CANCELLED, BookingStatusEnum.FAILED},
    ),
    BookingStatusEnum.PENDING: frozenset(
        {
            BookingStatusEnum.CONFIRMED,
            BookingStatusEnum.DECLINED,
            BookingStatusEnum.CANCELLED,
            BookingStatusEnum.FAILED,
        },
    ),
    BookingStatusEnum.CONFIRMED: frozenset(
        {
            BookingStatusEnum.IN_PROGRESS,
            BookingStatusEnum.COMPLETED,
            BookingStatusEnum.CANCELLED,
            BookingStatusEnum.NO_SHOW,
        },
    ),
    BookingStatusEnum.IN_PROGRESS: frozenset({BookingStatusEnum.COMPLETED, BookingStatusEnum.NO_SHOW}),
    BookingStatusEnum.COMPLETED: frozenset(),
    BookingStatusEnum.CANCELLED: frozenset(),
    BookingStatusEnum.DECLINED: frozenset(),
    BookingStatusEnum.FAILED: frozenset(),
    BookingStatusEnum.NO_SHOW: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)

NO_SHOW_POLICY_BOTH_ABSENT = "both_absent"
NO_SHOW_POLICY_ANY_ABSENT = "any_absent"


@dataclass(frozen=True, slots=True)
class BookingPolicy:
    """Time windows and percentages that drive the state machine."""

    payment_pending_timeout: timedelta = timedelta(minutes=15)
    mentor_decision_window: timedelta = timedelta(hours=24)
    reminder_24h_lead: timedelta = timedelta(hours=24)
    reminder_1h_lead: timedelta = timedelta(hours=1)
    no_show_policy: str = NO_SHOW_POLICY_BOTH_ABSENT
    late_cancel_window: timedelta = timedelta(hours=24)
    late_cancel_refund_percent: int = 80
    no_show_both_refund_percent: int = 80
    attendance_early_join: timedelta = timedelta(minutes=15)
    occurrence_lock_timeout_ms: int = 2000

    @classmethod
    def from_settings(cls, settings: Settings) -> "BookingPolicy":
        return cls(
            payment_pending_timeout=timedelta(minutes=settings.payment_pending_timeout_minutes),
            mentor_decision_window=timedelta(hours=settings.mentor_decision_window_hours),
            reminder_24h_lead=timedelta(minutes=settings.reminder_24h_lead_minutes),
            reminder_1h_lead=timedelta(minutes=settings.reminder_1h_lead_minutes),
            no_show_policy=settings.no_show_policy,
            late_cancel_window=timedelta(hours=settings.late_cancel_window_hours),
            late_cancel_refund_percent=settings.late_cancel_refund_percent,
            no_show_both_refund_percent=settings.no_show_both_refund_percent,
            occurrence_lock_timeout_ms=settings.occurrence_lock_timeout_ms,
        )


def ensure_transition(current: BookingStatusEnum, target: BookingStatusEnum) -> None:
    """Reject moves the transition table does not allow."""
    if target not in ALLOWED_TRANSITIONS[current]:
        raise ConflictException(
            f"Booking cannot move from {current} to {target}",
            details={"status": str(current), "requested": str(target)},
        )


def mentor_response_deadline(now: datetime, start_at: datetime, policy: BookingPolicy) -> datetime:
    return min(now + policy.mentor_decision_window, start_at)


def payment_expires_at(now: datetime, start_at: datetime, policy: BookingPolicy) -> datetime:
    return min(now + policy.payment_pending_timeout, start_at)


@dataclass(frozen=True, slots=True)
class CancellationRefund:
    amount_minor: int
    late: bool


def cancellation_refund(
    *,
    held_minor: int,
    cancelled_by: RoleEnum,
    start_at: datetime,
    now: datetime,
    policy: BookingPolicy,
) -> CancellationRefund:
    """Mentor-side cancels refund everything; mentees cancelling inside the window get a share."""
    if held_minor <= 0:
        return CancellationRefund(amount_minor=0, late=False)
    if cancelled_by != RoleEnum.MENTEE or start_at - now >= policy.late_cancel_window:
        return CancellationRefund(amount_minor=held_minor, late=False)
    return CancellationRefund(
        amount_minor=percent_of(held_minor, policy.late_cancel_refund_percent),
        late=True,
    )


def determine_no_show(
    *,
    mentor_joined: bool,
    mentee_joined: bool,
    policy: BookingPolicy,
) -> NoShowPartyEnum | None:
    """Return the absent side, or None when the session counts as held."""
    if mentor_joined and mentee_joined:
        return None
    if not mentor_joined and not mentee_joined:
        return NoShowPartyEnum.BOTH
    if policy.no_show_policy == NO_SHOW_POLICY_BOTH_ABSENT:
        return None
    return NoShowPartyEnum.MENTOR if not mentor_joined else NoShowPartyEnum.MENTEE


@dataclass(frozen=True, slots=True)
class Settlement:
    refund_minor: int
    earn_minor: int


def settle_session(
    *,
    held_minor: int,
    no_show_party: NoShowPartyEnum | None,
    policy: BookingPolicy,
) -> Settlement:
    """Split held money between mentee refund and mentor earnings once the session is over."""
    if held_minor <= 0:
        return Settlement(refund_minor=0, earn_minor=0)
    if no_show_party is None or no_show_party == NoShowPartyEnum.MENTEE:
        return Settlement(refund_minor=0, earn_minor=held_minor)
    if no_show_party == NoShowPartyEnum.MENTOR:
        return Settlement(refund_minor=held_minor, earn_minor=0)
    return Settlement(
        refund_minor=percent_of(held_minor, policy.no_show_both_refund_percent),
        earn_minor=0,
    )
