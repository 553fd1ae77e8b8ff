"""Core enums used across modules."""

from enum import StrEnum


class RoleEnum(StrEnum):
    """System roles."""

    MENTEE = "mentee"
    MENTOR = "mentor"
    ADMIN = "admin"


class SlotStatusEnum(StrEnum):
    """Availability slot status."""

    DRAFT = "draft"
    PUBLISHED = "published"
    PAUSED = "paused"
    ARCHIVED = "archived"


class SlotVisibilityEnum(StrEnum):
    """Who can see occurrences of a slot on the public calendar."""

    PUBLIC = "public"
    PRIVATE = "private"


class OccurrenceStatusEnum(StrEnum):
    """Concrete bookable window status."""

    OPEN = "open"
    RESERVED = "reserved"
    BOOKED = "booked"
    CANCELLED = "cancelled"


class BookingStatusEnum(StrEnum):
    """Booking lifecycle status."""

    PAYMENT_PENDING = "payment_pending"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DECLINED = "declined"
    FAILED = "failed"
    NO_SHOW = "no_show"


ACTIVE_BOOKING_STATUSES = frozenset(
    {
        BookingStatusEnum.PAYMENT_PENDING,
        BookingStatusEnum.PENDING,
        BookingStatusEnum.CONFIRMED,
        BookingStatusEnum.IN_PROGRESS,
    },
)


class NoShowPartyEnum(StrEnum):
    """Side that did not attend a session."""

    MENTOR = "mentor"
    MENTEE = "mentee"
    BOTH = "both"


class CurrencyEnum(StrEnum):
    """Supported wallet currencies."""

    VND = "VND"
    USD = "USD"


class TransactionTypeEnum(StrEnum):
    """Direction of a wallet ledger entry."""

    CREDIT = "CREDIT"
    DEBIT = "DEBIT"
    REFUND = "REFUND"


class TransactionSourceEnum(StrEnum):
    """Business origin of a wallet ledger entry."""

    MANUAL_TOPUP = "MANUAL_TOPUP"
    MANUAL_WITHDRAW = "MANUAL_WITHDRAW"
    BOOKING_PAYMENT = "BOOKING_PAYMENT"
    BOOKING_EARN = "BOOKING_EARN"
    PAYOUT = "PAYOUT"


class PayoutStatusEnum(StrEnum):
    """Mentor payout request status."""

    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OutboxStatusEnum(StrEnum):
    """Outbox event status for integration publishing."""

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"
