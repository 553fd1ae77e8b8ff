"""Notification events resolved from outbox rows."""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from app.modules.outbox.models import OutboxEvent


@dataclass(frozen=True, slots=True)
class BookingNotification:
    type: str
    booking_id: UUID
    mentor_id: UUID
    mentee_id: UUID
    payload: dict = field(default_factory=dict)

    @property
    def dedupe_key(self) -> str:
        kind = self.payload.get("kind")
        suffix = f":{kind}" if kind else ""
        return f"{self.type}:{self.booking_id}{suffix}"

    def recipients(self) -> list[UUID]:
        """Who hears about the event; the acting side is not told about its own action."""
        if self.type in ("booking.created", "booking.paid", "booking.reviewed"):
            return [self.mentor_id]
        if self.type in ("booking.confirmed", "booking.declined", "booking.expired"):
            return [self.mentee_id]
        if self.type == "booking.cancelled":
            cancelled_by = self.payload.get("cancelled_by")
            if cancelled_by == "mentee":
                return [self.mentor_id]
            if cancelled_by == "mentor":
                return [self.mentee_id]
        return _unique(self.mentor_id, self.mentee_id)


@dataclass(frozen=True, slots=True)
class WalletNotification:
    type: str
    wallet_id: UUID
    owner_id: UUID
    payload: dict = field(default_factory=dict)

    @property
    def dedupe_key(self) -> str:
        return f"{self.type}:{self.wallet_id}:{self.payload.get('transaction_id')}"

    def recipients(self) -> list[UUID]:
        return [self.owner_id]


NotificationEvent = BookingNotification | WalletNotification


def resolve_event(event: OutboxEvent) -> NotificationEvent | None:
    """Map an outbox row onto a notification event, or None when nobody is notified.

    Raises ValueError when the payload lacks an id the event type needs.
    """
    payload = dict(event.payload or {})
    if event.aggregate_type == "booking":
        return BookingNotification(
            type=event.event_type,
            booking_id=_required_uuid(payload, "booking_id"),
            mentor_id=_required_uuid(payload, "mentor_id"),
            mentee_id=_required_uuid(payload, "mentee_id"),
            payload=payload,
        )
    if event.aggregate_type == "wallet":
        # Internal booking money moves are already covered by booking notifications.
        if payload.get("reference_type") == "booking":
            return None
        return WalletNotification(
            type=event.event_type,
            wallet_id=_required_uuid(payload, "wallet_id"),
            owner_id=_required_uuid(payload, "owner_id"),
            payload=payload,
        )
    return None


def render_message(event: NotificationEvent) -> tuple[str, str]:
    """Title and body shown in the in-app inbox."""
    payload = event.payload
    if isinstance(event, WalletNotification):
        amount = payload.get("amount_minor", 0)
        currency = payload.get("currency", "")
        titles = {
            "wallet.credited": "Wallet topped up",
            "wallet.debited": "Wallet debited",
            "wallet.refunded": "Refund received",
        }
        return titles.get(event.type, "Wallet updated"), f"{amount} {currency} (balance {payload.get('balance_after_minor')})."

    start = payload.get("start_at", "")
    if event.type == "booking.created":
        return "New booking request", f"A session on {start} was requested."
    if event.type == "booking.paid":
        return "Booking paid", f"The session on {start} has been paid and awaits your decision."
    if event.type == "booking.confirmed":
        return "Booking confirmed", f"Your session on {start} is confirmed."
    if event.type == "booking.declined":
        if payload.get("automatic"):
            return "Booking not confirmed", f"The mentor did not answer in time for {start}."
        return "Booking declined", f"Your session on {start} was declined."
    if event.type == "booking.expired":
        return "Booking expired", f"Payment for the session on {start} was not completed."
    if event.type == "booking.cancelled":
        return "Booking cancelled", f"The session on {start} was cancelled."
    if event.type == "booking.reminder":
        return "Upcoming session", f"Your session starts at {start} ({payload.get('kind')} reminder)."
    if event.type == "booking.completed":
        return "Session completed", f"The session on {start} is complete."
    if event.type == "booking.no_show":
        return "Session missed", f"The session on {start} was marked as a no-show ({payload.get('party')})."
    if event.type == "booking.reviewed":
        return "New review", f"Your session on {start} was rated {payload.get('rating')}."
    return "Booking updated", f"Booking {event.booking_id} changed."


def _required_uuid(payload: dict, key: str) -> UUID:
    value = payload.get(key)
    if value is None:
        raise ValueError(f"Missing required key: {key}")
    return UUID(str(value))


def _unique(*recipients: UUID) -> list[UUID]:
    unique: list[UUID] = []
    for recipient in recipients:
        if recipient not in unique:
            unique.append(recipient)
    return unique
