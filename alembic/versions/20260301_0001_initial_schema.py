"""Initial schema

Revision ID: 20260301_0001
Revises:
Create Date: 2026-03-01 10:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20260301_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


role_enum = sa.Enum("MENTEE", "MENTOR", "ADMIN", name="role_enum", native_enum=False)
slot_status_enum = sa.Enum("DRAFT", "PUBLISHED", "PAUSED", "ARCHIVED", name="slot_status_enum", native_enum=False)
slot_visibility_enum = sa.Enum("PUBLIC", "PRIVATE", name="slot_visibility_enum", native_enum=False)
occurrence_status_enum = sa.Enum(
    "OPEN",
    "RESERVED",
    "BOOKED",
    "CANCELLED",
    name="occurrence_status_enum",
    native_enum=False,
)
booking_status_enum = sa.Enum(
    "PAYMENT_PENDING",
    "PENDING",
    "CONFIRMED",
    "IN_PROGRESS",
    "COMPLETED",
    "CANCELLED",
    "DECLINED",
    "FAILED",
    "NO_SHOW",
    name="booking_status_enum",
    native_enum=False,
)
no_show_party_enum = sa.Enum("MENTOR", "MENTEE", "BOTH", name="no_show_party_enum", native_enum=False)
currency_enum = sa.Enum("VND", "USD", name="currency_enum", native_enum=False)
transaction_type_enum = sa.Enum("CREDIT", "DEBIT", "REFUND", name="transaction_type_enum", native_enum=False)
transaction_source_enum = sa.Enum(
    "MANUAL_TOPUP",
    "MANUAL_WITHDRAW",
    "BOOKING_PAYMENT",
    "BOOKING_EARN",
    "PAYOUT",
    name="transaction_source_enum",
    native_enum=False,
)
outbox_status_enum = sa.Enum("PENDING", "PROCESSED", "FAILED", name="outbox_status_enum", native_enum=False)

ACTIVE_BOOKING_SQL = "status IN ('PAYMENT_PENDING', 'PENDING', 'CONFIRMED', 'IN_PROGRESS')"


def _id_col() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _created_col() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)


def _updated_col() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False)


def upgrade() -> None:
    op.create_table(
        "availability_slots",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("mentor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("rrule", sa.String(length=512), nullable=True),
        sa.Column("exdates", postgresql.ARRAY(sa.DateTime(timezone=True)), nullable=False),
        sa.Column("buffer_before_min", sa.Integer(), nullable=False),
        sa.Column("buffer_after_min", sa.Integer(), nullable=False),
        sa.Column("visibility", slot_visibility_enum, nullable=False),
        sa.Column("status", slot_status_enum, nullable=False),
        sa.Column("publish_horizon_days", sa.Integer(), nullable=False),
        sa.Column("price_minor", sa.BigInteger(), nullable=False),
        sa.Column("currency", currency_enum, nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("end_at > start_at", name="ck_availability_slots_end_after_start"),
        sa.CheckConstraint(
            "buffer_before_min >= 0 AND buffer_after_min >= 0",
            name="ck_availability_slots_buffers_non_negative",
        ),
        sa.CheckConstraint("price_minor >= 0", name="ck_availability_slots_price_non_negative"),
    )
    op.create_index("ix_availability_slots_mentor_id", "availability_slots", ["mentor_id"], unique=False)
    op.create_index("ix_availability_slots_status", "availability_slots", ["status"], unique=False)

    op.create_table(
        "availability_occurrences",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("slot_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("mentor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", occurrence_status_enum, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint("end_at > start_at", name="ck_availability_occurrences_end_after_start"),
        sa.ForeignKeyConstraint(
            ["slot_id"],
            ["availability_slots.id"],
            name="fk_availability_occurrences_slot_id_availability_slots",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_availability_occurrences_slot_id",
        "availability_occurrences",
        ["slot_id"],
        unique=False,
    )
    op.create_index(
        "ix_availability_occurrences_status",
        "availability_occurrences",
        ["status"],
        unique=False,
    )
    op.create_index(
        "ix_availability_occurrences_mentor_start",
        "availability_occurrences",
        ["mentor_id", "start_at"],
        unique=False,
    )

    op.create_table(
        "bookings",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("occurrence_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("mentor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("mentee_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("status", booking_status_enum, nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("topic", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("price_minor", sa.BigInteger(), nullable=False),
        sa.Column("currency", currency_enum, nullable=False),
        sa.Column("payment_attempt", sa.Integer(), nullable=False),
        sa.Column("paid_minor", sa.BigInteger(), nullable=False),
        sa.Column("refunded_minor", sa.BigInteger(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("mentor_response_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", role_enum, nullable=True),
        sa.Column("cancel_reason", sa.String(length=512), nullable=True),
        sa.Column("late_cancel", sa.Boolean(), nullable=False),
        sa.Column("reminded_24h", sa.Boolean(), nullable=False),
        sa.Column("reminded_1h", sa.Boolean(), nullable=False),
        sa.Column("mentor_joined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("mentee_joined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("no_show_party", no_show_party_enum, nullable=True),
        sa.Column("rating", sa.Integer(), nullable=True),
        sa.Column("review_comment", sa.Text(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("rating IS NULL OR (rating BETWEEN 1 AND 5)", name="ck_bookings_rating_range"),
        sa.CheckConstraint(
            "paid_minor >= 0 AND refunded_minor >= 0",
            name="ck_bookings_money_non_negative",
        ),
        sa.ForeignKeyConstraint(
            ["occurrence_id"],
            ["availability_occurrences.id"],
            name="fk_bookings_occurrence_id_availability_occurrences",
            ondelete="RESTRICT",
        ),
    )
    op.create_index("ix_bookings_occurrence_id", "bookings", ["occurrence_id"], unique=False)
    op.create_index("ix_bookings_mentor_id", "bookings", ["mentor_id"], unique=False)
    op.create_index("ix_bookings_mentee_id", "bookings", ["mentee_id"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index("ix_bookings_status_start", "bookings", ["status", "start_at"], unique=False)
    op.create_index(
        "uq_bookings_active_occurrence",
        "bookings",
        ["occurrence_id"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_BOOKING_SQL),
    )

    op.create_table(
        "wallets",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("balance_minor", sa.BigInteger(), nullable=False),
        sa.Column("currency", currency_enum, nullable=False),
        sa.CheckConstraint("balance_minor >= 0", name="ck_wallets_balance_non_negative"),
    )
    op.create_index("ix_wallets_owner_id", "wallets", ["owner_id"], unique=True)

    op.create_table(
        "wallet_transactions",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("wallet_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("type", transaction_type_enum, nullable=False),
        sa.Column("source", transaction_source_enum, nullable=False),
        sa.Column("amount_minor", sa.BigInteger(), nullable=False),
        sa.Column("currency", currency_enum, nullable=False),
        sa.Column("balance_before_minor", sa.BigInteger(), nullable=False),
        sa.Column("balance_after_minor", sa.BigInteger(), nullable=False),
        sa.Column("client_request_id", sa.String(length=128), nullable=False),
        sa.Column("reference_type", sa.String(length=64), nullable=True),
        sa.Column("reference_id", sa.String(length=128), nullable=True),
        sa.Column("payment_method_id", sa.String(length=128), nullable=True),
        sa.CheckConstraint("amount_minor > 0", name="ck_wallet_transactions_amount_positive"),
        sa.CheckConstraint(
            "balance_after_minor >= 0",
            name="ck_wallet_transactions_balance_after_non_negative",
        ),
        sa.ForeignKeyConstraint(
            ["wallet_id"],
            ["wallets.id"],
            name="fk_wallet_transactions_wallet_id_wallets",
            ondelete="RESTRICT",
        ),
        sa.UniqueConstraint(
            "wallet_id",
            "client_request_id",
            name="uq_wallet_transactions_wallet_request",
        ),
    )
    op.create_index(
        "ix_wallet_transactions_wallet_created",
        "wallet_transactions",
        ["wallet_id", "created_at", "id"],
        unique=False,
    )
    op.create_index(
        "ix_wallet_transactions_reference_id",
        "wallet_transactions",
        ["reference_id"],
        unique=False,
    )

    op.create_table(
        "outbox_events",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("aggregate_type", sa.String(length=128), nullable=False),
        sa.Column("aggregate_id", sa.String(length=128), nullable=False),
        sa.Column("event_type", sa.String(length=128), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", outbox_status_enum, nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retries", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index("ix_outbox_events_aggregate_type", "outbox_events", ["aggregate_type"], unique=False)
    op.create_index("ix_outbox_events_aggregate_id", "outbox_events", ["aggregate_id"], unique=False)
    op.create_index("ix_outbox_events_event_type", "outbox_events", ["event_type"], unique=False)
    op.create_index("ix_outbox_events_status", "outbox_events", ["status"], unique=False)

    op.create_table(
        "notifications",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.String(length=128), nullable=False),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)
    op.create_index("ix_notifications_is_read", "notifications", ["is_read"], unique=False)
    op.create_index(
        "ix_notifications_user_created",
        "notifications",
        ["user_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_notifications_user_created", table_name="notifications")
    op.drop_index("ix_notifications_is_read", table_name="notifications")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")

    op.drop_index("ix_outbox_events_status", table_name="outbox_events")
    op.drop_index("ix_outbox_events_event_type", table_name="outbox_events")
    op.drop_index("ix_outbox_events_aggregate_id", table_name="outbox_events")
    op.drop_index("ix_outbox_events_aggregate_type", table_name="outbox_events")
    op.drop_table("outbox_events")

    op.drop_index("ix_wallet_transactions_reference_id", table_name="wallet_transactions")
    op.drop_index("ix_wallet_transactions_wallet_created", table_name="wallet_transactions")
    op.drop_table("wallet_transactions")

    op.drop_index("ix_wallets_owner_id", table_name="wallets")
    op.drop_table("wallets")

    op.drop_index("uq_bookings_active_occurrence", table_name="bookings")
    op.drop_index("ix_bookings_status_start", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_mentee_id", table_name="bookings")
    op.drop_index("ix_bookings_mentor_id", table_name="bookings")
    op.drop_index("ix_bookings_occurrence_id", table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_availability_occurrences_mentor_start", table_name="availability_occurrences")
    op.drop_index("ix_availability_occurrences_status", table_name="availability_occurrences")
    op.drop_index("ix_availability_occurrences_slot_id", table_name="availability_occurrences")
    op.drop_table("availability_occurrences")

    op.drop_index("ix_availability_slots_status", table_name="availability_slots")
    op.drop_index("ix_availability_slots_mentor_id", table_name="availability_slots")
    op.drop_table("availability_slots")
