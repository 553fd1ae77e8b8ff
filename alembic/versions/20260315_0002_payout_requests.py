"""Payout requests

Revision ID: 20260315_0002
Revises: 20260301_0001
Create Date: 2026-03-15 09:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20260315_0002"
down_revision: Union[str, None] = "20260301_0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


currency_enum = sa.Enum("VND", "USD", name="currency_enum", native_enum=False)
payout_status_enum = sa.Enum(
    "PENDING",
    "PROCESSING",
    "PAID",
    "FAILED",
    "CANCELLED",
    name="payout_status_enum",
    native_enum=False,
)


def upgrade() -> None:
    op.create_table(
        "payout_requests",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("mentor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("amount_minor", sa.BigInteger(), nullable=False),
        sa.Column("currency", currency_enum, nullable=False),
        sa.Column("status", payout_status_enum, nullable=False),
        sa.Column("client_request_id", sa.String(length=128), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("external_id", sa.String(length=128), nullable=True),
        sa.Column("failure_reason", sa.String(length=512), nullable=True),
        sa.Column("approved_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount_minor > 0", name="ck_payout_requests_amount_positive"),
        sa.UniqueConstraint("mentor_id", "client_request_id", name="uq_payout_requests_mentor_request"),
    )
    op.create_index(
        "ix_payout_requests_mentor_created",
        "payout_requests",
        ["mentor_id", "created_at", "id"],
        unique=False,
    )
    op.create_index(
        "ix_payout_requests_status_created",
        "payout_requests",
        ["status", "created_at", "id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_payout_requests_status_created", table_name="payout_requests")
    op.drop_index("ix_payout_requests_mentor_created", table_name="payout_requests")
    op.drop_table("payout_requests")
