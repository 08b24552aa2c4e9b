"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


ENTITY_TABLES = ("receipts", "devices", "household_bills", "reminders", "subscriptions", "documents")


def _synced_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    ]


def _money() -> sa.Numeric:
    return sa.Numeric(precision=12, scale=2)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "auth_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_auth_sessions_token_hash", "auth_sessions", ["token_hash"], unique=True)

    op.create_table(
        "receipts",
        *_synced_columns(),
        sa.Column("merchant_name", sa.String(length=255), nullable=False),
        sa.Column("pib", sa.String(length=20), nullable=True),
        sa.Column("receipt_date", sa.Date(), nullable=True),
        sa.Column("time", sa.String(length=10), nullable=True),
        sa.Column("total_amount", _money(), nullable=False),
        sa.Column("vat_amount", _money(), nullable=True),
        sa.Column("items", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("category", sa.String(length=50), nullable=True),
        sa.Column("tags", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("qr_link", sa.Text(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("pdf_url", sa.Text(), nullable=True),
    )
    op.create_index("ix_receipts_user_id_receipt_date", "receipts", ["user_id", "receipt_date"])

    op.create_table(
        "devices",
        *_synced_columns(),
        sa.Column("receipt_id", sa.String(length=64), nullable=True),
        sa.Column("brand", sa.String(length=100), nullable=False),
        sa.Column("model", sa.String(length=100), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=True),
        sa.Column("serial_number", sa.String(length=100), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("purchase_date", sa.Date(), nullable=True),
        sa.Column("warranty_duration", sa.Integer(), nullable=True),
        sa.Column("warranty_expiry", sa.Date(), nullable=True),
        sa.Column("warranty_terms", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("service_center_name", sa.String(length=255), nullable=True),
        sa.Column("service_center_address", sa.String(length=500), nullable=True),
        sa.Column("service_center_phone", sa.String(length=50), nullable=True),
        sa.Column("service_center_hours", sa.String(length=255), nullable=True),
        sa.Column("attachments", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("tags", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    )
    op.create_index("ix_devices_user_id_warranty_expiry", "devices", ["user_id", "warranty_expiry"])

    op.create_table(
        "household_bills",
        *_synced_columns(),
        sa.Column("bill_type", sa.String(length=50), nullable=False),
        sa.Column("provider", sa.String(length=255), nullable=False),
        sa.Column("account_number", sa.String(length=50), nullable=True),
        sa.Column("amount", _money(), nullable=False),
        sa.Column("billing_period_start", sa.Date(), nullable=True),
        sa.Column("billing_period_end", sa.Date(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("payment_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("consumption", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index("ix_household_bills_user_id_due_date", "household_bills", ["user_id", "due_date"])

    op.create_table(
        "reminders",
        *_synced_columns(),
        sa.Column("device_id", sa.String(length=64), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("days_before_expiry", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_reminders_device_id", "reminders", ["device_id"])

    op.create_table(
        "subscriptions",
        *_synced_columns(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("provider", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=True),
        sa.Column("amount", _money(), nullable=False),
        sa.Column("billing_cycle", sa.String(length=20), nullable=False),
        sa.Column("next_billing_date", sa.Date(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("cancel_url", sa.Text(), nullable=True),
        sa.Column("login_url", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("reminder_days", sa.Integer(), nullable=False),
        sa.Column("logo_url", sa.Text(), nullable=True),
    )

    op.create_table(
        "documents",
        *_synced_columns(),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("file_url", sa.Text(), nullable=True),
        sa.Column("thumbnail_url", sa.Text(), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("expiry_reminder_days", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("tags", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    )

    for table in ENTITY_TABLES:
        op.create_index(f"ix_{table}_user_id_updated_at", table, ["user_id", "updated_at"])


def downgrade() -> None:
    for table in reversed(ENTITY_TABLES):
        op.drop_index(f"ix_{table}_user_id_updated_at", table_name=table)
    op.drop_table("documents")
    op.drop_table("subscriptions")
    op.drop_index("ix_reminders_device_id", table_name="reminders")
    op.drop_table("reminders")
    op.drop_index("ix_household_bills_user_id_due_date", table_name="household_bills")
    op.drop_table("household_bills")
    op.drop_index("ix_devices_user_id_warranty_expiry", table_name="devices")
    op.drop_table("devices")
    op.drop_index("ix_receipts_user_id_receipt_date", table_name="receipts")
    op.drop_table("receipts")
    op.drop_index("ix_auth_sessions_token_hash", table_name="auth_sessions")
    op.drop_table("auth_sessions")
    op.drop_table("users")
