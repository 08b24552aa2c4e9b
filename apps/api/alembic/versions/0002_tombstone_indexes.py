"""index soft-delete tombstones for the purge job

Revision ID: 0002_tombstone_indexes
Revises: 0001_initial_schema
Create Date: 2026-10-19 00:10:00
"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002_tombstone_indexes"
down_revision: str | None = "0001_initial_schema"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


ENTITY_TABLES = ("receipts", "devices", "household_bills", "reminders", "subscriptions", "documents")


def upgrade() -> None:
    for table in ENTITY_TABLES:
        op.create_index(f"ix_{table}_deleted_at", table, ["deleted_at"])
    op.create_index("ix_auth_sessions_expires_at", "auth_sessions", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_auth_sessions_expires_at", table_name="auth_sessions")
    for table in reversed(ENTITY_TABLES):
        op.drop_index(f"ix_{table}_deleted_at", table_name=table)
