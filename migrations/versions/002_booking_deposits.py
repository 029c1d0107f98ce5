"""Security deposit columns on bookings (SQL-only).

Revision ID: 002_booking_deposits
Revises: 001_initial_schema
Create Date: 2026-10-19
"""

from __future__ import annotations

from pathlib import Path

from alembic import op


revision = "002_booking_deposits"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    sql_path = Path(__file__).resolve().parents[1] / "sql" / "002_deposits.sql"
    op.get_bind().exec_driver_sql(sql_path.read_text(encoding="utf-8"))


def downgrade() -> None:
    op.execute(
        """
        DROP INDEX IF EXISTS bookings_deposit_idx;
        ALTER TABLE bookings
            DROP COLUMN IF EXISTS stop_renew_deposit,
            DROP COLUMN IF EXISTS cancellation_deposit_date,
            DROP COLUMN IF EXISTS release_deposit_date,
            DROP COLUMN IF EXISTS deposit_date,
            DROP COLUMN IF EXISTS deposit_expiration_date,
            DROP COLUMN IF EXISTS deposit_ref,
            DROP COLUMN IF EXISTS deposit_cents;
        """
    )
