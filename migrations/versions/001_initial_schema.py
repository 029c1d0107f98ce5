"""Settlement schema: listings, bookings, cancellations, assessments (SQL-only).

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from pathlib import Path

from alembic import op


revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _read_sql(name: str) -> str:
    sql_path = Path(__file__).resolve().parents[1] / "sql" / name
    return sql_path.read_text(encoding="utf-8")


def upgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql(_read_sql("001_initial.sql"))


def downgrade() -> None:
    op.execute(
        """
        DROP TABLE IF EXISTS assessments;
        ALTER TABLE IF EXISTS bookings DROP CONSTRAINT IF EXISTS bookings_cancellation_fk;
        DROP TABLE IF EXISTS cancellations;
        DROP TABLE IF EXISTS bookings;
        DROP TABLE IF EXISTS listing_availabilities;
        DROP TABLE IF EXISTS listings;
        DROP TABLE IF EXISTS users;
        """
    )
