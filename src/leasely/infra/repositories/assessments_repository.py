"""Assessments repository - check-in and check-out assessment lookup.

Uses raw SQL with psycopg2 (no ORM). A booking may have several assessments
of one kind; the most recent one wins.
"""

from __future__ import annotations

from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

from leasely.domain.bookings import InputAssessment, OutputAssessment
from leasely.infra.db import fetchone, txn


def _latest_assessment(
    cur: PgCursor,
    booking_id: str,
    kind: str,
) -> tuple[str, datetime | None] | None:
    return fetchone(
        cur,
        """
        SELECT booking_id, signed_date
        FROM assessments
        WHERE booking_id = %s AND kind = %s
        ORDER BY created_date DESC
        LIMIT 1
        """,
        (booking_id, kind),
    )


def get_input_assessment(cur: PgCursor, booking_id: str) -> InputAssessment | None:
    """Fetch the input (check-in) assessment of a booking.

    Args:
        cur: Database cursor.
        booking_id: Booking identifier.

    Returns:
        InputAssessment, or None when the booking has none.
    """
    row = _latest_assessment(cur, booking_id, "input")
    if row is None:
        return None
    return InputAssessment(booking_id=str(row[0]), signed_date=row[1])


def get_output_assessment(cur: PgCursor, booking_id: str) -> OutputAssessment | None:
    row = _latest_assessment(cur, booking_id, "output")
    if row is None:
        return None
    return OutputAssessment(booking_id=str(row[0]), signed_date=row[1])


class PostgresAssessmentLookup:
    def get_input_assessment(self, booking_id: str) -> InputAssessment | None:
        with txn() as cur:
            return get_input_assessment(cur, booking_id)

    def get_output_assessment(self, booking_id: str) -> OutputAssessment | None:
        with txn() as cur:
            return get_output_assessment(cur, booking_id)
