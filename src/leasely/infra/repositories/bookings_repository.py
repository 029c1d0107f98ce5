"""Bookings repository - persistence for bookings and their cancellations.

Uses raw SQL with psycopg2 (no ORM). Column names that end up in SQL text
are checked against the Booking dataclass fields; values always go through
query parameters.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

from psycopg2.extensions import cursor as PgCursor

from leasely.domain.bookings import (
    BOOKING_COLUMNS,
    Booking,
    Cancellation,
    ListingAvailability,
    PayoutAccount,
)
from leasely.domain.ports import NOT_NULL
from leasely.infra.db import fetchall, fetchone, for_update, txn

_SELECT_BOOKING = f"SELECT {', '.join(BOOKING_COLUMNS)} FROM bookings"


def _check_column(name: str) -> str:
    if name not in BOOKING_COLUMNS:
        raise ValueError(f"Unknown booking column: {name}")
    return name


def build_conditions(
    criteria: dict[str, Any],
    any_null: tuple[str, ...] = (),
) -> tuple[list[str], list[Any]]:
    """Translate criteria into SQL conditions and parameters.

    None -> ``col IS NULL``, NOT_NULL -> ``col IS NOT NULL``,
    list/tuple -> ``col = ANY(%s)``, anything else -> ``col = %s``.
    ``any_null`` adds a single ``(a IS NULL OR b IS NULL ...)`` condition.
    """
    conditions: list[str] = []
    params: list[Any] = []

    for name, value in criteria.items():
        column = _check_column(name)
        if value is None:
            conditions.append(f"{column} IS NULL")
        elif value is NOT_NULL:
            conditions.append(f"{column} IS NOT NULL")
        elif isinstance(value, (list, tuple)):
            conditions.append(f"{column} = ANY(%s)")
            params.append(list(value))
        else:
            conditions.append(f"{column} = %s")
            params.append(value)

    if any_null:
        alternatives = " OR ".join(f"{_check_column(name)} IS NULL" for name in any_null)
        conditions.append(f"({alternatives})")

    return conditions, params


def find_bookings(
    cur: PgCursor,
    *,
    any_null: tuple[str, ...] = (),
    **criteria: Any,
) -> list[Booking]:
    """Bulk read of bookings matching every criterion, oldest first."""
    conditions, params = build_conditions(criteria, any_null)
    where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
    rows = fetchall(cur, f"{_SELECT_BOOKING}{where} ORDER BY created_date, id", params)
    return [Booking.from_row(list(BOOKING_COLUMNS), row) for row in rows]


def get_booking(cur: PgCursor, booking_id: str, *, lock: bool = False) -> Booking | None:
    query = f"{_SELECT_BOOKING} WHERE id = %s"
    if lock:
        row = for_update(cur, query, (booking_id,))
    else:
        row = fetchone(cur, query, (booking_id,))
    if row is None:
        return None
    return Booking.from_row(list(BOOKING_COLUMNS), row)


def update_booking_if_null(
    cur: PgCursor,
    booking_id: str,
    *,
    expected_null: str,
    values: dict[str, Any],
    guards: dict[str, Any] | None = None,
) -> bool:
    """Conditional update: only applies while ``expected_null`` IS NULL.

    Returns:
        True if exactly one row was updated.
    """
    if not values:
        raise ValueError("Nothing to update")

    assignments = ", ".join(f"{_check_column(name)} = %s" for name in values)
    conditions, guard_params = build_conditions({expected_null: None, **(guards or {})})

    cur.execute(
        f"""
        UPDATE bookings
        SET {assignments}, updated_date = now()
        WHERE id = %s AND {' AND '.join(conditions)}
        """,
        [*values.values(), booking_id, *guard_params],
    )
    return cur.rowcount == 1


def insert_cancellation(
    cur: PgCursor,
    *,
    booking: Booking,
    reason_type: str,
    trigger: str | None,
    reason: str | None,
    created_date: datetime,
) -> Cancellation:
    cur.execute(
        """
        INSERT INTO cancellations (
            booking_id, listing_id, owner_id, taker_id,
            reason_type, trigger, reason, created_date
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            booking.id,
            booking.listing_id,
            booking.owner_id,
            booking.taker_id,
            reason_type,
            trigger,
            reason,
            created_date,
        ),
    )
    row = cur.fetchone()
    return Cancellation(
        id=str(row[0]),
        booking_id=booking.id,
        listing_id=booking.listing_id,
        reason_type=reason_type,
        trigger=trigger,
        reason=reason,
        created_date=created_date,
    )


def get_cancellations(cur: PgCursor, cancellation_ids: list[str]) -> dict[str, Cancellation]:
    if not cancellation_ids:
        return {}
    rows = fetchall(
        cur,
        """
        SELECT id, booking_id, listing_id, reason_type, trigger, reason,
               refund_date, created_date
        FROM cancellations
        WHERE id = ANY(%s::uuid[])
        """,
        (list(cancellation_ids),),
    )
    return {
        str(row[0]): Cancellation(
            id=str(row[0]),
            booking_id=str(row[1]),
            listing_id=str(row[2]) if row[2] is not None else None,
            reason_type=row[3],
            trigger=row[4],
            reason=row[5],
            refund_date=row[6],
            created_date=row[7],
        )
        for row in rows
    }


def get_payout_accounts(cur: PgCursor, user_ids: list[str]) -> dict[str, PayoutAccount]:
    if not user_ids:
        return {}
    rows = fetchall(
        cur,
        """
        SELECT id, payment_account_ref, bank_account_ref
        FROM users
        WHERE id = ANY(%s::uuid[])
        """,
        (list(user_ids),),
    )
    return {
        str(row[0]): PayoutAccount(
            user_id=str(row[0]),
            account_ref=row[1],
            bank_account_ref=row[2],
        )
        for row in rows
    }


def get_listing_availabilities(cur: PgCursor, listing_id: str) -> list[ListingAvailability]:
    rows = fetchall(
        cur,
        """
        SELECT listing_id, start_date, end_date, quantity, available
        FROM listing_availabilities
        WHERE listing_id = %s
        ORDER BY start_date
        """,
        (listing_id,),
    )
    return [
        ListingAvailability(
            listing_id=str(row[0]),
            start_date=row[1],
            end_date=row[2],
            quantity=row[3],
            available=row[4],
        )
        for row in rows
    ]


def get_listing_quantity(cur: PgCursor, listing_id: str) -> int | None:
    row = fetchone(cur, "SELECT quantity FROM listings WHERE id = %s", (listing_id,))
    return row[0] if row else None


class PostgresBookingUnit:
    """Booking row locked with FOR UPDATE inside an open transaction."""

    def __init__(self, cur: PgCursor, booking: Booking | None) -> None:
        self._cur = cur
        self.booking = booking

    def update_if_still_eligible(
        self,
        expected_null: str,
        values: dict[str, Any],
        *,
        guards: dict[str, Any] | None = None,
    ) -> bool:
        if self.booking is None:
            return False
        updated = update_booking_if_null(
            self._cur,
            self.booking.id,
            expected_null=expected_null,
            values=values,
            guards=guards,
        )
        if updated:
            for name, value in values.items():
                setattr(self.booking, name, value)
        return updated

    def create_cancellation(
        self,
        *,
        reason_type: str,
        trigger: str | None,
        reason: str | None,
        created_date: datetime,
    ) -> Cancellation:
        if self.booking is None:
            raise ValueError("No booking locked")
        return insert_cancellation(
            self._cur,
            booking=self.booking,
            reason_type=reason_type,
            trigger=trigger,
            reason=reason,
            created_date=created_date,
        )


class PostgresBookingStore:
    """BookingStore backed by Postgres; one short transaction per call."""

    def find_where(self, *, any_null: tuple[str, ...] = (), **criteria: Any) -> list[Booking]:
        with txn() as cur:
            return find_bookings(cur, any_null=any_null, **criteria)

    def get_booking(self, booking_id: str) -> Booking | None:
        with txn() as cur:
            return get_booking(cur, booking_id)

    @contextmanager
    def locked(self, booking_id: str) -> Iterator[PostgresBookingUnit]:
        with txn() as cur:
            yield PostgresBookingUnit(cur, get_booking(cur, booking_id, lock=True))

    def get_cancellations(self, cancellation_ids: list[str]) -> dict[str, Cancellation]:
        with txn() as cur:
            return get_cancellations(cur, cancellation_ids)

    def get_payout_accounts(self, user_ids: list[str]) -> dict[str, PayoutAccount]:
        with txn() as cur:
            return get_payout_accounts(cur, user_ids)

    def get_listing_availabilities(self, listing_id: str) -> list[ListingAvailability]:
        with txn() as cur:
            return get_listing_availabilities(cur, listing_id)

    def get_listing_quantity(self, listing_id: str) -> int | None:
        with txn() as cur:
            return get_listing_quantity(cur, listing_id)
