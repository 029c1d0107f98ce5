"""Tests for the bookings repository SQL (mocked cursor, no DB needed)."""

from __future__ import annotations

from contextlib import contextmanager
from unittest.mock import MagicMock, patch

import pytest

from leasely.domain.bookings import BOOKING_COLUMNS
from leasely.domain.ports import NOT_NULL
from leasely.infra.repositories.assessments_repository import (
    get_input_assessment,
    get_output_assessment,
)
from leasely.infra.repositories.bookings_repository import (
    PostgresBookingStore,
    build_conditions,
    find_bookings,
    get_booking,
    get_payout_accounts,
    insert_cancellation,
    update_booking_if_null,
)

from .helpers import NOW, make_booking


def _row(**values):
    booking = make_booking(**values)
    return tuple(getattr(booking, column) for column in BOOKING_COLUMNS)


def _sql(cur) -> str:
    return " ".join(cur.execute.call_args[0][0].split())


class TestBuildConditions:
    def test_criteria_kinds(self):
        conditions, params = build_conditions(
            {
                "cancellation_id": None,
                "paid_date": NOT_NULL,
                "stop_transfer_payment": False,
                "listing_id": ["l1", "l2"],
            },
            any_null=("accepted_date", "paid_date"),
        )

        assert conditions == [
            "cancellation_id IS NULL",
            "paid_date IS NOT NULL",
            "stop_transfer_payment = %s",
            "listing_id = ANY(%s)",
            "(accepted_date IS NULL OR paid_date IS NULL)",
        ]
        assert params == [False, ["l1", "l2"]]

    def test_unknown_column_rejected(self):
        with pytest.raises(ValueError, match="Unknown booking column"):
            build_conditions({"id; DROP TABLE bookings": None})


class TestFindBookings:
    def test_maps_rows_to_bookings(self):
        cur = MagicMock()
        cur.fetchall.return_value = [_row(booking_id="b1"), _row(booking_id="b2")]

        bookings = find_bookings(cur, cancellation_id=None, payment_used_date=None)

        sql = _sql(cur)
        assert "FROM bookings WHERE cancellation_id IS NULL AND payment_used_date IS NULL" in sql
        assert sql.endswith("ORDER BY created_date, id")
        assert [b.id for b in bookings] == ["b1", "b2"]
        assert bookings[0].authorization_ref == "pi_b1"

    def test_without_criteria_has_no_where(self):
        cur = MagicMock()
        cur.fetchall.return_value = []

        find_bookings(cur)

        assert " WHERE " not in _sql(cur)


class TestGetBooking:
    def test_lock_uses_for_update(self):
        cur = MagicMock()
        cur.fetchone.return_value = _row(booking_id="b1")

        booking = get_booking(cur, "b1", lock=True)

        assert _sql(cur).endswith("WHERE id = %s FOR UPDATE")
        assert booking.id == "b1"

    def test_missing_booking(self):
        cur = MagicMock()
        cur.fetchone.return_value = None

        assert get_booking(cur, "nope") is None


class TestUpdateBookingIfNull:
    def test_conditional_update(self):
        cur = MagicMock()
        cur.rowcount = 1

        updated = update_booking_if_null(
            cur,
            "b1",
            expected_null="payment_used_date",
            values={"payment_used_date": NOW, "capture_ref": "ch_1"},
            guards={"cancellation_id": None},
        )

        assert updated is True
        sql = _sql(cur)
        assert "SET payment_used_date = %s, capture_ref = %s, updated_date = now()" in sql
        assert "WHERE id = %s AND payment_used_date IS NULL AND cancellation_id IS NULL" in sql
        assert cur.execute.call_args[0][1] == [NOW, "ch_1", "b1"]

    def test_no_row_matched(self):
        cur = MagicMock()
        cur.rowcount = 0

        assert update_booking_if_null(
            cur, "b1", expected_null="withdrawal_date", values={"withdrawal_date": NOW}
        ) is False

    def test_empty_values_rejected(self):
        with pytest.raises(ValueError):
            update_booking_if_null(MagicMock(), "b1", expected_null="withdrawal_date", values={})


class TestInsertCancellation:
    def test_returns_cancellation_with_generated_id(self):
        cur = MagicMock()
        cur.fetchone.return_value = ("c-123",)

        cancellation = insert_cancellation(
            cur,
            booking=make_booking("b1"),
            reason_type="no-action",
            trigger=None,
            reason=None,
            created_date=NOW,
        )

        assert "INSERT INTO cancellations" in _sql(cur)
        assert cancellation.id == "c-123"
        assert cancellation.booking_id == "b1"
        assert cancellation.listing_id == "l1"


class TestPayoutAccounts:
    def test_empty_ids_skip_query(self):
        cur = MagicMock()
        assert get_payout_accounts(cur, []) == {}
        cur.execute.assert_not_called()

    def test_maps_accounts(self):
        cur = MagicMock()
        cur.fetchall.return_value = [("owner-1", "acct_1", None)]

        accounts = get_payout_accounts(cur, ["owner-1"])

        assert accounts["owner-1"].can_receive_transfer is True
        assert accounts["owner-1"].can_receive_payout is False


class TestAssessments:
    def test_latest_input_assessment(self):
        cur = MagicMock()
        cur.fetchone.return_value = ("b1", NOW)

        assessment = get_input_assessment(cur, "b1")

        assert "ORDER BY created_date DESC" in _sql(cur)
        assert cur.execute.call_args[0][1] == ("b1", "input")
        assert assessment.signed_date == NOW

    def test_unsigned_output_assessment(self):
        cur = MagicMock()
        cur.fetchone.return_value = ("b1", None)

        assessment = get_output_assessment(cur, "b1")

        assert cur.execute.call_args[0][1] == ("b1", "output")
        assert assessment.booking_id == "b1"
        assert assessment.signed_date is None

    def test_missing_output_assessment(self):
        cur = MagicMock()
        cur.fetchone.return_value = None
        assert get_output_assessment(cur, "b1") is None


class TestPostgresBookingStore:
    def test_locked_unit_applies_update_to_its_booking(self):
        cur = MagicMock()
        cur.fetchone.return_value = _row(booking_id="b1")
        cur.rowcount = 1

        @contextmanager
        def mock_txn():
            yield cur

        with patch("leasely.infra.repositories.bookings_repository.txn", mock_txn):
            with PostgresBookingStore().locked("b1") as unit:
                assert unit.update_if_still_eligible("withdrawal_date", {"withdrawal_date": NOW})

        assert unit.booking.withdrawal_date == NOW
