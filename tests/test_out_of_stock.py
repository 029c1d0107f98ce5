"""Tests for the out-of-stock sweep."""

from __future__ import annotations

import pytest

from leasely.domain.cancellation import BookingNotFoundError
from leasely.domain.capacity import InvalidBookingError
from leasely.domain.ports import DataIntegrityError
from leasely.settlement.out_of_stock import cancel_out_of_stock_bookings

from .helpers import (
    NOW,
    FakePaymentProvider,
    InMemoryBookingStore,
    dt,
    make_booking,
    make_deps,
)


def _confirmed(booking_id="confirmed", **overrides):
    return make_booking(
        booking_id,
        start_date=dt("2026-04-01"),
        end_date=dt("2026-04-05"),
        accepted_date=NOW,
        paid_date=NOW,
        **overrides,
    )


def _pending(booking_id, start, end, **overrides):
    return make_booking(booking_id, start_date=dt(start), end_date=dt(end), **overrides)


class TestCancelOutOfStockBookings:
    def test_cancels_pending_bookings_that_no_longer_fit(self):
        store = InMemoryBookingStore(
            [
                _confirmed(),
                _pending("overlap", "2026-04-03", "2026-04-07"),
                _pending("later", "2026-05-01", "2026-05-03"),
            ],
            listing_quantities={"l1": 1},
        )
        provider = FakePaymentProvider()

        summary = cancel_out_of_stock_bookings("confirmed", now=NOW, deps=make_deps(store, provider))

        assert summary.to_dict() == {
            "stage": "out_of_stock",
            "eligible": 1,
            "processed": 1,
            "skipped": 0,
            "errors": [],
        }
        cancelled = store.bookings["overlap"]
        assert store.cancellations[cancelled.cancellation_id].reason_type == "out-of-stock"
        assert store.bookings["later"].cancellation_id is None
        assert store.bookings["confirmed"].cancellation_id is None
        assert provider.calls == []

    def test_enough_stock_cancels_nothing(self):
        store = InMemoryBookingStore(
            [_confirmed(), _pending("overlap", "2026-04-03", "2026-04-07")],
            listing_quantities={"l1": 2},
        )

        summary = cancel_out_of_stock_bookings("confirmed", now=NOW, deps=make_deps(store))

        assert summary.eligible == 0
        assert store.cancellations == {}

    def test_unknown_booking(self):
        with pytest.raises(BookingNotFoundError):
            cancel_out_of_stock_bookings("nope", now=NOW, deps=make_deps(InMemoryBookingStore()))

    def test_listing_without_quantity(self):
        store = InMemoryBookingStore([_confirmed()])

        with pytest.raises(DataIntegrityError):
            cancel_out_of_stock_bookings("confirmed", now=NOW, deps=make_deps(store))

    def test_booking_paid_between_read_and_lock_is_kept(self):
        def pay_and_accept(booking_id):
            if booking_id == "overlap":
                store.bookings["overlap"].paid_date = NOW
                store.bookings["overlap"].accepted_date = NOW

        store = InMemoryBookingStore(
            [_confirmed(), _pending("overlap", "2026-04-03", "2026-04-07")],
            listing_quantities={"l1": 1},
            on_lock=pay_and_accept,
        )

        summary = cancel_out_of_stock_bookings("confirmed", now=NOW, deps=make_deps(store))

        assert (summary.eligible, summary.processed, summary.skipped) == (1, 0, 1)
        assert store.bookings["overlap"].cancellation_id is None
        assert store.cancellations == {}

    def test_bookings_with_an_end_but_no_start_are_rejected(self):
        store = InMemoryBookingStore(
            [_confirmed(), make_booking("broken", start_date=None, end_date=dt("2026-04-04"))],
            listing_quantities={"l1": 1},
        )

        with pytest.raises(InvalidBookingError):
            cancel_out_of_stock_bookings("confirmed", now=NOW, deps=make_deps(store))
