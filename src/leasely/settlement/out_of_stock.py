"""Out-of-stock sweep - cancels pending bookings a confirmed booking crowds out.

Run once a booking is both accepted and paid. Every unpaid booking of the
same listing whose window overlaps it is re-evaluated against the capacity
now held; those that no longer fit are cancelled with reason
``out-of-stock``. Each cancellation is isolated like any settlement batch.
"""

from __future__ import annotations

from datetime import datetime

from leasely.domain.availability import find_overbooked_pending
from leasely.domain.bookings import Booking
from leasely.domain.cancellation import BookingNotFoundError, cancel_booking
from leasely.domain.cancellation_policy import ReasonType
from leasely.domain.ports import DataIntegrityError
from leasely.observability.correlation import correlation_scope
from leasely.settlement.batch import BatchSummary, Outcome, run_batch
from leasely.settlement.deps import SettlementDeps

STAGE = "out_of_stock"


def cancel_out_of_stock_bookings(
    booking_id: str,
    *,
    now: datetime,
    deps: SettlementDeps,
) -> BatchSummary:
    """Cancel the pending bookings that ``booking_id`` pushed over capacity.

    Raises:
        BookingNotFoundError: The reference booking doesn't exist.
        DataIntegrityError: Its listing has no recorded quantity.
    """
    store = deps.store
    booking = store.get_booking(booking_id)
    if booking is None:
        raise BookingNotFoundError(f"Booking {booking_id} not found")

    max_quantity = store.get_listing_quantity(booking.listing_id)
    if max_quantity is None:
        raise DataIntegrityError(f"Listing {booking.listing_id} not found")

    listing_bookings = store.find_where(listing_id=booking.listing_id, cancellation_id=None)
    overbooked = find_overbooked_pending(
        booking,
        listing_bookings,
        store.get_listing_availabilities(booking.listing_id),
        max_quantity,
    )

    def handle(pending: Booking) -> Outcome:
        result = cancel_booking(
            store,
            pending.id,
            reason_type=ReasonType.OUT_OF_STOCK,
            now=now,
            assessments=deps.assessments,
            pending_only=True,
        )
        if result["status"] == "cancelled":
            return Outcome.PROCESSED
        return Outcome.SKIPPED

    with correlation_scope():
        summary = BatchSummary(stage=STAGE, eligible=len(overbooked))
        return run_batch(summary, overbooked, handle, max_workers=deps.settings.max_workers)
