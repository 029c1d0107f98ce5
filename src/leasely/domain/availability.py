"""Availability evaluation - can a new booking fit under the listing capacity?

Pure functions on top of the capacity timeline. Nothing here touches the
database; callers load bookings and availabilities and pass them in.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Sequence

from leasely.domain.bookings import Booking, ListingAvailability
from leasely.domain.capacity import (
    AvailabilityPeriod,
    build_capacity_timeline,
    quantity_at,
    validate_availability,
    validate_booking,
)


@dataclass(frozen=True)
class AvailabilityResult:
    is_available: bool
    periods: list[AvailabilityPeriod] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_available": self.is_available,
            "periods": [period.to_dict() for period in self.periods],
        }


def _window_periods(
    periods: Sequence[AvailabilityPeriod],
    start: datetime,
    end: datetime,
) -> list[AvailabilityPeriod]:
    return [period for period in periods if start <= period.date < end]


def evaluate(
    existing_bookings: Iterable[Booking],
    listing_availabilities: Iterable[ListingAvailability],
    candidate: Booking,
    max_quantity: int | None = None,
) -> AvailabilityResult:
    """Decide whether ``candidate`` fits and return the capacity timeline.

    Args:
        existing_bookings: Bookings already holding capacity on the listing.
        listing_availabilities: Owner-defined capacity overrides.
        candidate: The booking being requested.
        max_quantity: Capacity ceiling. None means unbounded: the result is
            always available and only the timeline is meaningful.

    Returns:
        AvailabilityResult with ``is_available`` and the periods (including
        the candidate, unless it is a no-time booking).

    Raises:
        InvalidIntervalError: An interval ends at or before its start.
        InvalidBookingError: Bad quantity or missing dates.
    """
    bookings = list(existing_bookings)
    availabilities = list(listing_availabilities)

    for booking in bookings:
        validate_booking(booking)
    for availability in availabilities:
        validate_availability(availability)
    validate_booking(candidate, candidate=True)

    if candidate.is_no_time:
        # Consumes capacity at a single instant: its creation.
        periods = build_capacity_timeline(bookings, availabilities)
        if max_quantity is None:
            return AvailabilityResult(True, periods)
        in_use = quantity_at(periods, candidate.created_date)
        return AvailabilityResult(in_use + candidate.quantity <= max_quantity, periods)

    periods = build_capacity_timeline(bookings, availabilities, candidate)
    if max_quantity is None:
        return AvailabilityResult(True, periods)

    window = _window_periods(periods, candidate.start_date, candidate.end_date)
    is_available = all(period.quantity <= max_quantity for period in window)
    return AvailabilityResult(is_available, periods)


def remaining_quantity(
    periods: Sequence[AvailabilityPeriod],
    start: datetime,
    end: datetime | None,
    max_quantity: int,
) -> int:
    """Smallest headroom left under ``max_quantity`` over ``[start, end)``.

    ``end=None`` looks at every period from ``start`` onwards. Returns 0
    rather than a negative number when the window is already overbooked.
    """
    in_window = [
        period.quantity
        for period in periods
        if period.date >= start and (end is None or period.date < end)
    ]
    in_window.append(quantity_at(periods, start))
    return max(max_quantity - max(in_window), 0)


def _overlaps(a: Booking, b: Booking) -> bool:
    if a.is_no_time or b.is_no_time:
        return a.is_no_time and b.is_no_time
    a_end = a.end_date
    b_end = b.end_date
    return (b_end is None or a.start_date < b_end) and (a_end is None or b.start_date < a_end)


def find_overbooked_pending(
    booking: Booking,
    listing_bookings: Iterable[Booking],
    listing_availabilities: Iterable[ListingAvailability],
    max_quantity: int,
) -> list[Booking]:
    """Pending bookings that no longer fit once ``booking`` holds its capacity.

    ``listing_bookings`` are the non-cancelled bookings of the listing.
    Bookings both accepted and paid hold capacity; unpaid bookings
    overlapping ``booking`` are the pending ones re-evaluated against them.

    Raises:
        InvalidBookingError: A booking of the listing cannot be placed on the
            timeline (bad quantity, end date without start date).
    """
    bookings = list(listing_bookings)
    availabilities = list(listing_availabilities)
    validate_booking(booking)
    for other in bookings:
        validate_booking(other)

    holding = [b for b in bookings if b.accepted_date is not None and b.paid_date is not None]
    if all(b.id != booking.id for b in holding):
        holding.append(booking)

    pending = [
        b
        for b in bookings
        if b.id != booking.id and b.paid_date is None and _overlaps(b, booking)
    ]

    return [
        candidate
        for candidate in pending
        if not evaluate(holding, availabilities, candidate, max_quantity).is_available
    ]
