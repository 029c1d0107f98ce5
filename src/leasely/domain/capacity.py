"""Capacity timeline - sweep line over booking and availability intervals.

Every interval boundary becomes a CapacityEvent. Events sharing an exact
instant are merged by summing their deltas, then a running sum over the
sorted instants gives the capacity in use from each instant until the next.

Sign convention:
    booking start          +quantity
    booking end            -quantity
    availability start     -quantity if available else +quantity
    availability end       the negation of its start delta

No timezone normalisation happens here. Day-based listings must pass
midnight-aligned instants.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Literal

from leasely.domain.bookings import Booking, ListingAvailability

PeriodTag = Literal["start", "end"]

# Leading baseline period offset, before the first event.
BASELINE_OFFSET = timedelta(days=1)


class BookingValidationError(ValueError):
    """Raised when a booking or availability cannot enter the sweep."""


class InvalidIntervalError(BookingValidationError):
    """Raised when an interval ends at or before its start."""


class InvalidBookingError(BookingValidationError):
    """Raised when a booking misses a required field or has bad quantity."""


@dataclass(frozen=True)
class CapacityEvent:
    date: datetime
    delta: int


@dataclass(frozen=True)
class AvailabilityPeriod:
    """Cumulative capacity in use at and after ``date``."""

    date: datetime
    quantity: int
    new_period: PeriodTag | None = None

    def to_dict(self) -> dict:
        result = {"date": self.date.isoformat(), "quantity": self.quantity}
        if self.new_period:
            result["new_period"] = self.new_period
        return result


def validate_booking(booking: Booking, *, candidate: bool = False) -> None:
    """Reject bookings the sweep cannot place.

    Raises:
        InvalidBookingError: quantity < 1, or no usable start instant.
        InvalidIntervalError: end_date <= start_date.
    """
    if booking.quantity is None or booking.quantity < 1:
        raise InvalidBookingError(
            f"Booking {booking.id} has invalid quantity {booking.quantity!r}"
        )

    if booking.start_date is None:
        if booking.end_date is not None:
            raise InvalidBookingError(f"Booking {booking.id} has an end date but no start date")
        if booking.created_date is None:
            raise InvalidBookingError(
                f"No-time booking {booking.id} needs a created_date"
            )
        return

    if candidate and booking.end_date is None:
        raise InvalidBookingError(f"Booking {booking.id} has a start date but no end date")

    if booking.end_date is not None and booking.end_date <= booking.start_date:
        raise InvalidIntervalError(
            f"Booking {booking.id} ends at or before its start "
            f"({booking.start_date.isoformat()} -> {booking.end_date.isoformat()})"
        )


def validate_availability(availability: ListingAvailability) -> None:
    if availability.end_date <= availability.start_date:
        raise InvalidIntervalError(
            f"Availability for listing {availability.listing_id} ends at or before its start"
        )
    if availability.quantity < 0:
        raise BookingValidationError(
            f"Availability for listing {availability.listing_id} has negative quantity"
        )


def booking_events(booking: Booking) -> list[CapacityEvent]:
    """Events for one booking.

    A booking without end date stays in use indefinitely. A no-time booking
    starts at its creation instant.
    """
    start = booking.start_date or booking.created_date
    events = [CapacityEvent(start, booking.quantity)]
    if booking.end_date is not None:
        events.append(CapacityEvent(booking.end_date, -booking.quantity))
    return events


def availability_events(availability: ListingAvailability) -> list[CapacityEvent]:
    delta = -availability.quantity if availability.available else availability.quantity
    return [
        CapacityEvent(availability.start_date, delta),
        CapacityEvent(availability.end_date, -delta),
    ]


def merge_events(events: Iterable[CapacityEvent]) -> list[CapacityEvent]:
    """Sum deltas per instant and return them in chronological order."""
    merged: dict[datetime, int] = defaultdict(int)
    for event in events:
        merged[event.date] += event.delta
    return [CapacityEvent(date, merged[date]) for date in sorted(merged)]


def build_capacity_timeline(
    bookings: Iterable[Booking],
    availabilities: Iterable[ListingAvailability] = (),
    candidate: Booking | None = None,
) -> list[AvailabilityPeriod]:
    """Build the chronological capacity-in-use curve.

    Args:
        bookings: Existing bookings of the listing.
        availabilities: Listing availability overrides.
        candidate: Optional new booking; its start and end periods are tagged.

    Returns:
        Periods sorted by date, preceded by a zero baseline one day before
        the first event. Empty when there is no event at all, meaning zero
        usage everywhere.
    """
    events: list[CapacityEvent] = []
    for booking in bookings:
        events.extend(booking_events(booking))
    for availability in availabilities:
        events.extend(availability_events(availability))
    if candidate is not None:
        events.extend(booking_events(candidate))

    merged = merge_events(events)
    if not merged:
        return []

    tags: dict[datetime, PeriodTag] = {}
    if candidate is not None and candidate.start_date is not None:
        tags[candidate.start_date] = "start"
        if candidate.end_date is not None:
            tags[candidate.end_date] = "end"

    periods = [AvailabilityPeriod(merged[0].date - BASELINE_OFFSET, 0)]
    running = 0
    for event in merged:
        running += event.delta
        periods.append(AvailabilityPeriod(event.date, running, tags.get(event.date)))

    return periods


def quantity_at(periods: list[AvailabilityPeriod], instant: datetime) -> int:
    """Capacity in use at ``instant`` (step function, no interpolation)."""
    quantity = 0
    for period in periods:
        if period.date > instant:
            break
        quantity = period.quantity
    return quantity
