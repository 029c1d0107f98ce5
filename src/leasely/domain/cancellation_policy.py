"""Cancellation reasons and which of them reverse the taker's payment.

Reason types are a closed enum validated at the boundary (API payloads, DB
rows). Only the reasons in REVERSIBLE_REASON_TYPES give the money back;
the others (post-service disputes, taker-initiated cancellations) leave any
captured payment untouched and are resolved manually.
"""

from __future__ import annotations

from enum import Enum

from leasely.domain.bookings import Booking


class ReasonType(str, Enum):
    # set by admins only
    USER_REMOVED = "user-removed"
    LISTING_REMOVED = "listing-removed"
    BOOKING_CANCELLED = "booking-cancelled"

    # set automatically
    NO_ACTION = "no-action"
    NO_VALIDATION = "no-validation"
    NO_PAYMENT = "no-payment"
    OUT_OF_STOCK = "out-of-stock"

    REJECTED = "rejected"
    TAKER_CANCELLATION = "taker-cancellation"

    ASSESSMENT_MISSED = "assessment-missed"
    ASSESSMENT_REFUSED = "assessment-refused"

    OTHER = "other"


class Trigger(str, Enum):
    ADMIN = "admin"
    OWNER = "owner"
    TAKER = "taker"


REVERSIBLE_REASON_TYPES: frozenset[ReasonType] = frozenset(
    {
        ReasonType.USER_REMOVED,
        ReasonType.LISTING_REMOVED,
        ReasonType.BOOKING_CANCELLED,
        ReasonType.NO_ACTION,
        ReasonType.NO_VALIDATION,
        ReasonType.NO_PAYMENT,
        ReasonType.OUT_OF_STOCK,
        ReasonType.REJECTED,
    }
)


class InvalidReasonTypeError(ValueError):
    """Raised for a reason type or trigger outside the known values."""


def parse_reason_type(value: str | ReasonType) -> ReasonType:
    try:
        return ReasonType(value)
    except ValueError:
        raise InvalidReasonTypeError(f"Unknown cancellation reason type: {value!r}") from None


def parse_trigger(value: str | Trigger | None) -> Trigger | None:
    if value is None:
        return None
    try:
        return Trigger(value)
    except ValueError:
        raise InvalidReasonTypeError(f"Unknown cancellation trigger: {value!r}") from None


def is_payment_reversible(reason_type: str | ReasonType) -> bool:
    return parse_reason_type(reason_type) in REVERSIBLE_REASON_TYPES


def classify_expiry(booking: Booking) -> ReasonType:
    """Pick the reason type for a booking the expire worker cancels.

    The expire gate guarantees that at least one of accepted/paid is missing,
    so the three branches are exhaustive.
    """
    accepted = booking.accepted_date is not None
    paid = booking.paid_date is not None

    if not accepted and not paid:
        return ReasonType.NO_ACTION
    if accepted and not paid:
        return ReasonType.NO_VALIDATION
    if paid and not accepted:
        return ReasonType.NO_PAYMENT

    raise ValueError(f"Booking {booking.id} is accepted and paid, it cannot expire")
