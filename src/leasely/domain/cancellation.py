"""Cancel booking domain logic - creates the Cancellation and links it.

Cancelling never moves money. Whether the taker gets paid back is decided
later by the reversal worker from the cancellation reason type.
"""

from __future__ import annotations

from datetime import datetime

from leasely.domain.bookings import Cancellation
from leasely.domain.cancellation_policy import (
    ReasonType,
    Trigger,
    is_payment_reversible,
    parse_reason_type,
    parse_trigger,
)
from leasely.domain.ports import (
    AssessmentLookup,
    BookingStore,
    BookingUnit,
    ConcurrentUpdateError,
)


class BookingNotFoundError(Exception):
    """Raised when the booking does not exist."""

    pass


class BookingNotCancellableError(Exception):
    """Raised when the booking went too far to be cancelled automatically."""

    pass


def apply_cancellation(
    unit: BookingUnit,
    *,
    reason_type: ReasonType,
    trigger: Trigger | None,
    reason: str | None,
    now: datetime,
    guards: dict | None = None,
) -> Cancellation:
    """Insert the Cancellation and link it to the locked booking.

    The link is a conditional write: it only lands while the booking is not
    cancelled yet, no transfer to the owner happened and every extra guard
    still holds.

    Raises:
        ConcurrentUpdateError: The guarded update matched no row; the caller's
            transaction rolls the insert back.
    """
    cancellation = unit.create_cancellation(
        reason_type=reason_type.value,
        trigger=trigger.value if trigger else None,
        reason=reason,
        created_date=now,
    )
    linked = unit.update_if_still_eligible(
        "cancellation_id",
        {"cancellation_id": cancellation.id},
        guards={"payment_transfer_date": None, **(guards or {})},
    )
    if not linked:
        raise ConcurrentUpdateError(
            f"Booking {cancellation.booking_id} changed while being cancelled"
        )
    return cancellation


def cancel_booking(
    store: BookingStore,
    booking_id: str,
    *,
    reason_type: str | ReasonType,
    now: datetime,
    trigger: str | Trigger | None = None,
    reason: str | None = None,
    assessments: AssessmentLookup | None = None,
    pending_only: bool = False,
) -> dict:
    """Cancel a booking without touching its payment.

    This function:
    1. Validates reason type and trigger (closed enums)
    2. Locks the booking
    3. Returns early if already cancelled (idempotent)
    4. With ``pending_only``, leaves a booking alone once it is paid
    5. Refuses once the input assessment is signed (manual handling)
    6. Creates the Cancellation and links it with a conditional update

    Returns:
        - {"status": "already_cancelled", "booking_id": str, "cancellation_id": str}
        - {"status": "not_pending", "booking_id": str} (``pending_only`` only)
        - {"status": "cancelled", "booking_id": str, "cancellation_id": str,
           "reason_type": str, "payment_reversible": bool}

    Raises:
        InvalidReasonTypeError: Unknown reason type or trigger.
        BookingNotFoundError: Booking doesn't exist.
        BookingNotCancellableError: Input assessment already signed, or the
            owner already received the funds.
    """
    reason_type = parse_reason_type(reason_type)
    trigger = parse_trigger(trigger)

    with store.locked(booking_id) as unit:
        booking = unit.booking
        if booking is None:
            raise BookingNotFoundError(f"Booking {booking_id} not found")

        if booking.is_cancelled:
            return {
                "status": "already_cancelled",
                "booking_id": booking_id,
                "cancellation_id": booking.cancellation_id,
            }

        if pending_only and booking.paid_date is not None:
            return {"status": "not_pending", "booking_id": booking_id}

        if booking.payment_transfer_date is not None:
            raise BookingNotCancellableError(
                f"Booking {booking_id} was already transferred: cancel it manually"
            )

        if assessments is not None and booking.accepted_date and booking.paid_date:
            assessment = assessments.get_input_assessment(booking_id)
            if assessment is not None and assessment.signed_date is not None:
                raise BookingNotCancellableError(
                    f"Booking {booking_id} input assessment is signed: cancel it manually"
                )

        cancellation = apply_cancellation(
            unit,
            reason_type=reason_type,
            trigger=trigger,
            reason=reason,
            now=now,
            guards={"paid_date": None} if pending_only else None,
        )

    return {
        "status": "cancelled",
        "booking_id": booking_id,
        "cancellation_id": cancellation.id,
        "reason_type": reason_type.value,
        "payment_reversible": is_payment_reversible(reason_type),
    }
