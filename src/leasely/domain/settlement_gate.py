"""Settlement gate - which bookings each settlement stage may touch.

One pure predicate per stage. Each stage is guarded by a different nullable
field (its "done" field), so a booking that already went through a stage
never passes that stage's gate again. Workers evaluate the gate twice: once
on the bulk read and again on the locked row right before writing.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from leasely.domain.bookings import (
    Booking,
    Cancellation,
    InputAssessment,
    OutputAssessment,
    PayoutAccount,
)
from leasely.domain.cancellation_policy import (
    REVERSIBLE_REASON_TYPES,
    ReasonType,
    is_payment_reversible,
    parse_reason_type,
)

EXPIRE_TIMED_AFTER_DAYS = 3
EXPIRE_NO_TIME_AFTER_DAYS = 7
TRANSFER_AFTER_ASSESSMENT_DAYS = 2

# Renew a deposit hold that expires within this window.
DEPOSIT_RENEW_BEFORE = timedelta(days=1, hours=2)
DEPOSIT_RELEASE_GRACE = timedelta(minutes=1)

DEPOSIT_RELEASE_REASON_TYPES: frozenset[ReasonType] = REVERSIBLE_REASON_TYPES | {
    ReasonType.TAKER_CANCELLATION
}


def is_expire_age_reached(
    booking: Booking,
    now: datetime,
    *,
    timed_after_days: int = EXPIRE_TIMED_AFTER_DAYS,
    no_time_after_days: int = EXPIRE_NO_TIME_AFTER_DAYS,
) -> bool:
    if booking.is_no_time:
        if booking.created_date is None:
            return False
        return booking.created_date + timedelta(days=no_time_after_days) < now
    if booking.start_date is None:
        return False
    return booking.start_date + timedelta(days=timed_after_days) < now


def can_expire(
    booking: Booking,
    now: datetime,
    *,
    timed_after_days: int = EXPIRE_TIMED_AFTER_DAYS,
    no_time_after_days: int = EXPIRE_NO_TIME_AFTER_DAYS,
) -> bool:
    """Not cancelled or captured, still waiting for acceptance or payment, and too old."""
    if booking.is_cancelled or booking.payment_used_date is not None:
        return False
    if booking.accepted_date is not None and booking.paid_date is not None:
        return False
    return is_expire_age_reached(
        booking,
        now,
        timed_after_days=timed_after_days,
        no_time_after_days=no_time_after_days,
    )


def can_payin(booking: Booking) -> bool:
    """Confirmed and validated, payment not captured yet."""
    return (
        not booking.is_cancelled
        and booking.confirmed_date is not None
        and booking.validated_date is not None
        and booking.payment_used_date is None
    )


def is_assessment_settled(
    assessment: InputAssessment | None,
    now: datetime,
    *,
    delay_days: int = TRANSFER_AFTER_ASSESSMENT_DAYS,
) -> bool:
    if assessment is None or assessment.signed_date is None:
        return False
    return assessment.signed_date + timedelta(days=delay_days) <= now


def can_transfer(
    booking: Booking,
    owner_account: PayoutAccount | None,
    assessment: InputAssessment | None,
    now: datetime,
    *,
    delay_days: int = TRANSFER_AFTER_ASSESSMENT_DAYS,
) -> bool:
    """Captured, not transferred, not on hold, owner can receive, assessment old enough."""
    if booking.is_cancelled or booking.stop_transfer_payment:
        return False
    if booking.payment_used_date is None or booking.payment_transfer_date is not None:
        return False
    if owner_account is None or not owner_account.can_receive_transfer:
        return False
    return is_assessment_settled(assessment, now, delay_days=delay_days)


def can_reverse(booking: Booking, cancellation: Cancellation | None) -> bool:
    """Cancelled for a reversible reason after the taker paid, not yet reversed."""
    if not booking.is_cancelled or cancellation is None:
        return False
    if booking.paid_date is None or booking.cancellation_payment_date is not None:
        return False
    return is_payment_reversible(cancellation.reason_type)


def can_payout(booking: Booking, owner_account: PayoutAccount | None) -> bool:
    """Transferred to the owner's account, not yet paid out to their bank."""
    if booking.is_cancelled:
        return False
    if booking.payment_transfer_date is None or booking.withdrawal_date is not None:
        return False
    return owner_account is not None and owner_account.can_receive_payout


class DepositAction(str, Enum):
    RELEASE = "release"
    RENEW = "renew"


def has_open_deposit(booking: Booking) -> bool:
    return booking.deposit_date is not None and booking.cancellation_deposit_date is None


def is_deposit_release_due(booking: Booking, now: datetime) -> bool:
    """A release was decided on an earlier run and the hold is still open."""
    return booking.release_deposit_date is not None and booking.release_deposit_date < now


def needs_assessments_for_deposit(
    booking: Booking,
    now: datetime,
    *,
    release_grace: timedelta = DEPOSIT_RELEASE_GRACE,
) -> bool:
    if booking.is_no_time or booking.end_date is None or booking.release_deposit_date is not None:
        return False
    return booking.end_date < now - release_grace


def should_release_after_assessments(
    booking: Booking,
    input_assessment: InputAssessment | None,
    output_assessment: OutputAssessment | None,
    now: datetime,
    *,
    release_grace: timedelta = DEPOSIT_RELEASE_GRACE,
) -> bool:
    """Past end date, check-in signed, check-out opened but never signed."""
    if not needs_assessments_for_deposit(booking, now, release_grace=release_grace):
        return False
    if input_assessment is None or input_assessment.signed_date is None:
        return False
    return output_assessment is not None and output_assessment.signed_date is None


def should_release_on_cancellation(
    booking: Booking,
    cancellation: Cancellation | None,
    now: datetime,
    *,
    release_grace: timedelta = DEPOSIT_RELEASE_GRACE,
) -> bool:
    """Cancelled for a releasing reason, or cancelled longer than the grace period ago."""
    if not booking.is_cancelled or cancellation is None:
        return False
    if booking.release_deposit_date is not None:
        return False
    if parse_reason_type(cancellation.reason_type) in DEPOSIT_RELEASE_REASON_TYPES:
        return True
    return cancellation.created_date is not None and cancellation.created_date < now - release_grace


def should_renew_deposit(
    booking: Booking,
    now: datetime,
    *,
    renew_before: timedelta = DEPOSIT_RENEW_BEFORE,
) -> bool:
    if booking.deposit_cents <= 0 or booking.stop_renew_deposit or not booking.deposit_ref:
        return False
    expires = booking.deposit_expiration_date
    return expires is not None and expires < now + renew_before


def deposit_action(
    booking: Booking,
    cancellation: Cancellation | None,
    input_assessment: InputAssessment | None,
    output_assessment: OutputAssessment | None,
    now: datetime,
    *,
    renew_before: timedelta = DEPOSIT_RENEW_BEFORE,
    release_grace: timedelta = DEPOSIT_RELEASE_GRACE,
) -> DepositAction | None:
    """What the deposit worker does with an open hold, releases first."""
    if not has_open_deposit(booking):
        return None
    if (
        is_deposit_release_due(booking, now)
        or should_release_after_assessments(
            booking, input_assessment, output_assessment, now, release_grace=release_grace
        )
        or should_release_on_cancellation(booking, cancellation, now, release_grace=release_grace)
    ):
        return DepositAction.RELEASE
    if should_renew_deposit(booking, now, renew_before=renew_before):
        return DepositAction.RENEW
    return None
