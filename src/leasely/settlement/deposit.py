"""Deposit worker - keeps the taker's security deposit hold alive, then lets it go.

A hold is released once the booking is over (check-in signed, check-out
opened but never signed) or once the booking is cancelled. Until then it is
renewed shortly before the card network drops it. A ``release_deposit_date``
set ahead of time (scheduled release) is honoured once it has passed.

Renewed holds replace ``deposit_ref``; the previous hold lapses on its own
within the renewal window.
"""

from __future__ import annotations

from datetime import datetime

from leasely.domain.bookings import Booking, Cancellation
from leasely.domain.ports import NOT_NULL, BookingUnit, ConcurrentUpdateError, DataIntegrityError
from leasely.domain.settlement_gate import (
    DepositAction,
    deposit_action,
    needs_assessments_for_deposit,
)
from leasely.observability.correlation import correlation_scope
from leasely.observability.logging import get_logger
from leasely.observability.redaction import safe_log_context
from leasely.payments.client import PaymentProviderError, ProviderNetworkError
from leasely.settlement.batch import BatchSummary, Outcome, run_batch, select
from leasely.settlement.deps import SettlementDeps

logger = get_logger(__name__)

STAGE = "deposit"


class DepositRenewalDeclinedError(Exception):
    """The provider refused a renewed hold; renewals stop for this booking."""


def deposit_release_key(booking_id: str, deposit_ref: str) -> str:
    return f"booking:{booking_id}:deposit-release:{deposit_ref}"


def deposit_renew_key(booking_id: str, deposit_ref: str) -> str:
    return f"booking:{booking_id}:deposit-renew:{deposit_ref}"


def _release(unit: BookingUnit, booking: Booking, now: datetime, deps: SettlementDeps) -> None:
    if booking.release_deposit_date is None:
        decided = unit.update_if_still_eligible(
            "release_deposit_date",
            {"release_deposit_date": now},
            guards={"cancellation_deposit_date": None},
        )
        if not decided:
            raise ConcurrentUpdateError(f"Booking {booking.id} changed during deposit release")

    deps.provider.cancel_authorization(
        booking.deposit_ref,
        idempotency_key=deposit_release_key(booking.id, booking.deposit_ref),
    )

    if not unit.update_if_still_eligible(
        "cancellation_deposit_date", {"cancellation_deposit_date": now}
    ):
        raise ConcurrentUpdateError(f"Booking {booking.id} changed during deposit release")


def _renew(
    unit: BookingUnit,
    booking: Booking,
    deps: SettlementDeps,
) -> PaymentProviderError | None:
    """Swap in a fresh hold. Returns the decline when the card refused it."""
    previous_ref = booking.deposit_ref
    try:
        hold = deps.provider.renew_authorization(
            previous_ref,
            amount_cents=booking.deposit_cents,
            currency=booking.currency or deps.settings.currency,
            idempotency_key=deposit_renew_key(booking.id, previous_ref),
        )
    except ProviderNetworkError:
        raise
    except PaymentProviderError as exc:
        unit.update_if_still_eligible("cancellation_deposit_date", {"stop_renew_deposit": True})
        return exc

    written = unit.update_if_still_eligible(
        "cancellation_deposit_date",
        {"deposit_ref": hold.ref, "deposit_expiration_date": hold.expires_at},
        guards={"deposit_ref": previous_ref},
    )
    if not written:
        raise ConcurrentUpdateError(f"Booking {booking.id} changed during deposit renewal")
    return None


def run(now: datetime, deps: SettlementDeps) -> BatchSummary:
    settings = deps.settings

    with correlation_scope():
        summary = BatchSummary(stage=STAGE)
        candidates = deps.store.find_where(
            deposit_date=NOT_NULL,
            cancellation_deposit_date=None,
        )
        cancellations = deps.store.get_cancellations(
            sorted({b.cancellation_id for b in candidates if b.cancellation_id is not None})
        )

        def cancellation_of(booking: Booking) -> Cancellation | None:
            if booking.cancellation_id is None:
                return None
            cancellation = cancellations.get(booking.cancellation_id)
            if cancellation is None:
                # Cancelled after the bulk read.
                cancellation = deps.store.get_cancellations([booking.cancellation_id]).get(
                    booking.cancellation_id
                )
            if cancellation is None:
                raise DataIntegrityError(f"Cancellation {booking.cancellation_id} not found")
            return cancellation

        def action_for(booking: Booking) -> DepositAction | None:
            input_assessment = output_assessment = None
            if needs_assessments_for_deposit(
                booking, now, release_grace=settings.deposit_release_grace
            ):
                input_assessment = deps.assessments.get_input_assessment(booking.id)
                output_assessment = deps.assessments.get_output_assessment(booking.id)
            return deposit_action(
                booking,
                cancellation_of(booking),
                input_assessment,
                output_assessment,
                now,
                renew_before=settings.deposit_renew_before,
                release_grace=settings.deposit_release_grace,
            )

        def handle(booking: Booking) -> Outcome:
            declined = None
            with deps.store.locked(booking.id) as unit:
                current = unit.booking
                if current is None:
                    return Outcome.SKIPPED
                action = action_for(current)
                if action is None:
                    return Outcome.SKIPPED
                if not current.deposit_ref:
                    raise DataIntegrityError(f"Booking {current.id} has no deposit authorization")

                if action is DepositAction.RELEASE:
                    _release(unit, current, now, deps)
                else:
                    declined = _renew(unit, current, deps)

            if declined is not None:
                raise DepositRenewalDeclinedError(
                    f"Deposit renewal declined for booking {booking.id}, renewals stopped"
                ) from declined

            logger.info(
                "deposit hold updated",
                extra={
                    "extra_fields": safe_log_context(
                        stage=STAGE, booking_id=booking.id, action=action.value
                    )
                },
            )
            return Outcome.PROCESSED

        eligible = select(summary, candidates, lambda booking: action_for(booking) is not None)
        return run_batch(summary, eligible, handle, max_workers=settings.max_workers)
