"""Reversal worker - gives the taker's money back after a reversible cancellation.

An authorization that was never captured is cancelled; a captured payment is
refunded. Cancellations for non-reversible reasons keep the payment and are
settled by hand. A booking whose funds already reached the owner cannot be
reversed here either.
"""

from __future__ import annotations

from datetime import datetime

from leasely.domain.bookings import Booking, Cancellation
from leasely.domain.ports import NOT_NULL, ConcurrentUpdateError, DataIntegrityError
from leasely.domain.settlement_gate import can_reverse
from leasely.domain.settlement_state import SettlementEvent
from leasely.observability.correlation import correlation_scope
from leasely.settlement.batch import (
    BatchSummary,
    Outcome,
    guarded_transition,
    run_batch,
    select,
)
from leasely.settlement.deps import SettlementDeps

STAGE = "reversal"


def reversal_idempotency_key(booking_id: str) -> str:
    return f"booking:{booking_id}:reversal"


def run(now: datetime, deps: SettlementDeps) -> BatchSummary:
    with correlation_scope():
        summary = BatchSummary(stage=STAGE)
        candidates = deps.store.find_where(
            cancellation_id=NOT_NULL,
            paid_date=NOT_NULL,
            cancellation_payment_date=None,
        )
        cancellations = deps.store.get_cancellations(
            sorted({booking.cancellation_id for booking in candidates})
        )

        def cancellation_of(booking: Booking) -> Cancellation:
            cancellation = cancellations.get(booking.cancellation_id)
            if cancellation is None:
                raise DataIntegrityError(f"Cancellation {booking.cancellation_id} not found")
            return cancellation

        def is_reversible(booking: Booking) -> bool:
            return can_reverse(booking, cancellation_of(booking))

        def handle(booking: Booking) -> Outcome:
            cancellation = cancellation_of(booking)

            with deps.store.locked(booking.id) as unit:
                current = unit.booking
                if current is None or not can_reverse(current, cancellation):
                    return Outcome.SKIPPED
                if current.payment_transfer_date is not None:
                    raise DataIntegrityError(
                        f"Booking {current.id} was transferred: reverse it manually"
                    )
                planned = guarded_transition(current, SettlementEvent.REVERSE, cancellation)
                if planned is None:
                    return Outcome.SKIPPED
                if not current.authorization_ref:
                    raise DataIntegrityError(f"Booking {current.id} has no payment authorization")

                key = reversal_idempotency_key(current.id)
                if current.payment_used_date is None:
                    deps.provider.cancel_authorization(current.authorization_ref, idempotency_key=key)
                else:
                    deps.provider.refund(current.authorization_ref, idempotency_key=key)

                written = unit.update_if_still_eligible(
                    planned.done_field,
                    {planned.done_field: now},
                    guards={"payment_transfer_date": None},
                )
                if not written:
                    raise ConcurrentUpdateError(f"Booking {current.id} changed during reversal")
            return Outcome.PROCESSED

        eligible = select(summary, candidates, is_reversible)
        return run_batch(summary, eligible, handle, max_workers=deps.settings.max_workers)
