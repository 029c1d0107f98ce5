"""Payin worker - captures the authorized payment of validated bookings.

Capture and the ``payment_used_date`` write happen under the same row lock
and transaction. A provider error rolls everything back and the booking is
retried on the next run; the capture idempotency key makes that retry safe
even when the capture itself went through and only the write was lost.
"""

from __future__ import annotations

from datetime import datetime

from leasely.domain.bookings import Booking
from leasely.domain.ports import NOT_NULL, ConcurrentUpdateError, DataIntegrityError
from leasely.domain.settlement_gate import can_payin
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

STAGE = "payin"


def capture_idempotency_key(booking_id: str) -> str:
    return f"booking:{booking_id}:capture"


def run(now: datetime, deps: SettlementDeps) -> BatchSummary:
    def handle(booking: Booking) -> Outcome:
        with deps.store.locked(booking.id) as unit:
            current = unit.booking
            if current is None or not can_payin(current):
                return Outcome.SKIPPED
            planned = guarded_transition(current, SettlementEvent.CAPTURE)
            if planned is None:
                return Outcome.SKIPPED

            if not current.authorization_ref:
                raise DataIntegrityError(f"Booking {current.id} has no payment authorization")

            capture_ref = deps.provider.capture(
                current.authorization_ref,
                idempotency_key=capture_idempotency_key(current.id),
            )

            written = unit.update_if_still_eligible(
                planned.done_field,
                {planned.done_field: now, "capture_ref": capture_ref},
                guards={"cancellation_id": None},
            )
            if not written:
                raise ConcurrentUpdateError(f"Booking {current.id} changed during capture")
        return Outcome.PROCESSED

    with correlation_scope():
        summary = BatchSummary(stage=STAGE)
        candidates = deps.store.find_where(
            cancellation_id=None,
            payment_used_date=None,
            confirmed_date=NOT_NULL,
            validated_date=NOT_NULL,
        )
        eligible = select(summary, candidates, can_payin)
        return run_batch(summary, eligible, handle, max_workers=deps.settings.max_workers)
