"""Expire worker - cancels bookings never accepted or never paid in time.

Expiry only cancels. It does not reverse any payment: the reversal worker
picks the new cancellation up on its next run when the reason is reversible.
"""

from __future__ import annotations

from datetime import datetime

from leasely.domain.bookings import Booking
from leasely.domain.cancellation import apply_cancellation
from leasely.domain.cancellation_policy import classify_expiry
from leasely.domain.settlement_gate import can_expire
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

STAGE = "expire"


def run(now: datetime, deps: SettlementDeps) -> BatchSummary:
    settings = deps.settings

    def is_expired(booking: Booking) -> bool:
        return can_expire(
            booking,
            now,
            timed_after_days=settings.expire_timed_after_days,
            no_time_after_days=settings.expire_no_time_after_days,
        )

    def handle(booking: Booking) -> Outcome:
        with deps.store.locked(booking.id) as unit:
            current = unit.booking
            if current is None or not is_expired(current):
                return Outcome.SKIPPED
            if guarded_transition(current, SettlementEvent.EXPIRE) is None:
                return Outcome.SKIPPED

            apply_cancellation(
                unit,
                reason_type=classify_expiry(current),
                trigger=None,
                reason=None,
                now=now,
            )
        return Outcome.PROCESSED

    with correlation_scope():
        summary = BatchSummary(stage=STAGE)
        candidates = deps.store.find_where(
            cancellation_id=None,
            payment_used_date=None,
            any_null=("accepted_date", "paid_date"),
        )
        eligible = select(summary, candidates, is_expired)
        return run_batch(summary, eligible, handle, max_workers=settings.max_workers)
