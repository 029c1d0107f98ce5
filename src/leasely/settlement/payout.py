"""Payout worker - moves transferred funds to the owner's bank account."""

from __future__ import annotations

from datetime import datetime

from leasely.domain.bookings import Booking, PayoutAccount
from leasely.domain.ports import NOT_NULL, ConcurrentUpdateError, DataIntegrityError
from leasely.domain.settlement_gate import can_payout
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

STAGE = "payout"


def payout_idempotency_key(booking_id: str) -> str:
    return f"booking:{booking_id}:payout"


def run(now: datetime, deps: SettlementDeps) -> BatchSummary:
    with correlation_scope():
        summary = BatchSummary(stage=STAGE)
        candidates = deps.store.find_where(
            cancellation_id=None,
            withdrawal_date=None,
            payment_transfer_date=NOT_NULL,
        )
        accounts = deps.store.get_payout_accounts(
            sorted({booking.owner_id for booking in candidates})
        )

        def owner_account(booking: Booking) -> PayoutAccount:
            account = accounts.get(booking.owner_id)
            if account is None:
                raise DataIntegrityError(f"Owner {booking.owner_id} not found")
            return account

        def handle(booking: Booking) -> Outcome:
            account = owner_account(booking)

            with deps.store.locked(booking.id) as unit:
                current = unit.booking
                if current is None or not can_payout(current, account):
                    return Outcome.SKIPPED
                planned = guarded_transition(current, SettlementEvent.PAYOUT)
                if planned is None:
                    return Outcome.SKIPPED

                if current.owner_amount_cents > 0:
                    deps.provider.payout(
                        account_ref=account.account_ref,
                        amount_cents=current.owner_amount_cents,
                        currency=current.currency or deps.settings.currency,
                        idempotency_key=payout_idempotency_key(current.id),
                    )

                written = unit.update_if_still_eligible(
                    planned.done_field,
                    {planned.done_field: now},
                    guards={"cancellation_id": None},
                )
                if not written:
                    raise ConcurrentUpdateError(f"Booking {current.id} changed during payout")
            return Outcome.PROCESSED

        eligible = select(summary, candidates, lambda b: can_payout(b, owner_account(b)))
        return run_batch(summary, eligible, handle, max_workers=deps.settings.max_workers)
