"""Transfer worker - releases escrowed funds to the listing owner.

Funds move only once the check-in assessment has been signed for a few days,
so the taker had time to report a problem. Owners without a provider account
are skipped silently: the booking stays eligible until they create one.
"""

from __future__ import annotations

from datetime import datetime

from leasely.domain.bookings import Booking, InputAssessment, PayoutAccount
from leasely.domain.ports import NOT_NULL, ConcurrentUpdateError, DataIntegrityError
from leasely.domain.settlement_gate import can_transfer
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

STAGE = "transfer"


def transfer_idempotency_key(booking_id: str) -> str:
    return f"booking:{booking_id}:transfer"


def run(now: datetime, deps: SettlementDeps) -> BatchSummary:
    delay_days = deps.settings.transfer_delay_days

    with correlation_scope():
        summary = BatchSummary(stage=STAGE)
        candidates = deps.store.find_where(
            cancellation_id=None,
            payment_transfer_date=None,
            payment_used_date=NOT_NULL,
            stop_transfer_payment=False,
        )
        accounts = deps.store.get_payout_accounts(
            sorted({booking.owner_id for booking in candidates})
        )
        assessments: dict[str, InputAssessment] = {}

        def owner_account(booking: Booking) -> PayoutAccount:
            account = accounts.get(booking.owner_id)
            if account is None:
                raise DataIntegrityError(f"Owner {booking.owner_id} not found")
            return account

        def is_transferable(booking: Booking) -> bool:
            account = owner_account(booking)
            if not account.can_receive_transfer:
                return False
            assessment = deps.assessments.get_input_assessment(booking.id)
            if assessment is None:
                raise DataIntegrityError(f"Input assessment not found for booking {booking.id}")
            assessments[booking.id] = assessment
            return can_transfer(booking, account, assessment, now, delay_days=delay_days)

        def handle(booking: Booking) -> Outcome:
            account = owner_account(booking)
            assessment = assessments[booking.id]

            with deps.store.locked(booking.id) as unit:
                current = unit.booking
                if current is None or not can_transfer(
                    current, account, assessment, now, delay_days=delay_days
                ):
                    return Outcome.SKIPPED
                planned = guarded_transition(current, SettlementEvent.TRANSFER)
                if planned is None:
                    return Outcome.SKIPPED

                transfer_ref = None
                if current.owner_amount_cents > 0:
                    if not current.capture_ref:
                        raise DataIntegrityError(f"Booking {current.id} has no captured charge")
                    transfer_ref = deps.provider.transfer(
                        source_ref=current.capture_ref,
                        destination_account=account.account_ref,
                        amount_cents=current.owner_amount_cents,
                        currency=current.currency or deps.settings.currency,
                        idempotency_key=transfer_idempotency_key(current.id),
                    )

                written = unit.update_if_still_eligible(
                    planned.done_field,
                    {planned.done_field: now, "transfer_ref": transfer_ref},
                    guards={"cancellation_id": None, "cancellation_payment_date": None},
                )
                if not written:
                    raise ConcurrentUpdateError(f"Booking {current.id} changed during transfer")
            return Outcome.PROCESSED

        eligible = select(summary, candidates, is_transferable)
        return run_batch(summary, eligible, handle, max_workers=deps.settings.max_workers)
