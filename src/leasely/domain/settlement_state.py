"""Explicit settlement state machine.

The persisted booking has no status column: its state is derived from which
lifecycle fields are set. This module names those states and lists the
transitions settlement workers are allowed to apply. A worker re-derives the
state from the locked row before writing, so a transition only lands when
the row is still in the state the worker expected.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from leasely.domain.bookings import Booking, Cancellation
from leasely.domain.cancellation_policy import is_payment_reversible


class SettlementState(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    PAID = "paid"
    AGREED = "agreed"
    VALIDATED = "validated"
    CAPTURED = "captured"
    TRANSFERRED = "transferred"
    PAID_OUT = "paid_out"
    CANCELLED = "cancelled"
    REVERSED = "reversed"
    CANCELLED_UNREVERSED = "cancelled_unreversed"


class SettlementEvent(str, Enum):
    EXPIRE = "expire"
    CAPTURE = "capture"
    TRANSFER = "transfer"
    PAYOUT = "payout"
    REVERSE = "reverse"


TERMINAL_STATES = frozenset(
    {
        SettlementState.PAID_OUT,
        SettlementState.REVERSED,
        SettlementState.CANCELLED_UNREVERSED,
    }
)


@dataclass(frozen=True)
class Transition:
    source: SettlementState
    event: SettlementEvent
    target: SettlementState
    # Nullable booking field that marks the transition as done.
    done_field: str


class InvalidTransitionError(Exception):
    """Raised when an event does not apply to the booking's current state."""

    def __init__(self, state: SettlementState, event: SettlementEvent) -> None:
        self.state = state
        self.event = event
        super().__init__(f"Cannot apply '{event.value}' to a booking in state '{state.value}'")


def _build_transitions() -> dict[tuple[SettlementState, SettlementEvent], Transition]:
    table: dict[tuple[SettlementState, SettlementEvent], Transition] = {}

    def add(source, event, target, done_field):
        table[(source, event)] = Transition(source, event, target, done_field)

    for source in (
        SettlementState.PENDING,
        SettlementState.ACCEPTED,
        SettlementState.PAID,
        SettlementState.VALIDATED,
    ):
        add(source, SettlementEvent.EXPIRE, SettlementState.CANCELLED, "cancellation_id")

    add(
        SettlementState.VALIDATED,
        SettlementEvent.CAPTURE,
        SettlementState.CAPTURED,
        "payment_used_date",
    )
    add(
        SettlementState.CAPTURED,
        SettlementEvent.TRANSFER,
        SettlementState.TRANSFERRED,
        "payment_transfer_date",
    )
    add(
        SettlementState.TRANSFERRED,
        SettlementEvent.PAYOUT,
        SettlementState.PAID_OUT,
        "withdrawal_date",
    )
    add(
        SettlementState.CANCELLED,
        SettlementEvent.REVERSE,
        SettlementState.REVERSED,
        "cancellation_payment_date",
    )
    return table


TRANSITIONS = _build_transitions()


def derive_state(booking: Booking, cancellation: Cancellation | None = None) -> SettlementState:
    """Map the booking's lifecycle fields onto a SettlementState.

    For a cancelled booking, ``cancellation`` decides between CANCELLED
    (reversal still due) and CANCELLED_UNREVERSED (nothing to give back).
    Without it, a cancelled booking is reported as CANCELLED.
    """
    if booking.is_cancelled:
        if booking.cancellation_payment_date is not None:
            return SettlementState.REVERSED
        if booking.paid_date is None:
            return SettlementState.CANCELLED_UNREVERSED
        if cancellation is not None and not is_payment_reversible(cancellation.reason_type):
            return SettlementState.CANCELLED_UNREVERSED
        return SettlementState.CANCELLED

    if booking.withdrawal_date is not None:
        return SettlementState.PAID_OUT
    if booking.payment_transfer_date is not None:
        return SettlementState.TRANSFERRED
    if booking.payment_used_date is not None:
        return SettlementState.CAPTURED
    if booking.confirmed_date is not None and booking.validated_date is not None:
        return SettlementState.VALIDATED

    accepted = booking.accepted_date is not None
    paid = booking.paid_date is not None
    if accepted and paid:
        return SettlementState.AGREED
    if accepted:
        return SettlementState.ACCEPTED
    if paid:
        return SettlementState.PAID
    return SettlementState.PENDING


def transition(state: SettlementState, event: SettlementEvent) -> Transition:
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransitionError(state, event) from None


def plan_transition(
    booking: Booking,
    event: SettlementEvent,
    cancellation: Cancellation | None = None,
) -> Transition:
    """Transition ``event`` would apply to ``booking`` right now.

    Raises:
        InvalidTransitionError: The booking is not in a source state of ``event``.
    """
    return transition(derive_state(booking, cancellation), event)
