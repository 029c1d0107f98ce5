"""Collaborators the settlement workers depend on.

Workers only talk to these protocols. Production wires the Postgres
repositories and the Stripe provider; tests wire in-memory doubles.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from leasely.domain.bookings import (
    Booking,
    Cancellation,
    InputAssessment,
    ListingAvailability,
    OutputAssessment,
    PayoutAccount,
)


class _NotNull:
    def __repr__(self) -> str:
        return "NOT_NULL"


# Criteria value matching any non-null column.
NOT_NULL: Any = _NotNull()


class DataIntegrityError(Exception):
    """A booking references a record that does not exist, or is in an impossible state."""


class ConcurrentUpdateError(Exception):
    """A conditional write matched no row: another process moved the booking first."""


class BookingUnit(Protocol):
    """A booking row locked for the duration of one transaction."""

    booking: Booking | None

    def update_if_still_eligible(
        self,
        expected_null: str,
        values: dict[str, Any],
        *,
        guards: dict[str, Any] | None = None,
    ) -> bool:
        """Write ``values`` only if ``expected_null`` (and every guard) still holds."""
        ...

    def create_cancellation(
        self,
        *,
        reason_type: str,
        trigger: str | None,
        reason: str | None,
        created_date: datetime,
    ) -> Cancellation:
        ...


class BookingStore(Protocol):
    def find_where(self, *, any_null: tuple[str, ...] = (), **criteria: Any) -> list[Booking]:
        """Bulk read. A criterion value of None means IS NULL, NOT_NULL means IS NOT NULL."""
        ...

    def get_booking(self, booking_id: str) -> Booking | None:
        ...

    def locked(self, booking_id: str) -> AbstractContextManager[BookingUnit]:
        """Lock one booking; commit on clean exit, roll back on exception."""
        ...

    def get_cancellations(self, cancellation_ids: list[str]) -> dict[str, Cancellation]:
        ...

    def get_payout_accounts(self, user_ids: list[str]) -> dict[str, PayoutAccount]:
        ...

    def get_listing_availabilities(self, listing_id: str) -> list[ListingAvailability]:
        ...

    def get_listing_quantity(self, listing_id: str) -> int | None:
        ...


class AssessmentLookup(Protocol):
    def get_input_assessment(self, booking_id: str) -> InputAssessment | None:
        ...

    def get_output_assessment(self, booking_id: str) -> OutputAssessment | None:
        ...


@dataclass(frozen=True)
class AuthorizationHold:
    """A card hold placed by the provider and the instant it lapses."""

    ref: str
    expires_at: datetime


class PaymentProvider(Protocol):
    def authorize(
        self,
        *,
        amount_cents: int,
        currency: str,
        customer_ref: str,
        payment_method_ref: str,
        idempotency_key: str,
    ) -> str:
        ...

    def capture(self, authorization_ref: str, *, idempotency_key: str) -> str:
        ...

    def transfer(
        self,
        *,
        source_ref: str,
        destination_account: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
    ) -> str:
        ...

    def renew_authorization(
        self,
        authorization_ref: str,
        *,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
    ) -> AuthorizationHold:
        """Place a fresh hold with the payment method of ``authorization_ref``."""
        ...

    def cancel_authorization(self, authorization_ref: str, *, idempotency_key: str) -> None:
        ...

    def refund(self, authorization_ref: str, *, idempotency_key: str) -> str:
        ...

    def payout(
        self,
        *,
        account_ref: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
    ) -> str:
        ...
