"""Booking records and the collaborator records settlement reads.

Bookings are owned by the persistence layer. The engine only reads them and
writes individual lifecycle fields, so these are plain mutable dataclasses
mirroring the ``bookings`` table columns.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any


@dataclass
class Booking:
    """A reservation of ``quantity`` units of a listing.

    ``start_date``/``end_date`` are both None for no-time (purchase)
    bookings. Every ``*_date`` lifecycle field marks a completed stage.
    The ``deposit_*`` fields track the security deposit hold, which lives
    beside the payment: ``deposit_ref`` is the current authorization and
    ``cancellation_deposit_date`` marks it released for good.
    """

    id: str
    listing_id: str
    owner_id: str
    taker_id: str
    quantity: int = 1
    start_date: datetime | None = None
    end_date: datetime | None = None
    created_date: datetime | None = None

    accepted_date: datetime | None = None
    paid_date: datetime | None = None
    confirmed_date: datetime | None = None
    validated_date: datetime | None = None
    payment_used_date: datetime | None = None
    payment_transfer_date: datetime | None = None
    withdrawal_date: datetime | None = None
    cancellation_payment_date: datetime | None = None

    deposit_date: datetime | None = None
    release_deposit_date: datetime | None = None
    cancellation_deposit_date: datetime | None = None

    cancellation_id: str | None = None
    stop_transfer_payment: bool = False
    stop_renew_deposit: bool = False

    amount_cents: int = 0
    owner_amount_cents: int = 0
    currency: str = "eur"
    authorization_ref: str | None = None
    capture_ref: str | None = None
    transfer_ref: str | None = None

    deposit_cents: int = 0
    deposit_ref: str | None = None
    deposit_expiration_date: datetime | None = None

    @property
    def is_no_time(self) -> bool:
        """True for purchases that do not reserve a time window."""
        return self.start_date is None and self.end_date is None

    @property
    def is_cancelled(self) -> bool:
        return self.cancellation_id is not None

    @classmethod
    def from_row(cls, columns: list[str], row: tuple[Any, ...]) -> "Booking":
        """Build a Booking from a DB row, ignoring unknown columns."""
        known = {f.name for f in fields(cls)}
        data = {col: value for col, value in zip(columns, row) if col in known}
        for key in ("id", "listing_id", "owner_id", "taker_id", "cancellation_id"):
            if data.get(key) is not None:
                data[key] = str(data[key])
        return cls(**data)


BOOKING_COLUMNS: tuple[str, ...] = tuple(f.name for f in fields(Booking))


@dataclass(frozen=True)
class Cancellation:
    """Cancellation record linked from ``Booking.cancellation_id``."""

    id: str
    booking_id: str
    reason_type: str
    trigger: str | None = None
    reason: str | None = None
    listing_id: str | None = None
    refund_date: datetime | None = None
    created_date: datetime | None = None


@dataclass(frozen=True)
class ListingAvailability:
    """Capacity override over ``[start_date, end_date)``.

    ``available=False`` consumes ``quantity`` units like a synthetic booking;
    ``available=True`` frees ``quantity`` units (temporary extra stock).
    """

    listing_id: str
    start_date: datetime
    end_date: datetime
    quantity: int
    available: bool


@dataclass(frozen=True)
class PayoutAccount:
    """Provider-side account of a user receiving funds."""

    user_id: str
    account_ref: str | None = None
    bank_account_ref: str | None = None

    @property
    def can_receive_transfer(self) -> bool:
        return bool(self.account_ref)

    @property
    def can_receive_payout(self) -> bool:
        return bool(self.account_ref and self.bank_account_ref)


@dataclass(frozen=True)
class InputAssessment:
    """Check-in assessment signed by both parties when the item is handed over."""

    booking_id: str
    signed_date: datetime | None = None


@dataclass(frozen=True)
class OutputAssessment:
    """Check-out assessment signed when the item is given back."""

    booking_id: str
    signed_date: datetime | None = None
