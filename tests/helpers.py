"""Shared test helpers for leasely tests.

In-memory doubles of the settlement collaborators. These are NOT fixtures -
they are regular classes that can be imported by conftest.py and by
individual test files.
"""

from __future__ import annotations

import copy
import itertools
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterator

from leasely.domain.bookings import (
    Booking,
    Cancellation,
    InputAssessment,
    ListingAvailability,
    OutputAssessment,
    PayoutAccount,
)
from leasely.domain.ports import NOT_NULL, AuthorizationHold
from leasely.infra.settings import SettlementSettings
from leasely.settlement.deps import SettlementDeps

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
RENEWED_HOLD_EXPIRY = datetime(2026, 3, 8, 12, 0, tzinfo=timezone.utc)


def dt(value: str) -> datetime:
    """'2026-01-05' or '2026-01-05T10:00' as an aware UTC datetime."""
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


def make_booking(booking_id: str = "b1", **overrides: Any) -> Booking:
    values: dict[str, Any] = {
        "id": booking_id,
        "listing_id": "l1",
        "owner_id": "owner-1",
        "taker_id": "taker-1",
        "start_date": dt("2026-02-01"),
        "end_date": dt("2026-02-05"),
        "created_date": dt("2026-01-20"),
        "amount_cents": 10000,
        "owner_amount_cents": 8500,
        "authorization_ref": f"pi_{booking_id}",
    }
    values.update(overrides)
    return Booking(**values)


def _matches(value: Any, expected: Any) -> bool:
    if expected is None:
        return value is None
    if expected is NOT_NULL:
        return value is not None
    if isinstance(expected, (list, tuple)):
        return value in expected
    return value == expected


class InMemoryBookingUnit:
    """Works on a private copy; the store publishes it only on clean exit."""

    def __init__(self, store: "InMemoryBookingStore", booking: Booking | None) -> None:
        self._store = store
        self.booking = booking
        self.new_cancellations: list[Cancellation] = []

    def update_if_still_eligible(
        self,
        expected_null: str,
        values: dict[str, Any],
        *,
        guards: dict[str, Any] | None = None,
    ) -> bool:
        if self.booking is None or getattr(self.booking, expected_null) is not None:
            return False
        for name, expected in (guards or {}).items():
            if not _matches(getattr(self.booking, name), expected):
                return False
        for name, value in values.items():
            setattr(self.booking, name, value)
        return True

    def create_cancellation(
        self,
        *,
        reason_type: str,
        trigger: str | None,
        reason: str | None,
        created_date: datetime,
    ) -> Cancellation:
        cancellation = Cancellation(
            id=self._store.next_cancellation_id(),
            booking_id=self.booking.id,
            listing_id=self.booking.listing_id,
            reason_type=reason_type,
            trigger=trigger,
            reason=reason,
            created_date=created_date,
        )
        self.new_cancellations.append(cancellation)
        return cancellation


class InMemoryBookingStore:
    """BookingStore double with per-booking locks and all-or-nothing commits.

    ``on_lock`` runs before the row lock is taken, once per ``locked`` call,
    so tests can interleave another writer between bulk read and lock.
    """

    def __init__(
        self,
        bookings: list[Booking] = (),
        *,
        cancellations: list[Cancellation] = (),
        accounts: list[PayoutAccount] = (),
        availabilities: list[ListingAvailability] = (),
        listing_quantities: dict[str, int] | None = None,
        on_lock: Callable[[str], None] | None = None,
    ) -> None:
        self.bookings: dict[str, Booking] = {b.id: copy.copy(b) for b in bookings}
        self.cancellations: dict[str, Cancellation] = {c.id: c for c in cancellations}
        self.accounts: dict[str, PayoutAccount] = {a.user_id: a for a in accounts}
        self.availabilities = list(availabilities)
        self.listing_quantities = dict(listing_quantities or {})
        self.on_lock = on_lock
        self._mutex = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._ids = itertools.count(1)

    def next_cancellation_id(self) -> str:
        with self._mutex:
            return f"c{next(self._ids)}"

    def _lock_for(self, booking_id: str) -> threading.Lock:
        with self._mutex:
            return self._locks.setdefault(booking_id, threading.Lock())

    def find_where(self, *, any_null: tuple[str, ...] = (), **criteria: Any) -> list[Booking]:
        with self._mutex:
            rows = list(self.bookings.values())
        found = []
        for booking in rows:
            if not all(_matches(getattr(booking, k), v) for k, v in criteria.items()):
                continue
            if any_null and all(getattr(booking, name) is not None for name in any_null):
                continue
            found.append(copy.copy(booking))
        return found

    def get_booking(self, booking_id: str) -> Booking | None:
        booking = self.bookings.get(booking_id)
        return copy.copy(booking) if booking else None

    @contextmanager
    def locked(self, booking_id: str) -> Iterator[InMemoryBookingUnit]:
        if self.on_lock is not None:
            self.on_lock(booking_id)
        with self._lock_for(booking_id):
            unit = InMemoryBookingUnit(self, self.get_booking(booking_id))
            yield unit
            if unit.booking is not None:
                with self._mutex:
                    self.bookings[booking_id] = unit.booking
                    for cancellation in unit.new_cancellations:
                        self.cancellations[cancellation.id] = cancellation

    def get_cancellations(self, cancellation_ids: list[str]) -> dict[str, Cancellation]:
        return {cid: self.cancellations[cid] for cid in cancellation_ids if cid in self.cancellations}

    def get_payout_accounts(self, user_ids: list[str]) -> dict[str, PayoutAccount]:
        return {uid: self.accounts[uid] for uid in user_ids if uid in self.accounts}

    def get_listing_availabilities(self, listing_id: str) -> list[ListingAvailability]:
        return [a for a in self.availabilities if a.listing_id == listing_id]

    def get_listing_quantity(self, listing_id: str) -> int | None:
        return self.listing_quantities.get(listing_id)


class FakeAssessments:
    def __init__(
        self,
        assessments: list[InputAssessment] = (),
        outputs: list[OutputAssessment] = (),
    ) -> None:
        self.assessments = {a.booking_id: a for a in assessments}
        self.outputs = {a.booking_id: a for a in outputs}

    def get_input_assessment(self, booking_id: str) -> InputAssessment | None:
        return self.assessments.get(booking_id)

    def get_output_assessment(self, booking_id: str) -> OutputAssessment | None:
        return self.outputs.get(booking_id)


class FakePaymentProvider:
    """Records every call; raises the exception mapped to a booking's reference."""

    def __init__(self, failures: dict[str, Exception] | None = None) -> None:
        self.failures = dict(failures or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._mutex = threading.Lock()

    def _record(self, operation: str, ref: str, **kwargs: Any) -> None:
        with self._mutex:
            self.calls.append((operation, {"ref": ref, **kwargs}))
        if ref in self.failures:
            raise self.failures[ref]

    def operations(self) -> list[str]:
        return [operation for operation, _ in self.calls]

    def authorize(self, *, amount_cents, currency, customer_ref, payment_method_ref, idempotency_key):
        self._record("authorize", customer_ref, idempotency_key=idempotency_key)
        return f"pi_{customer_ref}"

    def capture(self, authorization_ref, *, idempotency_key):
        self._record("capture", authorization_ref, idempotency_key=idempotency_key)
        return f"ch_{authorization_ref}"

    def transfer(self, *, source_ref, destination_account, amount_cents, currency, idempotency_key):
        self._record(
            "transfer",
            source_ref,
            destination_account=destination_account,
            amount_cents=amount_cents,
            currency=currency,
            idempotency_key=idempotency_key,
        )
        return f"tr_{source_ref}"

    def renew_authorization(self, authorization_ref, *, amount_cents, currency, idempotency_key):
        self._record(
            "renew_authorization",
            authorization_ref,
            amount_cents=amount_cents,
            idempotency_key=idempotency_key,
        )
        return AuthorizationHold(f"{authorization_ref}-renewed", RENEWED_HOLD_EXPIRY)

    def cancel_authorization(self, authorization_ref, *, idempotency_key):
        self._record("cancel_authorization", authorization_ref, idempotency_key=idempotency_key)

    def refund(self, authorization_ref, *, idempotency_key):
        self._record("refund", authorization_ref, idempotency_key=idempotency_key)
        return f"re_{authorization_ref}"

    def payout(self, *, account_ref, amount_cents, currency, idempotency_key):
        self._record(
            "payout",
            account_ref,
            amount_cents=amount_cents,
            currency=currency,
            idempotency_key=idempotency_key,
        )
        return f"po_{account_ref}"


def make_deps(
    store: InMemoryBookingStore,
    provider: FakePaymentProvider | None = None,
    assessments: FakeAssessments | None = None,
    **settings: Any,
) -> SettlementDeps:
    return SettlementDeps(
        store=store,
        provider=provider or FakePaymentProvider(),
        assessments=assessments or FakeAssessments(),
        settings=SettlementSettings(**settings),
    )
