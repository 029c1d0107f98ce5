"""Fan-out/fan-in runner shared by the settlement workers.

A worker selects its eligible bookings, then hands them to ``run_batch``
with a per-booking handler. Handlers run on a thread pool; every booking
gets its own result-or-error and no failure ever reaches the caller or
cancels a sibling. A stuck or failing booking is simply picked up again on
the next scheduled run.
"""

from __future__ import annotations

import contextvars
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable

from leasely.domain.bookings import Booking, Cancellation
from leasely.domain.settlement_state import (
    InvalidTransitionError,
    SettlementEvent,
    Transition,
    plan_transition,
)
from leasely.observability.logging import get_logger
from leasely.observability.redaction import safe_log_context

logger = get_logger(__name__)


class Outcome(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class BatchError:
    booking_id: str
    error: str

    def to_dict(self) -> dict:
        return {"booking_id": self.booking_id, "error": self.error}


@dataclass
class BatchSummary:
    stage: str
    eligible: int = 0
    processed: int = 0
    skipped: int = 0
    errors: list[BatchError] = field(default_factory=list)

    def add_error(self, booking_id: str, exc: BaseException) -> None:
        message = safe_log_context(error=exc)["error"]
        self.errors.append(BatchError(booking_id=booking_id, error=message))
        logger.error(
            "settlement booking failed",
            exc_info=(type(exc), exc, exc.__traceback__),
            extra={
                "extra_fields": safe_log_context(
                    stage=self.stage,
                    booking_id=booking_id,
                    error=exc,
                )
            },
        )

    def to_dict(self) -> dict:
        return {
            "stage": self.stage,
            "eligible": self.eligible,
            "processed": self.processed,
            "skipped": self.skipped,
            "errors": [error.to_dict() for error in self.errors],
        }


def guarded_transition(
    booking: Booking,
    event: SettlementEvent,
    cancellation: Cancellation | None = None,
) -> Transition | None:
    """Transition for ``event``, or None when the locked row moved on."""
    try:
        return plan_transition(booking, event, cancellation)
    except InvalidTransitionError as exc:
        logger.info(
            "settlement transition no longer applies",
            extra={
                "extra_fields": safe_log_context(
                    booking_id=booking.id,
                    state=exc.state.value,
                    event=event.value,
                )
            },
        )
        return None


def select(
    summary: BatchSummary,
    candidates: Iterable[Booking],
    predicate: Callable[[Booking], bool],
) -> list[Booking]:
    """Apply the gate to each candidate, isolating lookup failures per booking."""
    eligible: list[Booking] = []
    for booking in candidates:
        try:
            if predicate(booking):
                eligible.append(booking)
        except Exception as exc:
            summary.add_error(booking.id, exc)
    summary.eligible = len(eligible)
    return eligible


def run_batch(
    summary: BatchSummary,
    bookings: list[Booking],
    handler: Callable[[Booking], Outcome],
    *,
    max_workers: int = 4,
) -> BatchSummary:
    """Run ``handler`` on every booking and fold the results into ``summary``."""
    if bookings:
        with ThreadPoolExecutor(
            max_workers=max(1, min(max_workers, len(bookings))),
            thread_name_prefix=f"settlement-{summary.stage}",
        ) as executor:
            futures = [
                (booking, executor.submit(contextvars.copy_context().run, handler, booking))
                for booking in bookings
            ]
            for booking, future in futures:
                try:
                    outcome = future.result()
                except Exception as exc:
                    summary.add_error(booking.id, exc)
                    continue
                if outcome is Outcome.PROCESSED:
                    summary.processed += 1
                else:
                    summary.skipped += 1

    logger.info(
        f"Nb bookings {summary.stage}: {summary.processed} / {summary.eligible}",
        extra={
            "extra_fields": safe_log_context(
                stage=summary.stage,
                eligible=summary.eligible,
                processed=summary.processed,
                skipped=summary.skipped,
                errors=len(summary.errors),
            )
        },
    )
    return summary
