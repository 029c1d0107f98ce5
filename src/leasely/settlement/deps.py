"""Dependencies handed to every settlement worker invocation."""

from __future__ import annotations

from dataclasses import dataclass, field

from leasely.domain.ports import AssessmentLookup, BookingStore, PaymentProvider
from leasely.infra.settings import SettlementSettings


@dataclass(frozen=True)
class SettlementDeps:
    store: BookingStore
    provider: PaymentProvider
    assessments: AssessmentLookup
    settings: SettlementSettings = field(default_factory=SettlementSettings)


def default_deps() -> SettlementDeps:
    """Production wiring: Postgres repositories, Stripe, settings from env."""
    from leasely.infra.repositories.assessments_repository import PostgresAssessmentLookup
    from leasely.infra.repositories.bookings_repository import PostgresBookingStore
    from leasely.payments.client import StripePaymentProvider

    return SettlementDeps(
        store=PostgresBookingStore(),
        provider=StripePaymentProvider(),
        assessments=PostgresAssessmentLookup(),
        settings=SettlementSettings.from_env(),
    )
