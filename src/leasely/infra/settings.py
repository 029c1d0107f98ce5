"""Settlement configuration.

Values come from environment variables with hard defaults. Settings are
built once per worker invocation and passed explicitly; nothing reads the
environment during a batch.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping

from leasely.domain.settlement_gate import (
    DEPOSIT_RELEASE_GRACE,
    DEPOSIT_RENEW_BEFORE,
    EXPIRE_NO_TIME_AFTER_DAYS,
    EXPIRE_TIMED_AFTER_DAYS,
    TRANSFER_AFTER_ASSESSMENT_DAYS,
)


class SettingsError(ValueError):
    """Raised when an environment value cannot be parsed."""


@dataclass(frozen=True)
class SettlementSettings:
    """Thresholds and pool size used by the settlement workers.

    Attributes:
        expire_timed_after_days: Days past start_date before an unaccepted or
            unpaid timed booking expires.
        expire_no_time_after_days: Days past created_date for no-time bookings.
        transfer_delay_days: Days the input assessment must have been signed
            before funds are released to the owner.
        deposit_renew_before_hours: Renew a deposit hold expiring within this
            many hours.
        deposit_release_grace_minutes: Age a cancellation needs before the
            deposit is released whatever its reason.
        max_workers: Thread pool size for one batch.
        currency: Default currency for provider calls when a booking has none.
    """

    expire_timed_after_days: int = EXPIRE_TIMED_AFTER_DAYS
    expire_no_time_after_days: int = EXPIRE_NO_TIME_AFTER_DAYS
    transfer_delay_days: int = TRANSFER_AFTER_ASSESSMENT_DAYS
    deposit_renew_before_hours: int = int(DEPOSIT_RENEW_BEFORE.total_seconds() // 3600)
    deposit_release_grace_minutes: int = int(DEPOSIT_RELEASE_GRACE.total_seconds() // 60)
    max_workers: int = 4
    currency: str = "eur"

    @property
    def deposit_renew_before(self) -> timedelta:
        return timedelta(hours=self.deposit_renew_before_hours)

    @property
    def deposit_release_grace(self) -> timedelta:
        return timedelta(minutes=self.deposit_release_grace_minutes)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "SettlementSettings":
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            expire_timed_after_days=_int_env(
                env, "SETTLEMENT_EXPIRE_TIMED_DAYS", defaults.expire_timed_after_days
            ),
            expire_no_time_after_days=_int_env(
                env, "SETTLEMENT_EXPIRE_NO_TIME_DAYS", defaults.expire_no_time_after_days
            ),
            transfer_delay_days=_int_env(
                env, "SETTLEMENT_TRANSFER_DELAY_DAYS", defaults.transfer_delay_days
            ),
            deposit_renew_before_hours=_int_env(
                env, "SETTLEMENT_DEPOSIT_RENEW_BEFORE_HOURS", defaults.deposit_renew_before_hours
            ),
            deposit_release_grace_minutes=_int_env(
                env,
                "SETTLEMENT_DEPOSIT_RELEASE_GRACE_MINUTES",
                defaults.deposit_release_grace_minutes,
            ),
            max_workers=max(
                _int_env(env, "SETTLEMENT_MAX_WORKERS", defaults.max_workers), 1
            ),
            currency=(env.get("SETTLEMENT_CURRENCY") or defaults.currency).lower(),
        )


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise SettingsError(f"{name} must be an integer, got {raw!r}") from None
    if value < 0:
        raise SettingsError(f"{name} must not be negative, got {value}")
    return value
