"""Thin wrapper around Stripe SDK for booking settlement.

Purpose:
- Encapsulate Stripe API calls so settlement code doesn't import stripe.* directly.
- Map the authorize -> capture -> transfer -> payout flow onto Stripe objects:
  manual-capture PaymentIntents, Connect transfers and connected-account payouts.
- Renew security deposit holds by copying the payment method of the previous hold.
- Accept idempotency_key on every write for safe retries.
- Translate Stripe exceptions into PaymentProviderError subclasses.
- Never log full Stripe payloads (only IDs + correlation metadata).
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, TypeVar

import stripe

from leasely.domain.ports import AuthorizationHold

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Card networks release an uncaptured hold after seven days.
CARD_HOLD_DAYS = 7


class PaymentProviderError(Exception):
    """Provider call failed; the booking is left untouched for the next run."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        self.code = code
        super().__init__(message)


class InsufficientFundsError(PaymentProviderError):
    """Payer's card or account was declined for lack of funds."""


class InvalidAccountError(PaymentProviderError):
    """Destination account is missing, restricted or unknown to the provider."""


class ProviderNetworkError(PaymentProviderError):
    """Network failure, timeout or rate limit; safe to retry."""


_INVALID_ACCOUNT_CODES = {
    "account_invalid",
    "account_closed",
    "no_account",
    "bank_account_unusable",
    "bank_account_declined",
}


def translate_stripe_error(exc: stripe.StripeError) -> PaymentProviderError:
    """Map a Stripe exception onto the provider error taxonomy."""
    code = getattr(exc, "code", None)
    message = getattr(exc, "user_message", None) or str(exc) or type(exc).__name__

    if isinstance(exc, stripe.CardError):
        decline_code = getattr(getattr(exc, "error", None), "decline_code", None)
        if code == "insufficient_funds" or decline_code == "insufficient_funds":
            return InsufficientFundsError(message, code=code)
        return PaymentProviderError(message, code=code)

    if isinstance(exc, (stripe.APIConnectionError, stripe.RateLimitError)):
        return ProviderNetworkError(message, code=code)

    if isinstance(exc, stripe.InvalidRequestError):
        if code in _INVALID_ACCOUNT_CODES or getattr(exc, "param", None) == "destination":
            return InvalidAccountError(message, code=code)
        if code == "balance_insufficient":
            return InsufficientFundsError(message, code=code)

    return PaymentProviderError(message, code=code)


def hold_expiry(intent: Any) -> datetime:
    """When Stripe drops the hold of a manual-capture PaymentIntent."""
    charge = getattr(intent, "latest_charge", None)
    details = getattr(charge, "payment_method_details", None)
    capture_before = getattr(getattr(details, "card", None), "capture_before", None)
    if isinstance(capture_before, int):
        return datetime.fromtimestamp(capture_before, timezone.utc)
    return datetime.fromtimestamp(intent.created, timezone.utc) + timedelta(days=CARD_HOLD_DAYS)

class StripePaymentProvider:
    """Payment provider backed by Stripe PaymentIntents and Connect.

    Usage:
        provider = StripePaymentProvider()  # reads STRIPE_SECRET_KEY from env
        charge_id = provider.capture(
            "pi_123",
            idempotency_key="booking:42:capture",
        )
    """

    def __init__(self, api_key: str | None = None) -> None:
        """Initialize the Stripe provider.

        Args:
            api_key: Stripe secret key. Defaults to STRIPE_SECRET_KEY env var.

        Raises:
            RuntimeError: If no API key is provided or found in environment.
        """
        self._api_key = api_key or os.environ.get("STRIPE_SECRET_KEY")
        if not self._api_key:
            raise RuntimeError(
                "Stripe API key not provided. "
                "Set STRIPE_SECRET_KEY or pass api_key parameter."
            )
        self._client = stripe.StripeClient(self._api_key)

    def _call(self, operation: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except stripe.StripeError as exc:
            error = translate_stripe_error(exc)
            logger.warning(
                "stripe_call_failed",
                extra={
                    "operation": operation,
                    "error_type": type(error).__name__,
                    "code": error.code,
                },
            )
            raise error from exc

    def authorize(
        self,
        *,
        amount_cents: int,
        currency: str,
        customer_ref: str,
        payment_method_ref: str,
        idempotency_key: str,
    ) -> str:
        """Place a hold on the taker's card. Returns the PaymentIntent id."""
        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency.lower(),
            "customer": customer_ref,
            "payment_method": payment_method_ref,
            "capture_method": "manual",
            "confirm": True,
            "off_session": True,
        }
        intent = self._call(
            "authorize",
            lambda: self._client.v1.payment_intents.create(
                params=params,
                options={"idempotency_key": idempotency_key},
            ),
        )
        logger.info("stripe_authorization_created", extra={"payment_intent_id": intent.id})
        return intent.id

    def capture(self, authorization_ref: str, *, idempotency_key: str) -> str:
        """Capture an authorized PaymentIntent. Returns the charge id."""
        intent = self._call(
            "capture",
            lambda: self._client.v1.payment_intents.capture(
                authorization_ref,
                options={"idempotency_key": idempotency_key},
            ),
        )
        logger.info("stripe_payment_captured", extra={"payment_intent_id": intent.id})
        return intent.latest_charge or intent.id

    def transfer(
        self,
        *,
        source_ref: str,
        destination_account: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
    ) -> str:
        """Release escrowed funds of a charge to the owner's connected account."""
        transfer = self._call(
            "transfer",
            lambda: self._client.v1.transfers.create(
                params={
                    "amount": amount_cents,
                    "currency": currency.lower(),
                    "destination": destination_account,
                    "source_transaction": source_ref,
                },
                options={"idempotency_key": idempotency_key},
            ),
        )
        logger.info("stripe_transfer_created", extra={"transfer_id": transfer.id})
        return transfer.id

    def renew_authorization(
        self,
        authorization_ref: str,
        *,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
    ) -> AuthorizationHold:
        """Place a new hold on the card behind ``authorization_ref``."""
        previous = self._call(
            "renew_authorization",
            lambda: self._client.v1.payment_intents.retrieve(authorization_ref),
        )
        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency.lower(),
            "customer": previous.customer,
            "payment_method": previous.payment_method,
            "capture_method": "manual",
            "confirm": True,
            "off_session": True,
            "expand": ["latest_charge"],
        }
        intent = self._call(
            "renew_authorization",
            lambda: self._client.v1.payment_intents.create(
                params=params,
                options={"idempotency_key": idempotency_key},
            ),
        )
        logger.info(
            "stripe_authorization_renewed",
            extra={"payment_intent_id": intent.id, "previous_payment_intent_id": authorization_ref},
        )
        return AuthorizationHold(ref=intent.id, expires_at=hold_expiry(intent))

    def cancel_authorization(self, authorization_ref: str, *, idempotency_key: str) -> None:
        """Release a hold that was never captured."""
        self._call(
            "cancel_authorization",
            lambda: self._client.v1.payment_intents.cancel(
                authorization_ref,
                options={"idempotency_key": idempotency_key},
            ),
        )
        logger.info(
            "stripe_authorization_cancelled",
            extra={"payment_intent_id": authorization_ref},
        )

    def refund(self, authorization_ref: str, *, idempotency_key: str) -> str:
        """Refund a captured PaymentIntent in full. Returns the refund id."""
        refund = self._call(
            "refund",
            lambda: self._client.v1.refunds.create(
                params={"payment_intent": authorization_ref},
                options={"idempotency_key": idempotency_key},
            ),
        )
        logger.info("stripe_refund_created", extra={"refund_id": refund.id})
        return refund.id

    def payout(
        self,
        *,
        account_ref: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
    ) -> str:
        """Pay out from the owner's connected account to their bank account."""
        payout = self._call(
            "payout",
            lambda: self._client.v1.payouts.create(
                params={"amount": amount_cents, "currency": currency.lower()},
                options={"idempotency_key": idempotency_key, "stripe_account": account_ref},
            ),
        )
        logger.info("stripe_payout_created", extra={"payout_id": payout.id})
        return payout.id
