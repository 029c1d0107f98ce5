"""Tests for the Stripe payment provider (Stripe SDK mocked)."""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import stripe

from leasely.payments.client import (
    InsufficientFundsError,
    InvalidAccountError,
    PaymentProviderError,
    ProviderNetworkError,
    StripePaymentProvider,
    hold_expiry,
    translate_stripe_error,
)


@pytest.fixture
def stripe_client():
    with patch("leasely.payments.client.stripe.StripeClient") as client_cls:
        yield client_cls.return_value


@pytest.fixture
def provider(stripe_client):
    return StripePaymentProvider(api_key="sk_test_123")


class TestStripePaymentProvider:
    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
        with pytest.raises(RuntimeError):
            StripePaymentProvider()

    def test_capture_returns_charge(self, provider, stripe_client):
        stripe_client.v1.payment_intents.capture.return_value = MagicMock(
            id="pi_1", latest_charge="ch_1"
        )

        assert provider.capture("pi_1", idempotency_key="booking:b1:capture") == "ch_1"
        stripe_client.v1.payment_intents.capture.assert_called_once_with(
            "pi_1", options={"idempotency_key": "booking:b1:capture"}
        )

    def test_authorize_uses_manual_capture(self, provider, stripe_client):
        stripe_client.v1.payment_intents.create.return_value = MagicMock(id="pi_9")

        ref = provider.authorize(
            amount_cents=1000,
            currency="EUR",
            customer_ref="cus_1",
            payment_method_ref="pm_1",
            idempotency_key="booking:b1:authorize",
        )

        assert ref == "pi_9"
        params = stripe_client.v1.payment_intents.create.call_args.kwargs["params"]
        assert params["capture_method"] == "manual"
        assert params["currency"] == "eur"

    def test_transfer_from_source_charge(self, provider, stripe_client):
        stripe_client.v1.transfers.create.return_value = MagicMock(id="tr_1")

        ref = provider.transfer(
            source_ref="ch_1",
            destination_account="acct_1",
            amount_cents=8500,
            currency="eur",
            idempotency_key="booking:b1:transfer",
        )

        assert ref == "tr_1"
        stripe_client.v1.transfers.create.assert_called_once_with(
            params={
                "amount": 8500,
                "currency": "eur",
                "destination": "acct_1",
                "source_transaction": "ch_1",
            },
            options={"idempotency_key": "booking:b1:transfer"},
        )

    def test_refund_by_payment_intent(self, provider, stripe_client):
        stripe_client.v1.refunds.create.return_value = MagicMock(id="re_1")

        assert provider.refund("pi_1", idempotency_key="booking:b1:reversal") == "re_1"
        assert stripe_client.v1.refunds.create.call_args.kwargs["params"] == {"payment_intent": "pi_1"}

    def test_payout_on_connected_account(self, provider, stripe_client):
        stripe_client.v1.payouts.create.return_value = MagicMock(id="po_1")

        provider.payout(
            account_ref="acct_1",
            amount_cents=8500,
            currency="eur",
            idempotency_key="booking:b1:payout",
        )

        options = stripe_client.v1.payouts.create.call_args.kwargs["options"]
        assert options == {"idempotency_key": "booking:b1:payout", "stripe_account": "acct_1"}

    def test_stripe_error_is_translated(self, provider, stripe_client):
        stripe_client.v1.payment_intents.cancel.side_effect = stripe.APIConnectionError("boom")

        with pytest.raises(ProviderNetworkError):
            provider.cancel_authorization("pi_1", idempotency_key="booking:b1:reversal")


    def test_renew_copies_payment_method_of_previous_hold(self, provider, stripe_client):
        stripe_client.v1.payment_intents.retrieve.return_value = SimpleNamespace(
            customer="cus_1", payment_method="pm_1"
        )
        stripe_client.v1.payment_intents.create.return_value = SimpleNamespace(
            id="pi_new",
            created=1772366400,
            latest_charge=SimpleNamespace(
                payment_method_details=SimpleNamespace(
                    card=SimpleNamespace(capture_before=1772971200)
                )
            ),
        )

        hold = provider.renew_authorization(
            "pi_old",
            amount_cents=30000,
            currency="EUR",
            idempotency_key="booking:b1:deposit-renew:pi_old",
        )

        assert hold.ref == "pi_new"
        assert hold.expires_at == datetime(2026, 3, 8, 12, 0, tzinfo=timezone.utc)
        stripe_client.v1.payment_intents.retrieve.assert_called_once_with("pi_old")
        create = stripe_client.v1.payment_intents.create.call_args.kwargs
        assert create["params"]["customer"] == "cus_1"
        assert create["params"]["payment_method"] == "pm_1"
        assert create["params"]["capture_method"] == "manual"
        assert create["options"] == {"idempotency_key": "booking:b1:deposit-renew:pi_old"}


class TestHoldExpiry:
    def test_falls_back_to_seven_days_after_creation(self):
        intent = SimpleNamespace(id="pi_1", created=1772366400, latest_charge="ch_1")
        assert hold_expiry(intent) == datetime(2026, 3, 8, 12, 0, tzinfo=timezone.utc)

class TestTranslateStripeError:
    def test_insufficient_funds_card_error(self):
        exc = stripe.CardError("declined", param=None, code="insufficient_funds")
        assert isinstance(translate_stripe_error(exc), InsufficientFundsError)

    def test_generic_card_error(self):
        exc = stripe.CardError("declined", param=None, code="card_declined")
        error = translate_stripe_error(exc)
        assert type(error) is PaymentProviderError
        assert error.code == "card_declined"

    def test_invalid_destination(self):
        exc = stripe.InvalidRequestError("No such destination", param="destination")
        assert isinstance(translate_stripe_error(exc), InvalidAccountError)

    def test_rate_limit_is_retryable(self):
        assert isinstance(translate_stripe_error(stripe.RateLimitError("slow down")), ProviderNetworkError)
