"""Stripe adapter tests: error classification, request shaping, webhook verification."""
import pytest
import stripe

from conftest import TEST_SETTINGS, sign_webhook, webhook_payload
from findit.services.errors import GatewayTerminalError, GatewayTransientError, SignatureInvalid
from findit.services.gateway import ChargeOutcome, StripeGateway, classify_stripe_error, configure_stripe


@pytest.fixture
def stripe_gateway():
    return StripeGateway(TEST_SETTINGS)


def stripe_object(object_id, **fields):
    """A data object exactly as the stripe library hands it back from a signed event."""
    payload = webhook_payload("test.object", object_id, **fields)
    event = stripe.Webhook.construct_event(payload, sign_webhook(payload), TEST_SETTINGS.stripe_webhook_secret)
    return event["data"]["object"]


class TestErrorClassification:
    @pytest.mark.parametrize(
        "exc",
        [
            stripe.APIConnectionError("network down"),
            stripe.RateLimitError("slow down", http_status=429),
            stripe.APIError("internal error", http_status=500),
            stripe.APIError("no status"),
        ],
    )
    def test_transient(self, exc):
        error = classify_stripe_error(exc)

        assert isinstance(error, GatewayTransientError)
        assert error.retryable is True

    @pytest.mark.parametrize(
        "exc",
        [
            stripe.CardError("Your card was declined.", None, "card_declined", http_status=402),
            stripe.InvalidRequestError("No such destination", "destination", http_status=400),
            stripe.AuthenticationError("Invalid API key", http_status=401),
        ],
    )
    def test_terminal(self, exc):
        error = classify_stripe_error(exc)

        assert isinstance(error, GatewayTerminalError)
        assert error.retryable is False


class TestCalls:
    def test_create_charge_sends_minor_units_and_idempotency_key(self, stripe_gateway, monkeypatch):
        captured = {}

        def fake_create(**kwargs):
            captured.update(kwargs)
            return {"id": "pi_123", "client_secret": "pi_123_secret"}

        monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)

        handle = stripe_gateway.create_charge(
            amount=10000,
            fee_amount=1000,
            metadata={"item_id": "abc", "missing": None},
            idempotency_key="payment-1",
        )

        assert handle.charge_ref == "pi_123"
        assert handle.client_secret == "pi_123_secret"
        assert captured["amount"] == 10000
        assert captured["currency"] == "usd"
        assert captured["idempotency_key"] == "payment-1"
        assert captured["api_key"] == TEST_SETTINGS.stripe_secret_key
        assert captured["metadata"] == {"item_id": "abc", "platform_fee": "1000"}

    def test_transfer_network_failure_is_retryable(self, stripe_gateway, monkeypatch):
        def fake_create(**kwargs):
            raise stripe.APIConnectionError("connection reset")

        monkeypatch.setattr(stripe.Transfer, "create", fake_create)

        with pytest.raises(GatewayTransientError):
            stripe_gateway.transfer(9000, "acct_1", {}, "payout-1")

    def test_transfer_rejection_is_terminal(self, stripe_gateway, monkeypatch):
        def fake_create(**kwargs):
            raise stripe.InvalidRequestError("No such destination: acct_1", "destination", http_status=400)

        monkeypatch.setattr(stripe.Transfer, "create", fake_create)

        with pytest.raises(GatewayTerminalError):
            stripe_gateway.transfer(9000, "acct_1", {}, "payout-1")

    @pytest.mark.parametrize(
        "intent, outcome",
        [
            ({"status": "succeeded"}, ChargeOutcome.SUCCEEDED),
            ({"status": "canceled"}, ChargeOutcome.FAILED),
            ({"status": "requires_payment_method", "last_payment_error": {"message": "declined"}}, ChargeOutcome.FAILED),
            ({"status": "requires_payment_method"}, ChargeOutcome.PENDING),
            ({"status": "processing"}, ChargeOutcome.PENDING),
        ],
    )
    def test_charge_outcome(self, intent, outcome):
        assert StripeGateway.charge_outcome(intent) == outcome


class TestWebhookVerification:
    def test_valid_signature(self, stripe_gateway):
        payload = webhook_payload(
            "payment_intent.payment_failed",
            "pi_42",
            last_payment_error={"message": "Your card was declined."},
        )

        event = stripe_gateway.construct_event(payload, sign_webhook(payload))

        assert event.type == "payment_intent.payment_failed"
        assert event.object_id == "pi_42"
        assert event.failure_reason == "Your card was declined."

    def test_wrong_secret(self, stripe_gateway):
        payload = webhook_payload("payment_intent.succeeded", "pi_42")

        with pytest.raises(SignatureInvalid):
            stripe_gateway.construct_event(payload, sign_webhook(payload, secret="whsec_other"))

    def test_tampered_payload(self, stripe_gateway):
        payload = webhook_payload("payment_intent.succeeded", "pi_42")
        header = sign_webhook(payload)

        with pytest.raises(SignatureInvalid):
            stripe_gateway.construct_event(payload.replace(b"pi_42", b"pi_43"), header)

    def test_missing_header(self, stripe_gateway):
        with pytest.raises(SignatureInvalid):
            stripe_gateway.construct_event(b"{}", None)

    def test_transfer_failure_message(self, stripe_gateway):
        payload = webhook_payload("transfer.failed", "tr_7", failure_message="Account closed")

        event = stripe_gateway.construct_event(payload, sign_webhook(payload))

        assert event.object_id == "tr_7"
        assert event.failure_reason == "Account closed"

    def test_event_without_failure(self, stripe_gateway):
        payload = webhook_payload("payment_intent.succeeded", "pi_42", last_payment_error=None)

        event = stripe_gateway.construct_event(payload, sign_webhook(payload))

        assert event.failure_reason is None


class TestStripeObjects:
    @pytest.mark.parametrize(
        "fields, outcome",
        [
            ({"status": "succeeded"}, ChargeOutcome.SUCCEEDED),
            ({"status": "requires_payment_method", "last_payment_error": {"message": "declined"}}, ChargeOutcome.FAILED),
            ({"status": "requires_payment_method"}, ChargeOutcome.PENDING),
        ],
    )
    def test_charge_outcome(self, fields, outcome):
        assert StripeGateway.charge_outcome(stripe_object("pi_9", **fields)) == outcome

    def test_retrieve_declined_charge(self, stripe_gateway, monkeypatch):
        intent = stripe_object("pi_9", status="requires_payment_method", last_payment_error={"message": "declined"})
        monkeypatch.setattr(stripe.PaymentIntent, "retrieve", lambda **kwargs: intent)

        assert stripe_gateway.retrieve_charge("pi_9") == ChargeOutcome.FAILED

    def test_payout_account_status(self, stripe_gateway, monkeypatch):
        account = stripe_object("acct_9", charges_enabled=True, payouts_enabled=False)
        monkeypatch.setattr(stripe.Account, "retrieve", lambda **kwargs: account)

        assert stripe_gateway.payout_account_status("acct_9") == {
            "id": "acct_9",
            "charges_enabled": True,
            "payouts_enabled": False,
            "details_submitted": False,
        }


class TestClientConfiguration:
    def test_building_a_gateway_leaves_stripe_globals_alone(self, monkeypatch):
        monkeypatch.setattr(stripe, "default_http_client", None)
        monkeypatch.setattr(stripe, "max_network_retries", 0)

        StripeGateway(TEST_SETTINGS)

        assert stripe.default_http_client is None
        assert stripe.max_network_retries == 0

    def test_configure_stripe(self, monkeypatch):
        monkeypatch.setattr(stripe, "default_http_client", None)
        monkeypatch.setattr(stripe, "max_network_retries", 0)

        configure_stripe(TEST_SETTINGS)

        assert isinstance(stripe.default_http_client, stripe.RequestsClient)
        assert stripe.max_network_retries == TEST_SETTINGS.stripe_max_network_retries
