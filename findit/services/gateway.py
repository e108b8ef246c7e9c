"""
Stripe adapter.

Translates escrow intents (charge, transfer, refund) into Stripe calls and
normalizes Stripe's responses and webhook events. Amounts are integer minor
units. Every Stripe failure leaves this module as either a
GatewayTransientError (safe to retry) or a GatewayTerminalError (retrying
with the same parameters will fail again).
"""

import logging
from dataclasses import dataclass
from typing import Optional

import stripe

from findit.config import Settings, get_settings
from findit.services.errors import GatewayTerminalError, GatewayTransientError, SignatureInvalid

logger = logging.getLogger(__name__)


class ChargeOutcome:
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENDING = "pending"


@dataclass
class ChargeHandle:
    charge_ref: str
    client_secret: str


@dataclass
class GatewayEvent:
    id: str
    type: str
    object_id: Optional[str]
    failure_reason: Optional[str] = None


def classify_stripe_error(exc: stripe.StripeError):
    message = getattr(exc, "user_message", None) or str(exc) or exc.__class__.__name__

    if isinstance(exc, (stripe.APIConnectionError, stripe.RateLimitError)):
        return GatewayTransientError(message)

    status = getattr(exc, "http_status", None)
    if isinstance(exc, stripe.APIError) and (status is None or status >= 500):
        return GatewayTransientError(message)
    if status is not None and status >= 500:
        return GatewayTransientError(message)

    return GatewayTerminalError(message)


def _field(obj, name: str, default=None):
    # StripeObject is only a dict subclass in older releases; subscript works everywhere
    try:
        value = obj[name]
    except KeyError:
        return default
    return default if value is None else value


def configure_stripe(settings: Settings) -> None:
    """Process-wide client settings, applied once when the real gateway is built."""
    # bounded calls; unanswered charges stay pending and get reconciled later
    stripe.default_http_client = stripe.RequestsClient(timeout=settings.stripe_timeout_seconds)
    stripe.max_network_retries = settings.stripe_max_network_retries


def _stringify(metadata: dict) -> dict:
    return {k: str(v) for k, v in metadata.items() if v is not None}


class StripeGateway:
    def __init__(self, settings: Settings):
        self.api_key = settings.stripe_secret_key
        self.webhook_secret = settings.stripe_webhook_secret
        self.currency = settings.currency
        self.frontend_url = settings.frontend_url

    def _call(self, operation: str, fn, **params):
        try:
            return fn(api_key=self.api_key, **params)
        except stripe.StripeError as e:
            error = classify_stripe_error(e)
            logger.warning(
                "Stripe %s failed (%s, retryable=%s): %s",
                operation, type(e).__name__, error.retryable, error.detail,
            )
            raise error from e

    # Charges

    def create_charge(self, amount: int, fee_amount: int, metadata: dict, idempotency_key: str) -> ChargeHandle:
        intent = self._call(
            "create_charge",
            stripe.PaymentIntent.create,
            amount=amount,
            currency=self.currency,
            automatic_payment_methods={"enabled": True},
            metadata=_stringify({**metadata, "platform_fee": fee_amount}),
            idempotency_key=idempotency_key,
        )
        return ChargeHandle(charge_ref=intent["id"], client_secret=intent["client_secret"])

    def retrieve_charge(self, charge_ref: str) -> str:
        intent = self._call("retrieve_charge", stripe.PaymentIntent.retrieve, id=charge_ref)
        return self.charge_outcome(intent)

    @staticmethod
    def charge_outcome(intent) -> str:
        status = intent["status"]

        if status == "succeeded":
            return ChargeOutcome.SUCCEEDED
        if status == "canceled":
            return ChargeOutcome.FAILED
        # a declined attempt drops the intent back to requires_payment_method
        if status == "requires_payment_method" and _field(intent, "last_payment_error"):
            return ChargeOutcome.FAILED

        return ChargeOutcome.PENDING

    def refund(self, charge_ref: str) -> str:
        refund = self._call(
            "refund",
            stripe.Refund.create,
            payment_intent=charge_ref,
            idempotency_key=f"refund-{charge_ref}",
        )
        return refund["id"]

    # Payouts

    def transfer(self, amount: int, destination: str, metadata: dict, idempotency_key: str) -> str:
        transfer = self._call(
            "transfer",
            stripe.Transfer.create,
            amount=amount,
            currency=self.currency,
            destination=destination,
            metadata=_stringify(metadata),
            idempotency_key=idempotency_key,
        )
        return transfer["id"]

    def create_payout_account(self, email: str, country: str):
        account = self._call(
            "create_payout_account",
            stripe.Account.create,
            type="express",
            country=country,
            email=email,
            capabilities={
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
        )

        link = self._call(
            "create_account_link",
            stripe.AccountLink.create,
            account=account["id"],
            refresh_url=f"{self.frontend_url}/stripe/refresh",
            return_url=f"{self.frontend_url}/stripe/return",
            type="account_onboarding",
        )

        return account["id"], link["url"]

    def payout_account_status(self, account_id: str) -> dict:
        account = self._call("payout_account_status", stripe.Account.retrieve, id=account_id)

        return {
            "id": account["id"],
            "charges_enabled": _field(account, "charges_enabled", False),
            "payouts_enabled": _field(account, "payouts_enabled", False),
            "details_submitted": _field(account, "details_submitted", False),
        }

    # Webhooks

    def construct_event(self, payload: bytes, signature_header: Optional[str]) -> GatewayEvent:
        if not signature_header:
            raise SignatureInvalid("Missing signature header")

        try:
            event = stripe.Webhook.construct_event(payload, signature_header, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalid(f"Signature verification failed: {e}") from e
        except ValueError as e:
            raise SignatureInvalid(f"Unreadable payload: {e}") from e

        obj = event["data"]["object"]

        # payment intents carry a nested error object, transfers a plain message
        last_error = _field(obj, "last_payment_error")
        if last_error is not None:
            failure_reason = _field(last_error, "message")
        else:
            failure_reason = _field(obj, "failure_message")

        return GatewayEvent(
            id=event["id"],
            type=event["type"],
            object_id=_field(obj, "id"),
            failure_reason=failure_reason,
        )


_gateway = None


def get_gateway() -> StripeGateway:
    global _gateway

    if _gateway is None:
        settings = get_settings()
        configure_stripe(settings)
        _gateway = StripeGateway(settings)

    return _gateway
