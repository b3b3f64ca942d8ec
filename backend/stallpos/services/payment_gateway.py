# Overview: Payment provider client; wraps the Stripe SDK behind an injectable gateway object.

"""
Stripe Gateway

WHY: Every provider call goes through one explicitly constructed object that
create_app stores in app.extensions["payment_gateway"]. Nothing touches the
stripe module's global api_key, so tests (and multiple apps in one process)
can swap the gateway without monkeypatching the SDK.

DESIGN:
- Each call passes api_key explicitly.
- Responses are converted to plain dicts at this boundary; the rest of the
  code never sees StripeObject instances.
- SDK errors become ProviderError (message, code, http status).
- Webhook signatures are verified over the raw request body before it is
  parsed. The payload is only json-decoded after verification succeeds.
"""

from __future__ import annotations

import json
from typing import Any

import stripe


PAYMENT_METHOD_TYPES_TERMINAL = ["card_present", "paynow"]
PAYMENT_METHOD_TYPES_CHECKOUT = ["card", "paynow"]


class ProviderError(Exception):
    """Raised when the payment provider rejects or fails a request."""

    def __init__(self, message: str, code: str | None = None, http_status: int | None = None):
        super().__init__(message)
        self.code = code
        self.http_status = http_status

    @property
    def is_invalid_request(self) -> bool:
        return self.http_status is not None and 400 <= self.http_status < 500


class ProviderNotConfiguredError(ProviderError):
    """Raised when no secret key is configured."""


class WebhookSignatureError(Exception):
    """Raised when a webhook payload fails signature verification."""


def _to_dict(obj: Any) -> dict:
    if obj is None:
        return {}
    if isinstance(obj, dict) and not hasattr(obj, "to_dict"):
        return obj
    return obj.to_dict()


class StripeGateway:
    """Thin synchronous wrapper over the Stripe SDK."""

    def __init__(
        self,
        api_key: str,
        webhook_secret: str = "",
        webhook_tolerance: int = 300,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.webhook_tolerance = webhook_tolerance

    @classmethod
    def from_config(cls, config) -> "StripeGateway":
        return cls(
            api_key=config.get("STRIPE_SECRET_KEY", ""),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET", ""),
            webhook_tolerance=int(config.get("WEBHOOK_TOLERANCE_SECONDS", 300)),
        )

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    def _call(self, func, *args, **kwargs) -> dict:
        if not self.api_key:
            raise ProviderNotConfiguredError(
                "Stripe not configured. Set STRIPE_SECRET_KEY.", code="not_configured"
            )
        try:
            return _to_dict(func(*args, api_key=self.api_key, **kwargs))
        except stripe.StripeError as exc:
            raise ProviderError(
                exc.user_message or str(exc),
                code=getattr(exc, "code", None),
                http_status=getattr(exc, "http_status", None),
            ) from exc

    # -------------------------------------------------------------------------
    # Payment intents
    # -------------------------------------------------------------------------

    def create_payment_intent(
        self,
        *,
        amount_cents: int,
        currency: str,
        metadata: dict,
        capture_method: str = "automatic",
        payment_method_types: list[str] | None = None,
        idempotency_key: str | None = None,
    ) -> dict:
        params = {
            "amount": amount_cents,
            "currency": currency,
            "payment_method_types": payment_method_types or PAYMENT_METHOD_TYPES_TERMINAL,
            "capture_method": capture_method,
            "metadata": metadata,
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        return self._call(stripe.PaymentIntent.create, **params)

    def retrieve_payment_intent(self, intent_id: str) -> dict:
        return self._call(stripe.PaymentIntent.retrieve, intent_id, expand=["latest_charge"])

    def capture_payment_intent(self, intent_id: str) -> dict:
        return self._call(stripe.PaymentIntent.capture, intent_id)

    # -------------------------------------------------------------------------
    # Terminal
    # -------------------------------------------------------------------------

    def set_reader_display(self, reader_id: str, cart: dict) -> dict:
        return self._call(stripe.terminal.Reader.set_reader_display, reader_id, type="cart", cart=cart)

    def process_payment_intent(self, reader_id: str, intent_id: str) -> dict:
        return self._call(
            stripe.terminal.Reader.process_payment_intent,
            reader_id,
            payment_intent=intent_id,
            process_config={"enable_customer_cancellation": True, "skip_tipping": False},
        )

    def list_readers(self, limit: int = 10) -> list[dict]:
        result = self._call(stripe.terminal.Reader.list, limit=limit)
        return list(result.get("data") or [])

    def retrieve_reader(self, reader_id: str) -> dict:
        return self._call(stripe.terminal.Reader.retrieve, reader_id)

    def create_location(self, display_name: str, address: dict) -> dict:
        return self._call(stripe.terminal.Location.create, display_name=display_name, address=address)

    def create_connection_token(self, location: str | None = None) -> dict:
        params = {"location": location} if location else {}
        return self._call(stripe.terminal.ConnectionToken.create, **params)

    # -------------------------------------------------------------------------
    # Hosted checkout
    # -------------------------------------------------------------------------

    def create_checkout_session(self, **params) -> dict:
        params.setdefault("payment_method_types", PAYMENT_METHOD_TYPES_CHECKOUT)
        params.setdefault("mode", "payment")
        return self._call(stripe.checkout.Session.create, **params)

    def retrieve_checkout_session(self, session_id: str) -> dict:
        return self._call(stripe.checkout.Session.retrieve, session_id)

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    def verify_webhook(self, payload: bytes | str, signature_header: str | None) -> dict:
        """
        Verify the Stripe-Signature header over the raw body, then decode it.

        Raises WebhookSignatureError on a missing secret, a missing or
        malformed header, a bad signature, a stale timestamp, or a body
        that is not JSON.
        """
        if not self.webhook_secret:
            raise WebhookSignatureError("Webhook secret not configured")
        if not signature_header:
            raise WebhookSignatureError("Missing Stripe-Signature header")

        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise WebhookSignatureError("Webhook payload is not UTF-8") from exc

        try:
            stripe.WebhookSignature.verify_header(
                payload, signature_header, self.webhook_secret, self.webhook_tolerance
            )
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureError(str(exc)) from exc

        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise WebhookSignatureError("Webhook payload is not valid JSON") from exc

        if not isinstance(event, dict) or "type" not in event:
            raise WebhookSignatureError("Webhook payload is not a Stripe event")
        return event
