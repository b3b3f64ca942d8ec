# Overview: Verified provider webhook dispatch; classifies events and reconciles them into orders.

"""
Webhook Service

WHY: The provider's webhook is one of three doors into finalize(). It is the
only one the provider pushes through, so it must be authenticated before
anything else happens: the signature is checked over the raw body and only
then is the event classified and dispatched.

DESIGN:
- Event types map onto WebhookEventKind; anything else is UNKNOWN and only
  logged.
- Success signals never trust the event body. The intent (or session) is
  re-fetched and finalize() runs only if the provider confirms it.
- A reader decline, or a failed hosted-checkout payment, is recorded on the
  order and fails it, unless a re-fetch shows the intent succeeded. A
  terminal intent's own payment_failed only records the decline; the
  reader's action_failed for the same attempt finalizes it.
- Once verified, handler errors are logged and the event is acknowledged.
  The provider would otherwise retry, and every handler is idempotent anyway.
"""

from __future__ import annotations

from enum import Enum

from flask import current_app

from ..extensions import db
from ..models.sales import PAYMENT_METHOD_CHECKOUT
from . import order_service
from .payment_gateway import ProviderError
from .payment_service import (
    CHECKOUT_EXPIRED,
    FAILURE_DECLINED,
    finalize,
    finalize_from_checkout_session,
    finalize_from_intent,
)
from .payment_status import INTENT_CANCELED, INTENT_SUCCEEDED


class WebhookEventKind(str, Enum):
    READER_ACTION_SUCCEEDED = "terminal.reader.action_succeeded"
    READER_ACTION_FAILED = "terminal.reader.action_failed"
    READER_ACTION_UPDATED = "terminal.reader.action_updated"
    INTENT_CREATED = "payment_intent.created"
    INTENT_SUCCEEDED = "payment_intent.succeeded"
    INTENT_PAYMENT_FAILED = "payment_intent.payment_failed"
    INTENT_CANCELED = "payment_intent.canceled"
    CHARGE_SUCCEEDED = "charge.succeeded"
    CHARGE_FAILED = "charge.failed"
    CHECKOUT_COMPLETED = "checkout.session.completed"
    CHECKOUT_EXPIRED = "checkout.session.expired"
    UNKNOWN = "unknown"

    @classmethod
    def classify(cls, event_type: str | None) -> "WebhookEventKind":
        try:
            return cls(event_type)
        except ValueError:
            return cls.UNKNOWN


HANDLED = "handled"
IGNORED = "ignored"
LOGGED = "logged"


def _reader_intent_id(reader: dict) -> str | None:
    action = reader.get("action") or {}
    if action.get("type") != "process_payment_intent":
        return None
    return (action.get("process_payment_intent") or {}).get("payment_intent")


def _reconcile_intent(gateway, intent_id: str | None) -> str:
    if not intent_id:
        return IGNORED
    intent = gateway.retrieve_payment_intent(intent_id)
    result = finalize_from_intent(intent)
    if result is None:
        current_app.logger.info(
            "Intent %s is %s; nothing to finalize", intent_id, intent.get("status")
        )
        return IGNORED
    return result.outcome


# =============================================================================
# HANDLERS
# =============================================================================

def _on_reader_succeeded(gateway, obj: dict) -> str:
    return _reconcile_intent(gateway, _reader_intent_id(obj))


def _fail_after_decline(gateway, order, intent_id: str, code: str | None, message: str | None) -> str:
    """Record a decline, then fail the order unless the provider says it was paid after all."""
    order_service.record_terminal_failure(order.order_number, code, message)
    intent = gateway.retrieve_payment_intent(intent_id)
    if intent.get("status") == INTENT_SUCCEEDED:
        return finalize_from_intent(intent, order_number=order.order_number).outcome
    current_app.logger.info("Payment for %s declined: %s", order.order_number, code or message)
    return finalize(order.order_number, False, failure_reason=message or code or FAILURE_DECLINED).outcome


def _on_reader_failed(gateway, obj: dict) -> str:
    intent_id = _reader_intent_id(obj)
    if not intent_id:
        return IGNORED
    order = order_service.get_order_by_transaction(intent_id)
    if order is None:
        current_app.logger.warning("Reader failure for unknown intent %s", intent_id)
        return IGNORED
    action = obj.get("action") or {}
    return _fail_after_decline(
        gateway, order, intent_id, action.get("failure_code"), action.get("failure_message")
    )


def _on_intent_succeeded(gateway, obj: dict) -> str:
    if obj.get("status") not in (None, INTENT_SUCCEEDED):
        return IGNORED
    return _reconcile_intent(gateway, obj.get("id"))


def _on_intent_payment_failed(gateway, obj: dict) -> str:
    order = order_service.get_order_by_transaction(obj.get("id"))
    if order is None:
        order = order_service.get_order_by_number((obj.get("metadata") or {}).get("orderId"))
    if order is None:
        return IGNORED
    error = obj.get("last_payment_error") or {}
    code = error.get("decline_code") or error.get("code")
    if order.payment_method != PAYMENT_METHOD_CHECKOUT:
        # Terminal declines are finalized from the reader's own action_failed
        order_service.record_terminal_failure(order.order_number, code, error.get("message"))
        return HANDLED
    return _fail_after_decline(gateway, order, obj["id"], code, error.get("message"))


def _on_intent_canceled(gateway, obj: dict) -> str:
    intent = gateway.retrieve_payment_intent(obj["id"])
    if intent.get("status") != INTENT_CANCELED:
        return IGNORED
    return finalize_from_intent(intent).outcome


def _on_charge_succeeded(gateway, obj: dict) -> str:
    return _reconcile_intent(gateway, obj.get("payment_intent"))


def _on_checkout_completed(gateway, obj: dict) -> str:
    session = gateway.retrieve_checkout_session(obj["id"])
    result = finalize_from_checkout_session(gateway, session)
    if result is None:
        current_app.logger.info(
            "Checkout session %s not paid yet (%s)", session.get("id"), session.get("payment_status")
        )
        return IGNORED
    return result.outcome


def _on_checkout_expired(gateway, obj: dict) -> str:
    session = gateway.retrieve_checkout_session(obj["id"])
    if session.get("status") != CHECKOUT_EXPIRED:
        return IGNORED
    order_number = (session.get("metadata") or {}).get("orderId")
    return finalize(order_number, False, failure_reason="Checkout session expired").outcome


def _log_only(gateway, obj: dict) -> str:
    return LOGGED


EVENT_HANDLERS = {
    WebhookEventKind.READER_ACTION_SUCCEEDED: _on_reader_succeeded,
    WebhookEventKind.READER_ACTION_FAILED: _on_reader_failed,
    WebhookEventKind.READER_ACTION_UPDATED: _log_only,
    WebhookEventKind.INTENT_CREATED: _log_only,
    WebhookEventKind.INTENT_SUCCEEDED: _on_intent_succeeded,
    WebhookEventKind.INTENT_PAYMENT_FAILED: _on_intent_payment_failed,
    WebhookEventKind.INTENT_CANCELED: _on_intent_canceled,
    WebhookEventKind.CHARGE_SUCCEEDED: _on_charge_succeeded,
    WebhookEventKind.CHARGE_FAILED: _log_only,
    WebhookEventKind.CHECKOUT_COMPLETED: _on_checkout_completed,
    WebhookEventKind.CHECKOUT_EXPIRED: _on_checkout_expired,
}


# =============================================================================
# ENTRY POINT
# =============================================================================

def handle_webhook(gateway, payload: bytes, signature_header: str | None) -> dict:
    """
    Verify and dispatch one webhook delivery.

    Raises WebhookSignatureError before any handler runs if the delivery is
    not authentic. After that it always returns an acknowledgement.
    """
    event = gateway.verify_webhook(payload, signature_header)
    kind = WebhookEventKind.classify(event.get("type"))
    obj = (event.get("data") or {}).get("object") or {}

    current_app.logger.info("Webhook %s (%s) received", event.get("id"), event.get("type"))

    handler = EVENT_HANDLERS.get(kind)
    if handler is None:
        current_app.logger.info("Unhandled webhook event type: %s", event.get("type"))
        return {"received": True, "kind": kind.value, "result": IGNORED}

    try:
        result = handler(gateway, obj)
    except ProviderError:
        current_app.logger.exception("Provider lookup failed while handling %s", event.get("id"))
        result = "error"
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Webhook handler for %s failed", event.get("type"))
        result = "error"

    return {"received": True, "kind": kind.value, "result": result}
