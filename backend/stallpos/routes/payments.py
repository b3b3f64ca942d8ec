# Overview: Flask API routes for card payments; parses input and returns JSON responses.

# backend/stallpos/routes/payments.py
"""
Payment Processing API Routes

WHY: Stall sales paid by card go through the payment provider, either on
the stall's physical reader or through hosted checkout.

DESIGN:
- Routes only parse input and map errors to status codes; every decision
  lives in payment_service / webhook_service.
- The gateway is read from app.extensions on every request, never imported.
- Error responses carry an "outcome": payment_failed means nothing was
  charged and a retry is safe, payment_succeeded_order_issue means the
  customer paid and must not be charged again.

SECURITY:
- Every route except the webhook requires a bearer token.
- Transaction ids and order numbers only resolve within the caller's tenant
  (404 otherwise), and an explicit reader_id must be one of its terminals.
- The webhook is authenticated by its Stripe-Signature header, verified over
  the raw body before anything is parsed.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import payment_service
from ..services import order_service
from ..services import webhook_service
from ..services.inventory_service import InsufficientInventoryError
from ..services.payment_gateway import ProviderError, WebhookSignatureError
from ..services.payment_service import (
    OrderMismatchError,
    OrderNotPendingError,
    PaymentError,
    PaymentNotSucceededError,
    RESULT_PAYMENT_FAILED,
    RESULT_PAYMENT_SUCCEEDED_ORDER_ISSUE,
)
from ..services.terminal_service import NoTerminalAssignedError, TerminalNotFoundError
from ..models.auth import ROLE_ADMIN
from ..validation import NotFoundError, ValidationError, parse_sale_request
from ..decorators import require_auth, require_role


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _gateway():
    return current_app.extensions["payment_gateway"]


def _provider_error_response(e: ProviderError, outcome: str = RESULT_PAYMENT_FAILED):
    status = 400 if e.is_invalid_request else 502
    return jsonify({
        "error": str(e),
        "code": e.code,
        "outcome": outcome,
    }), status


# =============================================================================
# TERMINAL PAYMENTS
# =============================================================================

@payments_bp.post("/intents")
@require_auth
def create_payment_intent_route():
    """
    Create a payment for a stall sale and send it to the stall's reader.

    Request body:
    {
        "amount_cents": 1055,  (optional, defaults to bills.total_with_tax_cents)
        "items": [{"product_id": 1, "quantity": 2}],
        "bills": {"total_cents": 1000, "tax_cents": 55, "total_with_tax_cents": 1055},
        "customer": {"name": "Ana", "phone": "+65..."}
    }

    Returns:
        200: Pending order + intent (with "warning" if the reader was unreachable)
        400: Invalid input, insufficient inventory, no terminal
        502: Provider error
    """
    try:
        sale = parse_sale_request(request.get_json(silent=True))

        result = payment_service.create_payment_intent(
            _gateway(),
            user=g.current_user,
            amount_cents=sale.amount_cents,
            items=sale.items,
            bills=sale.bills,
            customer=sale.customer,
        )
        return jsonify(result), 200

    except InsufficientInventoryError as e:
        return jsonify({
            "error": str(e),
            "invalid_items": e.invalid_items,
            "outcome": RESULT_PAYMENT_FAILED,
        }), 400
    except (NoTerminalAssignedError, TerminalNotFoundError) as e:
        return jsonify({"error": str(e), "outcome": RESULT_PAYMENT_FAILED}), 400
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ProviderError as e:
        return _provider_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create payment intent")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/confirm")
@require_auth
def confirm_payment_route():
    """
    Confirm a terminal payment after the client saw it succeed.

    Request body: {"payment_intent_id": "pi_..."}

    Idempotent: if the webhook already finalized the order, the response
    says so (finalize.already_finalized) and nothing is written twice.
    """
    try:
        data = request.get_json(silent=True) or {}
        transaction_id = data.get("payment_intent_id")
        if not transaction_id:
            return jsonify({"error": "payment_intent_id required"}), 400

        result = payment_service.confirm_payment(_gateway(), transaction_id, g.admin_id)
        return jsonify(result), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PaymentNotSucceededError as e:
        return jsonify({"error": str(e), "status": e.status, "outcome": RESULT_PAYMENT_FAILED}), 400
    except ProviderError as e:
        return _provider_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm payment")
        return jsonify({
            "error": "Internal server error",
            "outcome": RESULT_PAYMENT_SUCCEEDED_ORDER_ISSUE,
        }), 500


@payments_bp.post("/capture")
@require_auth
def capture_payment_route():
    """Capture a manually-captured intent, then finalize it like /confirm."""
    try:
        data = request.get_json(silent=True) or {}
        transaction_id = data.get("payment_intent_id")
        if not transaction_id:
            return jsonify({"error": "payment_intent_id required"}), 400

        result = payment_service.capture_payment(_gateway(), transaction_id, g.admin_id)
        return jsonify(result), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except PaymentNotSucceededError as e:
        return jsonify({"error": str(e), "status": e.status, "outcome": RESULT_PAYMENT_FAILED}), 400
    except ProviderError as e:
        return _provider_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to capture payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/status/<transaction_id>")
@require_auth
def payment_status_route(transaction_id: str):
    """
    Poll a payment. Read-only.

    poll_status is one of keep_polling, terminal_success, terminal_failure.
    """
    try:
        return jsonify(payment_service.check_status(_gateway(), transaction_id, g.admin_id)), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ProviderError as e:
        return _provider_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check payment status")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/check-failure/<transaction_id>")
@require_auth
def check_failure_route(transaction_id: str):
    try:
        return jsonify(payment_service.check_failure_and_cleanup(_gateway(), transaction_id, g.admin_id)), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ProviderError as e:
        return _provider_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check payment failure")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/process-on-reader")
@require_auth
def process_on_reader_route():
    """
    Re-send a Pending order's intent to a reader (e.g. after a dispatch warning).

    Request body: {"payment_intent_id": "pi_...", "reader_id": "tmr_..." (optional)}
    """
    try:
        data = request.get_json(silent=True) or {}
        transaction_id = data.get("payment_intent_id")
        if not transaction_id:
            return jsonify({"error": "payment_intent_id required"}), 400

        reader = payment_service.process_on_reader(
            _gateway(),
            user=g.current_user,
            transaction_id=transaction_id,
            reader_id=data.get("reader_id"),
        )
        return jsonify({"reader": reader}), 200

    except (NoTerminalAssignedError, TerminalNotFoundError) as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except OrderNotPendingError as e:
        return jsonify({"error": str(e), "order_status": e.order.status}), 409
    except ProviderError as e:
        return _provider_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process payment on reader")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/reader-display")
@require_auth
def reader_display_route():
    try:
        data = request.get_json(silent=True) or {}
        cart = data.get("cart")
        if not isinstance(cart, dict):
            return jsonify({"error": "cart object required"}), 400

        reader = payment_service.set_reader_display(
            _gateway(), user=g.current_user, cart=cart, reader_id=data.get("reader_id")
        )
        return jsonify({"reader": reader}), 200

    except (NoTerminalAssignedError, TerminalNotFoundError) as e:
        return jsonify({"error": str(e)}), 400
    except ProviderError as e:
        return _provider_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set reader display")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# TERMINAL PROVIDER PASSTHROUGHS
# =============================================================================

@payments_bp.get("/terminal/readers")
@require_auth
@require_role(ROLE_ADMIN)
def list_readers_route():
    try:
        limit = request.args.get("limit", 10, type=int)
        readers = _gateway().list_readers(limit=max(1, min(limit, 100)))
        return jsonify({"readers": readers}), 200
    except ProviderError as e:
        return _provider_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list readers")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/terminal/locations")
@require_auth
@require_role(ROLE_ADMIN)
def create_location_route():
    """
    Request body:
    {
        "display_name": "Stall 12",
        "address": {"line1": "...", "city": "...", "country": "SG", "postal_code": "..."}
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        display_name = data.get("display_name")
        address = data.get("address")
        if not display_name or not isinstance(address, dict):
            return jsonify({"error": "display_name and address required"}), 400

        location = _gateway().create_location(display_name, address)
        return jsonify({"location": location}), 201
    except ProviderError as e:
        return _provider_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create terminal location")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/connection-token")
@require_auth
def connection_token_route():
    try:
        data = request.get_json(silent=True) or {}
        token = _gateway().create_connection_token(location=data.get("location"))
        return jsonify({"secret": token.get("secret")}), 200
    except ProviderError as e:
        return _provider_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create connection token")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/pending-orders")
@require_auth
def pending_orders_route():
    orders = order_service.list_pending_orders(g.admin_id)
    return jsonify({"orders": [o.to_dict() for o in orders]}), 200


# =============================================================================
# HOSTED CHECKOUT
# =============================================================================

@payments_bp.post("/checkout-sessions")
@require_auth
def create_checkout_session_route():
    """
    Create a hosted checkout page for a sale.

    Same body as /intents plus optional customer.email. Returns the
    checkout_url to redirect the customer to.
    """
    try:
        sale = parse_sale_request(request.get_json(silent=True))

        result = payment_service.create_checkout_session(
            _gateway(),
            user=g.current_user,
            amount_cents=sale.amount_cents,
            items=sale.items,
            bills=sale.bills,
            customer=sale.customer,
        )
        return jsonify(result), 201

    except InsufficientInventoryError as e:
        return jsonify({
            "error": str(e),
            "invalid_items": e.invalid_items,
            "outcome": RESULT_PAYMENT_FAILED,
        }), 400
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ProviderError as e:
        return _provider_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create checkout session")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/checkout-sessions/<session_id>/verify")
@require_auth
def verify_checkout_session_route(session_id: str):
    """
    Verify a checkout redirect.

    Query params:
    - order_number: The order the customer was redirected back for (required)
    """
    try:
        order_number = request.args.get("order_number")
        if not order_number:
            return jsonify({"error": "order_number required"}), 400

        result = payment_service.verify_checkout_session(_gateway(), session_id, order_number, g.admin_id)
        return jsonify(result), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except OrderMismatchError as e:
        return jsonify({"error": str(e), "verified": False}), 400
    except PaymentError as e:
        return jsonify({"error": str(e)}), 400
    except ProviderError as e:
        return _provider_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to verify checkout session")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# WEBHOOK
# =============================================================================

@payments_bp.post("/webhook")
def webhook_route():
    """
    Provider webhook endpoint. Unauthenticated; signature-verified.

    Returns:
        200: {"received": true} for every authentic delivery
        400: Signature verification failed, nothing processed
    """
    payload = request.get_data(cache=False)
    signature = request.headers.get("Stripe-Signature")

    try:
        result = webhook_service.handle_webhook(_gateway(), payload, signature)
    except WebhookSignatureError as e:
        current_app.logger.warning("Webhook rejected: %s", e)
        return jsonify({"error": "Webhook signature verification failed"}), 400
    except Exception:
        current_app.logger.exception("Webhook processing failed")
        return jsonify({"received": True}), 200

    return jsonify(result), 200
