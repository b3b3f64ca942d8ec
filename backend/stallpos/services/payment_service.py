# Overview: Service-layer payment orchestration; reconciles provider signals into one authoritative order state.

"""
Payment Orchestration Service

WHY: Card payments reach a stall through three asynchronous doors that can
race or arrive out of order: the API call that creates the intent, the
provider's webhook, and the client's status polls. Whichever door first sees
a terminal provider state calls finalize(); every later caller is a no-op.

DESIGN PRINCIPLES:
- The provider is always asked first. Local state only changes after the
  provider's authoritative answer is in hand, and no row lock is held
  across a network call.
- finalize() is the only way out of Pending. It uses one conditional UPDATE
  (status = 'Pending' in the WHERE clause) so exactly one caller wins.
- On a first-time success the winner creates the Payment row (unique on
  provider transaction id), links it, then decrements stock once. Stock
  failures are logged and never undo a completed order.
- On failure nothing but the order's status changes: no Payment, no stock.
- A transaction id sent by a client is first resolved to the caller's own
  order; another tenant's id is reported as not found.
- The gateway is passed in by the caller; this module never builds one.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, Payment, User
from ..models.sales import (
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_FAILED,
    PAYMENT_METHOD_CHECKOUT,
    PAYMENT_METHOD_TERMINAL,
)
from ..validation import (
    BillBreakdown,
    CustomerInfo,
    OrderItemInput,
    NotFoundError,
)
from ..time_utils import seconds_since, utcnow
from . import order_service
from .concurrency import is_unique_violation
from .inventory_service import DecrementSummary, apply_order_decrement, require_inventory
from .payment_gateway import ProviderError
from .payment_status import (
    INTENT_CANCELED,
    INTENT_REQUIRES_PAYMENT_METHOD,
    INTENT_SUCCEEDED,
    PollStatus,
    derive_poll_status,
)
from .terminal_service import first_managed_stall, resolve_reader_for_user, resolve_terminal_for_user


class PaymentError(Exception):
    """Raised for payment operation errors."""
    pass


class PaymentNotSucceededError(PaymentError):
    """Provider reports the transaction has not succeeded (safe to retry)."""

    def __init__(self, status: str | None):
        super().__init__(f"Payment not successful. Status: {status}")
        self.status = status


class OrderMismatchError(PaymentError):
    """Provider object does not belong to the order it was presented with."""
    pass


class OrderNotPendingError(PaymentError):
    """The order is already Completed or Failed; the payment cannot be retried."""

    def __init__(self, order: Order):
        super().__init__(f"Order {order.order_number} is already {order.status}")
        self.order = order


# =============================================================================
# FINALIZE OUTCOMES (CONSTANTS)
# =============================================================================

OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"
OUTCOME_ALREADY_FINALIZED = "already_finalized"
OUTCOME_ORDER_NOT_FOUND = "order_not_found"

# Response tags telling the client whether a retry is safe
RESULT_PAYMENT_FAILED = "payment_failed"
RESULT_PAYMENT_SUCCEEDED_ORDER_ISSUE = "payment_succeeded_order_issue"

CHECKOUT_PAID = "paid"
CHECKOUT_COMPLETE = "complete"
CHECKOUT_EXPIRED = "expired"

PAYMENT_STATUS_SUCCEEDED = "succeeded"

FAILURE_CANCELED = "Payment canceled"
FAILURE_TERMINAL_TIMEOUT = "Payment timeout at terminal"
FAILURE_DECLINED = "Payment declined"


@dataclass
class ProviderTransaction:
    """Provider-confirmed money movement, normalized from an intent or a checkout session."""
    id: str
    amount_cents: int
    currency: str
    status: str
    metadata: dict
    charge_id: str | None = None
    payment_method_type: str | None = None
    receipt_url: str | None = None
    checkout_session_id: str | None = None

    @classmethod
    def from_intent(cls, intent: dict, checkout_session_id: str | None = None) -> "ProviderTransaction":
        charge = intent.get("latest_charge")
        if not isinstance(charge, dict):
            charge = {"id": charge} if charge else {}
        method_details = charge.get("payment_method_details") or {}
        method_types = intent.get("payment_method_types") or []
        return cls(
            id=intent["id"],
            amount_cents=int(intent.get("amount_received") or intent.get("amount") or 0),
            currency=intent.get("currency") or "",
            status=intent.get("status") or "",
            metadata=dict(intent.get("metadata") or {}),
            charge_id=charge.get("id"),
            payment_method_type=method_details.get("type") or (method_types[0] if len(method_types) == 1 else None),
            receipt_url=charge.get("receipt_url"),
            checkout_session_id=checkout_session_id,
        )

    @classmethod
    def from_checkout_session(cls, session: dict) -> "ProviderTransaction":
        intent_ref = session.get("payment_intent")
        intent_id = intent_ref.get("id") if isinstance(intent_ref, dict) else intent_ref
        return cls(
            id=intent_id or session["id"],
            amount_cents=int(session.get("amount_total") or 0),
            currency=session.get("currency") or "",
            status=PAYMENT_STATUS_SUCCEEDED,
            metadata=dict(session.get("metadata") or {}),
            checkout_session_id=session["id"],
        )


@dataclass
class FinalizeResult:
    outcome: str
    order: Order | None = None
    payment: Payment | None = None
    inventory: DecrementSummary | None = None

    @property
    def already_finalized(self) -> bool:
        return self.outcome == OUTCOME_ALREADY_FINALIZED

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "already_finalized": self.already_finalized,
            "order": self.order.to_dict() if self.order else None,
            "payment": self.payment.to_dict() if self.payment else None,
            "inventory": self.inventory.to_dict() if self.inventory else None,
        }


def intent_snapshot(intent: dict) -> dict:
    charge = intent.get("latest_charge")
    return {
        "id": intent.get("id"),
        "status": intent.get("status"),
        "amount": intent.get("amount"),
        "currency": intent.get("currency"),
        "client_secret": intent.get("client_secret"),
        "latest_charge": charge if isinstance(charge, dict) else ({"id": charge} if charge else None),
        "metadata": dict(intent.get("metadata") or {}),
    }


def _order_number_for(transaction_id: str, metadata: dict | None) -> str | None:
    order_number = (metadata or {}).get("orderId")
    if order_number:
        return order_number
    order = order_service.get_order_by_transaction(transaction_id)
    return order.order_number if order else None


def order_for_transaction(transaction_id: str, admin_id: int | None) -> Order:
    """
    The caller's order for a provider transaction.

    Another tenant's transaction is reported exactly like an unknown one, and
    before the provider is contacted.
    """
    order = order_service.get_order_by_transaction(transaction_id)
    if order is None or admin_id is None or order.admin_id != admin_id:
        raise NotFoundError("Payment not found")
    return order


def _failure_details(intent: dict, order: Order) -> tuple[str | None, str | None]:
    """The last decline: as recorded from a webhook, else as the intent itself reports it."""
    error = intent.get("last_payment_error") or {}
    code = order.failure_code or error.get("decline_code") or error.get("code")
    message = order.failure_message or error.get("message")
    return code, message


def _poll_status(intent: dict, order: Order) -> PollStatus:
    code, message = _failure_details(intent, order)
    # Time in the current state: since the last reader failure, else since creation
    return derive_poll_status(
        intent.get("status"),
        seconds_since(order.failure_at or order.created_at),
        failure_code=code,
        failure_message=message,
        threshold_seconds=current_app.config["TERMINAL_FAILURE_AFTER_SECONDS"],
    )


# =============================================================================
# STORE PRIMITIVE: PAYMENT CREATE-IF-ABSENT
# =============================================================================

def create_payment_if_absent(order: Order, txn: ProviderTransaction) -> Payment:
    """
    Insert the Payment for a provider transaction, or return the existing one.

    The unique provider_transaction_id decides: a concurrent duplicate insert
    is rolled back and the winner's row is returned.
    """
    existing = db.session.query(Payment).filter_by(provider_transaction_id=txn.id).first()
    if existing:
        return existing

    metadata = dict(txn.metadata)
    metadata.setdefault("orderId", order.order_number)

    payment = Payment(
        provider_transaction_id=txn.id,
        charge_id=txn.charge_id,
        amount_cents=txn.amount_cents or order.total_with_tax_cents,
        currency=txn.currency or current_app.config.get("PAYMENT_CURRENCY", "sgd"),
        status=PAYMENT_STATUS_SUCCEEDED,
        payment_method_type=txn.payment_method_type,
        receipt_url=txn.receipt_url,
        order_id=order.id,
        checkout_session_id=txn.checkout_session_id,
        metadata_json=json.dumps(metadata, sort_keys=True),
        created_at=utcnow(),
    )
    db.session.add(payment)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if not is_unique_violation(exc):
            raise
        current_app.logger.info("Payment for %s already recorded by a concurrent caller", txn.id)
        existing = db.session.query(Payment).filter_by(provider_transaction_id=txn.id).first()
        if existing is None:
            raise
        return existing
    return payment


# =============================================================================
# FINALIZE
# =============================================================================

def finalize(
    order_number: str | None,
    succeeded: bool,
    *,
    transaction: ProviderTransaction | None = None,
    failure_reason: str | None = None,
) -> FinalizeResult:
    """
    Resolve a Pending order from an authoritative provider state.

    Idempotent: only the caller whose conditional UPDATE matches the
    Pending row does any work; everyone else gets OUTCOME_ALREADY_FINALIZED
    and the order as it stands. Bill breakdown and items are never touched.
    """
    order = order_service.get_order_by_number(order_number)
    if order is None:
        current_app.logger.warning("Finalize skipped: order %s not found", order_number)
        return FinalizeResult(outcome=OUTCOME_ORDER_NOT_FOUND)

    if not succeeded:
        extra = {"failure_message": failure_reason[:255]} if failure_reason else None
        won = order_service.conditional_update_order_status(order_number, ORDER_STATUS_FAILED, extra)
        order = order_service.get_order_by_number(order_number)
        if not won:
            return FinalizeResult(outcome=OUTCOME_ALREADY_FINALIZED, order=order)
        current_app.logger.info("Order %s finalized Failed (%s)", order_number, failure_reason or "provider")
        return FinalizeResult(outcome=OUTCOME_FAILED, order=order)

    if transaction is None:
        raise PaymentError("A provider transaction is required to complete an order")

    extra = {}
    if not order.provider_transaction_id:
        extra["provider_transaction_id"] = transaction.id
    won = order_service.conditional_update_order_status(order_number, ORDER_STATUS_COMPLETED, extra)
    order = order_service.get_order_by_number(order_number)
    if not won:
        return FinalizeResult(outcome=OUTCOME_ALREADY_FINALIZED, order=order, payment=order.payment)

    current_app.logger.info("Order %s finalized Completed via %s", order_number, transaction.id)

    payment = create_payment_if_absent(order, transaction)
    order_service.attach_payment(order_number, payment.id)

    inventory = None
    if order_service.claim_inventory(order.id):
        inventory = apply_order_decrement(order.items)
        if inventory.failed:
            current_app.logger.warning(
                "Order %s completed but %d item(s) were not deducted; needs review",
                order_number,
                inventory.failed,
            )

    order = order_service.get_order_by_number(order_number)
    return FinalizeResult(outcome=OUTCOME_COMPLETED, order=order, payment=payment, inventory=inventory)


def finalize_from_intent(
    intent: dict,
    checkout_session_id: str | None = None,
    order_number: str | None = None,
) -> FinalizeResult | None:
    """Finalize from a freshly retrieved intent if it is in a terminal state."""
    status = intent.get("status")
    if not order_number:
        order_number = _order_number_for(intent.get("id"), intent.get("metadata"))

    if status == INTENT_SUCCEEDED:
        txn = ProviderTransaction.from_intent(intent, checkout_session_id=checkout_session_id)
        return finalize(order_number, True, transaction=txn)
    if status == INTENT_CANCELED:
        return finalize(order_number, False, failure_reason=FAILURE_CANCELED)
    return None


# =============================================================================
# TERMINAL PAYMENTS
# =============================================================================

def _build_cart(order: Order) -> dict:
    return {
        "currency": current_app.config["PAYMENT_CURRENCY"],
        "tax": order.tax_cents,
        "total": order.total_with_tax_cents,
        "line_items": [
            {"amount": item.unit_price_cents, "description": item.name, "quantity": item.quantity}
            for item in order.items
        ],
    }


def create_payment_intent(
    gateway,
    *,
    user: User,
    amount_cents: int,
    items: list[OrderItemInput],
    bills: BillBreakdown,
    customer: CustomerInfo,
) -> dict:
    """
    Create a provider intent for a stall sale and push it to the stall's reader.

    Order of effects:
    1. inventory precheck (InsufficientInventoryError, nothing created)
    2. reader resolution (NoTerminalAssignedError / TerminalNotFoundError)
    3. provider intent with orderId in metadata (ProviderError)
    4. one Pending order
    5. cart on reader display (best effort), then dispatch to reader.
       A dispatch failure is returned as a warning, not an error.
    """
    products = require_inventory(items)
    resolved = resolve_terminal_for_user(user)

    order_number = order_service.generate_order_number()
    metadata = {
        "orderId": order_number,
        "customerName": customer.name,
        "customerPhone": customer.phone,
    }

    intent = gateway.create_payment_intent(
        amount_cents=amount_cents,
        currency=current_app.config["PAYMENT_CURRENCY"],
        metadata=metadata,
        capture_method=current_app.config["PAYMENT_CAPTURE_METHOD"],
        idempotency_key=order_number,
    )

    order = order_service.create_pending_order(
        order_number=order_number,
        user=user,
        items=items,
        products=products,
        bills=bills,
        customer=customer,
        payment_method=PAYMENT_METHOD_TERMINAL,
        stall_id=resolved.stall.id if resolved.stall else None,
        terminal_reader_id=resolved.reader_id,
        provider_transaction_id=intent["id"],
    )

    response = {
        "order_number": order_number,
        "order": order.to_dict(),
        "payment_intent": intent_snapshot(intent),
        "terminal": resolved.to_dict(),
    }

    try:
        gateway.set_reader_display(resolved.reader_id, _build_cart(order))
    except ProviderError as exc:
        current_app.logger.warning("Reader display failed for %s (continuing): %s", resolved.reader_id, exc)

    try:
        reader = gateway.process_payment_intent(resolved.reader_id, intent["id"])
        response["reader"] = {
            "id": reader.get("id"),
            "status": reader.get("status"),
            "action": reader.get("action"),
        }
    except ProviderError as exc:
        current_app.logger.warning("Dispatch of %s to reader %s failed: %s", intent["id"], resolved.reader_id, exc)
        response["warning"] = "PaymentIntent created but failed to send to terminal reader"
        response["error"] = str(exc)

    return response


def process_on_reader(gateway, *, user: User, transaction_id: str, reader_id: str | None = None) -> dict:
    """
    Re-dispatch an existing intent to a reader (the caller's own unless given).

    Only the caller's own Pending orders can be retried; a declined card
    that already failed the order needs a new sale.
    """
    order = order_for_transaction(transaction_id, user.tenant_admin_id)
    if not order.is_pending:
        raise OrderNotPendingError(order)
    reader_id = resolve_reader_for_user(user, reader_id)
    reader = gateway.process_payment_intent(reader_id, transaction_id)
    return {"id": reader.get("id"), "status": reader.get("status"), "action": reader.get("action")}


def set_reader_display(gateway, *, user: User, cart: dict, reader_id: str | None = None) -> dict:
    reader_id = resolve_reader_for_user(user, reader_id)
    reader = gateway.set_reader_display(reader_id, cart)
    return {"id": reader.get("id"), "status": reader.get("status"), "action": reader.get("action")}


def confirm_payment(gateway, transaction_id: str, admin_id: int | None) -> dict:
    """Poll-driven confirmation: finalize success if the provider says succeeded."""
    order = order_for_transaction(transaction_id, admin_id)
    intent = gateway.retrieve_payment_intent(transaction_id)
    if intent.get("status") != INTENT_SUCCEEDED:
        raise PaymentNotSucceededError(intent.get("status"))
    result = finalize_from_intent(intent, order_number=order.order_number)
    return {"payment_intent": intent_snapshot(intent), "finalize": result.to_dict()}


def capture_payment(gateway, transaction_id: str, admin_id: int | None) -> dict:
    order = order_for_transaction(transaction_id, admin_id)
    intent = gateway.capture_payment_intent(transaction_id)
    if intent.get("status") != INTENT_SUCCEEDED:
        raise PaymentNotSucceededError(intent.get("status"))
    result = finalize_from_intent(intent, order_number=order.order_number)
    return {"payment_intent": intent_snapshot(intent), "finalize": result.to_dict()}


def check_status(gateway, transaction_id: str, admin_id: int | None) -> dict:
    """
    Read-only status passthrough for polling clients.

    poll_status is derived from the provider state, the last decline (recorded
    on the order or carried on the intent), and time spent in the current state.
    """
    order = order_for_transaction(transaction_id, admin_id)
    intent = gateway.retrieve_payment_intent(transaction_id)

    failure_code, failure_message = _failure_details(intent, order)
    terminal_failure = None
    if failure_code or failure_message:
        terminal_failure = {
            "failed": True,
            "failure_code": failure_code,
            "failure_message": failure_message,
            "timestamp": order.to_dict()["failure_at"],
        }

    return {
        "payment_intent": intent_snapshot(intent),
        "poll_status": _poll_status(intent, order).value,
        "terminal_failure": terminal_failure,
        "order_status": order.status,
    }


def check_failure_and_cleanup(gateway, transaction_id: str, admin_id: int | None) -> dict:
    """
    Decide whether a polling client should stop, finalizing when warranted.

    succeeded/canceled finalize directly. Any other state the poll
    classifies as a terminal failure (a recorded decline, or waiting past
    TERMINAL_FAILURE_AFTER_SECONDS) fails the Pending order, so a client
    told to stop polling never leaves it behind.
    """
    order = order_for_transaction(transaction_id, admin_id)
    intent = gateway.retrieve_payment_intent(transaction_id)
    status = intent.get("status")

    should_stop = False
    failure_reason = None
    cleaned_up = False

    if status in (INTENT_SUCCEEDED, INTENT_CANCELED):
        result = finalize_from_intent(intent, order_number=order.order_number)
        should_stop = True
        if status == INTENT_CANCELED:
            failure_reason = FAILURE_CANCELED
        cleaned_up = result is not None and result.outcome in (OUTCOME_COMPLETED, OUTCOME_FAILED)

    elif not order.is_pending:
        should_stop = True
        if order.status == ORDER_STATUS_FAILED:
            failure_reason = order.failure_message or order.failure_code

    elif _poll_status(intent, order) is PollStatus.TERMINAL_FAILURE:
        code, message = _failure_details(intent, order)
        failure_reason = message or code or FAILURE_TERMINAL_TIMEOUT
        if code or message:
            order_service.record_terminal_failure(order.order_number, code, message)
        result = finalize(order.order_number, False, failure_reason=failure_reason)
        should_stop = True
        cleaned_up = result.outcome == OUTCOME_FAILED

    return {
        "payment_intent": {
            "id": intent.get("id"),
            "status": status,
            "metadata": dict(intent.get("metadata") or {}),
        },
        "should_stop": should_stop,
        "failure_reason": failure_reason,
        "cleaned_up": cleaned_up,
    }


# =============================================================================
# HOSTED CHECKOUT
# =============================================================================

def create_checkout_session(
    gateway,
    *,
    user: User,
    amount_cents: int,
    items: list[OrderItemInput],
    bills: BillBreakdown,
    customer: CustomerInfo,
) -> dict:
    """
    Provision a Pending order and a hosted checkout session for it.

    If the provider refuses the session the order is failed straight away
    so it does not linger as Pending.
    """
    products = require_inventory(items)
    stall = first_managed_stall(user.id)
    currency = current_app.config["PAYMENT_CURRENCY"]

    order_number = order_service.generate_order_number()
    order = order_service.create_pending_order(
        order_number=order_number,
        user=user,
        items=items,
        products=products,
        bills=bills,
        customer=customer,
        payment_method=PAYMENT_METHOD_CHECKOUT,
        stall_id=stall.id if stall else None,
    )

    metadata = {
        "orderId": order_number,
        "customerName": customer.name,
        "customerPhone": customer.phone,
    }
    line_items = [
        {
            "price_data": {
                "currency": currency,
                "product_data": {"name": item.name},
                "unit_amount": item.unit_price_cents,
            },
            "quantity": item.quantity,
        }
        for item in order.items
    ]
    if bills.tax_cents > 0:
        line_items.append({
            "price_data": {
                "currency": currency,
                "product_data": {"name": "Tax"},
                "unit_amount": bills.tax_cents,
            },
            "quantity": 1,
        })

    frontend = current_app.config["FRONTEND_URL"].rstrip("/")
    params = {
        "line_items": line_items,
        "success_url": (
            f"{frontend}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}&order_number={order_number}"
        ),
        "cancel_url": f"{frontend}/checkout/cancel?order_number={order_number}",
        "metadata": metadata,
        "payment_intent_data": {"metadata": metadata},
    }
    if customer.email:
        params["customer_email"] = customer.email

    try:
        session = gateway.create_checkout_session(**params)
    except ProviderError:
        finalize(order_number, False, failure_reason="Checkout session could not be created")
        raise

    order_service.set_checkout_session(order_number, session["id"], session.get("payment_intent"))
    current_app.logger.info(
        "Checkout session %s created for %s (%s cents)", session["id"], order_number, amount_cents
    )

    return {
        "order_number": order_number,
        "session_id": session["id"],
        "checkout_url": session.get("url"),
    }


def finalize_from_checkout_session(gateway, session: dict) -> FinalizeResult | None:
    """Finalize success for a paid, complete session; None if it is neither."""
    if not (session.get("payment_status") == CHECKOUT_PAID and session.get("status") == CHECKOUT_COMPLETE):
        return None

    order_number = (session.get("metadata") or {}).get("orderId")
    intent_ref = session.get("payment_intent")
    intent_id = intent_ref.get("id") if isinstance(intent_ref, dict) else intent_ref

    if intent_id:
        intent = gateway.retrieve_payment_intent(intent_id)
        txn = ProviderTransaction.from_intent(intent, checkout_session_id=session["id"])
        txn.metadata.setdefault("orderId", order_number)
    else:
        txn = ProviderTransaction.from_checkout_session(session)
    return finalize(order_number, True, transaction=txn)


def verify_checkout_session(gateway, session_id: str, order_number: str, admin_id: int | None) -> dict:
    """
    Check a checkout redirect against the provider and the local order.

    The session is re-retrieved from the provider; nothing in the redirect
    URL is trusted beyond the ids. verified is True only when the provider,
    the order and the payment all agree the sale is complete.
    """
    order = order_service.get_order_by_number(order_number)
    if order is None or admin_id is None or order.admin_id != admin_id:
        raise NotFoundError("Order not found")

    session = gateway.retrieve_checkout_session(session_id)
    if (session.get("metadata") or {}).get("orderId") != order_number:
        raise OrderMismatchError("Session does not match order")
    if order.payment_method != PAYMENT_METHOD_CHECKOUT:
        raise OrderMismatchError("Order was not paid through hosted checkout")
    if order.checkout_session_id and order.checkout_session_id != session.get("id"):
        raise OrderMismatchError("Session does not match order")

    session_complete = (
        session.get("payment_status") == CHECKOUT_PAID and session.get("status") == CHECKOUT_COMPLETE
    )
    if session_complete and order.is_pending:
        finalize_from_checkout_session(gateway, session)

    order = order_service.get_order_by_number(order_number)
    payment = order.payment
    order_complete = order.status == ORDER_STATUS_COMPLETED and order.payment_status == ORDER_STATUS_COMPLETED
    payment_ok = payment is not None and payment.status == PAYMENT_STATUS_SUCCEEDED

    return {
        "verified": session_complete and order_complete and payment_ok,
        "session_status": session.get("status"),
        "payment_status": session.get("payment_status"),
        "order_status": order.status,
        "payment_record_status": payment.status if payment else None,
        "amount_paid": session.get("amount_total"),
        "currency": session.get("currency"),
        "order": order.to_dict(),
    }


# =============================================================================
# STALE ORDER SWEEP
# =============================================================================

def sweep_stale_orders(gateway, admin_id: int | None = None) -> dict:
    """
    Resolve online orders left Pending past STALE_PENDING_ORDER_SECONDS.

    Each order is checked against the provider first; provider errors on one
    order are logged and the sweep continues.
    """
    stale_after = current_app.config["STALE_PENDING_ORDER_SECONDS"]
    counts = {"checked": 0, "completed": 0, "failed": 0, "unchanged": 0, "errors": 0}

    for order in order_service.list_pending_orders(admin_id, online_only=True):
        if seconds_since(order.created_at) <= stale_after:
            continue
        counts["checked"] += 1
        order_number = order.order_number
        try:
            result = None
            if order.payment_method == PAYMENT_METHOD_CHECKOUT and order.checkout_session_id:
                session = gateway.retrieve_checkout_session(order.checkout_session_id)
                result = finalize_from_checkout_session(gateway, session)
                if result is None and session.get("status") != CHECKOUT_COMPLETE:
                    result = finalize(order_number, False, failure_reason="Checkout session expired")
            elif order.provider_transaction_id:
                intent = gateway.retrieve_payment_intent(order.provider_transaction_id)
                result = finalize_from_intent(intent, order_number=order_number)
                if result is None and intent.get("status") == INTENT_REQUIRES_PAYMENT_METHOD:
                    result = finalize(order_number, False, failure_reason=FAILURE_TERMINAL_TIMEOUT)
            else:
                result = finalize(order_number, False, failure_reason="No provider transaction")
        except ProviderError:
            current_app.logger.exception("Sweep could not check order %s", order_number)
            counts["errors"] += 1
            continue

        if result is not None and result.outcome == OUTCOME_COMPLETED:
            counts["completed"] += 1
        elif result is not None and result.outcome == OUTCOME_FAILED:
            counts["failed"] += 1
        else:
            counts["unchanged"] += 1

    return counts
