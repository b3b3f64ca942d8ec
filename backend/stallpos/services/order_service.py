# Overview: Service-layer operations for orders; provisioning, lookups and the conditional status transition.

"""
Order Service

WHY: Orders are the local record every payment signal reconciles against.
They are written once at creation and afterwards only through narrow,
conditional updates:

- conditional_update_order_status: Pending -> Completed | Failed, one UPDATE
  guarded by status = 'Pending'. rowcount tells the caller whether it won.
- claim_inventory: sets inventory_applied_at guarded by IS NULL, so the
  stock decrement for an order runs at most once even if two code paths
  both think they finalized it.
- record_terminal_failure: stores the reader's last failure on a Pending
  order without finalizing it.

Line items and the bill breakdown are never updated after insert.
"""

from __future__ import annotations

import secrets

from flask import current_app

from ..extensions import db
from ..models import Order, OrderItem, Product, User
from ..models.sales import (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_FAILED,
    PAYMENT_METHOD_CASH,
    VALID_PAYMENT_METHODS,
)
from ..validation import (
    BillBreakdown,
    CustomerInfo,
    OrderItemInput,
    ValidationError,
)
from ..time_utils import epoch_millis, utcnow
from .concurrency import compare_and_set, run_with_retry
from .configuration_service import calculate_platform_fee_cents
from .inventory_service import DecrementSummary, apply_order_decrement, require_inventory


ORDER_NUMBER_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
ORDER_NUMBER_SUFFIX_LENGTH = 9

TERMINAL_STATUSES = (ORDER_STATUS_COMPLETED, ORDER_STATUS_FAILED)


def generate_order_number() -> str:
    """order_<epoch-ms>_<9 random base36 chars>; unique across provider transactions."""
    suffix = "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(ORDER_NUMBER_SUFFIX_LENGTH))
    return f"order_{epoch_millis()}_{suffix}"


def _build_items(items: list[OrderItemInput], products: dict[int, Product]) -> list[OrderItem]:
    # Snapshot name and price as the catalog shows them right now
    built = []
    for item in items:
        product = products.get(item.product_id)
        name = product.name if product else (item.name or f"Product {item.product_id}")
        unit_price = product.price_cents if product else (item.unit_price_cents or 0)
        built.append(OrderItem(
            product_id=item.product_id,
            name=name,
            unit_price_cents=unit_price,
            quantity=item.quantity,
            line_total_cents=unit_price * item.quantity,
        ))
    return built


# =============================================================================
# PROVISIONING
# =============================================================================

def create_pending_order(
    *,
    order_number: str,
    user: User,
    items: list[OrderItemInput],
    products: dict[int, Product],
    bills: BillBreakdown,
    customer: CustomerInfo,
    payment_method: str,
    stall_id: int | None = None,
    terminal_reader_id: str | None = None,
    provider_transaction_id: str | None = None,
    checkout_session_id: str | None = None,
) -> Order:
    if payment_method not in VALID_PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}")

    admin_id = user.tenant_admin_id
    platform_fee = calculate_platform_fee_cents(bills.total_with_tax_cents, admin_id)

    def _op():
        order = Order(
            order_number=order_number,
            status=ORDER_STATUS_PENDING,
            payment_status=ORDER_STATUS_PENDING,
            payment_method=payment_method,
            customer_name=customer.name,
            customer_phone=customer.phone,
            total_cents=bills.total_cents,
            tax_cents=bills.tax_cents,
            total_with_tax_cents=bills.total_with_tax_cents,
            platform_fee_cents=platform_fee,
            provider_transaction_id=provider_transaction_id,
            checkout_session_id=checkout_session_id,
            terminal_reader_id=terminal_reader_id,
            admin_id=admin_id,
            created_by_user_id=user.id,
            stall_id=stall_id,
            created_at=utcnow(),
        )
        order.items = _build_items(items, products)
        db.session.add(order)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Order %s created Pending (%s)", order.order_number, payment_method)
    return order


def set_checkout_session(order_number: str, session_id: str, provider_transaction_id: str | None) -> None:
    """Link a hosted checkout session (and its intent, if known yet) to a Pending order."""
    values = {"checkout_session_id": session_id}
    if provider_transaction_id:
        values["provider_transaction_id"] = provider_transaction_id
    compare_and_set(Order, [Order.order_number == order_number], values)
    db.session.commit()


def create_cash_order(
    *,
    user: User,
    items: list[OrderItemInput],
    bills: BillBreakdown,
    customer: CustomerInfo,
    stall_id: int | None = None,
) -> tuple[Order, DecrementSummary]:
    """
    Record a cash sale: validated, completed immediately, stock decremented once.

    Raises InsufficientInventoryError before anything is written.
    """
    products = require_inventory(items)
    admin_id = user.tenant_admin_id
    platform_fee = calculate_platform_fee_cents(bills.total_with_tax_cents, admin_id)

    def _op():
        now = utcnow()
        order = Order(
            order_number=generate_order_number(),
            status=ORDER_STATUS_COMPLETED,
            payment_status=ORDER_STATUS_COMPLETED,
            payment_method=PAYMENT_METHOD_CASH,
            customer_name=customer.name,
            customer_phone=customer.phone,
            total_cents=bills.total_cents,
            tax_cents=bills.tax_cents,
            total_with_tax_cents=bills.total_with_tax_cents,
            platform_fee_cents=platform_fee,
            admin_id=admin_id,
            created_by_user_id=user.id,
            stall_id=stall_id,
            created_at=now,
            completed_at=now,
        )
        order.items = _build_items(items, products)
        db.session.add(order)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info("Cash order %s completed", order.order_number)

    summary = DecrementSummary()
    if claim_inventory(order.id):
        summary = apply_order_decrement(order.items)
    return order, summary


# =============================================================================
# CONDITIONAL UPDATES
# =============================================================================

def conditional_update_order_status(order_number: str, new_status: str, extra_values: dict | None = None) -> bool:
    """
    Move a Pending order to Completed or Failed in one guarded UPDATE.

    Returns True only for the single caller whose UPDATE matched the
    Pending row. Commits on success.
    """
    if new_status not in TERMINAL_STATUSES:
        raise ValueError(f"Cannot transition to {new_status}")

    now = utcnow()
    values = {"status": new_status, "payment_status": new_status}
    if new_status == ORDER_STATUS_COMPLETED:
        values["completed_at"] = now
    else:
        values["failed_at"] = now
    values.update(extra_values or {})

    def _op():
        won = compare_and_set(
            Order,
            [Order.order_number == order_number, Order.status == ORDER_STATUS_PENDING],
            values,
        )
        db.session.commit()
        return won

    return run_with_retry(_op)


def attach_payment(order_number: str, payment_id: int) -> bool:
    def _op():
        linked = compare_and_set(
            Order,
            [Order.order_number == order_number, Order.payment_id.is_(None)],
            {"payment_id": payment_id},
        )
        db.session.commit()
        return linked

    return run_with_retry(_op)


def claim_inventory(order_id: int) -> bool:
    """True exactly once per order; the winner runs the stock decrement."""
    def _op():
        claimed = compare_and_set(
            Order,
            [Order.id == order_id, Order.inventory_applied_at.is_(None)],
            {"inventory_applied_at": utcnow()},
        )
        db.session.commit()
        return claimed

    return run_with_retry(_op)


def record_terminal_failure(order_number: str, failure_code: str | None, failure_message: str | None) -> bool:
    """Remember the reader's last failure on a still-Pending order."""
    def _op():
        recorded = compare_and_set(
            Order,
            [Order.order_number == order_number, Order.status == ORDER_STATUS_PENDING],
            {
                "failure_code": (failure_code or "")[:64] or None,
                "failure_message": (failure_message or "")[:255] or None,
                "failure_at": utcnow(),
            },
        )
        db.session.commit()
        return recorded

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_order_by_number(order_number: str | None) -> Order | None:
    if not order_number:
        return None
    return db.session.query(Order).filter_by(order_number=order_number).first()


def get_order_by_transaction(provider_transaction_id: str | None) -> Order | None:
    if not provider_transaction_id:
        return None
    return (
        db.session.query(Order)
        .filter_by(provider_transaction_id=provider_transaction_id)
        .order_by(Order.id.desc())
        .first()
    )


def get_order(order_id: int, admin_id: int | None = None) -> Order | None:
    query = db.session.query(Order).filter_by(id=order_id)
    if admin_id is not None:
        query = query.filter_by(admin_id=admin_id)
    return query.first()


def list_orders(admin_id: int | None, status: str | None = None, limit: int = 100) -> list[Order]:
    query = db.session.query(Order)
    if admin_id is not None:
        query = query.filter(Order.admin_id == admin_id)
    if status:
        query = query.filter(Order.status == status)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()


def list_pending_orders(admin_id: int | None = None, online_only: bool = False) -> list[Order]:
    query = db.session.query(Order).filter(Order.status == ORDER_STATUS_PENDING)
    if admin_id is not None:
        query = query.filter(Order.admin_id == admin_id)
    if online_only:
        query = query.filter(Order.payment_method != PAYMENT_METHOD_CASH)
    return query.order_by(Order.created_at.desc()).all()
