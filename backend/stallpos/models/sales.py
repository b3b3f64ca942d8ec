from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z


ORDER_STATUS_PENDING = "Pending"
ORDER_STATUS_COMPLETED = "Completed"
ORDER_STATUS_FAILED = "Failed"

PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_TERMINAL = "stripe_terminal"
PAYMENT_METHOD_CHECKOUT = "stripe_checkout"

VALID_PAYMENT_METHODS = [PAYMENT_METHOD_CASH, PAYMENT_METHOD_TERMINAL, PAYMENT_METHOD_CHECKOUT]


class Order(db.Model):
    """
    Customer order, created Pending before the provider is asked for money.

    WHY: The order number must exist before the payment intent so it can be
    embedded in the intent metadata and used to reconcile every later signal
    (webhook, poll, checkout redirect) back to this row.

    INVARIANTS:
    - status moves Pending -> Completed | Failed exactly once, via a
      conditional UPDATE (see order_service.conditional_update_order_status)
    - line items and bill breakdown never change after creation
    - inventory_applied_at is set by the single caller that won the transition
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_admin_status_created", "admin_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # External, provider-independent identifier (order_<epoch-ms>_<random>)
    order_number = db.Column(db.String(64), nullable=False, unique=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING)
    payment_method = db.Column(db.String(32), nullable=False)

    customer_name = db.Column(db.String(120), nullable=False, default="")
    customer_phone = db.Column(db.String(32), nullable=False, default="")

    # Bill breakdown (all amounts in cents)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_with_tax_cents = db.Column(db.Integer, nullable=False, default=0)
    # Reporting only; never changes what the customer pays
    platform_fee_cents = db.Column(db.Integer, nullable=False, default=0)

    # Provider linkage
    provider_transaction_id = db.Column(db.String(255), nullable=True, index=True)
    checkout_session_id = db.Column(db.String(255), nullable=True, index=True)
    terminal_reader_id = db.Column(db.String(255), nullable=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True)

    # Tenant and attribution
    admin_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    stall_id = db.Column(db.Integer, db.ForeignKey("stalls.id"), nullable=True, index=True)

    # Last reader-reported failure; the intent may still be retried on the reader
    failure_code = db.Column(db.String(64), nullable=True)
    failure_message = db.Column(db.String(255), nullable=True)
    failure_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    inventory_applied_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    payment = db.relationship("Payment", foreign_keys=[payment_id])
    stall = db.relationship("Stall")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order {self.order_number} status={self.status}>"

    @property
    def is_pending(self) -> bool:
        return self.status == ORDER_STATUS_PENDING

    def bills_dict(self) -> dict:
        return {
            "total_cents": self.total_cents,
            "tax_cents": self.tax_cents,
            "total_with_tax_cents": self.total_with_tax_cents,
            "platform_fee_cents": self.platform_fee_cents,
        }

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "customer": {"name": self.customer_name, "phone": self.customer_phone},
            "bills": self.bills_dict(),
            "provider_transaction_id": self.provider_transaction_id,
            "checkout_session_id": self.checkout_session_id,
            "terminal_reader_id": self.terminal_reader_id,
            "payment_id": self.payment_id,
            "admin_id": self.admin_id,
            "created_by_user_id": self.created_by_user_id,
            "stall_id": self.stall_id,
            "failure_code": self.failure_code,
            "failure_message": self.failure_message,
            "failure_at": to_utc_z(self.failure_at) if self.failure_at else None,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "failed_at": to_utc_z(self.failed_at) if self.failed_at else None,
            "inventory_applied": self.inventory_applied_at is not None,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Immutable line-item snapshot taken when the order is created."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    # No FK: the snapshot must survive product deletion
    product_id = db.Column(db.Integer, nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
        }


class Payment(db.Model):
    """
    Confirmed provider payment.

    WHY: Only created after the provider reports success, so the table is a
    clean record of money actually taken. The unique provider_transaction_id
    is the second line of defence against double finalization.
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    provider_transaction_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    charge_id = db.Column(db.String(255), nullable=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(8), nullable=False)
    status = db.Column(db.String(32), nullable=False, default="succeeded")
    payment_method_type = db.Column(db.String(32), nullable=True)
    receipt_url = db.Column(db.String(512), nullable=True)

    # Plain column: orders.payment_id already references this table
    order_id = db.Column(db.Integer, nullable=True, index=True)
    checkout_session_id = db.Column(db.String(255), nullable=True)

    # JSON text; always carries orderId
    metadata_json = db.Column(db.Text, nullable=False, default="{}")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def provider_metadata(self) -> dict:
        try:
            return json.loads(self.metadata_json or "{}")
        except ValueError:
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "provider_transaction_id": self.provider_transaction_id,
            "charge_id": self.charge_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status,
            "payment_method_type": self.payment_method_type,
            "receipt_url": self.receipt_url,
            "order_id": self.order_id,
            "checkout_session_id": self.checkout_session_id,
            "metadata": self.provider_metadata,
            "created_at": to_utc_z(self.created_at),
        }
