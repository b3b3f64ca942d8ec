# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/stallpos/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import case, update

from ..extensions import db
from ..models import Product
from ..validation import OrderItemInput
from ..time_utils import utcnow
from .concurrency import run_with_retry
"""
Stall Inventory Invariants (authoritative)

Stock model:
- Each Product carries a mutable `quantity` (remaining stock) and a `sold` counter.
- `unlimited` products have no stock; sales only increment `sold`.

Business invariants:
- quantity never goes negative. A decrement larger than the remaining stock clamps to 0.
- is_available becomes False exactly when a limited product's quantity reaches 0.
- Every stock change is a single UPDATE evaluated by the database, so two
  concurrent orders for the same product cannot lose an update.

Precondition vs. effect:
- validate_inventory is the precondition check run before any order exists.
- apply_order_decrement is the effect, run once per fulfilled order. It does
  not know about orders; at-most-once is the caller's job.
"""


REASON_NOT_FOUND = "Product not found"
REASON_NOT_AVAILABLE = "Product not available"
REASON_INSUFFICIENT = "Insufficient quantity"


class InsufficientInventoryError(Exception):
    """Raised when one or more requested items cannot be fulfilled."""

    def __init__(self, invalid_items: list[dict]):
        super().__init__("Insufficient inventory for some items")
        self.invalid_items = invalid_items


@dataclass
class ItemAdjustment:
    product_id: int
    quantity: int
    success: bool
    name: str | None = None
    unlimited: bool = False
    quantity_before: int | None = None
    quantity_after: int | None = None
    is_available: bool | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "success": self.success,
            "name": self.name,
            "unlimited": self.unlimited,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "is_available": self.is_available,
            "error": self.error,
        }


@dataclass
class DecrementSummary:
    results: list[ItemAdjustment] = field(default_factory=list)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": {"successful": self.successful, "failed": self.failed},
        }


# =============================================================================
# READS
# =============================================================================

def find_product(product_id: int) -> Product | None:
    return db.session.get(Product, product_id)


def _requested_by_product(items: list[OrderItemInput]) -> dict[int, int]:
    # Duplicate lines for one product are checked against stock together
    requested: dict[int, int] = {}
    for item in items:
        requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity
    return requested


def validate_inventory(items: list[OrderItemInput]) -> list[dict]:
    """
    Check every requested item against current stock.

    Returns the offending items (empty list when everything can be
    fulfilled). Each entry carries product_id, name, requested, available
    and reason. Unlimited products report available as "unlimited".
    """
    invalid: list[dict] = []

    for product_id, requested in _requested_by_product(items).items():
        product = find_product(product_id)

        if product is None:
            invalid.append({
                "product_id": product_id,
                "name": None,
                "requested": requested,
                "available": 0,
                "reason": REASON_NOT_FOUND,
            })
            continue

        if not product.is_available:
            invalid.append({
                "product_id": product_id,
                "name": product.name,
                "requested": requested,
                "available": 0 if not product.unlimited else "unlimited",
                "reason": REASON_NOT_AVAILABLE,
            })
            continue

        if not product.unlimited and product.quantity < requested:
            invalid.append({
                "product_id": product_id,
                "name": product.name,
                "requested": requested,
                "available": product.quantity,
                "reason": REASON_INSUFFICIENT,
            })

    return invalid


def require_inventory(items: list[OrderItemInput]) -> dict[int, Product]:
    """
    Precondition gate used by every order-creating path.

    Returns the products keyed by id for snapshotting.
    Raises InsufficientInventoryError listing every offending item.
    """
    invalid = validate_inventory(items)
    if invalid:
        raise InsufficientInventoryError(invalid)
    return {item.product_id: find_product(item.product_id) for item in items}


# =============================================================================
# STOCK DECREMENT
# =============================================================================

def decrement_product_stock(product_id: int, quantity: int) -> ItemAdjustment:
    """
    Apply one sale to one product as a single UPDATE and commit it.

    Limited:   quantity = max(0, quantity - q), sold += q,
               is_available = (quantity - q) > 0
    Unlimited: sold += q only.

    Before/after quantities are read around the UPDATE for reporting; the
    UPDATE itself never depends on them.
    """
    def _op():
        product = find_product(product_id)
        if product is None:
            return ItemAdjustment(
                product_id=product_id,
                quantity=quantity,
                success=False,
                error=REASON_NOT_FOUND,
            )

        quantity_before = product.quantity
        now = utcnow()

        if product.unlimited:
            stmt = (
                update(Product)
                .where(Product.id == product_id)
                .values(
                    sold=Product.sold + quantity,
                    updated_at=now,
                    version_id=Product.version_id + 1,
                )
                .execution_options(synchronize_session=False)
            )
        else:
            stmt = (
                update(Product)
                .where(Product.id == product_id)
                .values(
                    quantity=case(
                        (Product.quantity > quantity, Product.quantity - quantity),
                        else_=0,
                    ),
                    sold=Product.sold + quantity,
                    is_available=Product.quantity > quantity,
                    updated_at=now,
                    version_id=Product.version_id + 1,
                )
                .execution_options(synchronize_session=False)
            )

        db.session.execute(stmt)
        db.session.commit()

        # commit() expired the instance; these reads hit the database
        return ItemAdjustment(
            product_id=product_id,
            quantity=quantity,
            success=True,
            name=product.name,
            unlimited=product.unlimited,
            quantity_before=quantity_before,
            quantity_after=product.quantity,
            is_available=product.is_available,
        )

    return run_with_retry(_op)


def apply_order_decrement(items) -> DecrementSummary:
    """
    Apply stock decrements for a fulfilled order's line items.

    Items are processed independently: a missing product or a database
    error on one item is recorded as that item's failure and the rest
    continue. Accepts anything with product_id and quantity attributes
    (OrderItem snapshots or OrderItemInput).
    """
    summary = DecrementSummary()

    for item in items:
        try:
            adjustment = decrement_product_stock(item.product_id, item.quantity)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception(
                "Inventory decrement failed for product %s", item.product_id
            )
            adjustment = ItemAdjustment(
                product_id=item.product_id,
                quantity=item.quantity,
                success=False,
                error=str(exc),
            )

        if not adjustment.success:
            current_app.logger.warning(
                "Inventory not adjusted for product %s: %s", item.product_id, adjustment.error
            )
        summary.results.append(adjustment)

    current_app.logger.info(
        "Inventory adjusted: %d successful, %d failed", summary.successful, summary.failed
    )
    return summary
