from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Sellable catalog item with a simple stock counter.

    WHY: Stalls sell from a small fixed menu. Stock is a single quantity
    column plus a running sold counter; no per-transaction ledger.

    INVARIANTS:
    - quantity never goes below zero (decrements clamp)
    - is_available tracks quantity > 0 for limited products
    - unlimited products never have their stock fields touched by sales
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_category_available", "category", "is_available"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(64), nullable=False, default="General")

    # Price in cents to avoid floating point issues
    price_cents = db.Column(db.Integer, nullable=False)

    is_available = db.Column(db.Boolean, nullable=False, default=True, index=True)
    unlimited = db.Column(db.Boolean, nullable=False, default=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    sold = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} quantity={self.quantity}>"

    @property
    def available_stock(self):
        return "unlimited" if self.unlimited else self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price_cents": self.price_cents,
            "is_available": self.is_available,
            "unlimited": self.unlimited,
            "quantity": self.quantity,
            "sold": self.sold,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
