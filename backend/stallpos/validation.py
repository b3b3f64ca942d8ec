from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

STALL_NUMBER_PATTERN = re.compile(r"^[A-Z0-9]{2,10}$")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., terminal already assigned)."""


class NotFoundError(LookupError):
    """404-level missing resource."""


@dataclass(frozen=True)
class OrderItemInput:
    product_id: int
    quantity: int
    name: str | None = None
    unit_price_cents: int | None = None

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "name": self.name,
            "unit_price_cents": self.unit_price_cents,
        }


@dataclass(frozen=True)
class BillBreakdown:
    total_cents: int
    tax_cents: int
    total_with_tax_cents: int

    def to_dict(self) -> dict:
        return {
            "total_cents": self.total_cents,
            "tax_cents": self.tax_cents,
            "total_with_tax_cents": self.total_with_tax_cents,
        }


@dataclass(frozen=True)
class CustomerInfo:
    name: str = ""
    phone: str = ""
    email: str | None = None


def parse_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for money and quantities.

    Rejects floats, booleans, decimals and scientific notation so that a
    dollar amount can never be mistaken for cents.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def parse_amount_cents(value: Any, field: str = "amount_cents") -> int:
    if value is None:
        raise ValidationError(f"{field} is required")
    amount = parse_int(value, field)
    if amount <= 0:
        raise ValidationError(f"{field} must be > 0")
    if amount > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")
    return amount


def parse_order_items(raw: Any) -> list[OrderItemInput]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError("items must be a non-empty list")

    items: list[OrderItemInput] = []
    for idx, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"items[{idx}] must be an object")
        if entry.get("product_id") is None:
            raise ValidationError(f"items[{idx}].product_id is required")
        product_id = parse_int(entry.get("product_id"), f"items[{idx}].product_id")
        quantity = parse_int(entry.get("quantity", 1), f"items[{idx}].quantity")
        if quantity <= 0:
            raise ValidationError(f"items[{idx}].quantity must be > 0")

        unit_price = entry.get("unit_price_cents")
        if unit_price is not None:
            unit_price = parse_int(unit_price, f"items[{idx}].unit_price_cents")
            if unit_price < 0:
                raise ValidationError(f"items[{idx}].unit_price_cents must be >= 0")

        name = entry.get("name")
        items.append(OrderItemInput(
            product_id=product_id,
            quantity=quantity,
            name=str(name).strip() if name else None,
            unit_price_cents=unit_price,
        ))
    return items


def parse_bill_breakdown(raw: Any) -> BillBreakdown:
    if not isinstance(raw, dict):
        raise ValidationError("bills must be an object")

    total = parse_int(raw.get("total_cents", 0), "bills.total_cents")
    tax = parse_int(raw.get("tax_cents", 0), "bills.tax_cents")
    total_with_tax = parse_int(
        raw.get("total_with_tax_cents", total + tax), "bills.total_with_tax_cents"
    )

    if total < 0 or tax < 0 or total_with_tax < 0:
        raise ValidationError("bill amounts must be >= 0")
    if total_with_tax != total + tax:
        raise ValidationError("bills.total_with_tax_cents must equal total_cents + tax_cents")

    return BillBreakdown(total_cents=total, tax_cents=tax, total_with_tax_cents=total_with_tax)


def parse_customer_info(raw: Any) -> CustomerInfo:
    if raw is None:
        return CustomerInfo()
    if not isinstance(raw, dict):
        raise ValidationError("customer must be an object")
    return CustomerInfo(
        name=str(raw.get("name") or "").strip()[:120],
        phone=str(raw.get("phone") or "").strip()[:32],
        email=(str(raw["email"]).strip() or None) if raw.get("email") else None,
    )


def parse_percentage_to_bps(value: Any, field: str) -> int:
    """
    Accept a percentage (0-100, up to two decimals) and return basis points.

    5.25 -> 525. Floats are fine here since rates are entered by humans.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number between 0 and 100")
    try:
        pct = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number between 0 and 100")
    if pct < 0 or pct > 100:
        raise ValidationError(f"{field} must be between 0 and 100")
    return int(round(pct * 100))


def validate_stall_number(value: Any) -> str:
    stall_number = str(value or "").strip().upper()
    if not STALL_NUMBER_PATTERN.match(stall_number):
        raise ValidationError("stall_number must be 2-10 uppercase letters or digits")
    return stall_number


@dataclass(frozen=True)
class SaleRequest:
    amount_cents: int
    items: list
    bills: BillBreakdown
    customer: CustomerInfo


def parse_sale_request(data: Any) -> SaleRequest:
    """
    Parse the body shared by cash orders, terminal intents and checkout.

    amount_cents defaults to the bill's total_with_tax_cents and must match
    it when both are sent.
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    items = parse_order_items(data.get("items"))
    bills = parse_bill_breakdown(data.get("bills") or {})
    customer = parse_customer_info(data.get("customer"))

    raw_amount = data.get("amount_cents")
    amount = parse_amount_cents(bills.total_with_tax_cents if raw_amount is None else raw_amount)
    if bills.total_with_tax_cents and amount != bills.total_with_tax_cents:
        raise ValidationError("amount_cents must equal bills.total_with_tax_cents")
    if not bills.total_with_tax_cents:
        bills = BillBreakdown(total_cents=amount, tax_cents=0, total_with_tax_cents=amount)

    return SaleRequest(amount_cents=amount, items=items, bills=bills, customer=customer)
