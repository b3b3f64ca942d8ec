# Overview: Pytest coverage for stock validation and decrement behavior.

import pytest

from stallpos.models import Product
from stallpos.services.inventory_service import (
    InsufficientInventoryError,
    REASON_INSUFFICIENT,
    REASON_NOT_AVAILABLE,
    REASON_NOT_FOUND,
    apply_order_decrement,
    decrement_product_stock,
    require_inventory,
    validate_inventory,
)
from stallpos.validation import OrderItemInput


def _reload(db_session, product_id):
    db_session.expire_all()
    return db_session.get(Product, product_id)


class TestValidateInventory:

    def test_sufficient_stock_passes(self, db_session, product):
        assert validate_inventory([OrderItemInput(product.id, 5)]) == []

    def test_over_request_reports_requested_and_available(self, db_session, product):
        invalid = validate_inventory([OrderItemInput(product.id, 6)])
        assert invalid == [{
            "product_id": product.id,
            "name": "Chicken Rice",
            "requested": 6,
            "available": 5,
            "reason": REASON_INSUFFICIENT,
        }]

    def test_duplicate_lines_are_checked_together(self, db_session, product):
        invalid = validate_inventory([OrderItemInput(product.id, 3), OrderItemInput(product.id, 3)])
        assert invalid[0]["requested"] == 6

    def test_missing_product(self, db_session):
        invalid = validate_inventory([OrderItemInput(999, 1)])
        assert invalid[0]["reason"] == REASON_NOT_FOUND
        assert invalid[0]["available"] == 0

    def test_unavailable_product(self, db_session, product):
        product.is_available = False
        db_session.commit()
        invalid = validate_inventory([OrderItemInput(product.id, 1)])
        assert invalid[0]["reason"] == REASON_NOT_AVAILABLE

    def test_unlimited_product_never_short(self, db_session, unlimited_product):
        assert validate_inventory([OrderItemInput(unlimited_product.id, 1000)]) == []

    def test_require_inventory_raises_with_all_offenders(self, db_session, product):
        with pytest.raises(InsufficientInventoryError) as exc:
            require_inventory([OrderItemInput(product.id, 9), OrderItemInput(404, 1)])
        assert {i["product_id"] for i in exc.value.invalid_items} == {product.id, 404}


class TestDecrement:

    def test_decrement_within_stock(self, db_session, product):
        result = decrement_product_stock(product.id, 2)

        assert result.success
        assert result.quantity_before == 5
        assert result.quantity_after == 3
        reloaded = _reload(db_session, product.id)
        assert reloaded.quantity == 3
        assert reloaded.sold == 2
        assert reloaded.is_available is True

    def test_decrement_to_exactly_zero_marks_unavailable(self, db_session, product):
        decrement_product_stock(product.id, 5)
        reloaded = _reload(db_session, product.id)
        assert reloaded.quantity == 0
        assert reloaded.is_available is False

    def test_over_decrement_clamps_to_zero(self, db_session, product):
        result = decrement_product_stock(product.id, 8)

        assert result.success
        reloaded = _reload(db_session, product.id)
        assert reloaded.quantity == 0
        assert reloaded.sold == 8
        assert reloaded.is_available is False

    def test_unlimited_only_counts_sold(self, db_session, unlimited_product):
        decrement_product_stock(unlimited_product.id, 4)
        reloaded = _reload(db_session, unlimited_product.id)
        assert reloaded.quantity == 0
        assert reloaded.sold == 4
        assert reloaded.is_available is True

    def test_missing_product_is_item_failure(self, db_session):
        result = decrement_product_stock(12345, 1)
        assert not result.success
        assert result.error == REASON_NOT_FOUND


class TestApplyOrderDecrement:

    def test_items_are_independent(self, db_session, product, unlimited_product):
        summary = apply_order_decrement([
            OrderItemInput(product.id, 2),
            OrderItemInput(777, 1),
            OrderItemInput(unlimited_product.id, 3),
        ])

        assert summary.successful == 2
        assert summary.failed == 1
        assert _reload(db_session, product.id).quantity == 3
        assert _reload(db_session, unlimited_product.id).sold == 3

    def test_summary_shape(self, db_session, product):
        data = apply_order_decrement([OrderItemInput(product.id, 1)]).to_dict()
        assert data["summary"] == {"successful": 1, "failed": 0}
        assert data["results"][0]["quantity_after"] == 4
