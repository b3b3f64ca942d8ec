# Overview: Pytest coverage for order finalization idempotency and payment recording.

"""
Finalization Tests

Every provider signal funnels into payment_service.finalize(). These tests
drive it directly and prove:
1. Only the first caller transitions a Pending order; later callers are no-ops
2. Success creates exactly one Payment and decrements stock exactly once
3. Failure creates no Payment and leaves stock alone
4. The bill breakdown and line items are never rewritten
"""

import pytest

from stallpos.models import Order, Payment, Product
from stallpos.models.sales import ORDER_STATUS_COMPLETED, ORDER_STATUS_FAILED, ORDER_STATUS_PENDING
from stallpos.services import order_service, payment_service
from stallpos.services.payment_service import (
    OUTCOME_ALREADY_FINALIZED,
    OUTCOME_COMPLETED,
    OUTCOME_FAILED,
    OUTCOME_ORDER_NOT_FOUND,
    PaymentError,
    ProviderTransaction,
    create_payment_if_absent,
    finalize,
)
from stallpos.validation import BillBreakdown, CustomerInfo, OrderItemInput


@pytest.fixture
def pending(db_session, gateway, manager, stall, product):
    """Pending terminal order for 2 x product with 55 cents tax; returns (order_number, intent_id)."""
    result = payment_service.create_payment_intent(
        gateway,
        user=manager,
        amount_cents=1055,
        items=[OrderItemInput(product.id, 2)],
        bills=BillBreakdown(total_cents=1000, tax_cents=55, total_with_tax_cents=1055),
        customer=CustomerInfo(name="Ana", phone="+6590000000"),
    )
    return result["order_number"], result["payment_intent"]["id"]


def _txn(gateway, intent_id):
    return ProviderTransaction.from_intent(gateway.succeed_intent(intent_id))


class TestFinalizeSuccess:

    def test_first_success_completes_and_records_payment(self, db_session, gateway, pending, product):
        order_number, intent_id = pending

        result = finalize(order_number, True, transaction=_txn(gateway, intent_id))

        assert result.outcome == OUTCOME_COMPLETED
        assert result.order.status == ORDER_STATUS_COMPLETED
        assert result.order.payment_status == ORDER_STATUS_COMPLETED
        assert result.order.completed_at is not None
        assert result.order.payment_id == result.payment.id
        assert result.payment.provider_transaction_id == intent_id
        assert result.payment.charge_id == f"ch_{intent_id}"
        assert result.payment.payment_method_type == "card_present"
        assert result.payment.provider_metadata["orderId"] == order_number
        assert result.inventory.successful == 1

        db_session.expire_all()
        assert db_session.get(Product, product.id).quantity == 3

    def test_second_success_is_noop(self, db_session, gateway, pending, product):
        order_number, intent_id = pending
        txn = _txn(gateway, intent_id)

        first = finalize(order_number, True, transaction=txn)
        second = finalize(order_number, True, transaction=txn)

        assert first.outcome == OUTCOME_COMPLETED
        assert second.outcome == OUTCOME_ALREADY_FINALIZED
        assert second.already_finalized
        assert second.inventory is None
        assert second.payment.id == first.payment.id

        db_session.expire_all()
        assert db_session.query(Payment).count() == 1
        assert db_session.get(Product, product.id).quantity == 3
        assert db_session.get(Product, product.id).sold == 2

    def test_failure_after_success_is_noop(self, db_session, gateway, pending):
        order_number, intent_id = pending
        finalize(order_number, True, transaction=_txn(gateway, intent_id))

        late = finalize(order_number, False, failure_reason="Payment canceled")

        assert late.already_finalized
        assert late.order.status == ORDER_STATUS_COMPLETED

    def test_bill_breakdown_and_items_unchanged(self, db_session, gateway, pending):
        order_number, intent_id = pending
        before = order_service.get_order_by_number(order_number)
        bills_before = before.bills_dict()
        items_before = [item.to_dict() for item in before.items]

        result = finalize(order_number, True, transaction=_txn(gateway, intent_id))

        assert result.order.bills_dict() == bills_before
        assert [item.to_dict() for item in result.order.items] == items_before

    def test_success_requires_transaction(self, db_session, pending):
        order_number, _ = pending
        with pytest.raises(PaymentError):
            finalize(order_number, True)


class TestFinalizeFailure:

    def test_failure_marks_failed_without_payment_or_stock(self, db_session, pending, product):
        order_number, _ = pending

        result = finalize(order_number, False, failure_reason="Payment timeout at terminal")

        assert result.outcome == OUTCOME_FAILED
        assert result.order.status == ORDER_STATUS_FAILED
        assert result.order.failed_at is not None
        assert result.order.failure_message == "Payment timeout at terminal"
        assert result.order.payment_id is None

        db_session.expire_all()
        assert db_session.query(Payment).count() == 0
        assert db_session.get(Product, product.id).quantity == 5

    def test_success_after_failure_is_noop(self, db_session, gateway, pending, product):
        order_number, intent_id = pending
        finalize(order_number, False, failure_reason="Payment canceled")

        late = finalize(order_number, True, transaction=_txn(gateway, intent_id))

        assert late.already_finalized
        assert late.order.status == ORDER_STATUS_FAILED
        db_session.expire_all()
        assert db_session.query(Payment).count() == 0
        assert db_session.get(Product, product.id).quantity == 5

    def test_unknown_order(self, db_session):
        assert finalize("order_missing", False).outcome == OUTCOME_ORDER_NOT_FOUND


class TestStorePrimitives:

    def test_conditional_update_has_single_winner(self, db_session, pending):
        order_number, _ = pending

        assert order_service.conditional_update_order_status(order_number, ORDER_STATUS_FAILED) is True
        assert order_service.conditional_update_order_status(order_number, ORDER_STATUS_COMPLETED) is False

    def test_conditional_update_rejects_pending_target(self, db_session, pending):
        order_number, _ = pending
        with pytest.raises(ValueError):
            order_service.conditional_update_order_status(order_number, ORDER_STATUS_PENDING)

    def test_claim_inventory_once(self, db_session, pending):
        order = order_service.get_order_by_number(pending[0])
        assert order_service.claim_inventory(order.id) is True
        assert order_service.claim_inventory(order.id) is False

    def test_create_payment_if_absent_reuses_existing(self, db_session, gateway, pending):
        order_number, intent_id = pending
        order = order_service.get_order_by_number(order_number)
        txn = _txn(gateway, intent_id)

        first = create_payment_if_absent(order, txn)
        second = create_payment_if_absent(order, txn)

        assert first.id == second.id
        assert db_session.query(Payment).filter_by(provider_transaction_id=intent_id).count() == 1

    def test_record_terminal_failure_only_on_pending(self, db_session, pending):
        order_number, _ = pending

        assert order_service.record_terminal_failure(order_number, "card_declined", "Card was declined")
        db_session.expire_all()
        order = db_session.query(Order).filter_by(order_number=order_number).one()
        assert order.status == ORDER_STATUS_PENDING
        assert order.failure_code == "card_declined"
        assert order.failure_at is not None

        finalize(order_number, False)
        assert order_service.record_terminal_failure(order_number, "x", "y") is False
