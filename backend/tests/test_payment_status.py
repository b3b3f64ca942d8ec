# Overview: Pytest coverage for poll classification, status passthrough and stale cleanup.

from datetime import timedelta

import pytest

from conftest import post_webhook
from stallpos.models import Order, Payment, Product
from stallpos.models.sales import ORDER_STATUS_COMPLETED, ORDER_STATUS_FAILED, ORDER_STATUS_PENDING
from stallpos.services import payment_service
from stallpos.services.payment_status import PollStatus, derive_poll_status
from stallpos.time_utils import utcnow
from stallpos.validation import BillBreakdown, CustomerInfo, OrderItemInput


@pytest.fixture
def pending(db_session, gateway, manager, stall, product):
    result = payment_service.create_payment_intent(
        gateway,
        user=manager,
        amount_cents=1000,
        items=[OrderItemInput(product.id, 2)],
        bills=BillBreakdown(total_cents=1000, tax_cents=0, total_with_tax_cents=1000),
        customer=CustomerInfo(name="Ana", phone="+6590000000"),
    )
    return result["order_number"], result["payment_intent"]["id"]


def _age(db_session, order_number, seconds):
    order = db_session.query(Order).filter_by(order_number=order_number).one()
    order.created_at = utcnow() - timedelta(seconds=seconds)
    db_session.commit()


def _order(db_session, order_number):
    db_session.expire_all()
    return db_session.query(Order).filter_by(order_number=order_number).one()


class TestDerivePollStatus:

    def test_succeeded(self):
        assert derive_poll_status("succeeded", 0) is PollStatus.TERMINAL_SUCCESS

    def test_canceled(self):
        assert derive_poll_status("canceled", 0) is PollStatus.TERMINAL_FAILURE

    @pytest.mark.parametrize("status", ["processing", "requires_capture", "requires_confirmation", None])
    def test_in_flight_states_keep_polling(self, status):
        assert derive_poll_status(status, 500) is PollStatus.KEEP_POLLING

    def test_requires_payment_method_under_threshold(self):
        assert derive_poll_status("requires_payment_method", 29, threshold_seconds=30) is PollStatus.KEEP_POLLING

    def test_requires_payment_method_at_threshold(self):
        assert derive_poll_status("requires_payment_method", 30, threshold_seconds=30) is PollStatus.TERMINAL_FAILURE

    def test_threshold_is_a_parameter(self):
        assert derive_poll_status("requires_payment_method", 30, threshold_seconds=120) is PollStatus.KEEP_POLLING

    def test_known_failure_code(self):
        result = derive_poll_status("requires_payment_method", 1, failure_code="CARD_DECLINED")
        assert result is PollStatus.TERMINAL_FAILURE

    def test_failure_message_pattern(self):
        result = derive_poll_status("requires_payment_method", 1, failure_message="Transaction timed out")
        assert result is PollStatus.TERMINAL_FAILURE

    def test_unrelated_message_keeps_polling(self):
        result = derive_poll_status("requires_payment_method", 1, failure_message="Insert card")
        assert result is PollStatus.KEEP_POLLING

    def test_bad_input_degrades_to_keep_polling(self):
        assert derive_poll_status("requires_payment_method", "soon") is PollStatus.KEEP_POLLING


class TestCheckStatus:

    def test_fresh_intent_keeps_polling(self, client, db_session, gateway, manager_headers, pending):
        _, intent_id = pending

        resp = client.get(f"/api/payments/status/{intent_id}", headers=manager_headers)

        assert resp.status_code == 200
        assert resp.json["poll_status"] == "keep_polling"
        assert resp.json["terminal_failure"] is None
        assert resp.json["order_status"] == ORDER_STATUS_PENDING
        assert resp.json["payment_intent"]["status"] == "requires_payment_method"

    def test_waiting_past_threshold_is_terminal_failure(self, client, db_session, gateway, manager_headers, pending):
        order_number, intent_id = pending
        _age(db_session, order_number, 45)

        resp = client.get(f"/api/payments/status/{intent_id}", headers=manager_headers)

        assert resp.json["poll_status"] == "terminal_failure"

    def test_reader_failure_surfaces(self, client, db_session, gateway, manager_headers, pending):
        _, intent_id = pending
        obj = {
            "id": "tmr_A",
            "action": {
                "type": "process_payment_intent",
                "status": "failed",
                "failure_code": "card_declined",
                "failure_message": "Your card was declined.",
                "process_payment_intent": {"payment_intent": intent_id},
            },
        }
        post_webhook(client, "terminal.reader.action_failed", obj)

        resp = client.get(f"/api/payments/status/{intent_id}", headers=manager_headers)

        assert resp.json["poll_status"] == "terminal_failure"
        assert resp.json["terminal_failure"]["failure_code"] == "card_declined"
        assert resp.json["terminal_failure"]["timestamp"] is not None
        assert resp.json["order_status"] == ORDER_STATUS_FAILED

    def test_decline_on_intent_surfaces_without_webhook(self, client, db_session, gateway, manager_headers, pending):
        _, intent_id = pending
        gateway.decline_intent(intent_id, code="insufficient_funds", message="Insufficient funds")

        resp = client.get(f"/api/payments/status/{intent_id}", headers=manager_headers)

        assert resp.json["poll_status"] == "terminal_failure"
        assert resp.json["terminal_failure"]["failure_code"] == "insufficient_funds"
        assert resp.json["order_status"] == ORDER_STATUS_PENDING

    def test_status_is_read_only(self, client, db_session, gateway, manager_headers, pending):
        order_number, intent_id = pending
        gateway.succeed_intent(intent_id)

        resp = client.get(f"/api/payments/status/{intent_id}", headers=manager_headers)

        assert resp.json["poll_status"] == "terminal_success"
        assert _order(db_session, order_number).status == ORDER_STATUS_PENDING

    def test_unknown_intent(self, client, db_session, gateway, manager_headers):
        resp = client.get("/api/payments/status/pi_missing", headers=manager_headers)
        assert resp.status_code == 404

    def test_intent_missing_at_provider(self, client, db_session, gateway, manager_headers, pending):
        _, intent_id = pending
        del gateway.intents[intent_id]

        resp = client.get(f"/api/payments/status/{intent_id}", headers=manager_headers)

        assert resp.status_code == 400
        assert resp.json["code"] == "resource_missing"


class TestCheckFailureAndCleanup:

    def test_fresh_order_continues(self, client, db_session, gateway, manager_headers, pending):
        order_number, intent_id = pending

        resp = client.get(f"/api/payments/check-failure/{intent_id}", headers=manager_headers)

        assert resp.json["should_stop"] is False
        assert resp.json["cleaned_up"] is False
        assert _order(db_session, order_number).status == ORDER_STATUS_PENDING

    def test_stale_order_is_failed(self, client, db_session, gateway, manager_headers, pending, product):
        order_number, intent_id = pending
        _age(db_session, order_number, 601)

        resp = client.get(f"/api/payments/check-failure/{intent_id}", headers=manager_headers)

        assert resp.json["should_stop"] is True
        assert resp.json["cleaned_up"] is True
        assert resp.json["failure_reason"] == "Payment timeout at terminal"
        order = _order(db_session, order_number)
        assert order.status == ORDER_STATUS_FAILED
        assert order.failure_message == "Payment timeout at terminal"
        assert db_session.get(Product, product.id).quantity == 5

    def test_waiting_past_threshold_fails_order(self, client, db_session, gateway, manager_headers, pending, product):
        order_number, intent_id = pending
        _age(db_session, order_number, 45)

        resp = client.get(f"/api/payments/check-failure/{intent_id}", headers=manager_headers)

        assert resp.json["should_stop"] is True
        assert resp.json["cleaned_up"] is True
        assert resp.json["failure_reason"] == "Payment timeout at terminal"
        assert _order(db_session, order_number).status == ORDER_STATUS_FAILED
        assert db_session.get(Product, product.id).quantity == 5

    def test_order_failed_by_webhook_stops_polling(self, client, db_session, gateway, manager_headers, pending):
        order_number, intent_id = pending
        obj = {
            "id": "tmr_A",
            "action": {
                "type": "process_payment_intent",
                "status": "failed",
                "failure_code": "card_declined",
                "failure_message": "Your card was declined.",
                "process_payment_intent": {"payment_intent": intent_id},
            },
        }
        post_webhook(client, "terminal.reader.action_failed", obj)

        resp = client.get(f"/api/payments/check-failure/{intent_id}", headers=manager_headers)

        assert resp.json["should_stop"] is True
        assert resp.json["cleaned_up"] is False
        assert resp.json["failure_reason"] == "Your card was declined."
        assert _order(db_session, order_number).status == ORDER_STATUS_FAILED

    def test_succeeded_intent_completes(self, client, db_session, gateway, manager_headers, pending):
        order_number, intent_id = pending
        gateway.succeed_intent(intent_id)

        resp = client.get(f"/api/payments/check-failure/{intent_id}", headers=manager_headers)

        assert resp.json["should_stop"] is True
        assert resp.json["failure_reason"] is None
        assert _order(db_session, order_number).status == ORDER_STATUS_COMPLETED


class TestPollBeforeWebhook:
    """A poll observes the failed payment before any webhook arrives."""

    def test_poll_failure_then_late_success_webhook(
        self, client, db_session, gateway, manager_headers, pending, product
    ):
        order_number, intent_id = pending
        gateway.cancel_intent(intent_id)

        resp = client.get(f"/api/payments/check-failure/{intent_id}", headers=manager_headers)

        assert resp.json["should_stop"] is True
        assert resp.json["failure_reason"] == "Payment canceled"
        assert resp.json["cleaned_up"] is True
        order = _order(db_session, order_number)
        assert order.status == ORDER_STATUS_FAILED
        assert order.payment_status == ORDER_STATUS_FAILED
        assert db_session.query(Payment).count() == 0
        assert db_session.get(Product, product.id).quantity == 5

        gateway.succeed_intent(intent_id)
        late = post_webhook(client, "payment_intent.succeeded", {"id": intent_id})

        assert late.status_code == 200
        assert late.json["result"] == "already_finalized"
        assert _order(db_session, order_number).status == ORDER_STATUS_FAILED
        assert db_session.query(Payment).count() == 0
        assert db_session.get(Product, product.id).quantity == 5

    def test_declined_card_then_late_success_webhook(
        self, client, db_session, gateway, manager_headers, pending, product
    ):
        order_number, intent_id = pending
        gateway.decline_intent(intent_id)

        resp = client.get(f"/api/payments/check-failure/{intent_id}", headers=manager_headers)

        assert resp.json["should_stop"] is True
        assert resp.json["cleaned_up"] is True
        assert resp.json["failure_reason"] == "Your card was declined."
        order = _order(db_session, order_number)
        assert order.status == ORDER_STATUS_FAILED
        assert order.failure_code == "card_declined"
        assert db_session.query(Payment).count() == 0
        assert db_session.get(Product, product.id).quantity == 5

        gateway.succeed_intent(intent_id)
        late = post_webhook(client, "payment_intent.succeeded", {"id": intent_id})

        assert late.status_code == 200
        assert late.json["result"] == "already_finalized"
        assert _order(db_session, order_number).status == ORDER_STATUS_FAILED
        assert db_session.query(Payment).count() == 0
        assert db_session.get(Product, product.id).quantity == 5

    def test_failed_order_is_not_sent_to_reader_again(self, client, db_session, gateway, manager_headers, pending):
        _, intent_id = pending
        gateway.decline_intent(intent_id)
        client.get(f"/api/payments/check-failure/{intent_id}", headers=manager_headers)
        dispatched = len(gateway.processed)

        resp = client.post(
            "/api/payments/process-on-reader",
            json={"payment_intent_id": intent_id},
            headers=manager_headers,
        )

        assert resp.status_code == 409
        assert resp.json["order_status"] == ORDER_STATUS_FAILED
        assert len(gateway.processed) == dispatched

    def test_second_cleanup_reports_nothing_new(self, client, db_session, gateway, manager_headers, pending):
        _, intent_id = pending
        gateway.cancel_intent(intent_id)
        client.get(f"/api/payments/check-failure/{intent_id}", headers=manager_headers)

        resp = client.get(f"/api/payments/check-failure/{intent_id}", headers=manager_headers)

        assert resp.json["should_stop"] is True
        assert resp.json["cleaned_up"] is False


class TestSweepStaleOrders:

    def test_sweep_resolves_stale_orders(self, db_session, gateway, admin, pending):
        order_number, _ = pending
        _age(db_session, order_number, 3600)

        counts = payment_service.sweep_stale_orders(gateway, admin.id)

        assert counts["checked"] == 1
        assert counts["failed"] == 1
        assert _order(db_session, order_number).status == ORDER_STATUS_FAILED

    def test_sweep_skips_fresh_orders(self, db_session, gateway, admin, pending):
        counts = payment_service.sweep_stale_orders(gateway, admin.id)
        assert counts["checked"] == 0
