# Overview: Pytest coverage for hosted checkout sessions, redirect verification and checkout webhooks.

from conftest import PASSWORD, auth_headers, get_auth_token, post_webhook, sale_body
from stallpos.models import Order, Payment, Product
from stallpos.models.sales import ORDER_STATUS_COMPLETED, ORDER_STATUS_FAILED, ORDER_STATUS_PENDING
from stallpos.services.payment_gateway import ProviderError


def _create(client, headers, product_id, quantity=2, tax=55, email=None):
    body = sale_body(product_id, quantity, tax=tax)
    if email:
        body["customer"]["email"] = email
    return client.post("/api/payments/checkout-sessions", json=body, headers=headers)


def _order(db_session, order_number):
    db_session.expire_all()
    return db_session.query(Order).filter_by(order_number=order_number).one()


class TestCreateCheckoutSession:

    def test_creates_session_and_pending_order(self, client, db_session, gateway, manager_headers, stall, product):
        resp = _create(client, manager_headers, product.id, email="ana@example.test")

        assert resp.status_code == 201
        order_number = resp.json["order_number"]
        session_id = resp.json["session_id"]
        assert resp.json["checkout_url"] == f"https://checkout.test/{session_id}"

        session = gateway.sessions[session_id]
        assert session["metadata"]["orderId"] == order_number
        assert session["payment_intent_data"]["metadata"]["orderId"] == order_number
        assert session["success_url"] == (
            f"http://pos.test/checkout/success?session_id={{CHECKOUT_SESSION_ID}}&order_number={order_number}"
        )
        assert session["cancel_url"] == f"http://pos.test/checkout/cancel?order_number={order_number}"
        names = [li["price_data"]["product_data"]["name"] for li in session["line_items"]]
        assert names == ["Chicken Rice", "Tax"]
        assert session["amount_total"] == 1055

        order = _order(db_session, order_number)
        assert order.status == ORDER_STATUS_PENDING
        assert order.payment_method == "stripe_checkout"
        assert order.checkout_session_id == session_id
        assert order.stall_id == stall.id

    def test_no_tax_line_without_tax(self, client, gateway, manager_headers, product):
        resp = _create(client, manager_headers, product.id, tax=0)

        session = gateway.sessions[resp.json["session_id"]]
        assert len(session["line_items"]) == 1

    def test_insufficient_inventory(self, client, db_session, gateway, manager_headers, product):
        resp = _create(client, manager_headers, product.id, quantity=9)

        assert resp.status_code == 400
        assert resp.json["invalid_items"][0]["available"] == 5
        assert gateway.sessions == {}
        assert db_session.query(Order).count() == 0

    def test_provider_failure_fails_the_order(self, client, db_session, gateway, manager_headers, product):
        gateway.fail_checkout = ProviderError("Stripe unavailable", http_status=503)

        resp = _create(client, manager_headers, product.id)

        assert resp.status_code == 502
        assert resp.json["outcome"] == "payment_failed"
        db_session.expire_all()
        order = db_session.query(Order).one()
        assert order.status == ORDER_STATUS_FAILED
        assert order.failure_message == "Checkout session could not be created"


class TestVerifyCheckoutSession:

    def test_unpaid_session_not_verified(self, client, db_session, gateway, manager_headers, product):
        created = _create(client, manager_headers, product.id).json

        resp = client.get(
            f"/api/payments/checkout-sessions/{created['session_id']}/verify",
            query_string={"order_number": created["order_number"]},
            headers=manager_headers,
        )

        assert resp.status_code == 200
        assert resp.json["verified"] is False
        assert resp.json["session_status"] == "open"
        assert resp.json["order_status"] == ORDER_STATUS_PENDING

    def test_paid_session_finalizes_and_verifies(self, client, db_session, gateway, manager_headers, product):
        created = _create(client, manager_headers, product.id).json
        gateway.complete_checkout(created["session_id"])

        resp = client.get(
            f"/api/payments/checkout-sessions/{created['session_id']}/verify",
            query_string={"order_number": created["order_number"]},
            headers=manager_headers,
        )

        assert resp.status_code == 200
        assert resp.json["verified"] is True
        assert resp.json["order_status"] == ORDER_STATUS_COMPLETED
        assert resp.json["payment_record_status"] == "succeeded"
        assert resp.json["amount_paid"] == 1055

        db_session.expire_all()
        payment = db_session.query(Payment).one()
        assert payment.checkout_session_id == created["session_id"]
        assert payment.payment_method_type == "card"
        assert db_session.get(Product, product.id).quantity == 3

    def test_verify_twice_finalizes_once(self, client, db_session, gateway, manager_headers, product):
        created = _create(client, manager_headers, product.id).json
        gateway.complete_checkout(created["session_id"])
        url = f"/api/payments/checkout-sessions/{created['session_id']}/verify"

        for _ in range(2):
            resp = client.get(url, query_string={"order_number": created["order_number"]},
                              headers=manager_headers)
            assert resp.json["verified"] is True

        db_session.expire_all()
        assert db_session.query(Payment).count() == 1
        assert db_session.get(Product, product.id).quantity == 3

    def test_session_for_another_order_rejected(self, client, db_session, gateway, manager_headers, product):
        first = _create(client, manager_headers, product.id, quantity=1).json
        second = _create(client, manager_headers, product.id, quantity=1).json
        gateway.complete_checkout(first["session_id"])

        resp = client.get(
            f"/api/payments/checkout-sessions/{first['session_id']}/verify",
            query_string={"order_number": second["order_number"]},
            headers=manager_headers,
        )

        assert resp.status_code == 400
        assert resp.json["verified"] is False
        assert _order(db_session, second["order_number"]).status == ORDER_STATUS_PENDING

    def test_terminal_order_rejected(self, client, db_session, gateway, manager_headers, product):
        checkout = _create(client, manager_headers, product.id, quantity=1).json
        terminal = client.post("/api/payments/intents", json=sale_body(product.id, 1),
                               headers=manager_headers).json
        gateway.sessions[checkout["session_id"]]["metadata"]["orderId"] = terminal["order_number"]

        resp = client.get(
            f"/api/payments/checkout-sessions/{checkout['session_id']}/verify",
            query_string={"order_number": terminal["order_number"]},
            headers=manager_headers,
        )

        assert resp.status_code == 400
        assert "hosted checkout" in resp.json["error"]

    def test_unknown_order(self, client, db_session, gateway, manager_headers, product):
        created = _create(client, manager_headers, product.id).json

        resp = client.get(
            f"/api/payments/checkout-sessions/{created['session_id']}/verify",
            query_string={"order_number": "order_nope"},
            headers=manager_headers,
        )

        assert resp.status_code == 404

    def test_other_tenant_cannot_verify(self, client, db_session, gateway, manager_headers, other_admin, product):
        created = _create(client, manager_headers, product.id).json
        gateway.complete_checkout(created["session_id"])
        rival = auth_headers(get_auth_token(client, "rival", PASSWORD))

        resp = client.get(
            f"/api/payments/checkout-sessions/{created['session_id']}/verify",
            query_string={"order_number": created["order_number"]},
            headers=rival,
        )

        assert resp.status_code == 404
        assert _order(db_session, created["order_number"]).status == ORDER_STATUS_PENDING
        assert db_session.query(Payment).count() == 0

    def test_order_number_required(self, client, manager_headers):
        resp = client.get("/api/payments/checkout-sessions/cs_1/verify", headers=manager_headers)
        assert resp.status_code == 400


class TestCheckoutWebhooks:

    def test_completed_event_finalizes(self, client, db_session, gateway, manager_headers, product):
        created = _create(client, manager_headers, product.id).json
        gateway.complete_checkout(created["session_id"])

        resp = post_webhook(client, "checkout.session.completed", {"id": created["session_id"]})

        assert resp.json["result"] == "completed"
        assert _order(db_session, created["order_number"]).status == ORDER_STATUS_COMPLETED
        assert db_session.query(Payment).count() == 1

    def test_completed_event_for_unpaid_session_ignored(self, client, db_session, gateway, manager_headers, product):
        created = _create(client, manager_headers, product.id).json

        resp = post_webhook(client, "checkout.session.completed", {"id": created["session_id"]})

        assert resp.json["result"] == "ignored"
        assert _order(db_session, created["order_number"]).status == ORDER_STATUS_PENDING

    def test_expired_event_fails_order(self, client, db_session, gateway, manager_headers, product):
        created = _create(client, manager_headers, product.id).json
        gateway.expire_checkout(created["session_id"])

        resp = post_webhook(client, "checkout.session.expired", {"id": created["session_id"]})

        assert resp.json["result"] == "failed"
        order = _order(db_session, created["order_number"])
        assert order.status == ORDER_STATUS_FAILED
        assert order.failure_message == "Checkout session expired"
        assert db_session.get(Product, product.id).quantity == 5

    def test_declined_card_fails_order_before_completion(
        self, client, db_session, gateway, manager_headers, product
    ):
        created = _create(client, manager_headers, product.id).json
        session = gateway.sessions[created["session_id"]]
        metadata = session["payment_intent_data"]["metadata"]
        intent = gateway.create_payment_intent(
            amount_cents=session["amount_total"],
            currency="sgd",
            metadata=metadata,
            payment_method_types=["card"],
        )
        gateway.decline_intent(intent["id"])

        resp = post_webhook(client, "payment_intent.payment_failed", {
            "id": intent["id"],
            "metadata": metadata,
            "last_payment_error": {"code": "card_declined", "message": "Your card was declined."},
        })

        assert resp.json["result"] == "failed"
        order = _order(db_session, created["order_number"])
        assert order.status == ORDER_STATUS_FAILED
        assert order.failure_code == "card_declined"
        assert db_session.query(Payment).count() == 0
        assert db_session.get(Product, product.id).quantity == 5

        gateway.complete_checkout(created["session_id"])
        late = post_webhook(client, "checkout.session.completed", {"id": created["session_id"]})

        assert late.json["result"] == "already_finalized"
        assert _order(db_session, created["order_number"]).status == ORDER_STATUS_FAILED
        assert db_session.query(Payment).count() == 0
        assert db_session.get(Product, product.id).quantity == 5
