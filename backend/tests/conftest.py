"""
Pytest fixtures for StallPOS backend tests.

Provides test database setup, tenant/stall/terminal fixtures, a fake payment
gateway and the test client.
"""

import copy
import hashlib
import hmac
import json
import time

import pytest
from stallpos import create_app
from stallpos.extensions import db
from stallpos.models import Configuration, Product, Stall, Terminal, User
from stallpos.models.auth import ROLE_ADMIN, ROLE_STALL_MANAGER
from stallpos.services.auth_service import hash_password
from stallpos.services.payment_gateway import ProviderError, StripeGateway


WEBHOOK_SECRET = "whsec_test_secret"
PASSWORD = "Password123!"


class FakeGateway(StripeGateway):
    """
    In-memory stand-in for the Stripe API.

    Only the network calls are replaced; verify_webhook is the real
    implementation, so webhook tests exercise actual signature checking.
    """

    def __init__(self):
        super().__init__(api_key="sk_test_fake", webhook_secret=WEBHOOK_SECRET, webhook_tolerance=300)
        self.intents = {}
        self.sessions = {}
        self.readers = {
            "tmr_A": {"id": "tmr_A", "label": "Stall A reader", "device_type": "bbpos_wisepos_e",
                      "status": "online", "serial_number": "WSC-A", "ip_address": "10.0.0.2",
                      "location": "tml_1"},
            "tmr_B": {"id": "tmr_B", "label": "Stall B reader", "device_type": "bbpos_wisepos_e",
                      "status": "offline", "serial_number": "WSC-B", "ip_address": None,
                      "location": "tml_1"},
        }
        self.displayed = []
        self.processed = []
        self.fail_process = None
        self.fail_display = None
        self.fail_create_intent = None
        self.fail_checkout = None

    # Helpers used by tests to move provider state ------------------------------

    def succeed_intent(self, intent_id, method_type="card_present"):
        intent = self.intents[intent_id]
        intent["status"] = "succeeded"
        intent["amount_received"] = intent["amount"]
        intent["latest_charge"] = {
            "id": f"ch_{intent_id}",
            "payment_method_details": {"type": method_type},
            "receipt_url": f"https://pay.test/receipts/{intent_id}",
        }
        return copy.deepcopy(intent)

    def decline_intent(self, intent_id, code="card_declined", message="Your card was declined."):
        """The card was refused; the intent goes back to waiting for a payment method."""
        intent = self.intents[intent_id]
        intent["status"] = "requires_payment_method"
        intent["last_payment_error"] = {"code": code, "message": message}
        return copy.deepcopy(intent)

    def cancel_intent(self, intent_id):
        self.intents[intent_id]["status"] = "canceled"
        return copy.deepcopy(self.intents[intent_id])

    def complete_checkout(self, session_id):
        session = self.sessions[session_id]
        intent = self.create_payment_intent(
            amount_cents=session["amount_total"],
            currency=session["currency"],
            metadata=session["payment_intent_data"]["metadata"],
            payment_method_types=["card"],
        )
        self.succeed_intent(intent["id"], method_type="card")
        session.update({"status": "complete", "payment_status": "paid", "payment_intent": intent["id"]})
        return copy.deepcopy(session)

    def expire_checkout(self, session_id):
        self.sessions[session_id].update({"status": "expired"})
        return copy.deepcopy(self.sessions[session_id])

    def _missing(self, kind, object_id):
        return ProviderError(f"No such {kind}: '{object_id}'", code="resource_missing", http_status=404)

    # Payment intents ------------------------------------------------------------

    def create_payment_intent(self, *, amount_cents, currency, metadata, capture_method="automatic",
                              payment_method_types=None, idempotency_key=None):
        if self.fail_create_intent:
            raise self.fail_create_intent
        intent_id = f"pi_test_{len(self.intents) + 1}"
        self.intents[intent_id] = {
            "id": intent_id,
            "object": "payment_intent",
            "amount": amount_cents,
            "currency": currency,
            "status": "requires_payment_method",
            "capture_method": capture_method,
            "client_secret": f"{intent_id}_secret_x",
            "metadata": dict(metadata),
            "payment_method_types": payment_method_types or ["card_present", "paynow"],
            "latest_charge": None,
            "idempotency_key": idempotency_key,
        }
        return copy.deepcopy(self.intents[intent_id])

    def retrieve_payment_intent(self, intent_id):
        if intent_id not in self.intents:
            raise self._missing("payment_intent", intent_id)
        return copy.deepcopy(self.intents[intent_id])

    def capture_payment_intent(self, intent_id):
        if intent_id not in self.intents:
            raise self._missing("payment_intent", intent_id)
        if self.intents[intent_id]["status"] == "requires_capture":
            return self.succeed_intent(intent_id)
        return copy.deepcopy(self.intents[intent_id])

    # Terminal -------------------------------------------------------------------

    def _reader(self, reader_id, action=None):
        if reader_id not in self.readers:
            raise self._missing("terminal.reader", reader_id)
        reader = copy.deepcopy(self.readers[reader_id])
        reader["action"] = action
        return reader

    def set_reader_display(self, reader_id, cart):
        if self.fail_display:
            raise self.fail_display
        self.displayed.append((reader_id, cart))
        return self._reader(reader_id, {"type": "set_reader_display", "status": "succeeded"})

    def process_payment_intent(self, reader_id, intent_id):
        if self.fail_process:
            raise self.fail_process
        self.processed.append((reader_id, intent_id))
        return self._reader(reader_id, {
            "type": "process_payment_intent",
            "status": "in_progress",
            "process_payment_intent": {"payment_intent": intent_id},
        })

    def list_readers(self, limit=10):
        return [copy.deepcopy(r) for r in list(self.readers.values())[:limit]]

    def retrieve_reader(self, reader_id):
        return self._reader(reader_id)

    def create_location(self, display_name, address):
        return {"id": "tml_new", "display_name": display_name, "address": address}

    def create_connection_token(self, location=None):
        return {"object": "terminal.connection_token", "secret": "pst_test_secret", "location": location}

    # Hosted checkout ------------------------------------------------------------

    def create_checkout_session(self, **params):
        if self.fail_checkout:
            raise self.fail_checkout
        session_id = f"cs_test_{len(self.sessions) + 1}"
        amount_total = sum(
            li["price_data"]["unit_amount"] * li["quantity"] for li in params["line_items"]
        )
        self.sessions[session_id] = {
            "id": session_id,
            "object": "checkout.session",
            "status": "open",
            "payment_status": "unpaid",
            "url": f"https://checkout.test/{session_id}",
            "amount_total": amount_total,
            "currency": params["line_items"][0]["price_data"]["currency"],
            "metadata": dict(params.get("metadata") or {}),
            "payment_intent": None,
            "payment_intent_data": params.get("payment_intent_data") or {},
            "success_url": params.get("success_url"),
            "cancel_url": params.get("cancel_url"),
            "line_items": params["line_items"],
        }
        return copy.deepcopy(self.sessions[session_id])

    def retrieve_checkout_session(self, session_id):
        if session_id not in self.sessions:
            raise self._missing("checkout.session", session_id)
        return copy.deepcopy(self.sessions[session_id])


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    ts = int(time.time()) if timestamp is None else timestamp
    signature = hmac.new(
        secret.encode("utf-8"), f"{ts}.{payload}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"t={ts},v1={signature}"


def webhook_payload(event_type: str, obj: dict, event_id: str = "evt_test_1") -> str:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    })


def post_webhook(client, event_type: str, obj: dict, **kwargs):
    payload = webhook_payload(event_type, obj)
    return client.post(
        "/api/payments/webhook",
        data=payload,
        headers={"Stripe-Signature": sign_payload(payload, **kwargs), "Content-Type": "application/json"},
    )


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(
        config_overrides={
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'STRIPE_SECRET_KEY': 'sk_test_fake',
            'STRIPE_WEBHOOK_SECRET': WEBHOOK_SECRET,
            'STRIPE_TERMINAL_READER_ID': 'tmr_default',
            'FRONTEND_URL': 'http://pos.test',
        },
        payment_gateway=FakeGateway(),
    )

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def gateway(app):
    """Fresh fake provider for each test."""
    fake = FakeGateway()
    app.extensions["payment_gateway"] = fake
    return fake


@pytest.fixture(scope='function')
def admin(db_session):
    """Admin (tenant) account."""
    user = User(
        username="owner",
        email="owner@stall.test",
        password_hash=hash_password(PASSWORD),
        role=ROLE_ADMIN,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def other_admin(db_session):
    """Second tenant."""
    user = User(
        username="rival",
        email="rival@stall.test",
        password_hash=hash_password(PASSWORD),
        role=ROLE_ADMIN,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def manager(db_session, admin):
    """Stall manager owned by admin."""
    user = User(
        username="manager",
        email="manager@stall.test",
        password_hash=hash_password(PASSWORD),
        role=ROLE_STALL_MANAGER,
        admin_id=admin.id,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def configuration(db_session, admin):
    config = Configuration(admin_id=admin.id, tax_rate_bps=525, platform_fee_bps=0)
    db_session.add(config)
    db_session.commit()
    return config


@pytest.fixture(scope='function')
def terminal(db_session, configuration):
    """Registered reader tmr_A in admin's configuration."""
    term = Terminal(
        configuration_id=configuration.id,
        provider_terminal_id="tmr_A",
        label="Stall A reader",
        status="online",
        is_active=True,
    )
    db_session.add(term)
    db_session.commit()
    return term


@pytest.fixture(scope='function')
def stall(db_session, admin, manager, terminal):
    """Stall A01 run by manager with tmr_A assigned."""
    stall = Stall(
        stall_number="A01",
        name="Noodle Bar",
        admin_id=admin.id,
        manager_id=manager.id,
        terminal_id=terminal.id,
    )
    db_session.add(stall)
    db_session.commit()
    return stall


@pytest.fixture(scope='function')
def product(db_session):
    """Limited-stock product: 5 in stock at 500 cents."""
    product = Product(name="Chicken Rice", category="Mains", price_cents=500, quantity=5, sold=0)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def unlimited_product(db_session):
    product = Product(name="Kopi", category="Drinks", price_cents=150, unlimited=True, quantity=0, sold=0)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def manager_headers(client, stall):
    """Bearer headers for the stall manager."""
    return auth_headers(get_auth_token(client, "manager", PASSWORD))


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    """Bearer headers for the admin."""
    return auth_headers(get_auth_token(client, "owner", PASSWORD))


def sale_body(product_id: int, quantity: int = 2, unit_price: int = 500, tax: int = 0) -> dict:
    total = unit_price * quantity
    return {
        "items": [{"product_id": product_id, "quantity": quantity}],
        "bills": {"total_cents": total, "tax_cents": tax, "total_with_tax_cents": total + tax},
        "customer": {"name": "Ana", "phone": "+6590000000"},
    }


def get_auth_token(client, username: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
