"""Shared test fixtures for the SalonPro test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: admin user, client user and the BASIC starter template
- email_provider: fake provider recording every outgoing message
- email_queue: fresh queue per test, driven by a ManualScheduler
- checkout_event / post_event: build and deliver signed Stripe events
"""

import hashlib
import hmac
import json
import time

import pytest
from werkzeug.security import generate_password_hash

from salonpro import create_app
from salonpro.errors import EmailDeliveryError
from salonpro.extensions import db as _db
from salonpro.models.order import Template
from salonpro.models.user import User
from salonpro.services.email_queue import build_email_queue

WEBHOOK_SECRET = "whsec_test_fake"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


class FakeEmailProvider:
    """Records messages instead of sending them.

    fail_times: number of upcoming sends that raise EmailDeliveryError.
    fail_for: recipients that always fail.
    """

    def __init__(self):
        self.sent = []
        self.fail_times = 0
        self.fail_for = set()

    def send(self, message):
        if self.fail_times > 0:
            self.fail_times -= 1
            raise EmailDeliveryError("provider unavailable")
        if message["to"] in self.fail_for:
            raise EmailDeliveryError(f"rejected recipient {message['to']}")
        self.sent.append(message)
        return {"id": f"fake_{len(self.sent)}"}


@pytest.fixture(autouse=True)
def email_provider(app):
    provider = FakeEmailProvider()
    app.extensions["email_provider"] = provider
    yield provider
    app.extensions.pop("email_provider", None)


@pytest.fixture(autouse=True)
def email_queue(app):
    """Fresh in-memory queue per test. Nothing runs until the test drives
    queue.scheduler (run_pending / advance)."""
    queue = build_email_queue(app)
    queue.rng = lambda: 0.0
    app.extensions["email_queue"] = queue
    yield queue
    queue.shutdown()


@pytest.fixture
def seed_data(app, db_session):
    """Seed an admin, a client user and the BASIC template.

    Returns plain IDs so tests can use them across contexts.
    """
    with app.app_context():
        admin = User(
            email="admin@salonpro.local",
            name="Admin User",
            password_hash=generate_password_hash("admin123"),
            role="ADMIN",
            has_completed_onboarding=True,
        )
        client_user = User(
            email="owner@existing-salon.com",
            name="Existing Owner",
            password_hash=generate_password_hash("client123"),
            role="CLIENT",
            business_name="Existing Salon",
        )
        template = Template(
            name="Basic Salon Template",
            price=199,
            category="BASIC",
            features=["Responsive design"],
            active=True,
        )
        _db.session.add_all([admin, client_user, template])
        _db.session.commit()

        return {
            "admin_id": admin.id,
            "client_id": client_user.id,
            "client_email": client_user.email,
            "template_id": template.id,
        }


# ──────────────────────────────────────────────
# Stripe webhook helpers
# ──────────────────────────────────────────────

def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header the same way Stripe does."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def sign():
    return sign_payload


@pytest.fixture
def checkout_event():
    """Factory for checkout.session.completed events."""

    def build(event_id="evt_checkout_001", session_id="cs_test_001",
              email="jane@example.com", name="Jane Doe",
              business_name="Jane's Salon", payment_status="paid",
              amount_total=19900, currency="eur", payment_intent="pi_test_001",
              metadata=None):
        if metadata is None:
            metadata = {
                "customer_email": email,
                "customer_name": name,
                "customer_phone": "+49 30 1234567",
                "business_name": business_name,
                "business_type": "salon",
                "product_type": "website_setup",
                "source": "pricing_page",
            }
        return {
            "id": event_id,
            "object": "event",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": session_id,
                    "object": "checkout.session",
                    "payment_status": payment_status,
                    "amount_total": amount_total,
                    "currency": currency,
                    "payment_intent": payment_intent,
                    "customer": "cus_test_001",
                    "metadata": metadata,
                }
            },
        }

    return build


@pytest.fixture
def post_event(client):
    """Deliver an event dict to /stripe/webhooks with a valid signature."""

    def post(event, secret=WEBHOOK_SECRET, timestamp=None):
        payload = json.dumps(event)
        return client.post(
            "/stripe/webhooks",
            data=payload,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(payload, secret, timestamp)},
        )

    return post
