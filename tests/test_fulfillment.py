"""Tests for the checkout fulfillment transaction.

Covers:
- Guards (unpaid session, missing metadata, negative amount)
- All-or-nothing writes with faults injected mid-transaction
- Upsert by email
- Starter template fallback
- Time budget
"""

import string
from unittest.mock import patch

import pytest

from salonpro.errors import FulfillmentTimeout, InvalidAmount, MissingRequiredMetadata
from salonpro.extensions import db
from salonpro.models.auto_login import AutoLoginToken
from salonpro.models.notification import Notification
from salonpro.models.order import Order, Template
from salonpro.models.payment import Payment
from salonpro.models.user import User
from salonpro.services.fulfillment_service import (
    fulfill_checkout,
    generate_secure_password,
)


def _session(checkout_event, **kwargs):
    return checkout_event(**kwargs)["data"]["object"]


def _business_rows():
    return {
        "users": User.query.count(),
        "orders": Order.query.count(),
        "payments": Payment.query.count(),
        "notifications": Notification.query.count(),
        "tokens": AutoLoginToken.query.count(),
    }


class TestGuards:

    def test_unpaid_session_returns_none(self, seed_data, checkout_event):
        before = _business_rows()
        assert fulfill_checkout(_session(checkout_event, payment_status="unpaid")) is None
        assert _business_rows() == before

    def test_missing_metadata_raises_before_writes(self, seed_data, checkout_event):
        before = _business_rows()
        session = _session(checkout_event, metadata={"customer_name": "Jane"})

        with pytest.raises(MissingRequiredMetadata) as exc:
            fulfill_checkout(session)

        assert exc.value.missing == ["customer_email", "business_name"]
        assert _business_rows() == before

    def test_negative_amount_is_rejected(self, seed_data, checkout_event):
        with pytest.raises(InvalidAmount):
            fulfill_checkout(_session(checkout_event, amount_total=-100))
        assert User.query.filter_by(email="jane@example.com").first() is None

    def test_missing_amount_is_zero(self, seed_data, checkout_event):
        result = fulfill_checkout(_session(checkout_event, amount_total=None))
        assert result.amount == 0.0


class TestAtomicity:
    """A fault anywhere in steps 1-8 leaves no trace."""

    @patch("salonpro.services.fulfillment_service.issue_token")
    def test_fault_after_account_created_rolls_back(self, mock_issue, seed_data,
                                                    checkout_event):
        """Token step fails after user/payment/order were flushed."""
        mock_issue.side_effect = RuntimeError("token table locked")
        before = _business_rows()

        with pytest.raises(RuntimeError):
            fulfill_checkout(_session(checkout_event))

        assert _business_rows() == before
        assert User.query.filter_by(email="jane@example.com").first() is None

    @patch("salonpro.services.fulfillment_service.create_order")
    def test_fault_creating_order_rolls_back_user_and_payment(self, mock_order,
                                                              seed_data, checkout_event):
        mock_order.side_effect = RuntimeError("constraint violation")
        before = _business_rows()

        with pytest.raises(RuntimeError):
            fulfill_checkout(_session(checkout_event))

        assert _business_rows() == before

    @patch("salonpro.services.fulfillment_service.issue_token")
    def test_fault_on_existing_user_keeps_old_details(self, mock_issue, seed_data,
                                                      checkout_event):
        mock_issue.side_effect = RuntimeError("boom")
        session = _session(
            checkout_event,
            email=seed_data["client_email"],
            business_name="Renamed Salon",
        )

        with pytest.raises(RuntimeError):
            fulfill_checkout(session)

        user = User.query.filter_by(email=seed_data["client_email"]).one()
        assert user.business_name == "Existing Salon"
        assert user.subscription_status is None

    def test_timeout_rolls_back(self, app, seed_data, checkout_event):
        before = _business_rows()
        with patch.dict(app.config, {"FULFILLMENT_TIMEOUT_SECONDS": -1}):
            with pytest.raises(FulfillmentTimeout):
                fulfill_checkout(_session(checkout_event))
        assert _business_rows() == before


class TestUpsert:

    def test_existing_email_updates_user(self, seed_data, checkout_event):
        session = _session(
            checkout_event,
            email=seed_data["client_email"].upper(),
            business_name="Existing Salon Deluxe",
        )
        result = fulfill_checkout(session)

        assert result.created_user is False
        assert result.user_id == seed_data["client_id"]
        user = db.session.get(User, seed_data["client_id"])
        assert user.business_name == "Existing Salon Deluxe"
        assert user.subscription_status == "active"
        assert user.last_login_at is not None
        assert User.query.filter_by(email=seed_data["client_email"]).count() == 1

    def test_two_sessions_same_email(self, seed_data, checkout_event):
        """One user, two orders, two payments."""
        first = fulfill_checkout(_session(checkout_event))
        second = fulfill_checkout(_session(
            checkout_event, session_id="cs_test_002", payment_intent="pi_test_002"
        ))

        assert first.created_user is True
        assert second.created_user is False
        assert first.user_id == second.user_id
        assert Order.query.filter_by(user_id=first.user_id).count() == 2
        assert Payment.query.filter_by(user_id=first.user_id).count() == 2
        assert AutoLoginToken.query.filter_by(user_id=first.user_id).count() == 2

    def test_new_user_gets_hashed_random_password(self, seed_data, checkout_event):
        result = fulfill_checkout(_session(checkout_event))
        user = db.session.get(User, result.user_id)
        assert user.password_hash
        assert user.role == "CLIENT"
        assert user.is_active is True

    def test_barbershop_business_type(self, seed_data, checkout_event):
        event = checkout_event()
        session = event["data"]["object"]
        session["metadata"]["business_type"] = "barbershop"
        result = fulfill_checkout(session)
        assert db.session.get(User, result.user_id).business_type == "BARBERSHOP"


class TestTemplateResolution:

    def test_uses_existing_basic_template(self, seed_data, checkout_event):
        result = fulfill_checkout(_session(checkout_event))
        order = db.session.get(Order, result.order_id)
        assert order.template_id == seed_data["template_id"]
        assert result.template_name == "Basic Salon Template"
        assert Template.query.count() == 1

    def test_creates_starter_template_when_catalog_empty(self, checkout_event):
        """No seeded templates -> starter BASIC template created in the same tx."""
        assert Template.query.count() == 0

        result = fulfill_checkout(_session(checkout_event))

        template = Template.query.one()
        assert template.category == "BASIC"
        assert template.active is True
        assert db.session.get(Order, result.order_id).template_id == template.id

    def test_inactive_template_is_ignored(self, checkout_event, db_session):
        db_session.add(Template(name="Retired", category="BASIC", price=99, active=False))
        db_session.commit()

        result = fulfill_checkout(_session(checkout_event))

        template = db.session.get(Order, result.order_id).template
        assert template.name != "Retired"
        assert template.active is True


class TestResult:

    def test_result_references_committed_rows(self, seed_data, checkout_event):
        result = fulfill_checkout(_session(checkout_event), request_id="wh_test")

        assert db.session.get(Payment, result.payment_id).order_id == result.order_id
        assert db.session.get(Notification, result.notification_id).user_id == result.user_id
        token = db.session.get(AutoLoginToken, result.token_id)
        assert token.token == result.token
        assert token.metadata_["orderId"] == result.order_id
        assert result.amount == 199.0
        assert result.currency == "EUR"

    def test_currency_defaults_to_eur(self, seed_data, checkout_event):
        result = fulfill_checkout(_session(checkout_event, currency=None))
        assert result.currency == "EUR"


class TestSecurePassword:

    def test_contains_every_character_class(self):
        for _ in range(20):
            password = generate_secure_password()
            assert len(password) == 12
            assert any(c in string.ascii_uppercase for c in password)
            assert any(c in string.ascii_lowercase for c in password)
            assert any(c in string.digits for c in password)
            assert any(c in "!@#$%^&*" for c in password)

    def test_passwords_differ(self):
        assert generate_secure_password() != generate_secure_password()
