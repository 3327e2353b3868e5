"""Fulfillment service — turn a paid checkout session into a working account.

Responsible for:
- Guarding against unpaid sessions and incomplete metadata
- Upserting the customer's User by email
- Creating the Payment, Order, welcome Notification and AutoLoginToken
- Doing all of it in a single transaction (commit once, rollback on error)

Emails are NOT sent from here. The dispatcher enqueues them after commit so
a slow email provider can never block or fail the financial writes.
"""

import logging
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from flask import current_app
from werkzeug.security import generate_password_hash

from salonpro.errors import FulfillmentTimeout, InvalidAmount, MissingRequiredMetadata
from salonpro.extensions import db
from salonpro.models.notification import Notification
from salonpro.models.order import Order, Template
from salonpro.models.payment import Payment
from salonpro.models.user import User
from salonpro.services.auto_login_service import issue_token

logger = logging.getLogger(__name__)

REQUIRED_METADATA = ("customer_email", "customer_name", "business_name")

STARTER_TEMPLATE = {
    "name": "Basic Salon Template",
    "description": "Professional starter website for hair salons and beauty studios",
    "price": 199,
    "category": "BASIC",
    "preview_url": "https://example.com/preview/basic-salon.jpg",
    "features": [
        "Responsive design",
        "Online booking",
        "Work gallery",
        "Contact details",
        "Opening hours",
    ],
    "active": True,
}


@dataclass
class FulfillmentResult:
    user_id: str
    order_id: str
    payment_id: str
    notification_id: str
    token_id: str
    token: str
    token_expires_at: datetime
    created_user: bool
    amount: float
    currency: str
    template_name: str = ""


def generate_secure_password(length=12):
    """Random password with at least one upper, lower, digit and symbol."""
    symbols = "!@#$%^&*"
    pools = [string.ascii_uppercase, string.ascii_lowercase, string.digits, symbols]
    alphabet = "".join(pools)

    chars = [secrets.choice(pool) for pool in pools]
    chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]

    # Fisher-Yates with a CSPRNG so the guaranteed classes aren't always first
    for i in range(len(chars) - 1, 0, -1):
        j = secrets.randbelow(i + 1)
        chars[i], chars[j] = chars[j], chars[i]
    return "".join(chars)


def _business_type(raw):
    return "BARBERSHOP" if (raw or "").lower() == "barbershop" else "SALON"


def _amount_from_minor_units(amount_total):
    """Stripe sends minor units (cents). Store major units, never negative."""
    if amount_total is None:
        return 0.0
    try:
        cents = int(amount_total)
    except (TypeError, ValueError):
        raise InvalidAmount(f"amount_total is not an integer: {amount_total!r}")
    if cents < 0:
        raise InvalidAmount(f"amount_total is negative: {cents}")
    return round(cents / 100, 2)


def _required_metadata(session):
    metadata = session.get("metadata") or {}
    missing = [key for key in REQUIRED_METADATA if not metadata.get(key)]
    if missing:
        raise MissingRequiredMetadata(missing)
    return metadata


# ──────────────────────────────────────────────
# Transaction steps (flush only, caller commits)
# ──────────────────────────────────────────────

def upsert_user(email, name, business_name, phone=None, business_type=None):
    """Create the customer's account, or refresh it if the email exists.

    Returns (user, created).
    """
    now = datetime.now(timezone.utc)
    user = User.query.filter_by(email=email).first()

    if user:
        logger.info(f"User {user.id} already exists, updating business details")
        user.business_name = business_name
        user.phone = phone or user.phone
        user.business_type = _business_type(business_type)
        user.subscription_status = "active"
        user.last_login_at = now
        user.has_completed_onboarding = False
        db.session.flush()
        return user, False

    # The temporary password is never returned to the client; customers get
    # in via the auto-login token and can reset it later.
    user = User(
        name=name,
        email=email,
        password_hash=generate_password_hash(generate_secure_password()),
        business_name=business_name,
        phone=phone or None,
        business_type=_business_type(business_type),
        role="CLIENT",
        subscription_status="active",
        has_completed_onboarding=False,
        is_active=True,
        last_login_at=now,
    )
    db.session.add(user)
    db.session.flush()
    logger.info(f"Created user {user.id} for {email}")
    return user, True


def resolve_default_template():
    """First active BASIC template, or a freshly created starter one.

    Fulfillment must never fail just because the catalog wasn't seeded.
    """
    template = (
        Template.query
        .filter_by(category="BASIC", active=True)
        .order_by(Template.created_at)
        .first()
    )
    if template:
        return template

    logger.warning("No active BASIC template found, creating starter template")
    template = Template(**STARTER_TEMPLATE)
    db.session.add(template)
    db.session.flush()
    return template


def create_order(user, template, session, metadata, total):
    now = datetime.now(timezone.utc)
    order = Order(
        salon_name=metadata["business_name"],
        owner_name=metadata["customer_name"],
        email=metadata["customer_email"],
        phone=metadata.get("customer_phone") or "",
        domain="",
        template_id=template.id,
        total=total,
        status="COMPLETED",
        stripe_session_id=session.get("id"),
        payment_intent_id=session.get("payment_intent"),
        user_id=user.id,
        setup_step="DOMAIN_SELECTION",
        setup_completed=False,
        completed_at=now,
    )
    db.session.add(order)
    db.session.flush()
    return order


# ──────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────

def fulfill_checkout(session, request_id=None):
    """Provision account, payment, order, notification and login token.

    Args:
        session: the checkout.session.completed data object (dict)
        request_id: webhook request id, for log correlation

    Returns:
        FulfillmentResult, or None when the session isn't paid yet.

    Raises:
        MissingRequiredMetadata, InvalidAmount: bad payload, nothing written.
        FulfillmentTimeout: the transaction overran its budget, rolled back.
        Any database error, after rollback.
    """
    tag = f"[{request_id}] " if request_id else ""
    session_id = session.get("id")

    logger.info(
        f"{tag}Processing checkout completion {session_id} "
        f"(payment_status={session.get('payment_status')}, "
        f"amount_total={session.get('amount_total')}, currency={session.get('currency')})"
    )

    if session.get("payment_status") != "paid":
        logger.info(f"{tag}Checkout {session_id} not paid yet, skipping")
        return None

    try:
        metadata = _required_metadata(session)
        amount = _amount_from_minor_units(session.get("amount_total"))
    except (MissingRequiredMetadata, InvalidAmount) as e:
        logger.error(f"{tag}Cannot fulfill checkout {session_id}: {e}")
        raise

    config = current_app.config
    ttl_minutes = config.get("AUTO_LOGIN_TOKEN_TTL_MINUTES", 15)
    timeout = config.get("FULFILLMENT_TIMEOUT_SECONDS", 10)
    currency = (session.get("currency") or "eur").upper()
    email = metadata["customer_email"].strip().lower()
    metadata = dict(metadata, customer_email=email)
    business_name = metadata["business_name"]
    started = time.monotonic()

    try:
        # 1. Account
        user, created = upsert_user(
            email=email,
            name=metadata["customer_name"],
            business_name=business_name,
            phone=metadata.get("customer_phone"),
            business_type=metadata.get("business_type"),
        )

        # 2. Payment
        customer = session.get("customer")
        payment = Payment(
            user_id=user.id,
            amount=amount,
            currency=currency,
            status="COMPLETED",
            method="STRIPE",
            stripe_payment_id=session.get("payment_intent"),
            description=f"Professional website for {business_name}",
            paid_at=datetime.now(timezone.utc),
            metadata_={
                "sessionId": session_id,
                "customerId": customer if isinstance(customer, str) else "",
                "productType": metadata.get("product_type"),
                "source": metadata.get("source"),
                "businessName": business_name,
            },
        )
        db.session.add(payment)
        db.session.flush()

        # 3. Template  4. Order  5. Link payment -> order
        template = resolve_default_template()
        order = create_order(user, template, session, metadata, amount)
        payment.order_id = order.id

        # 6. Welcome notification
        notification = Notification(
            user_id=user.id,
            title="Welcome to SalonPro!",
            message=(
                "Your payment was processed successfully. Access instructions "
                f"are on their way to {email}. Your website will be ready "
                "within 48 hours."
            ),
            type="PAYMENT",
            priority="HIGH",
            action_url=config.get("CLIENT_ONBOARDING_PATH", "/client/onboarding"),
            action_text="Complete setup",
            metadata_={
                "orderId": order.id,
                "amount": amount,
                "businessName": business_name,
            },
        )
        db.session.add(notification)

        # 7. Auto-login token
        token = issue_token(
            user_id=user.id,
            email=email,
            session_id=session_id,
            ttl_minutes=ttl_minutes,
            metadata={
                "orderId": order.id,
                "sessionId": session_id,
                "source": "stripe_checkout",
                "businessName": business_name,
            },
        )

        # 8. Reference the token from the order. The secret itself stays in
        # auto_login_tokens only.
        order.notes = (
            f"Auto-login token issued: {token.id} "
            f"(expires {token.expires_at.isoformat()})"
        )
        db.session.flush()

        elapsed = time.monotonic() - started
        if elapsed > timeout:
            raise FulfillmentTimeout(
                f"Fulfillment of {session_id} took {elapsed:.2f}s (limit {timeout}s)"
            )

        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.error(f"{tag}Checkout {session_id} rolled back", exc_info=True)
        raise

    logger.info(
        f"{tag}Checkout {session_id} fulfilled: user={user.id} order={order.id} "
        f"payment={payment.id} token={token.token[:8]}..."
    )

    return FulfillmentResult(
        user_id=user.id,
        order_id=order.id,
        payment_id=payment.id,
        notification_id=notification.id,
        token_id=token.id,
        token=token.token,
        token_expires_at=token.expires_at,
        created_user=created,
        amount=amount,
        currency=currency,
        template_name=template.name,
    )
