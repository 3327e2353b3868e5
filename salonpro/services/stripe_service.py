"""Stripe service — all Stripe API calls and webhook handling.

Responsible for:
- Creating Stripe Checkout Sessions (one-off website purchase)
- Verifying incoming webhook signatures
- Idempotency via the stripe_webhook_events ledger
- Dispatching to event-specific handlers
- Queuing the order confirmation once fulfillment has committed
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone

import stripe
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from salonpro.errors import InvalidSignature
from salonpro.extensions import db
from salonpro.models.notification import Notification
from salonpro.models.order import Order
from salonpro.models.payment import Payment
from salonpro.services import webhook_ledger
from salonpro.services.email_queue import queue_email
from salonpro.services.fulfillment_service import fulfill_checkout
from salonpro.services.stripe_events import (
    CheckoutCompleted,
    InvoicePaymentSucceeded,
    PaymentFailed,
    PaymentSucceeded,
    SubscriptionCreated,
    UnhandledEvent,
    describe_object_type,
    parse_event,
)

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


@dataclass
class HandlerOutcome:
    success: bool
    error: str = None
    result: object = None


@dataclass
class WebhookResult:
    """What the endpoint reports back to Stripe."""

    success: bool
    duplicate: bool = False
    error: str = None


# ──────────────────────────────────────────────
# Checkout Sessions
# ──────────────────────────────────────────────

def _find_or_create_customer(email, name, phone, metadata):
    """Reuse the Stripe customer for this email, or create one."""
    existing = stripe.Customer.list(email=email, limit=1)
    if existing.data:
        return existing.data[0].id

    params = {"email": email, "name": name, "metadata": metadata}
    if phone:
        params["phone"] = phone
    return stripe.Customer.create(**params).id


def create_checkout_session(email, name, business_name, phone=None,
                            business_type="salon", source="other"):
    """Create a Stripe Checkout Session for the website package.

    One-off `payment` mode session. The metadata carries everything
    fulfillment needs to provision the account when the webhook arrives.

    Returns the Stripe session (id + url).
    Raises stripe.StripeError on API failures.
    """
    config = current_app.config
    stripe.api_key = config["STRIPE_SECRET_KEY"]
    app_base_url = config["APP_BASE_URL"]

    metadata = {
        "customer_email": email,
        "customer_name": name,
        "customer_phone": phone or "",
        "business_name": business_name,
        "business_type": business_type,
        "product_type": "website_setup",
        "source": source,
    }

    customer_id = _find_or_create_customer(
        email,
        name,
        phone,
        {"business_name": business_name, "business_type": business_type, "source": source},
    )

    session = stripe.checkout.Session.create(
        mode="payment",
        customer=customer_id,
        payment_method_types=["card"],
        line_items=[
            {
                "price_data": {
                    "currency": config.get("STRIPE_CURRENCY", "eur"),
                    "product_data": {
                        "name": config.get("STRIPE_PRODUCT_NAME"),
                        "description": f"Website for {business_name}",
                    },
                    "unit_amount": config.get("STRIPE_PRODUCT_PRICE_CENTS", 19900),
                },
                "quantity": 1,
            }
        ],
        success_url=f"{app_base_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{app_base_url}/pricing?canceled=true",
        metadata=metadata,
        payment_intent_data={"metadata": metadata},
    )

    logger.info(f"Created checkout session {session.id} for {email} ({business_name})")
    return session


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify the Stripe-Signature header over the raw body.

    Returns the event as a plain dict.
    Raises InvalidSignature on a missing/malformed/mismatched/stale
    signature, or a body that is not a Stripe event.
    """
    if not sig_header:
        raise InvalidSignature("Missing Stripe-Signature header")

    config = current_app.config
    secret = config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured")
        raise InvalidSignature("Webhook secret not configured")

    try:
        stripe.WebhookSignature.verify_header(
            payload, sig_header, secret, config.get("STRIPE_WEBHOOK_TOLERANCE", 300)
        )
    except stripe.SignatureVerificationError as e:
        raise InvalidSignature(str(e)) from e

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise InvalidSignature("Payload is not valid JSON") from e

    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise InvalidSignature("Payload is not a Stripe event")
    return event


def handle_webhook_event(event, request_id=None):
    """Process a verified Stripe webhook event at most once.

    1. Ledger lookup: any known event (succeeded, in flight or failed) is
       acknowledged without running a handler; only its retry counter is
       bumped.
    2. Ledger insert (success=False). Losing the insert race to a
       concurrent delivery is treated like a duplicate.
    3. Parse and dispatch to the handler for the event variant.
    4. Record the outcome on the ledger.

    Ledger write errors propagate; the endpoint answers 500 and Stripe
    redelivers.
    """
    tag = f"[{request_id}] " if request_id else ""
    started = time.monotonic()
    event_id = event["id"]
    event_type = event["type"]
    retry_meta = {"lastRetryAt": _now().isoformat(), "lastRetryRequestId": request_id}

    if webhook_ledger.lookup(event_id) is not None:
        logger.info(f"{tag}Event {event_id} already processed, skipping")
        webhook_ledger.bump_retry(event_id, retry_meta)
        return WebhookResult(success=True, duplicate=True)

    if not webhook_ledger.record_start(event_id, event_type, {
        "requestId": request_id,
        "objectType": describe_object_type(event),
        "receivedAt": _now().isoformat(),
    }):
        webhook_ledger.bump_retry(event_id, retry_meta)
        return WebhookResult(success=True, duplicate=True)

    logger.info(f"{tag}Processing {event_type} ({event_id})")
    parsed, outcome = _dispatch(event, request_id)
    elapsed_ms = int((time.monotonic() - started) * 1000)

    if outcome.success:
        webhook_ledger.record_outcome(event_id, True, {
            "completedAt": _now().isoformat(),
            "processingTimeMs": elapsed_ms,
            "finalResult": "success",
        })
        logger.info(f"{tag}Event {event_id} processed in {elapsed_ms}ms")
    else:
        webhook_ledger.record_outcome(event_id, False, {
            "errorOccurredAt": _now().isoformat(),
            "processingTimeMs": elapsed_ms,
            "errorDetails": {"message": outcome.error, "requestId": request_id},
        }, error=outcome.error)
        logger.error(f"{tag}Event {event_id} failed after {elapsed_ms}ms: {outcome.error}")

    if isinstance(parsed, CheckoutCompleted):
        _log_webhook_metrics(parsed, outcome, elapsed_ms, request_id)

    return WebhookResult(success=outcome.success, error=outcome.error)


def _dispatch(event, request_id):
    """Parse the event and run its handler; exceptions become failures.

    Returns (parsed event or None, HandlerOutcome).
    """
    parsed = None
    try:
        parsed = parse_event(event)
        handler = EVENT_HANDLERS.get(type(parsed), _handle_unhandled)
        return parsed, handler(parsed, request_id)
    except Exception as e:
        db.session.rollback()
        logger.error(
            f"[{request_id}] Error handling {event.get('type')}: {e}", exc_info=True
        )
        return parsed, HandlerOutcome(success=False, error=str(e) or e.__class__.__name__)


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_checkout_completed(event, request_id):
    """Provision the account, then queue the order confirmation."""
    result = fulfill_checkout(event.data, request_id=request_id)
    if result is None:
        return HandlerOutcome(success=True)

    _queue_order_confirmation(event, result, request_id)
    return HandlerOutcome(success=True, result=result)


def _queue_order_confirmation(event, result, request_id):
    """Best-effort: the account exists even if the email can't be queued."""
    config = current_app.config
    metadata = event.data.get("metadata") or {}
    try:
        queue_email("order_confirmation", {
            "email": metadata.get("customer_email", "").strip().lower(),
            "salonName": metadata.get("business_name", ""),
            "ownerName": metadata.get("customer_name", ""),
            "amount": result.amount,
            "currency": result.currency,
            "templateName": result.template_name,
            "orderId": result.order_id,
            "paymentIntentId": event.data.get("payment_intent") or "",
            "dashboardUrl": f"{config['APP_BASE_URL']}{config.get('CLIENT_ONBOARDING_PATH', '')}",
        })
    except Exception as e:
        logger.error(
            f"[{request_id}] Failed to queue order confirmation for order "
            f"{result.order_id}: {e}"
        )


def _handle_payment_succeeded(event, request_id):
    """Mark matching payments completed. Never fails the webhook."""
    intent_id = event.payment_intent_id
    try:
        payments = Payment.query.filter_by(stripe_payment_id=intent_id).all()
        if not payments:
            logger.warning(
                f"[{request_id}] payment_intent.succeeded: no payment for {intent_id}"
            )
            return HandlerOutcome(success=True)

        now = _now()
        for payment in payments:
            payment.status = "COMPLETED"
            payment.paid_at = now
        db.session.commit()
        logger.info(f"[{request_id}] Marked {len(payments)} payment(s) completed for {intent_id}")
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"[{request_id}] Failed to update payment for {intent_id}: {e}")

    return HandlerOutcome(success=True)


def _handle_payment_failed(event, request_id):
    """Mark matching payments failed and cancel their orders."""
    intent_id = event.payment_intent_id
    now = _now()

    payments = Payment.query.filter_by(stripe_payment_id=intent_id).all()
    for payment in payments:
        payment.status = "FAILED"
        payment.failed_at = now

    orders = Order.query.filter_by(payment_intent_id=intent_id).all()
    for order in orders:
        order.status = "CANCELLED"

    db.session.commit()
    logger.info(
        f"[{request_id}] payment_intent.payment_failed for {intent_id}: "
        f"{len(payments)} payment(s) failed, {len(orders)} order(s) cancelled"
    )
    return HandlerOutcome(success=True)


def _handle_invoice_payment_succeeded(event, request_id):
    logger.info(f"[{request_id}] Invoice payment succeeded: {event.data.get('id')}")
    return HandlerOutcome(success=True)


def _handle_subscription_created(event, request_id):
    logger.info(f"[{request_id}] Subscription created: {event.data.get('id')}")
    return HandlerOutcome(success=True)


def _handle_unhandled(event, request_id):
    logger.info(f"[{request_id}] Unhandled event type: {event.event_type}")
    return HandlerOutcome(success=True)


EVENT_HANDLERS = {
    CheckoutCompleted: _handle_checkout_completed,
    PaymentSucceeded: _handle_payment_succeeded,
    PaymentFailed: _handle_payment_failed,
    InvoicePaymentSucceeded: _handle_invoice_payment_succeeded,
    SubscriptionCreated: _handle_subscription_created,
    UnhandledEvent: _handle_unhandled,
}


# ──────────────────────────────────────────────
# Telemetry
# ──────────────────────────────────────────────

def _log_webhook_metrics(event, outcome, elapsed_ms, request_id):
    """Record a system notification for each checkout webhook.

    Purely informational; failures are logged and swallowed.
    """
    title = "Checkout webhook processed" if outcome.success else "Checkout webhook failed"
    try:
        db.session.add(Notification(
            user_id=None,
            title=title,
            message=f"{event.event_type} {event.event_id} in {elapsed_ms}ms",
            type="SYSTEM",
            priority="LOW" if outcome.success else "HIGH",
            metadata_={
                "eventId": event.event_id,
                "eventType": event.event_type,
                "sessionId": event.session_id,
                "requestId": request_id,
                "processingTimeMs": elapsed_ms,
                "success": outcome.success,
                "error": outcome.error,
            },
        ))
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.warning(f"[{request_id}] Failed to record webhook metrics: {e}")
