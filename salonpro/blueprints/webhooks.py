"""Webhooks blueprint — /stripe/webhooks

Receives Stripe webhook events. CSRF-exempt.
Raw body is required for signature verification.
"""

import logging
import secrets
import time
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from salonpro.errors import InvalidSignature
from salonpro.extensions import db
from salonpro.services.stripe_service import handle_webhook_event, verify_webhook_signature

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


def _request_id():
    return f"wh_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


@webhooks_bp.route("/webhooks", methods=["POST"])
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET
    3. Pass to handle_webhook_event (idempotent via the webhook ledger)
    4. Return 200 once the outcome is recorded, even if the handler failed

    CSRF is exempted for this blueprint in create_app().
    """
    request_id = _request_id()
    started = time.monotonic()

    def elapsed_ms():
        return int((time.monotonic() - started) * 1000)

    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")

    # --- Verify signature ---
    try:
        event = verify_webhook_signature(payload, sig_header)
    except InvalidSignature as e:
        logger.warning(f"[{request_id}] Webhook signature verification failed: {e}")
        return jsonify({
            "error": "Invalid signature",
            "requestId": request_id,
            "processingTimeMs": elapsed_ms(),
        }), 400

    # --- Process event (idempotent) ---
    try:
        result = handle_webhook_event(event, request_id=request_id)
    except Exception as e:
        db.session.rollback()
        logger.error(f"[{request_id}] Webhook ledger failure: {e}", exc_info=True)
        return jsonify({
            "error": "Webhook processing failed",
            "requestId": request_id,
            "processingTimeMs": elapsed_ms(),
        }), 500

    body = {
        "received": True,
        "requestId": request_id,
        "processingTimeMs": elapsed_ms(),
    }
    if result.duplicate:
        body["message"] = "Event already processed"
    elif not result.success:
        body["error"] = result.error
    return jsonify(body), 200


@webhooks_bp.route("/webhooks", methods=["GET"])
def webhook_health():
    """Health check for uptime monitors."""
    return jsonify({
        "status": "ok",
        "webhook": "stripe",
        "configured": bool(current_app.config.get("STRIPE_WEBHOOK_SECRET")),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })
