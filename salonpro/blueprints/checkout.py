"""Checkout blueprint — POST /checkout

Public JSON endpoint used by the pricing page. Creates a Stripe Checkout
Session for the website package and returns its id and hosted URL.
CSRF-exempt (called via fetch from the marketing site).
"""

import logging
import re

import stripe
from flask import Blueprint, jsonify, request

from salonpro.extensions import limiter
from salonpro.services.stripe_service import create_checkout_session

logger = logging.getLogger(__name__)

checkout_bp = Blueprint("checkout", __name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
BUSINESS_TYPES = ("salon", "barbershop")
SOURCES = ("pricing_page", "landing_page", "other")


@checkout_bp.route("/checkout", methods=["POST"])
@limiter.limit("10 per minute")
def create_checkout():
    """
    Expects: { email, name, businessName, phone?, businessType?, source? }
    Returns: { sessionId, url } or { error: "..." }
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "Invalid request."}), 400

    email = (data.get("email") or "").strip().lower()
    name = (data.get("name") or "").strip()
    business_name = (data.get("businessName") or "").strip()
    phone = (data.get("phone") or "").strip()
    business_type = (data.get("businessType") or "salon").strip().lower()
    source = (data.get("source") or "other").strip()

    # --- Validation ---
    errors = []
    if not email or not EMAIL_RE.match(email):
        errors.append("A valid email is required.")
    if len(name) < 2:
        errors.append("Name must be at least 2 characters.")
    if len(business_name) < 2:
        errors.append("Business name must be at least 2 characters.")
    if business_type not in BUSINESS_TYPES:
        errors.append("Business type must be salon or barbershop.")
    if source not in SOURCES:
        source = "other"

    if errors:
        return jsonify({"error": " ".join(errors)}), 400

    try:
        session = create_checkout_session(
            email=email,
            name=name,
            business_name=business_name,
            phone=phone or None,
            business_type=business_type,
            source=source,
        )
    except stripe.CardError as e:
        logger.warning(f"Checkout card error for {email}: {e}")
        return jsonify({"error": "Card error. Please check your card details."}), 400
    except stripe.RateLimitError:
        logger.warning("Stripe rate limit hit while creating checkout session")
        return jsonify({"error": "Too many requests. Please try again shortly."}), 429
    except stripe.InvalidRequestError as e:
        logger.error(f"Invalid checkout request: {e}")
        return jsonify({"error": "Invalid payment request."}), 400
    except (stripe.APIConnectionError, stripe.AuthenticationError) as e:
        logger.error(f"Stripe unavailable: {e}")
        return jsonify({"error": "Payment service temporarily unavailable."}), 503
    except stripe.StripeError as e:
        logger.error(f"Checkout error: {e}", exc_info=True)
        return jsonify({"error": "Something went wrong starting checkout."}), 500

    return jsonify({"sessionId": session.id, "url": session.url}), 200
