"""Auth blueprint — /auth/*

Post-checkout auto-login:
- GET /auth/auto-login?session_id=<cs_...>  — success page polls for its token
- GET /auth/auto-login/<token>              — consume token, log in, redirect
"""

import logging
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, redirect, request, url_for
from flask_login import login_user

from salonpro.extensions import db, limiter
from salonpro.models.user import User
from salonpro.services import auto_login_service

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


@auth_bp.route("/auto-login", methods=["GET"])
@limiter.limit("30 per minute")
def auto_login_for_session():
    """Return the usable token for a checkout session.

    404 with shouldRetry=true while the webhook is still being processed.
    """
    session_id = (request.args.get("session_id") or "").strip()
    if not session_id:
        return jsonify({"error": "session_id is required"}), 400

    token, error, should_retry = auto_login_service.find_for_session(session_id)
    if error:
        return jsonify({"error": error, "shouldRetry": should_retry}), 404

    return jsonify({
        "success": True,
        "token": token.token,
        "expiresAt": token.expires_at.isoformat(),
        "loginUrl": url_for("auth.auto_login", token=token.token, _external=True),
    })


@auth_bp.route("/auto-login/<token>", methods=["GET"])
@limiter.limit("10 per minute")
def auto_login(token):
    """Single-use login link. Marks the token used and starts a session."""
    record, error = auto_login_service.consume_token(token)
    if error:
        logger.warning(f"Auto-login rejected: {error}")
        return jsonify({"error": error}), 400

    user = db.session.get(User, record.user_id)
    if user is None or not user.is_active:
        logger.warning(f"Auto-login token {record.id} points at inactive user {record.user_id}")
        return jsonify({"error": "Account is not active."}), 403

    login_user(user, remember=True)
    user.last_login_at = datetime.now(timezone.utc)
    db.session.commit()
    logger.info(f"User {user.id} logged in via auto-login token {record.id}")

    destination = current_app.config.get("CLIENT_ONBOARDING_PATH", "/client/onboarding")
    if user.has_completed_onboarding:
        destination = "/client/dashboard"
    return redirect(destination)
