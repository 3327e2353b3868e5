"""Auto-login service — token generation, lookup, and consumption.

Handles the lifecycle of post-checkout auto-login tokens:
- issue: create a short-lived token for a freshly fulfilled checkout
- find_for_session: the success page polls for its session's token
- consume: validate (not expired, not used) and mark as used
"""

import secrets
from datetime import datetime, timedelta, timezone

from salonpro.extensions import db
from salonpro.models.auto_login import AutoLoginToken

DEFAULT_TTL_MINUTES = 15


def issue_token(user_id, email, session_id, ttl_minutes=DEFAULT_TTL_MINUTES,
                metadata=None):
    """Create an auto-login token. Flushes only; the caller owns the commit.

    Args:
        user_id: account the token logs into
        email: account email, stored for audit
        session_id: originating Stripe checkout session
        ttl_minutes: lifetime of the token

    Returns:
        AutoLoginToken: the new (flushed) row
    """
    token = AutoLoginToken(
        token=secrets.token_hex(32),  # 64 hex chars
        user_id=user_id,
        email=email,
        session_id=session_id,
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes),
        metadata_=dict(metadata or {}),
    )
    db.session.add(token)
    db.session.flush()
    return token


def find_for_session(session_id):
    """Look up the usable token for a checkout session.

    Returns:
        tuple: (token, error_message, should_retry)
            - If found: (AutoLoginToken, None, False)
            - If missing/expired/used: (None, "reason", bool)
    """
    tokens = (
        AutoLoginToken.query
        .filter_by(session_id=session_id)
        .order_by(AutoLoginToken.created_at.desc())
        .all()
    )

    for token in tokens:
        if token.is_valid:
            return token, None, False

    if not tokens:
        # Webhook may not have been processed yet; the caller can poll again.
        return None, "Token not ready yet - webhook may still be processing", True
    if any(t.is_used for t in tokens):
        return None, "Token already used", False
    return None, "Token expired", False


def consume_token(value):
    """Validate a token value and mark it used.

    Returns:
        tuple: (token, error_message)
    """
    if not value:
        return None, "No token provided."

    token = AutoLoginToken.query.filter_by(token=value).first()
    if token is None:
        return None, "Invalid login link."
    if token.is_used:
        return None, "This login link has already been used."
    if token.is_expired:
        return None, "This login link has expired."

    # Conditional update: only one concurrent request can flip used_at.
    result = db.session.execute(
        db.update(AutoLoginToken)
        .where(AutoLoginToken.id == token.id, AutoLoginToken.used_at.is_(None))
        .values(used_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    if result.rowcount != 1:
        return None, "This login link has already been used."

    db.session.refresh(token)
    return token, None
