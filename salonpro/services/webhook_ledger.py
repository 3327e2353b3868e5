"""Webhook ledger — idempotency bookkeeping for Stripe events.

Responsible for:
- Recording an event the instant it is accepted (success=False)
- Recording the handler outcome (success or failure + error details)
- Bumping the retry counter when Stripe redelivers a known event

Each function commits its own write so the ledger row is durable
independently of the business transaction that runs between them.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from salonpro.extensions import db
from salonpro.models.stripe_event import StripeWebhookEvent

logger = logging.getLogger(__name__)


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def lookup(event_id):
    """Return the ledger row for event_id, or None."""
    return StripeWebhookEvent.query.filter_by(event_id=event_id).first()


def record_start(event_id, event_type, metadata=None):
    """Insert the ledger row for a newly accepted event.

    Returns True if this delivery owns the event, False if another
    delivery inserted the same event_id first (unique constraint).
    """
    entry = StripeWebhookEvent(
        event_id=event_id,
        event_type=event_type,
        success=False,
        retry_count=0,
        metadata_=dict(metadata or {}),
    )
    db.session.add(entry)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info(f"Ledger insert lost race for event {event_id}")
        return False
    return True


def record_outcome(event_id, success, metadata=None, error=None):
    """Store the handler result on the ledger row."""
    entry = lookup(event_id)
    if entry is None:
        # Should not happen: record_start always runs first.
        logger.error(f"No ledger row to record outcome for event {event_id}")
        return None

    merged = dict(entry.metadata_ or {})
    merged.update(metadata or {})
    entry.metadata_ = merged
    entry.success = bool(success)
    entry.error_message = None if success else (error or "Unknown error")
    db.session.commit()
    return entry


def bump_retry(event_id, metadata=None):
    """Count a redelivery of an already-known event. Never runs handlers.

    The counter is incremented in SQL so concurrent redeliveries of the
    same event never lose an increment.
    """
    entry = lookup(event_id)
    if entry is None:
        return None

    merged = dict(entry.metadata_ or {})
    merged.update(metadata or {})
    merged.setdefault("lastRetryAt", _now_iso())

    db.session.execute(
        db.update(StripeWebhookEvent)
        .where(StripeWebhookEvent.event_id == event_id)
        .values({
            StripeWebhookEvent.retry_count: db.func.coalesce(StripeWebhookEvent.retry_count, 0) + 1,
            StripeWebhookEvent.metadata_: merged,
        })
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return entry


def recent_events(limit=50):
    """Most recent ledger rows, newest first (admin view)."""
    return (
        StripeWebhookEvent.query
        .order_by(StripeWebhookEvent.processed_at.desc())
        .limit(limit)
        .all()
    )
