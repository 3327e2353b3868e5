"""Stripe webhook event model (idempotency ledger).

Every webhook event is recorded by its Stripe event ID the moment it is
accepted, before any business logic runs. The unique constraint on event_id
is what makes concurrent redeliveries safe: only one insert can win.
"""

import uuid

from salonpro.extensions import db


class StripeWebhookEvent(db.Model):
    __tablename__ = "stripe_webhook_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "checkout.session.completed"
    success = db.Column(db.Boolean, default=False, nullable=False)
    retry_count = db.Column(db.Integer, default=0, nullable=False)
    metadata_ = db.Column("metadata", db.JSON, default=dict)
    error_message = db.Column(db.Text, nullable=True)
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        state = "ok" if self.success else "pending/failed"
        return f"<StripeWebhookEvent {self.event_id} ({self.event_type}, {state})>"
