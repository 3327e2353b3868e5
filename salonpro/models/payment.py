"""Payment model.

Amounts are stored in major currency units (Stripe minor units / 100).
stripe_payment_id holds the PaymentIntent id, which is also how the
payment_intent.* webhooks find the row again.
"""

import uuid

from salonpro.extensions import db


class Payment(db.Model):
    __tablename__ = "payments"

    STATUSES = ["PENDING", "COMPLETED", "FAILED", "REFUNDED"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    order_id = db.Column(
        db.String(36), db.ForeignKey("orders.id"), nullable=True
    )  # attached after the order is created
    amount = db.Column(db.Float, nullable=False)
    currency = db.Column(db.String(3), default="EUR", nullable=False)
    status = db.Column(
        db.String(20), default="PENDING", nullable=False
    )  # PENDING | COMPLETED | FAILED | REFUNDED
    method = db.Column(db.String(20), default="STRIPE", nullable=False)
    stripe_payment_id = db.Column(db.String(255), nullable=True, index=True)
    description = db.Column(db.String(500), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    metadata_ = db.Column("metadata", db.JSON, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="payments")
    order = db.relationship("Order", back_populates="payments")

    def __repr__(self):
        return f"<Payment {self.amount} {self.currency} ({self.status})>"
