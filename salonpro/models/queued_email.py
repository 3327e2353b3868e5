"""Queued email model.

Durable backing table for the email queue when EMAIL_QUEUE_BACKEND is
"database". The in-memory backend keeps the same fields on a dataclass.
"""

from salonpro.extensions import db


class QueuedEmailRecord(db.Model):
    __tablename__ = "queued_emails"

    STATUSES = ["pending", "processing", "failed", "sent"]

    id = db.Column(db.String(120), primary_key=True)  # <type>_<epoch ms>_<suffix>
    email_type = db.Column(db.String(50), nullable=False)
    payload = db.Column(db.JSON, default=dict)
    attempts = db.Column(db.Integer, default=0, nullable=False)
    max_attempts = db.Column(db.Integer, default=3, nullable=False)
    status = db.Column(db.String(20), default="pending", nullable=False, index=True)
    error = db.Column(db.Text, nullable=True)
    last_attempt_at = db.Column(db.DateTime(timezone=True), nullable=True)
    next_attempt_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<QueuedEmailRecord {self.id} ({self.status})>"
