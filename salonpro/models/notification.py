"""Notification model.

In-app notifications. user_id is nullable: webhook telemetry records are
system-level and may not belong to any account.
"""

import uuid

from salonpro.extensions import db


class Notification(db.Model):
    __tablename__ = "notifications"

    TYPES = ["PAYMENT", "SYSTEM", "ORDER", "INFO"]
    PRIORITIES = ["LOW", "MEDIUM", "HIGH"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(20), default="INFO", nullable=False)
    priority = db.Column(db.String(10), default="MEDIUM", nullable=False)
    action_url = db.Column(db.String(500), nullable=True)
    action_text = db.Column(db.String(255), nullable=True)
    metadata_ = db.Column("metadata", db.JSON, default=dict)
    read = db.Column(db.Boolean, default=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="notifications")

    def __repr__(self):
        return f"<Notification {self.type} {self.title!r}>"
