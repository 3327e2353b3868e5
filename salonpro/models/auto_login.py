"""Auto-login token model.

Issued once per fulfilled checkout so a customer who just paid can reach
their dashboard without typing a password. Tokens are single-use and
short-lived; every reader must check is_valid.
"""

import uuid
from datetime import datetime, timezone

from salonpro.extensions import db


class AutoLoginToken(db.Model):
    __tablename__ = "auto_login_tokens"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    token = db.Column(
        db.String(64), unique=True, nullable=False
    )  # cryptographically random, hex
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    session_id = db.Column(
        db.String(255), nullable=False, index=True
    )  # originating Stripe checkout session
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    metadata_ = db.Column("metadata", db.JSON, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="auto_login_tokens")

    @property
    def is_expired(self):
        """Check if the token has expired."""
        now = datetime.now(timezone.utc)
        expires = self.expires_at
        # SQLite returns naive datetimes; Postgres returns aware ones.
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return now > expires

    @property
    def is_used(self):
        return self.used_at is not None

    @property
    def is_valid(self):
        return not self.is_expired and not self.is_used

    def __repr__(self):
        return f"<AutoLoginToken token={self.token[:8]}... user={self.user_id}>"
