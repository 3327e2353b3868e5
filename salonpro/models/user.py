"""User model.

One row per customer account (salon owner) or staff admin. Email is the
natural key: checkout fulfillment upserts by it, never duplicates.
Flask-Login integration via UserMixin.
"""

import uuid

from flask_login import UserMixin

from salonpro.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    ROLES = ["CLIENT", "ADMIN"]
    BUSINESS_TYPES = ["SALON", "BARBERSHOP"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(255))
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), default="CLIENT", nullable=False)  # CLIENT | ADMIN

    # --- Business profile ---
    business_name = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(50), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    business_type = db.Column(
        db.String(20), default="SALON", nullable=False
    )  # SALON | BARBERSHOP

    # --- Account state ---
    is_active = db.Column(db.Boolean, default=True)
    has_completed_onboarding = db.Column(db.Boolean, default=False)
    subscription_status = db.Column(
        db.String(50), nullable=True
    )  # e.g. "active" once a checkout is fulfilled
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    orders = db.relationship("Order", back_populates="user", lazy="dynamic")
    payments = db.relationship("Payment", back_populates="user", lazy="dynamic")
    notifications = db.relationship(
        "Notification", back_populates="user", lazy="dynamic"
    )
    auto_login_tokens = db.relationship(
        "AutoLoginToken", back_populates="user", lazy="dynamic"
    )

    @property
    def is_admin(self):
        return self.role == "ADMIN"

    def __repr__(self):
        return f"<User {self.email}>"
