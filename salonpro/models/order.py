"""Order and website template models.

- Template: a website design from the catalog. Fulfillment falls back to
  creating a starter template if the catalog has no active BASIC one.
- Order: one per fulfilled checkout session (stripe_session_id is unique).
  The domain is chosen later in the setup wizard, so it starts blank.
"""

import uuid

from salonpro.extensions import db


class Template(db.Model):
    __tablename__ = "templates"

    CATEGORIES = ["BASIC", "PREMIUM", "ENTERPRISE"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price = db.Column(db.Float, nullable=False, default=0)
    category = db.Column(db.String(50), default="BASIC", nullable=False)
    preview_url = db.Column(db.String(500), nullable=True)
    features = db.Column(db.JSON, default=list)
    active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    orders = db.relationship("Order", back_populates="template", lazy="dynamic")

    def __repr__(self):
        return f"<Template {self.name} ({self.category})>"


class Order(db.Model):
    __tablename__ = "orders"

    # -- Valid statuses --
    STATUSES = ["PENDING", "PROCESSING", "COMPLETED", "CANCELLED"]
    # -- Setup wizard steps, in order --
    SETUP_STEPS = ["DOMAIN_SELECTION", "CONTENT", "PHOTOS", "REVIEW", "DONE"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    salon_name = db.Column(db.String(255), nullable=False)
    owner_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(50), default="")
    domain = db.Column(db.String(255), default="")  # assigned by the setup wizard
    template_id = db.Column(
        db.String(36), db.ForeignKey("templates.id"), nullable=False
    )
    total = db.Column(db.Float, nullable=False, default=0)
    status = db.Column(
        db.String(20), default="PENDING", nullable=False
    )  # PENDING | PROCESSING | COMPLETED | CANCELLED
    stripe_session_id = db.Column(db.String(255), unique=True, nullable=True)
    payment_intent_id = db.Column(db.String(255), nullable=True, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
    setup_step = db.Column(db.String(50), default="DOMAIN_SELECTION")
    setup_completed = db.Column(db.Boolean, default=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="orders")
    template = db.relationship("Template", back_populates="orders")
    payments = db.relationship("Payment", back_populates="order", lazy="dynamic")

    def __repr__(self):
        return f"<Order {self.salon_name} ({self.status})>"
