import json
import logging
import os

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash

from salonpro.config import config_by_name
from salonpro.extensions import db, migrate, login_manager, csrf, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from salonpro import models  # noqa: F401

    # --- Register blueprints ---
    from salonpro.blueprints.admin import admin_bp
    from salonpro.blueprints.auth import auth_bp
    from salonpro.blueprints.checkout import checkout_bp
    from salonpro.blueprints.webhooks import webhooks_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(webhooks_bp)

    # Exempt webhooks from CSRF — raw body needed for Stripe signature verification
    csrf.exempt(webhooks_bp)
    # Exempt checkout from CSRF: JSON API hit by the marketing pages
    csrf.exempt(checkout_bp)

    # --- Email queue ---
    from salonpro.services.email_queue import init_email_queue
    init_email_queue(app)

    # --- Error handlers (JSON API) ---
    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.description, "status": e.code}), e.code

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error", "status": 500}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "script-src 'self' https://js.stripe.com; "
            "connect-src 'self' https://api.stripe.com; "
            "frame-src https://js.stripe.com https://hooks.stripe.com; "
            "form-action 'self' https://checkout.stripe.com; "
            "frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-admin")
    @click.option("--email", default="admin@salonpro.local", help="Admin email")
    @click.option("--password", default="admin123", help="Admin password")
    def seed_admin(email, password):
        """Create the admin user and the starter website template.

        Usage:
            flask seed-admin
            flask seed-admin --email admin@example.com --password s3cret
        """
        from salonpro.models.user import User
        from salonpro.services.fulfillment_service import resolve_default_template

        existing = User.query.filter_by(email=email.lower()).first()
        if existing:
            click.echo(f"Admin user already exists: {email}")
        else:
            db.session.add(User(
                email=email.lower(),
                name="Admin",
                password_hash=generate_password_hash(password),
                role="ADMIN",
                is_active=True,
                has_completed_onboarding=True,
            ))
            click.echo(f"Created admin user: {email}")

        template = resolve_default_template()
        db.session.commit()

        click.echo(f"  Template:  {template.name} (id: {template.id})")

    @app.cli.command("simulate-checkout")
    @click.option("--email", required=True, help="Customer email")
    @click.option("--name", required=True, help="Customer name")
    @click.option("--business", required=True, help="Business name")
    @click.option("--phone", default="", help="Customer phone")
    @click.option("--business-type", default="salon",
                  type=click.Choice(["salon", "barbershop"]))
    @click.option("--amount", default=None, type=int,
                  help="Amount in minor units (defaults to STRIPE_PRODUCT_PRICE_CENTS)")
    def simulate_checkout(email, name, business, phone, business_type, amount):
        """Run fulfillment for a synthetic paid checkout session.

        Skips signature verification and the webhook ledger. Useful for
        exercising the account provisioning path locally.

        Usage:
            flask simulate-checkout --email jane@example.com --name "Jane" --business "Jane's Salon"
        """
        import secrets

        from salonpro.services.fulfillment_service import fulfill_checkout

        session = {
            "id": f"cs_sim_{secrets.token_hex(12)}",
            "object": "checkout.session",
            "payment_status": "paid",
            "amount_total": amount if amount is not None else app.config["STRIPE_PRODUCT_PRICE_CENTS"],
            "currency": app.config["STRIPE_CURRENCY"],
            "payment_intent": f"pi_sim_{secrets.token_hex(12)}",
            "customer": f"cus_sim_{secrets.token_hex(8)}",
            "metadata": {
                "customer_email": email,
                "customer_name": name,
                "customer_phone": phone,
                "business_name": business,
                "business_type": business_type,
                "product_type": "website_setup",
                "source": "cli_simulation",
            },
        }

        result = fulfill_checkout(session, request_id="cli")
        base_url = app.config["APP_BASE_URL"]

        click.echo("")
        click.echo("=" * 60)
        click.echo("Checkout fulfilled!")
        click.echo("=" * 60)
        click.echo(f"  Session:   {session['id']}")
        click.echo(f"  User:      {result.user_id} ({'created' if result.created_user else 'updated'})")
        click.echo(f"  Order:     {result.order_id}")
        click.echo(f"  Payment:   {result.payment_id} ({result.amount:.2f} {result.currency})")
        click.echo(f"  Login:     {base_url}/auth/auto-login/{result.token}")
        click.echo(f"  Expires:   {result.token_expires_at.isoformat()}")
        click.echo("=" * 60)

    @app.cli.command("process-email-queue")
    def process_email_queue():
        """Run one delivery pass over due pending emails.

        Only meaningful with EMAIL_QUEUE_BACKEND=database; the memory
        backend is empty in a fresh CLI process.
        """
        from salonpro.services.email_queue import get_email_queue

        queue = get_email_queue()
        attempted = queue.process_queue()
        status = queue.get_queue_status()
        queue.shutdown()
        click.echo(
            f"Attempted {attempted} email(s). pending={status['pending']} "
            f"sent={status['sent']} failed={status['failed']}"
        )

    @app.cli.command("queue-email")
    @click.argument("email_type")
    @click.option("--payload", required=True, help="JSON payload for the sender")
    @click.option("--max-attempts", default=3, type=int, help="Delivery attempts")
    def queue_email_command(email_type, payload, max_attempts):
        """Enqueue a transactional email (welcome, subscription_reminder, ...).

        Only durable with EMAIL_QUEUE_BACKEND=database; deliver it with
        `flask process-email-queue` or the running app's background driver.

        Usage:
            flask queue-email welcome --payload '{"email": "jane@example.com", "domainName": "janes-salon.de"}'
        """
        from salonpro.errors import UnknownEmailType
        from salonpro.services.email_queue import get_email_queue

        try:
            data = json.loads(payload)
        except ValueError as e:
            raise click.BadParameter(f"not valid JSON: {e}", param_hint="--payload")
        if not isinstance(data, dict) or not data.get("email"):
            raise click.BadParameter("must be a JSON object with an 'email' key",
                                     param_hint="--payload")

        try:
            email_id = get_email_queue().enqueue(email_type, data, max_attempts=max_attempts)
        except UnknownEmailType as e:
            raise click.BadParameter(str(e), param_hint="EMAIL_TYPE")
        click.echo(f"Queued {email_type} email: {email_id}")

    @app.cli.command("email-queue-status")
    def email_queue_status():
        """Print queue counts and entries as JSON."""
        from salonpro.services.email_queue import get_email_queue

        click.echo(json.dumps(get_email_queue().get_queue_status(), indent=2))
