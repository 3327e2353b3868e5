"""
Transactional email for SalonPro.

Two interchangeable providers implement send(message) -> {"id": ...}:
- ResendProvider: Resend HTTP API (default in production)
- SmtpProvider:   plain SMTP with STARTTLS (Google Workspace etc.)

MAIL_PROVIDER picks one. Delivery is synchronous here; callers that must
not block (webhooks) go through the email queue instead.

EMAIL_SENDERS maps queue email types to senders. Only order_confirmation is
queued by this app (after checkout fulfillment). welcome (site launch) and
subscription_reminder (billing) belong to flows outside this service; they
reach the queue through the public enqueue API (queue_email()) or the
`flask queue-email` command.

Usage:
    from salonpro.services.email_service import send_email

    send_email(
        to="owner@example.com",
        subject="Hello",
        template="emails/welcome.html",
        context={"owner_name": "Jane"},
    )
"""

import logging
import re
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid

import resend
from flask import current_app, render_template

from salonpro.errors import EmailDeliveryError

logger = logging.getLogger(__name__)


def _tag_value(value):
    """Resend tags only allow ASCII letters, digits, underscores and dashes."""
    value = re.sub(r"[^A-Za-z0-9_-]+", "_", str(value or "")).strip("_")
    return value[:256] or "none"


class ResendProvider:
    """Send through the Resend API."""

    def __init__(self, api_key):
        self.api_key = api_key

    def send(self, message):
        if not self.api_key:
            raise EmailDeliveryError("RESEND_API_KEY not configured")

        resend.api_key = self.api_key
        params = {
            "from": message["from"],
            "to": message["to"] if isinstance(message["to"], list) else [message["to"]],
            "subject": message["subject"],
            "html": message["html"],
        }
        if message.get("reply_to"):
            params["reply_to"] = message["reply_to"]
        if message.get("tags"):
            params["tags"] = [
                {"name": _tag_value(t["name"]), "value": _tag_value(t["value"])}
                for t in message["tags"]
            ]

        try:
            response = resend.Emails.send(params)
        except Exception as e:
            raise EmailDeliveryError(f"Resend send failed: {e}") from e

        email_id = response.get("id") if response else None
        if not email_id:
            raise EmailDeliveryError(f"Resend returned no message id: {response!r}")
        return {"id": email_id}


class SmtpProvider:
    """Send over SMTP with STARTTLS."""

    def __init__(self, host, port, username, password):
        self.host = host
        self.port = port
        self.username = username
        self.password = password

    def send(self, message):
        if not self.username or not self.password:
            raise EmailDeliveryError("MAIL_USERNAME or MAIL_PASSWORD not configured")

        to = message["to"]
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message["subject"]
        msg["From"] = message["from"]
        msg["To"] = to if isinstance(to, str) else ", ".join(to)
        msg["Message-ID"] = make_msgid(domain=message["from"].split("@")[-1].rstrip(">"))
        if message.get("reply_to"):
            msg["Reply-To"] = message["reply_to"]
        msg.attach(MIMEText(message["html"], "html"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise EmailDeliveryError(f"SMTP send to {msg['To']} failed: {e}") from e

        return {"id": msg["Message-ID"]}


def build_provider(config):
    """Create the provider selected by MAIL_PROVIDER."""
    name = config.get("MAIL_PROVIDER", "resend")
    if name == "smtp":
        return SmtpProvider(
            host=config.get("MAIL_SMTP_HOST", "smtp.gmail.com"),
            port=config.get("MAIL_SMTP_PORT", 587),
            username=config.get("MAIL_USERNAME"),
            password=config.get("MAIL_PASSWORD"),
        )
    if name == "resend":
        return ResendProvider(config.get("RESEND_API_KEY"))
    raise ValueError(f"Unknown MAIL_PROVIDER: {name}")


def get_provider():
    """Provider bound to the current app (created on first use)."""
    app = current_app._get_current_object()
    provider = app.extensions.get("email_provider")
    if provider is None:
        provider = build_provider(app.config)
        app.extensions["email_provider"] = provider
    return provider


def _sender_address(config):
    return f"{config.get('MAIL_FROM_NAME', 'SalonPro')} <{config.get('MAIL_FROM_ADDRESS')}>"


def send_email(to, subject, template, context=None, reply_to=None, tags=None):
    """
    Render a Jinja2 HTML template and send it right away.

    Args:
        to:        Recipient email address (str or list).
        subject:   Email subject line.
        template:  Path to Jinja2 HTML template (relative to templates/).
        context:   Dict of variables to pass to the template.
        reply_to:  Optional reply-to address (defaults to MAIL_REPLY_TO).
        tags:      Optional list of {"name", "value"} dicts for the provider.

    Returns the provider result, {"id": ...}.
    Raises EmailDeliveryError if the provider fails.
    """
    config = current_app.config
    message = {
        "to": to,
        "from": _sender_address(config),
        "reply_to": reply_to or config.get("MAIL_REPLY_TO"),
        "subject": subject,
        "html": render_template(template, **(context or {})),
        "tags": tags or [],
    }
    result = get_provider().send(message)
    logger.info(f"Email sent to {to} — {subject} (id={result.get('id')})")
    return result


# ──────────────────────────────────────────────
# Queue senders, one per queued email type
# ──────────────────────────────────────────────

def send_order_confirmation(payload):
    """Customer receipt for a fulfilled checkout, plus an admin sale alert."""
    reference = (payload.get("paymentIntentId") or payload.get("orderId") or "")[-8:].upper()
    result = send_email(
        to=payload["email"],
        subject=f"Order confirmation #{reference} — SalonPro",
        template="emails/order_confirmation.html",
        context={
            "salon_name": payload.get("salonName", ""),
            "owner_name": payload.get("ownerName", ""),
            "amount": payload.get("amount", 0),
            "currency": payload.get("currency", "EUR"),
            "template_name": payload.get("templateName", ""),
            "order_id": payload.get("orderId", ""),
            "dashboard_url": payload.get("dashboardUrl", ""),
        },
        tags=[
            {"name": "category", "value": "order_confirmation"},
            {"name": "salon_name", "value": payload.get("salonName", "")},
            {"name": "payment_id", "value": payload.get("paymentIntentId", "")},
        ],
    )

    # The admin copy is informational; its failure must not retry the
    # customer email.
    try:
        send_email(
            to=current_app.config.get("ADMIN_EMAIL"),
            subject=f"New sale: {payload.get('salonName', '')} - {payload.get('amount', 0)} {payload.get('currency', 'EUR')}",
            template="emails/admin_new_sale.html",
            context={"sale": payload},
            tags=[
                {"name": "category", "value": "admin_notification"},
                {"name": "type", "value": "new_sale"},
            ],
        )
    except Exception as e:
        logger.error(f"Failed to send admin sale notification: {e}")

    return result


def send_welcome(payload):
    """Sent once the client's website is live."""
    return send_email(
        to=payload["email"],
        subject=f"Your website {payload.get('domainName', '')} is ready!",
        template="emails/welcome.html",
        context={
            "salon_name": payload.get("salonName", ""),
            "owner_name": payload.get("ownerName", ""),
            "email": payload["email"],
            "domain_name": payload.get("domainName", ""),
            "login_url": payload.get("loginUrl", ""),
            "admin_url": payload.get("adminUrl", ""),
        },
        tags=[
            {"name": "category", "value": "welcome_email"},
            {"name": "salon_name", "value": payload.get("salonName", "")},
        ],
    )


def send_subscription_reminder(payload):
    """Heads-up before the monthly maintenance charge."""
    return send_email(
        to=payload["email"],
        subject=f"Monthly payment reminder - {payload.get('salonName', '')}",
        template="emails/subscription_reminder.html",
        context={
            "salon_name": payload.get("salonName", ""),
            "owner_name": payload.get("ownerName", ""),
            "amount": payload.get("amount", 0),
            "next_billing_date": payload.get("nextBillingDate", ""),
        },
        tags=[
            {"name": "category", "value": "subscription_reminder"},
            {"name": "salon_name", "value": payload.get("salonName", "")},
        ],
    )


EMAIL_SENDERS = {
    "order_confirmation": send_order_confirmation,
    "welcome": send_welcome,
    "subscription_reminder": send_subscription_reminder,
}
