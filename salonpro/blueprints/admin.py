"""Admin blueprint — /admin/*

Operational JSON endpoints. All routes protected by @admin_required.

Route Map:
  GET  /admin/email-queue                  — Queue counts + redacted entries
  POST /admin/email-queue/<id>/retry       — Re-deliver a permanently failed email
  POST /admin/email-queue/clear-sent       — Drop sent emails from the queue
  GET  /admin/webhook-events               — Recent webhook ledger rows
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user

from salonpro.decorators import admin_required
from salonpro.services import webhook_ledger
from salonpro.services.email_queue import get_email_queue

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


# ══════════════════════════════════════════════
#  EMAIL QUEUE
# ══════════════════════════════════════════════

@admin_bp.route("/email-queue")
@admin_required
def email_queue_status():
    return jsonify(get_email_queue().get_queue_status())


@admin_bp.route("/email-queue/<email_id>/retry", methods=["POST"])
@admin_required
def retry_email(email_id):
    """Only emails in `failed` status can be retried."""
    if not get_email_queue().retry_failed_email(email_id):
        return jsonify({"error": "Email not found or not in failed status"}), 404

    logger.info(f"Admin {current_user.id} retried email {email_id}")
    return jsonify({"ok": True, "id": email_id})


@admin_bp.route("/email-queue/clear-sent", methods=["POST"])
@admin_required
def clear_sent():
    cleared = get_email_queue().clear_sent_emails()
    return jsonify({"ok": True, "cleared": cleared})


# ══════════════════════════════════════════════
#  WEBHOOK LEDGER
# ══════════════════════════════════════════════

@admin_bp.route("/webhook-events")
@admin_required
def webhook_events():
    """Most recent ledger rows, newest first. ?limit= caps at 200."""
    limit = min(request.args.get("limit", 50, type=int) or 50, 200)
    events = webhook_ledger.recent_events(limit=limit)
    return jsonify({
        "events": [
            {
                "eventId": e.event_id,
                "eventType": e.event_type,
                "success": e.success,
                "retryCount": e.retry_count,
                "errorMessage": e.error_message,
                "processedAt": e.processed_at.isoformat() if e.processed_at else None,
                "metadata": e.metadata_ or {},
            }
            for e in events
        ]
    })
