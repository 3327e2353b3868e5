"""Tests for the admin blueprint.

Covers:
- Auth guards (anonymous 401, non-admin 403)
- Email queue status / retry / clear-sent
- Webhook ledger listing
"""


def login_as(client, user_id):
    """Put a Flask-Login session cookie on the test client."""
    with client.session_transaction() as sess:
        sess["_user_id"] = user_id
        sess["_fresh"] = True


class TestAuthGuards:

    def test_anonymous_gets_401(self, client, seed_data):
        resp = client.get("/admin/email-queue")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Authentication required"

    def test_client_user_gets_403(self, client, seed_data):
        login_as(client, seed_data["client_id"])
        resp = client.get("/admin/email-queue")
        assert resp.status_code == 403

    def test_post_routes_are_guarded(self, client, seed_data):
        login_as(client, seed_data["client_id"])
        assert client.post("/admin/email-queue/clear-sent").status_code == 403
        assert client.post("/admin/email-queue/abc/retry").status_code == 403


class TestEmailQueueAdmin:

    def test_status(self, client, seed_data, email_queue):
        email_queue.enqueue("order_confirmation", {"email": "jane@example.com"})
        login_as(client, seed_data["admin_id"])

        resp = client.get("/admin/email-queue")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["total"] == 1
        assert data["pending"] == 1
        assert "jane@example.com" not in resp.get_data(as_text=True)

    def test_retry_failed_email(self, client, seed_data, email_queue, email_provider):
        email_provider.fail_times = 1
        email_id = email_queue.enqueue(
            "order_confirmation",
            {"email": "jane@example.com", "salonName": "Jane's Salon"},
            max_attempts=1,
        )
        email_queue.scheduler.run_pending()
        assert email_queue.store.get(email_id).status == "failed"
        login_as(client, seed_data["admin_id"])

        resp = client.post(f"/admin/email-queue/{email_id}/retry")

        assert resp.status_code == 200
        assert resp.get_json() == {"ok": True, "id": email_id}
        email_queue.scheduler.run_pending()
        assert email_queue.store.get(email_id).status == "sent"

    def test_retry_unknown_email_returns_404(self, client, seed_data):
        login_as(client, seed_data["admin_id"])
        resp = client.post("/admin/email-queue/nope/retry")
        assert resp.status_code == 404

    def test_clear_sent(self, client, seed_data, email_queue):
        email_queue.enqueue("order_confirmation", {"email": "jane@example.com"})
        email_queue.scheduler.run_pending()
        login_as(client, seed_data["admin_id"])

        resp = client.post("/admin/email-queue/clear-sent")

        assert resp.get_json() == {"ok": True, "cleared": 1}
        assert email_queue.get_queue_status()["total"] == 0


class TestWebhookEventsAdmin:

    def test_lists_recent_events(self, client, seed_data, post_event):
        post_event({
            "id": "evt_admin_001",
            "type": "invoice.payment_succeeded",
            "data": {"object": {"id": "in_1", "object": "invoice"}},
        })
        login_as(client, seed_data["admin_id"])

        resp = client.get("/admin/webhook-events?limit=10")

        assert resp.status_code == 200
        events = resp.get_json()["events"]
        assert len(events) == 1
        assert events[0]["eventId"] == "evt_admin_001"
        assert events[0]["success"] is True
        assert events[0]["retryCount"] == 0
