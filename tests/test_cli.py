"""Tests for the flask CLI commands."""

import json

from salonpro.extensions import db
from salonpro.models.auto_login import AutoLoginToken
from salonpro.models.order import Template
from salonpro.models.user import User


def test_seed_admin_creates_admin_and_template(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["seed-admin", "--email", "Boss@SalonPro.app"])

    assert result.exit_code == 0, result.output
    assert "Created admin user" in result.output
    admin = User.query.filter_by(email="boss@salonpro.app").first()
    assert admin.role == "ADMIN"
    assert Template.query.count() == 1


def test_seed_admin_is_idempotent(app):
    runner = app.test_cli_runner()
    runner.invoke(args=["seed-admin"])

    result = runner.invoke(args=["seed-admin"])

    assert "already exists" in result.output
    assert User.query.filter_by(role="ADMIN").count() == 1


def test_simulate_checkout(app, seed_data):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        "simulate-checkout",
        "--email", "cli@example.com",
        "--name", "Cli Owner",
        "--business", "Cli Cuts",
        "--business-type", "barbershop",
    ])

    assert result.exit_code == 0, result.output
    assert "Checkout fulfilled!" in result.output
    assert "/auth/auto-login/" in result.output
    user = User.query.filter_by(email="cli@example.com").first()
    assert user.business_name == "Cli Cuts"
    assert user.business_type == "BARBERSHOP"
    assert db.session.query(AutoLoginToken).filter_by(user_id=user.id).count() == 1


def test_email_queue_status(app, email_queue):
    email_queue.enqueue("welcome", {"email": "jane@example.com"})
    runner = app.test_cli_runner()

    result = runner.invoke(args=["email-queue-status"])

    assert result.exit_code == 0, result.output
    status = json.loads(result.output)
    assert status["total"] == 1
    assert status["emails"][0]["type"] == "welcome"


def test_queue_email_enqueues_welcome(app, email_queue, email_provider):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        "queue-email", "welcome",
        "--payload", json.dumps({"email": "jane@example.com", "domainName": "janes-salon.de"}),
    ])

    assert result.exit_code == 0, result.output
    assert "Queued welcome email: welcome_" in result.output
    status = email_queue.get_queue_status()
    assert status["pending"] == 1
    assert status["emails"][0]["type"] == "welcome"

    email_queue.scheduler.run_pending()
    assert email_provider.sent[0]["to"] == "jane@example.com"
    assert "janes-salon.de" in email_provider.sent[0]["subject"]


def test_queue_email_rejects_bad_input(app, email_queue):
    runner = app.test_cli_runner()

    unknown = runner.invoke(args=["queue-email", "newsletter", "--payload", '{"email": "a@b.co"}'])
    not_json = runner.invoke(args=["queue-email", "welcome", "--payload", "{oops"])
    no_email = runner.invoke(args=["queue-email", "welcome", "--payload", "{}"])

    assert unknown.exit_code == 2
    assert "Unknown email type" in unknown.output
    assert not_json.exit_code == 2
    assert no_email.exit_code == 2
    assert email_queue.get_queue_status()["total"] == 0
