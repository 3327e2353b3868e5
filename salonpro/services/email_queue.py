"""Email queue — at-least-once delivery of transactional email.

Decouples outbound email from request handling:
- enqueue() stores a pending entry and schedules a processing pass
- each delivery attempt calls the sender registered for the email type
- transient failures retry with capped exponential backoff plus jitter
- an email that exhausts its attempts is marked failed and dead-lettered
  exactly once (CRITICAL log + optional admin alert webhook)
- entries left in `processing` by a crashed process are recovered on start
  and by the periodic housekeeping pass

Storage and scheduling are injected. Production uses ThreadScheduler (daemon
timers running inside an app context) with either the in-memory store or the
queued_emails table. Tests use ManualScheduler, whose virtual clock is
advanced by hand, so nothing sleeps.
"""

import heapq
import itertools
import json
import logging
import random
import secrets
import string
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import requests
from flask import current_app

from salonpro.errors import EmailDeliveryError, UnknownEmailType
from salonpro.extensions import db
from salonpro.models.queued_email import QueuedEmailRecord

logger = logging.getLogger(__name__)

BASE_DELAY_SECONDS = 5.0
MAX_DELAY_SECONDS = 300.0
JITTER_SECONDS = 1.0
DEFAULT_MAX_ATTEMPTS = 3

STATUSES = ("pending", "processing", "failed", "sent")


def _utcnow():
    return datetime.now(timezone.utc)


def calculate_backoff_delay(attempts, base_delay=BASE_DELAY_SECONDS,
                            max_delay=MAX_DELAY_SECONDS, jitter=JITTER_SECONDS,
                            rng=random.random):
    """Seconds to wait before the attempt after `attempts` failures.

    min(base * 2^(attempts-1), max) plus up to `jitter` seconds of noise.
    """
    exponent = max(attempts - 1, 0)
    delay = min(base_delay * (2 ** exponent), max_delay)
    return delay + rng() * jitter


def generate_email_id(email_type, now=None):
    """<type>_<epoch ms>_<9 random base36 chars>."""
    now = now or _utcnow()
    suffix = "".join(
        secrets.choice(string.ascii_lowercase + string.digits) for _ in range(9)
    )
    return f"{email_type}_{int(now.timestamp() * 1000)}_{suffix}"


@dataclass
class QueuedEmail:
    id: str
    email_type: str
    payload: dict
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    attempts: int = 0
    status: str = "pending"
    error: str = None
    created_at: datetime = field(default_factory=_utcnow)
    last_attempt_at: datetime = None
    next_attempt_at: datetime = None

    def summary(self):
        """Redacted view (no payload) for status endpoints."""
        return {
            "id": self.id,
            "type": self.email_type,
            "status": self.status,
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "lastAttemptAt": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "nextAttemptAt": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            "error": self.error,
        }


# ──────────────────────────────────────────────
# Stores
# ──────────────────────────────────────────────

class MemoryEmailStore:
    """Process-local store. Entries are lost on restart."""

    def __init__(self):
        self._emails = {}

    def add(self, email):
        self._emails[email.id] = email

    def get(self, email_id):
        return self._emails.get(email_id)

    def save(self, email):
        self._emails[email.id] = email

    def delete(self, email_id):
        self._emails.pop(email_id, None)

    def all(self):
        return list(self._emails.values())


class DatabaseEmailStore:
    """Durable store on the queued_emails table. Needs an app context."""

    def add(self, email):
        row = QueuedEmailRecord(id=email.id, created_at=email.created_at)
        self._apply(row, email)
        db.session.add(row)
        db.session.commit()

    def get(self, email_id):
        row = db.session.get(QueuedEmailRecord, email_id)
        return self._to_email(row) if row else None

    def save(self, email):
        row = db.session.get(QueuedEmailRecord, email.id)
        self._apply(row, email)
        db.session.commit()

    @staticmethod
    def _apply(row, email):
        row.email_type = email.email_type
        row.payload = dict(email.payload or {})
        row.attempts = email.attempts
        row.max_attempts = email.max_attempts
        row.status = email.status
        row.error = email.error
        row.last_attempt_at = email.last_attempt_at
        row.next_attempt_at = email.next_attempt_at

    def delete(self, email_id):
        row = db.session.get(QueuedEmailRecord, email_id)
        if row:
            db.session.delete(row)
            db.session.commit()

    def all(self):
        rows = QueuedEmailRecord.query.order_by(QueuedEmailRecord.created_at).all()
        return [self._to_email(row) for row in rows]

    @staticmethod
    def _aware(value):
        # SQLite returns naive datetimes; Postgres returns aware ones.
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def _to_email(self, row):
        return QueuedEmail(
            id=row.id,
            email_type=row.email_type,
            payload=dict(row.payload or {}),
            max_attempts=row.max_attempts,
            attempts=row.attempts,
            status=row.status,
            error=row.error,
            created_at=self._aware(row.created_at),
            last_attempt_at=self._aware(row.last_attempt_at),
            next_attempt_at=self._aware(row.next_attempt_at),
        )


# ──────────────────────────────────────────────
# Schedulers
# ──────────────────────────────────────────────

class ThreadScheduler:
    """One-shot and periodic jobs on daemon threading.Timer threads.

    When an app is given, every job runs inside app.app_context() so jobs
    can render templates and use the database session.
    """

    def __init__(self, app=None):
        self.app = app
        self._timers = set()
        self._lock = threading.Lock()
        self._closed = False

    def utcnow(self):
        return _utcnow()

    def call_later(self, delay, fn, *args):
        timer = threading.Timer(max(0.0, delay), self._run, args=(fn, args))
        timer.daemon = True
        with self._lock:
            if self._closed:
                return None
            self._timers.add(timer)
        timer.start()
        return timer

    def call_every(self, interval, fn):
        def tick():
            try:
                fn()
            finally:
                self.call_later(interval, tick)

        return self.call_later(interval, tick)

    def shutdown(self):
        with self._lock:
            self._closed = True
            timers, self._timers = self._timers, set()
        for timer in timers:
            timer.cancel()

    def _run(self, fn, args):
        with self._lock:
            self._timers.discard(threading.current_thread())
        try:
            if self.app is not None:
                with self.app.app_context():
                    fn(*args)
            else:
                fn(*args)
        except Exception:
            logger.exception(f"Scheduled job {getattr(fn, '__name__', fn)} failed")


class ManualScheduler:
    """Deterministic scheduler with a virtual clock.

    Nothing runs until run_pending() or advance() is called. `scheduled`
    records (delay, job name) for every call_later, for assertions.
    """

    EPOCH = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __init__(self):
        self._now = 0.0
        self._jobs = []
        self._seq = itertools.count()
        self._closed = False
        self.scheduled = []

    def utcnow(self):
        return self.EPOCH + timedelta(seconds=self._now)

    @property
    def now(self):
        return self._now

    def call_later(self, delay, fn, *args):
        if self._closed:
            return None
        self.scheduled.append((delay, getattr(fn, "__name__", repr(fn))))
        job = [self._now + max(0.0, delay), next(self._seq), fn, args, None]
        heapq.heappush(self._jobs, job)
        return job

    def call_every(self, interval, fn):
        if self._closed:
            return None
        job = [self._now + interval, next(self._seq), fn, (), interval]
        heapq.heappush(self._jobs, job)
        return job

    def shutdown(self):
        self._closed = True
        self._jobs = []

    def pending_count(self):
        return len(self._jobs)

    def run_pending(self):
        """Run every job that is due now, including ones they schedule."""
        ran = 0
        while self._jobs and self._jobs[0][0] <= self._now:
            _, _, fn, args, interval = heapq.heappop(self._jobs)
            if interval is not None:
                heapq.heappush(
                    self._jobs, [self._now + interval, next(self._seq), fn, args, interval]
                )
            fn(*args)
            ran += 1
        return ran

    def advance(self, seconds):
        """Move the clock forward, running jobs in due order."""
        target = self._now + seconds
        ran = 0
        while self._jobs and self._jobs[0][0] <= target:
            self._now = max(self._now, self._jobs[0][0])
            ran += self.run_pending()
        self._now = target
        return ran + self.run_pending()


# ──────────────────────────────────────────────
# Queue
# ──────────────────────────────────────────────

class EmailQueue:
    """Retrying email queue. See module docstring."""

    def __init__(self, senders, store=None, scheduler=None,
                 base_delay=BASE_DELAY_SECONDS, max_delay=MAX_DELAY_SECONDS,
                 jitter=JITTER_SECONDS, sent_retention=60.0, poll_interval=30.0,
                 gc_interval=300.0, stale_after=300.0, alert_webhook_url=None,
                 rng=random.random, clock=None):
        self.senders = dict(senders)
        self.store = store if store is not None else MemoryEmailStore()
        self.scheduler = scheduler if scheduler is not None else ThreadScheduler()
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.sent_retention = sent_retention
        self.poll_interval = poll_interval
        self.gc_interval = gc_interval
        self.stale_after = stale_after
        self.alert_webhook_url = alert_webhook_url
        self.rng = rng
        self.clock = clock or getattr(self.scheduler, "utcnow", _utcnow)
        self.started = False
        self._lock = threading.RLock()

    # --- Public API ---

    def enqueue(self, email_type, payload, max_attempts=DEFAULT_MAX_ATTEMPTS):
        """Store a pending email and schedule delivery. Returns the queue id."""
        if email_type not in self.senders:
            raise UnknownEmailType(f"Unknown email type: {email_type}")

        now = self.clock()
        email = QueuedEmail(
            id=generate_email_id(email_type, now),
            email_type=email_type,
            payload=dict(payload or {}),
            max_attempts=max_attempts,
            created_at=now,
        )
        with self._lock:
            self.store.add(email)

        logger.info(f"Queued {email_type} email {email.id}")
        self.scheduler.call_later(0, self.process_queue)
        return email.id

    def process_queue(self):
        """Attempt every pending email that is due. Returns how many ran."""
        now = self.clock()
        with self._lock:
            due = [
                e.id for e in self.store.all()
                if e.status == "pending"
                and e.attempts < e.max_attempts
                and (e.next_attempt_at is None or e.next_attempt_at <= now)
            ]
        for email_id in due:
            self.process_email(email_id)
        return len(due)

    def process_email(self, email_id):
        """Make one delivery attempt, if the email is still pending."""
        with self._lock:
            email = self.store.get(email_id)
            if email is None or email.status != "pending":
                return None
            if email.attempts >= email.max_attempts:
                return None
            email.status = "processing"
            email.attempts += 1
            email.last_attempt_at = self.clock()
            email.next_attempt_at = None
            self.store.save(email)
            sender = self.senders.get(email.email_type)
            payload = dict(email.payload)

        try:
            if sender is None:
                raise UnknownEmailType(f"Unknown email type: {email.email_type}")
            result = sender(payload)
            if isinstance(result, dict) and result.get("success") is False:
                raise EmailDeliveryError(result.get("error") or "Email send failed")
        except Exception as e:
            return self._record_failure(email_id, e)

        return self._record_success(email_id, result)

    def get_queue_status(self):
        with self._lock:
            emails = self.store.all()
        counts = {status: 0 for status in STATUSES}
        for email in emails:
            counts[email.status] = counts.get(email.status, 0) + 1
        return {
            "total": len(emails),
            **counts,
            "emails": [email.summary() for email in emails],
        }

    def retry_failed_email(self, email_id):
        """Reset a permanently failed email and deliver it again."""
        with self._lock:
            email = self.store.get(email_id)
            if email is None or email.status != "failed":
                return False
            email.status = "pending"
            email.attempts = 0
            email.error = None
            email.next_attempt_at = None
            self.store.save(email)

        logger.info(f"Manual retry requested for email {email_id}")
        self.scheduler.call_later(0, self.process_email, email_id)
        return True

    def clear_sent_emails(self):
        """Drop sent emails from the store. Returns how many were removed."""
        with self._lock:
            sent = [e.id for e in self.store.all() if e.status == "sent"]
            for email_id in sent:
                self.store.delete(email_id)
        if sent:
            logger.info(f"Cleared {len(sent)} sent emails from queue")
        return len(sent)

    def start(self):
        """Start the periodic safety-net pass and housekeeping.

        The first job recovers deliveries interrupted by a previous process.
        """
        if self.started:
            return
        self.scheduler.call_later(0, self.recover_stalled)
        self.scheduler.call_every(self.poll_interval, self.process_queue)
        self.scheduler.call_every(self.gc_interval, self._housekeeping)
        self.started = True
        logger.info("Email queue processor started")

    def recover_stalled(self):
        """Put entries stuck in `processing` back through the failure path.

        An entry whose last attempt started more than stale_after seconds ago
        never finished (the process died mid-send). That attempt counts as a
        failure: the entry is retried with backoff, or dead-lettered if it was
        the last one. Returns how many entries were recovered.
        """
        cutoff = self.clock() - timedelta(seconds=self.stale_after)
        with self._lock:
            stalled = [
                e.id for e in self.store.all()
                if e.status == "processing"
                and (e.last_attempt_at is None or e.last_attempt_at <= cutoff)
            ]
        for email_id in stalled:
            logger.warning(f"Recovering email {email_id} stuck in processing")
            self._record_failure(
                email_id, EmailDeliveryError("Delivery interrupted before completion")
            )
        return len(stalled)

    def shutdown(self):
        self.scheduler.shutdown()
        self.started = False

    # --- Internals ---

    def _record_success(self, email_id, result):
        with self._lock:
            email = self.store.get(email_id)
            email.status = "sent"
            email.error = None
            self.store.save(email)

        provider_id = result.get("id") if isinstance(result, dict) else None
        logger.info(f"Email sent: {email_id} (provider id={provider_id})")
        self.scheduler.call_later(self.sent_retention, self._purge_sent, email_id)
        return email

    def _record_failure(self, email_id, error):
        dead = False
        with self._lock:
            email = self.store.get(email_id)
            email.error = str(error) or error.__class__.__name__
            if email.attempts >= email.max_attempts:
                email.status = "failed"
                dead = True
                delay = None
            else:
                email.status = "pending"
                delay = calculate_backoff_delay(
                    email.attempts, self.base_delay, self.max_delay, self.jitter, self.rng
                )
                email.next_attempt_at = self.clock() + timedelta(seconds=delay)
            self.store.save(email)

        logger.warning(
            f"Failed to send email {email_id} "
            f"(attempt {email.attempts}/{email.max_attempts}): {email.error}"
        )

        if dead:
            self._dead_letter(email)
        else:
            logger.info(f"Retrying email {email_id} in {delay:.1f}s")
            self.scheduler.call_later(delay, self.process_email, email_id)
        return email

    def _housekeeping(self):
        self.clear_sent_emails()
        self.recover_stalled()

    def _purge_sent(self, email_id):
        with self._lock:
            email = self.store.get(email_id)
            if email is not None and email.status == "sent":
                self.store.delete(email_id)

    def _dead_letter(self, email):
        """Permanent failure: never silently dropped."""
        record = {
            "emailId": email.id,
            "type": email.email_type,
            "data": email.payload,
            "attempts": email.attempts,
            "error": email.error,
            "createdAt": email.created_at.isoformat() if email.created_at else None,
            "lastAttemptAt": email.last_attempt_at.isoformat() if email.last_attempt_at else None,
            "failedAt": self.clock().isoformat(),
        }
        logger.critical(
            f"PERMANENTLY FAILED EMAIL {email.id}: {json.dumps(record, default=str)}"
        )

        if not self.alert_webhook_url:
            return
        try:
            requests.post(
                self.alert_webhook_url,
                json={
                    "type": "critical_email_failure",
                    "data": record,
                    "message": f"Email permanently failed after {email.attempts} attempts",
                    "severity": "critical",
                },
                timeout=10,
            )
        except requests.RequestException as e:
            logger.error(f"Failed to send dead-letter alert for {email.id}: {e}")


# ──────────────────────────────────────────────
# App wiring
# ──────────────────────────────────────────────

def build_email_queue(app, senders=None):
    """Create an EmailQueue configured from app.config."""
    from salonpro.services.email_service import EMAIL_SENDERS

    config = app.config
    if config.get("EMAIL_QUEUE_SCHEDULER", "thread") == "manual":
        scheduler = ManualScheduler()
    else:
        scheduler = ThreadScheduler(app)

    if config.get("EMAIL_QUEUE_BACKEND", "memory") == "database":
        store = DatabaseEmailStore()
    else:
        store = MemoryEmailStore()

    return EmailQueue(
        senders=senders if senders is not None else EMAIL_SENDERS,
        store=store,
        scheduler=scheduler,
        base_delay=config.get("EMAIL_QUEUE_BASE_DELAY_SECONDS", BASE_DELAY_SECONDS),
        max_delay=config.get("EMAIL_QUEUE_MAX_DELAY_SECONDS", MAX_DELAY_SECONDS),
        sent_retention=config.get("EMAIL_QUEUE_SENT_RETENTION_SECONDS", 60.0),
        poll_interval=config.get("EMAIL_QUEUE_POLL_SECONDS", 30.0),
        stale_after=config.get("EMAIL_QUEUE_STALE_PROCESSING_SECONDS", 300.0),
        alert_webhook_url=config.get("ADMIN_ALERT_WEBHOOK_URL"),
    )


def init_email_queue(app):
    """Attach the queue to the app and start the background driver."""
    queue = build_email_queue(app)
    app.extensions["email_queue"] = queue
    if app.config.get("EMAIL_QUEUE_AUTOSTART"):
        queue.start()
    return queue


def get_email_queue():
    return current_app.extensions["email_queue"]


def queue_email(email_type, payload, max_attempts=DEFAULT_MAX_ATTEMPTS):
    """Enqueue on the current app's queue."""
    return get_email_queue().enqueue(email_type, payload, max_attempts)
