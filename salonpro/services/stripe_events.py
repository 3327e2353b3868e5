"""Typed views over verified Stripe webhook payloads.

parse_event() turns the raw event dict into exactly one of a closed set of
variants, so the dispatcher matches on types instead of string tags.
Anything we don't act on becomes UnhandledEvent and is still acknowledged.
"""

from dataclasses import dataclass, field

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
SUBSCRIPTION_CREATED = "customer.subscription.created"


@dataclass(frozen=True)
class StripeEventBase:
    event_id: str
    event_type: str
    data: dict = field(default_factory=dict)  # event["data"]["object"]


@dataclass(frozen=True)
class CheckoutCompleted(StripeEventBase):
    @property
    def session_id(self):
        return self.data.get("id")


@dataclass(frozen=True)
class PaymentSucceeded(StripeEventBase):
    @property
    def payment_intent_id(self):
        return self.data.get("id")


@dataclass(frozen=True)
class PaymentFailed(StripeEventBase):
    @property
    def payment_intent_id(self):
        return self.data.get("id")


@dataclass(frozen=True)
class InvoicePaymentSucceeded(StripeEventBase):
    pass


@dataclass(frozen=True)
class SubscriptionCreated(StripeEventBase):
    pass


@dataclass(frozen=True)
class UnhandledEvent(StripeEventBase):
    pass


EVENT_TYPES = {
    CHECKOUT_COMPLETED: CheckoutCompleted,
    PAYMENT_SUCCEEDED: PaymentSucceeded,
    PAYMENT_FAILED: PaymentFailed,
    INVOICE_PAYMENT_SUCCEEDED: InvoicePaymentSucceeded,
    SUBSCRIPTION_CREATED: SubscriptionCreated,
}


def _data_object(event):
    data = event.get("data")
    if not isinstance(data, dict):
        return None
    obj = data.get("object")
    return obj if isinstance(obj, dict) else None


def parse_event(event):
    """Build the typed variant for a verified event dict.

    Raises ValueError when data.object is missing or not an object.
    """
    event_type = event.get("type", "")
    data = _data_object(event)
    if data is None:
        raise ValueError(f"Malformed {event_type or 'event'} payload: data.object is not an object")
    cls = EVENT_TYPES.get(event_type, UnhandledEvent)
    return cls(event_id=event["id"], event_type=event_type, data=data)


def describe_object_type(event):
    """Return the Stripe object kind carried by the event, for ledger metadata."""
    obj = _data_object(event) or {}
    return obj.get("type") or obj.get("object") or "unknown"
