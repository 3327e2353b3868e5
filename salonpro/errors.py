"""Domain exceptions for the provisioning pipeline and the email queue.

Blueprints translate these into JSON responses; the webhook dispatcher
converts anything raised by a handler into a recorded failure outcome.
"""


class SalonProError(Exception):
    """Base class for all application errors."""


class InvalidSignature(SalonProError):
    """Webhook body/header did not verify against the shared secret."""


class MissingRequiredMetadata(SalonProError):
    """Checkout session metadata lacks fields needed for fulfillment."""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(
            f"Missing required checkout metadata: {', '.join(self.missing)}"
        )


class InvalidAmount(SalonProError):
    """Checkout total is negative or not a number."""


class FulfillmentTimeout(SalonProError):
    """Fulfillment exceeded its time budget and was rolled back."""


class EmailDeliveryError(SalonProError):
    """The email provider rejected or failed to accept a message."""


class UnknownEmailType(SalonProError):
    """No sender is registered for a queued email's type."""
