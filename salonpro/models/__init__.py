# Models package — import all models here so Alembic can discover them.

from salonpro.models.user import User  # noqa: F401
from salonpro.models.order import Order, Template  # noqa: F401
from salonpro.models.payment import Payment  # noqa: F401
from salonpro.models.notification import Notification  # noqa: F401
from salonpro.models.auto_login import AutoLoginToken  # noqa: F401
from salonpro.models.stripe_event import StripeWebhookEvent  # noqa: F401
from salonpro.models.queued_email import QueuedEmailRecord  # noqa: F401
