# Models package — import all models here so Alembic can discover them.

from storefront.models.user import User  # noqa: F401
from storefront.models.order import Order, OrderItem  # noqa: F401
from storefront.models.payout import Payout  # noqa: F401
from storefront.models.webhook_event import WebhookEvent  # noqa: F401
from storefront.models.audit import AuditEvent  # noqa: F401
