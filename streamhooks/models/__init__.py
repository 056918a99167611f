"""Database models."""

from streamhooks.models.session import SessionRecord
from streamhooks.models.webhook_subscription import WebhookSubscriptionRecord

__all__ = [
    "SessionRecord",
    "WebhookSubscriptionRecord",
]
