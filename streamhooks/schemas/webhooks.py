"""Schemas for webhook subscriptions and delivered notifications."""
import enum
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SubscriptionStatus(str, enum.Enum):
    """Lifecycle of a hub subscription."""

    PENDING = "pending"  # Requested, awaiting the hub's verification request
    ACTIVE = "active"  # Verified, lease running
    DENIED = "denied"  # Hub refused the subscription
    EXPIRED = "expired"  # Lease lapsed without renewal


class WebhookSubscription(BaseModel):
    """A subscription tracked by the webhook manager."""

    id: str = Field(..., description="Subscription identifier used in the callback path")
    topic: str = Field(..., description="Hub topic URL")
    callback_url: str = Field(..., description="Public callback URL registered with the hub")
    secret: str = Field(..., description="HMAC secret shared with the hub", repr=False)
    lease_seconds: int = Field(..., description="Requested lease duration in seconds")
    status: SubscriptionStatus = Field(default=SubscriptionStatus.PENDING)
    expires_at: Optional[datetime] = Field(None, description="Lease expiry (UTC)")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= now


class WebhookMessage(BaseModel):
    """A notification delivered by the hub to one of our callbacks."""

    subscription_id: str
    topic: str
    message_id: Optional[str] = Field(None, description="Twitch-Notification-Id header")
    data: List[Dict[str, Any]] = Field(default_factory=list)
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SubscriptionCreate(BaseModel):
    """Request body for subscribing to a channel's stream changes."""

    user_id: str = Field(..., min_length=1, description="Twitch user id of the channel")


class SubscriptionResponse(BaseModel):
    """Public view of a subscription (the secret is never exposed)."""

    id: str
    topic: str
    status: SubscriptionStatus
    expires_at: Optional[datetime] = None

    @classmethod
    def from_subscription(cls, subscription: WebhookSubscription) -> "SubscriptionResponse":
        return cls(
            id=subscription.id,
            topic=subscription.topic,
            status=subscription.status,
            expires_at=subscription.expires_at,
        )
