"""
Persisted webhook subscriptions.

Rows are written by the webhook persistence adapter so that subscriptions
survive restarts: on ``WebhookManager.init()`` every stored subscription
is either rescheduled for renewal or renewed immediately when its lease
has already lapsed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from streamhooks.core.database import Base


class WebhookSubscriptionRecord(Base):
    """
    Storage row for a WebSub subscription against the Twitch hub.

    Attributes:
        subscription_id: Identifier embedded in the callback URL
        topic: Hub topic URL (e.g. ``.../helix/streams?user_id=123``)
        callback_url: Public URL the hub delivers notifications to
        secret: HMAC secret shared with the hub for payload signatures
        lease_seconds: Requested lease duration
        status: pending, active, denied or expired
        expires_at: Lease expiry as confirmed by the hub (None while pending)
    """

    __tablename__ = "webhook_subscriptions"

    subscription_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    topic: Mapped[str] = mapped_column(Text, nullable=False)
    callback_url: Mapped[str] = mapped_column(Text, nullable=False)
    secret: Mapped[str] = mapped_column(String(128), nullable=False)
    lease_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<WebhookSubscriptionRecord(subscription_id={self.subscription_id!r}, "
            f"topic={self.topic!r}, status={self.status!r})>"
        )
