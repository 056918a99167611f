"""
Persistence adapter for webhook subscriptions.

Maps ``WebhookSubscription`` schemas to ``WebhookSubscriptionRecord`` rows
through the session factory of the shared ``Database``.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, select

from streamhooks.core.database import Database
from streamhooks.models.webhook_subscription import WebhookSubscriptionRecord
from streamhooks.schemas.webhooks import SubscriptionStatus, WebhookSubscription

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops the offset on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlAlchemyWebhookPersistence:
    """Stores subscriptions in the ``webhook_subscriptions`` table."""

    def __init__(self, database: Database) -> None:
        self._database = database

    @staticmethod
    def _to_schema(record: WebhookSubscriptionRecord) -> WebhookSubscription:
        return WebhookSubscription(
            id=record.subscription_id,
            topic=record.topic,
            callback_url=record.callback_url,
            secret=record.secret,
            lease_seconds=record.lease_seconds,
            status=SubscriptionStatus(record.status),
            expires_at=_as_utc(record.expires_at),
        )

    async def save(self, subscription: WebhookSubscription) -> None:
        async with self._database.session_factory() as session:
            record = await session.scalar(
                select(WebhookSubscriptionRecord).where(
                    WebhookSubscriptionRecord.subscription_id == subscription.id
                )
            )
            if record is None:
                record = WebhookSubscriptionRecord(subscription_id=subscription.id)
                session.add(record)
            record.topic = subscription.topic
            record.callback_url = subscription.callback_url
            record.secret = subscription.secret
            record.lease_seconds = subscription.lease_seconds
            record.status = subscription.status.value
            record.expires_at = subscription.expires_at
            await session.commit()

    async def get(self, subscription_id: str) -> Optional[WebhookSubscription]:
        async with self._database.session_factory() as session:
            record = await session.scalar(
                select(WebhookSubscriptionRecord).where(
                    WebhookSubscriptionRecord.subscription_id == subscription_id
                )
            )
            return self._to_schema(record) if record is not None else None

    async def list_all(self) -> List[WebhookSubscription]:
        async with self._database.session_factory() as session:
            records = await session.scalars(
                select(WebhookSubscriptionRecord).order_by(WebhookSubscriptionRecord.id)
            )
            return [self._to_schema(record) for record in records]

    async def delete(self, subscription_id: str) -> None:
        async with self._database.session_factory() as session:
            await session.execute(
                delete(WebhookSubscriptionRecord).where(
                    WebhookSubscriptionRecord.subscription_id == subscription_id
                )
            )
            await session.commit()
        logger.debug("Deleted subscription record", extra={"subscription_id": subscription_id})
