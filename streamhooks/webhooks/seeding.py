"""
Initial subscription seeding.

After the HTTPS callback endpoint is live, the service starts tracking a
random sample of currently live channels so that webhook traffic flows
without any user interaction.
"""

import logging
import random
from typing import List, Optional

import httpx

from streamhooks.schemas.webhooks import WebhookSubscription
from streamhooks.webhooks.manager import HubRequestError, WebhookManager, stream_changed_topic
from streamhooks.webhooks.retry import RetryExhausted, RetryPolicy, retry_call

logger = logging.getLogger(__name__)

# Helix caps a /streams page at 100 entries
STREAM_SAMPLE_SIZE = 100


async def add_listen_to_random_streamers(
    manager: WebhookManager,
    count: int = 10,
    *,
    policy: Optional[RetryPolicy] = None,
) -> List[WebhookSubscription]:
    """
    Subscribe to stream changes of ``count`` randomly chosen live channels.

    Fetching the stream list is retried and its final failure propagates.
    Each subscription is retried on its own; a channel whose subscription
    keeps failing is skipped.

    Returns:
        The subscriptions that were requested successfully
    """
    streams = await retry_call(
        manager.api_get, "/streams", {"first": STREAM_SAMPLE_SIZE}, policy=policy
    )
    user_ids = list(dict.fromkeys(
        stream["user_id"] for stream in streams.get("data", []) if stream.get("user_id")
    ))
    chosen = random.sample(user_ids, min(count, len(user_ids)))

    subscribed: List[WebhookSubscription] = []
    for user_id in chosen:
        topic = stream_changed_topic(manager.api_url, user_id)
        try:
            subscription = await retry_call(
                manager.subscribe,
                topic,
                policy=policy,
                retryable_exceptions=(httpx.TransportError, HubRequestError),
            )
        except RetryExhausted as e:
            logger.warning(
                "Skipping channel after repeated subscription failures",
                extra={"user_id": user_id, "error": str(e.__cause__)},
            )
            continue
        subscribed.append(subscription)

    logger.info(
        "Seeded webhook subscriptions",
        extra={"requested": len(chosen), "subscribed": len(subscribed)},
    )
    return subscribed
