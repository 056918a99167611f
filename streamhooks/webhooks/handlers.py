"""Default message and error handlers wired into the webhook manager."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from streamhooks.observability import webhook_messages_total
from streamhooks.schemas.webhooks import WebhookMessage
from streamhooks.webhooks.manager import WebhookError, WebhookHandlers

if TYPE_CHECKING:
    from streamhooks.webhooks.manager import WebhookManager

logger = logging.getLogger(__name__)


async def handle_webhook_message(manager: WebhookManager, message: WebhookMessage) -> None:
    """
    Log a stream change notification.

    An empty ``data`` list means the channel went offline; otherwise each
    entry describes the live stream.
    """
    if not message.data:
        webhook_messages_total.labels(event="offline").inc()
        logger.info(
            "Stream went offline",
            extra={"subscription_id": message.subscription_id, "topic": message.topic},
        )
        return

    for stream in message.data:
        webhook_messages_total.labels(event="online").inc()
        logger.info(
            "Stream update received",
            extra={
                "subscription_id": message.subscription_id,
                "message_id": message.message_id,
                "user_id": stream.get("user_id"),
                "user_name": stream.get("user_name"),
                "title": stream.get("title"),
                "game_id": stream.get("game_id"),
                "viewer_count": stream.get("viewer_count"),
            },
        )


def log_webhook_error(error: WebhookError) -> None:
    """Runtime webhook errors are logged and never stop the service."""
    cause = error.__cause__
    logger.error(
        f"Webhook error: {error.message}",
        extra={
            "subscription_id": error.subscription_id,
            "operation": error.operation,
            "error_type": type(cause or error).__name__,
        },
        exc_info=(type(cause), cause, cause.__traceback__) if cause is not None else None,
    )


def default_handlers() -> WebhookHandlers:
    return WebhookHandlers(on_message=handle_webhook_message, on_error=log_webhook_error)
