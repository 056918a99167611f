"""Unit tests for the default webhook handlers."""
import logging
from unittest.mock import MagicMock

import pytest

from streamhooks.observability import webhook_messages_total
from streamhooks.schemas.webhooks import WebhookMessage
from streamhooks.webhooks.handlers import default_handlers, handle_webhook_message, log_webhook_error
from streamhooks.webhooks.manager import WebhookError


def counter_value(event: str) -> float:
    return webhook_messages_total.labels(event=event)._value.get()


@pytest.mark.asyncio
async def test_online_message_counted():
    before = counter_value("online")
    message = WebhookMessage(
        subscription_id="s",
        topic="t",
        data=[{"user_id": "1", "user_name": "someone", "title": "hi"}],
    )

    await handle_webhook_message(MagicMock(), message)

    assert counter_value("online") == before + 1


@pytest.mark.asyncio
async def test_offline_message_counted():
    before = counter_value("offline")
    await handle_webhook_message(MagicMock(), WebhookMessage(subscription_id="s", topic="t"))
    assert counter_value("offline") == before + 1


def test_error_is_logged_with_context(caplog):
    error = WebhookError("hub denied", subscription_id="s-1", operation="verify")

    with caplog.at_level(logging.ERROR, logger="streamhooks.webhooks.handlers"):
        log_webhook_error(error)

    (record,) = caplog.records
    assert record.getMessage() == "Webhook error: hub denied"
    assert record.subscription_id == "s-1"
    assert record.operation == "verify"


def test_default_handlers():
    handlers = default_handlers()
    assert handlers.on_message is handle_webhook_message
    assert handlers.on_error is log_webhook_error
