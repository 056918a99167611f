"""
Webhook subscription management.

``create_webhook_manager`` wires the manager with its persistence adapter
and app-token functions; the renewal scheduler is built by the caller and
attached once the manager exists.
"""

import httpx
from fastapi import FastAPI

from streamhooks.core.config import Settings
from streamhooks.core.database import Database
from streamhooks.services.oauth_client import AppTokenProvider, TwitchOAuthClient
from streamhooks.webhooks.manager import (
    HubRequestError,
    InvalidSignatureError,
    VerificationDeniedError,
    WebhookError,
    WebhookHandlers,
    WebhookManager,
    stream_changed_topic,
)
from streamhooks.webhooks.persistence import SqlAlchemyWebhookPersistence
from streamhooks.webhooks.scheduling import RenewalScheduler, SchedulerNotAttachedError


def create_renewal_scheduler(settings: Settings) -> RenewalScheduler:
    return RenewalScheduler(renewal_margin=settings.WEBHOOK_RENEWAL_MARGIN_SECONDS)


def create_webhook_manager(
    settings: Settings,
    app: FastAPI,
    database: Database,
    scheduler: RenewalScheduler,
    handlers: WebhookHandlers,
) -> WebhookManager:
    """Build a manager backed by the database and the app access token.

    The token client and the manager share one HTTP client, closed by
    ``manager.destroy()``.
    """
    http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT)
    tokens = AppTokenProvider(
        TwitchOAuthClient(
            client_id=settings.CLIENT_ID,
            client_secret=settings.CLIENT_SECRET,
            redirect_uri=settings.REDIRECT_URI,
            token_url=settings.OAUTH_TOKEN_URL,
            http_client=http_client,
        )
    )
    return WebhookManager(
        hostname=settings.HOST_NAME,
        app=app,
        client_id=settings.CLIENT_ID,
        base_path=settings.WEBHOOK_BASE_PATH,
        renewal_scheduler=scheduler,
        persistence=SqlAlchemyWebhookPersistence(database),
        get_token=tokens.get_token,
        refresh_token=tokens.refresh_token,
        handlers=handlers,
        hub_url=settings.WEBHOOK_HUB_URL,
        api_url=settings.TWITCH_API_URL,
        lease_seconds=settings.WEBHOOK_LEASE_SECONDS,
        http_client=http_client,
        owns_http_client=True,
    )


__all__ = [
    "HubRequestError",
    "InvalidSignatureError",
    "RenewalScheduler",
    "SchedulerNotAttachedError",
    "SqlAlchemyWebhookPersistence",
    "VerificationDeniedError",
    "WebhookError",
    "WebhookHandlers",
    "WebhookManager",
    "create_renewal_scheduler",
    "create_webhook_manager",
    "stream_changed_topic",
]
