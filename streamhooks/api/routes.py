"""Application routes registered once the webhook manager exists."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from streamhooks.api.routers import health, subscriptions
from streamhooks.core.database import Database
from streamhooks.webhooks.manager import WebhookManager

logger = logging.getLogger(__name__)


def setup_routes(app: FastAPI, manager: WebhookManager, database: Database) -> None:
    """Register the application routes and expose their dependencies on ``app.state``."""
    app.state.webhook_manager = manager
    app.state.database = database

    async def root(request: Request):
        if request.session.get("access_token"):
            return RedirectResponse("/success")
        return HTMLResponse(
            f'<h1>{app.title}</h1><p><a href="/auth/login">Log in with Twitch</a></p>'
        )

    async def success(request: Request):
        if not request.session.get("access_token"):
            return RedirectResponse("/")
        return HTMLResponse(
            f"<h1>{app.title}</h1><p>Logged in. Watching "
            f"{len(manager.subscriptions)} channel(s).</p>"
        )

    app.add_api_route("/", root, methods=["GET"], include_in_schema=False)
    app.add_api_route("/success", success, methods=["GET"], include_in_schema=False)
    app.include_router(health.router)
    app.include_router(subscriptions.router)
    logger.info("Application routes registered")
