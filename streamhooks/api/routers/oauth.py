"""
OAuth 2.0 Authorization Code flow against Twitch.

Unlike the other routers this one is configured at startup:
``setup_oauth_routes`` registers

- a login route that stores a CSRF state in the session and redirects to
  the Twitch consent screen
- the callback route at the path of the configured redirect URI, which
  validates the state, exchanges the code for tokens and hands them to
  ``config.callback``

The default callback keeps the user tokens in the session and redirects to
``/success``.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urlparse

import httpx
from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.responses import RedirectResponse

from streamhooks.schemas.oauth import TokenResponse
from streamhooks.services.oauth_client import TwitchOAuthClient

logger = logging.getLogger(__name__)

SESSION_STATE_KEY = "oauth_state"

AuthorizedCallback = Callable[[Request, TokenResponse], Awaitable[Response]]


async def store_tokens_in_session(request: Request, tokens: TokenResponse) -> Response:
    """Keep the user's tokens in the session and continue to ``/success``."""
    request.session["access_token"] = tokens.access_token
    request.session["refresh_token"] = tokens.refresh_token
    return RedirectResponse("/success", status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@dataclass
class OAuthFlowConfig:
    """Everything ``setup_oauth_routes`` needs to run the flow."""

    app: FastAPI
    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: List[str]
    callback: AuthorizedCallback = store_tokens_in_session
    force_verify: bool = True
    authorize_url: str = "https://id.twitch.tv/oauth2/authorize"
    token_url: str = "https://id.twitch.tv/oauth2/token"
    login_path: str = "/auth/login"
    http_timeout: float = 10.0
    http_client: Optional[httpx.AsyncClient] = field(default=None, repr=False)

    @property
    def callback_path(self) -> str:
        return urlparse(self.redirect_uri).path or "/"

    def client(self) -> TwitchOAuthClient:
        return TwitchOAuthClient(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_uri=self.redirect_uri,
            scopes=self.scopes,
            authorize_url=self.authorize_url,
            token_url=self.token_url,
            force_verify=self.force_verify,
            http_timeout=self.http_timeout,
            http_client=self.http_client,
        )


def setup_oauth_routes(config: OAuthFlowConfig) -> None:
    """Register the login and callback routes on ``config.app``."""

    async def login(request: Request) -> RedirectResponse:
        """Redirect the user to the Twitch consent screen."""
        state = TwitchOAuthClient.generate_state()
        request.session[SESSION_STATE_KEY] = state
        oauth_client = config.client()
        try:
            authorization_url = oauth_client.get_authorization_url(state)
        finally:
            await oauth_client.close()
        logger.info("OAuth login initiated", extra={"scopes": config.scopes})
        return RedirectResponse(authorization_url, status_code=status.HTTP_302_FOUND)

    async def callback(
        request: Request,
        code: Optional[str] = None,
        state: Optional[str] = None,
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> Response:
        """
        Handle the redirect back from Twitch.

        Raises:
            HTTPException 400: If the user denied access or the state does not match
            HTTPException 502: If the code exchange fails
        """
        stored_state = request.session.pop(SESSION_STATE_KEY, None)

        if error:
            logger.warning(
                "OAuth authorization denied",
                extra={"error": error, "error_description": error_description},
            )
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=error_description or error,
            )

        if not stored_state or stored_state != state:
            logger.warning(
                "OAuth state mismatch",
                extra={"stored_state": stored_state, "received_state": state},
            )
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid state parameter",
            )

        if not code:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Missing authorization code",
            )

        oauth_client = config.client()
        try:
            tokens = await oauth_client.exchange_code_for_token(code)
        except httpx.HTTPError as e:
            logger.error("OAuth token exchange failed", extra={"error": str(e)})
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Token exchange failed",
            )
        finally:
            await oauth_client.close()

        logger.info("OAuth authorization completed", extra={"scopes": tokens.scope})
        return await config.callback(request, tokens)

    config.app.add_api_route(config.login_path, login, methods=["GET"], tags=["oauth"])
    config.app.add_api_route(config.callback_path, callback, methods=["GET"], tags=["oauth"])
    logger.info(
        "OAuth routes registered",
        extra={"login_path": config.login_path, "callback_path": config.callback_path},
    )
