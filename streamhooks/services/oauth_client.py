"""
OAuth 2.0 client for the Twitch identity provider.

Provides:
- Authorization URL generation for the Authorization Code flow
- Authorization code exchange
- App access tokens (Client Credentials grant) for server-to-server calls
  against Helix and the WebSub hub, cached by ``AppTokenProvider``
"""

import asyncio
import logging
import secrets
from typing import List, Optional
from urllib.parse import urlencode

import httpx

from streamhooks.schemas.oauth import TokenResponse

logger = logging.getLogger(__name__)


class TwitchOAuthClient:
    """
    OAuth 2.0 client for Twitch.

    Example:
        >>> client = TwitchOAuthClient(
        ...     client_id="abc",
        ...     client_secret="secret",
        ...     redirect_uri="http://localhost:8080/auth/callback",
        ...     scopes=["user:read:email"],
        ... )
        >>> url = client.get_authorization_url(state)
        >>> token = await client.exchange_code_for_token(code)
        >>> app_token = await client.get_app_access_token()
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: Optional[List[str]] = None,
        *,
        authorize_url: str = "https://id.twitch.tv/oauth2/authorize",
        token_url: str = "https://id.twitch.tv/oauth2/token",
        force_verify: bool = False,
        http_timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes or []
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.force_verify = force_verify

        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=http_timeout)

    @staticmethod
    def generate_state() -> str:
        """Random state parameter for CSRF protection."""
        return secrets.token_urlsafe(32)

    def get_authorization_url(self, state: str) -> str:
        """
        Build the URL the user is redirected to for consent.

        Args:
            state: CSRF protection state, validated again in the callback

        Returns:
            str: Authorization URL
        """
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
            "state": state,
        }
        if self.force_verify:
            params["force_verify"] = "true"
        return f"{self.authorize_url}?{urlencode(params)}"

    async def _token_request(self, data: dict, operation: str) -> TokenResponse:
        data = {
            **data,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        try:
            response = await self._http_client.post(
                self.token_url,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            response.raise_for_status()
            token_response = TokenResponse(**response.json())
        except httpx.HTTPStatusError as e:
            error_data = {}
            try:
                error_data = e.response.json()
            except ValueError:
                pass

            logger.error(
                f"{operation} failed",
                extra={
                    "token_endpoint": self.token_url,
                    "status_code": e.response.status_code,
                    "error": error_data.get("message", str(e)),
                },
            )
            raise
        except httpx.HTTPError as e:
            logger.error(
                f"{operation} failed",
                extra={"token_endpoint": self.token_url, "error": str(e)},
            )
            raise

        logger.info(
            f"{operation} successful",
            extra={
                "expires_in": token_response.expires_in,
                "has_refresh_token": token_response.refresh_token is not None,
            },
        )
        return token_response

    async def exchange_code_for_token(self, code: str) -> TokenResponse:
        """
        Exchange an authorization code for a user access token.

        Raises:
            httpx.HTTPError: If the token endpoint rejects the code
        """
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            },
            "Token exchange",
        )

    async def get_app_access_token(self) -> TokenResponse:
        """Obtain an app access token with the Client Credentials grant."""
        return await self._token_request(
            {"grant_type": "client_credentials"},
            "App token request",
        )

    async def close(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()


class AppTokenProvider:
    """
    Caches the app access token used for hub and Helix requests.

    ``get_token`` returns the cached token, fetching one on first use;
    ``refresh_token`` discards the cache and fetches a new one (called when
    Twitch answers 401). Concurrent callers share a single fetch.
    """

    def __init__(self, oauth_client: TwitchOAuthClient) -> None:
        self._oauth_client = oauth_client
        self._token: Optional[str] = None
        self._lock = asyncio.Lock()

    async def get_token(self) -> str:
        async with self._lock:
            if self._token is None:
                self._token = (await self._oauth_client.get_app_access_token()).access_token
            return self._token

    async def refresh_token(self) -> str:
        async with self._lock:
            self._token = (await self._oauth_client.get_app_access_token()).access_token
            return self._token
