"""
Webhook subscription manager for the Twitch WebSub hub.

The manager owns the subscriptions this service holds against the hub:

- ``subscribe``/``unsubscribe`` send hub requests with the app access token
  (refreshed once on a 401)
- the hub verifies each request with a GET to our callback URL; the
  manager answers the challenge, records the lease and asks the renewal
  scheduler to renew before the lease expires
- notifications arrive as signed POSTs to the same URL; valid deliveries
  are handed to the ``on_message`` handler, everything that goes wrong is
  reported to the ``on_error`` handler

Handlers are passed at construction time. The renewal scheduler is passed
unattached and bound by the caller with ``scheduler.attach(manager)``.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse

from streamhooks.schemas.webhooks import SubscriptionStatus, WebhookMessage, WebhookSubscription
from streamhooks.webhooks.scheduling import RenewalScheduler

logger = logging.getLogger(__name__)

TokenFunction = Callable[[], Awaitable[str]]


class WebhookError(Exception):
    """Error reported through the manager's ``on_error`` handler."""

    def __init__(
        self,
        message: str,
        *,
        subscription_id: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.subscription_id = subscription_id
        self.operation = operation


class HubRequestError(WebhookError):
    """The hub rejected a subscribe/unsubscribe request."""


class VerificationDeniedError(WebhookError):
    """The hub denied a subscription during verification."""


class InvalidSignatureError(WebhookError):
    """A notification's HMAC signature did not match the subscription secret."""


MessageHandler = Callable[["WebhookManager", WebhookMessage], Awaitable[None]]
ErrorHandler = Callable[[WebhookError], None]


@dataclass(frozen=True)
class WebhookHandlers:
    """Callbacks the manager delivers notifications and errors to."""

    on_message: MessageHandler
    on_error: ErrorHandler


class WebhookPersistence(Protocol):
    async def save(self, subscription: WebhookSubscription) -> None: ...

    async def get(self, subscription_id: str) -> Optional[WebhookSubscription]: ...

    async def list_all(self) -> List[WebhookSubscription]: ...

    async def delete(self, subscription_id: str) -> None: ...


def stream_changed_topic(api_url: str, user_id: str) -> str:
    """Hub topic for stream up/down/change events of ``user_id``."""
    return f"{api_url.rstrip('/')}/streams?user_id={user_id}"


def sign_payload(secret: str, body: bytes) -> str:
    """Value of the ``X-Hub-Signature`` header for ``body``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class WebhookManager:
    """
    Tracks, verifies and renews hub subscriptions.

    Example:
        >>> scheduler = RenewalScheduler()
        >>> manager = WebhookManager(
        ...     hostname="hooks.example.com",
        ...     app=app,
        ...     client_id="abc",
        ...     renewal_scheduler=scheduler,
        ...     persistence=SqlAlchemyWebhookPersistence(database),
        ...     get_token=tokens.get_token,
        ...     refresh_token=tokens.refresh_token,
        ...     handlers=WebhookHandlers(on_message=..., on_error=...),
        ... )
        >>> scheduler.attach(manager)
        >>> manager.install_routes()
        >>> await manager.init()
        >>> await manager.subscribe(stream_changed_topic(api_url, "1234"))
        >>> await manager.destroy()
    """

    def __init__(
        self,
        *,
        hostname: str,
        app: FastAPI,
        client_id: str,
        renewal_scheduler: RenewalScheduler,
        persistence: WebhookPersistence,
        get_token: TokenFunction,
        refresh_token: TokenFunction,
        handlers: WebhookHandlers,
        base_path: str = "webhooks",
        hub_url: str = "https://api.twitch.tv/helix/webhooks/hub",
        api_url: str = "https://api.twitch.tv/helix",
        lease_seconds: int = 864000,
        http_client: Optional[httpx.AsyncClient] = None,
        owns_http_client: Optional[bool] = None,
        http_timeout: float = 10.0,
    ) -> None:
        self._hostname = hostname
        self._app = app
        self._client_id = client_id
        self._base_path = base_path.strip("/")
        self._scheduler = renewal_scheduler
        self._persistence = persistence
        self._get_token = get_token
        self._refresh_token = refresh_token
        self._handlers = handlers
        self._hub_url = hub_url
        self._api_url = api_url.rstrip("/")
        self._lease_seconds = lease_seconds

        # An injected client is closed by destroy() only when handed over explicitly
        self._owns_http_client = http_client is None if owns_http_client is None else owns_http_client
        self._http_client = http_client or httpx.AsyncClient(timeout=http_timeout)

        self._subscriptions: Dict[str, WebhookSubscription] = {}
        self._routes_installed = False
        self._initialized = False
        self._destroyed = False

    # ────────────────────────────────────────────────────────────
    # Properties
    # ────────────────────────────────────────────────────────────

    @property
    def api_url(self) -> str:
        return self._api_url

    @property
    def callback_path(self) -> str:
        return f"/{self._base_path}/{{subscription_id}}"

    @property
    def subscriptions(self) -> List[WebhookSubscription]:
        return list(self._subscriptions.values())

    @property
    def scheduler(self) -> RenewalScheduler:
        return self._scheduler

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    def callback_url(self, subscription_id: str) -> str:
        return f"https://{self._hostname}/{self._base_path}/{subscription_id}"

    def get_subscription(self, subscription_id: str) -> Optional[WebhookSubscription]:
        return self._subscriptions.get(subscription_id)

    def find_by_topic(self, topic: str) -> Optional[WebhookSubscription]:
        for subscription in self._subscriptions.values():
            if subscription.topic == topic and subscription.status in (
                SubscriptionStatus.PENDING,
                SubscriptionStatus.ACTIVE,
            ):
                return subscription
        return None

    # ────────────────────────────────────────────────────────────
    # Routes
    # ────────────────────────────────────────────────────────────

    def install_routes(self) -> None:
        """Register the verification and notification endpoints on the app."""
        if self._routes_installed:
            return

        async def verify_subscription(subscription_id: str, request: Request) -> Response:
            status_code, body = await self.handle_verification(
                subscription_id, dict(request.query_params)
            )
            return PlainTextResponse(body, status_code=status_code)

        async def receive_notification(subscription_id: str, request: Request) -> Response:
            status_code = await self.handle_notification(
                subscription_id, await request.body(), request.headers
            )
            return Response(status_code=status_code)

        self._app.add_api_route(
            self.callback_path, verify_subscription, methods=["GET"], include_in_schema=False
        )
        self._app.add_api_route(
            self.callback_path, receive_notification, methods=["POST"], include_in_schema=False
        )
        self._routes_installed = True
        logger.info("Webhook callback routes registered", extra={"path": self.callback_path})

    # ────────────────────────────────────────────────────────────
    # Lifecycle
    # ────────────────────────────────────────────────────────────

    async def init(self) -> None:
        """
        Load stored subscriptions and bring each one back under management.

        Active subscriptions with a running lease are rescheduled; expired or
        still pending ones are re-requested from the hub; denied ones are
        dropped. Hub failures for single subscriptions are reported to the
        error handler; persistence failures propagate.
        """
        if self._initialized:
            return
        if self._destroyed:
            raise WebhookError("manager has been destroyed", operation="init")

        stored = await self._persistence.list_all()
        now = datetime.now(timezone.utc)
        for subscription in stored:
            if subscription.status is SubscriptionStatus.DENIED:
                await self._persistence.delete(subscription.id)
                continue

            self._subscriptions[subscription.id] = subscription
            if subscription.status is SubscriptionStatus.ACTIVE and not subscription.is_expired(now):
                self._scheduler.schedule(subscription)
                continue

            try:
                await self._hub_request("subscribe", subscription)
            except Exception as e:
                self.report_error(e, subscription_id=subscription.id, operation="init")

        self._initialized = True
        logger.info(
            "Webhook manager initialized",
            extra={"subscriptions": len(self._subscriptions)},
        )

    async def destroy(self) -> None:
        """Stop renewals and release network resources.

        Subscriptions stay stored and are picked up again by the next
        ``init()``.
        """
        if self._destroyed:
            return
        self._destroyed = True
        try:
            await self._scheduler.destroy()
        finally:
            self._subscriptions.clear()
            if self._owns_http_client:
                await self._http_client.aclose()
        logger.info("Webhook manager destroyed")

    # ────────────────────────────────────────────────────────────
    # Subscriptions
    # ────────────────────────────────────────────────────────────

    async def subscribe(self, topic: str, lease_seconds: Optional[int] = None) -> WebhookSubscription:
        """
        Request a subscription to ``topic``.

        Returns the existing subscription if the topic is already pending or
        active. The returned subscription stays pending until the hub's
        verification request arrives.

        Raises:
            HubRequestError: If the hub rejects the request
        """
        existing = self.find_by_topic(topic)
        if existing is not None:
            return existing

        subscription_id = uuid.uuid4().hex
        subscription = WebhookSubscription(
            id=subscription_id,
            topic=topic,
            callback_url=self.callback_url(subscription_id),
            secret=secrets.token_hex(32),
            lease_seconds=lease_seconds or self._lease_seconds,
        )
        self._subscriptions[subscription.id] = subscription
        await self._persistence.save(subscription)

        try:
            await self._hub_request("subscribe", subscription)
        except Exception:
            self._subscriptions.pop(subscription.id, None)
            await self._persistence.delete(subscription.id)
            raise

        logger.info(
            "Subscription requested",
            extra={"subscription_id": subscription.id, "topic": topic},
        )
        return subscription

    async def unsubscribe(self, subscription_id: str) -> None:
        """Cancel a subscription at the hub and forget it locally."""
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            raise WebhookError(
                f"unknown subscription: {subscription_id}",
                subscription_id=subscription_id,
                operation="unsubscribe",
            )

        self._scheduler.cancel(subscription_id)
        await self._hub_request("unsubscribe", subscription)
        self._subscriptions.pop(subscription_id, None)
        await self._persistence.delete(subscription_id)
        logger.info("Subscription cancelled", extra={"subscription_id": subscription_id})

    async def renew(self, subscription_id: str) -> None:
        """Re-request a subscription before its lease runs out.

        Called by the renewal scheduler; the hub confirms the new lease with a
        verification request that reschedules the next renewal.
        """
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            raise WebhookError(
                f"unknown subscription: {subscription_id}",
                subscription_id=subscription_id,
                operation="renew",
            )
        await self._hub_request("subscribe", subscription)
        logger.info("Subscription renewal requested", extra={"subscription_id": subscription_id})

    # ────────────────────────────────────────────────────────────
    # Hub / Helix requests
    # ────────────────────────────────────────────────────────────

    async def _authorized_request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        token = await self._get_token()
        response = await self._http_client.request(
            method, url, headers=self._auth_headers(token), **kwargs
        )
        if response.status_code == 401:
            logger.info("App access token rejected, refreshing", extra={"url": url})
            token = await self._refresh_token()
            response = await self._http_client.request(
                method, url, headers=self._auth_headers(token), **kwargs
            )
        return response

    def _auth_headers(self, token: str) -> Dict[str, str]:
        return {"Client-ID": self._client_id, "Authorization": f"Bearer {token}"}

    async def _hub_request(self, mode: str, subscription: WebhookSubscription) -> None:
        payload = {
            "hub.callback": subscription.callback_url,
            "hub.mode": mode,
            "hub.topic": subscription.topic,
            "hub.lease_seconds": subscription.lease_seconds,
            "hub.secret": subscription.secret,
        }
        response = await self._authorized_request("POST", self._hub_url, json=payload)
        if response.is_error:
            raise HubRequestError(
                f"hub {mode} request failed with status {response.status_code}",
                subscription_id=subscription.id,
                operation=mode,
            )

    async def api_get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """
        GET a Helix endpoint with the app access token.

        Raises:
            httpx.HTTPStatusError: On a non-2xx response
        """
        response = await self._authorized_request(
            "GET", f"{self._api_url}/{path.lstrip('/')}", params=params
        )
        response.raise_for_status()
        return response.json()

    # ────────────────────────────────────────────────────────────
    # Hub callbacks
    # ────────────────────────────────────────────────────────────

    async def handle_verification(
        self, subscription_id: str, params: Mapping[str, str]
    ) -> Tuple[int, str]:
        """
        Answer the hub's verification request.

        Returns:
            Tuple of (status code, response body)
        """
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            return 404, ""

        mode = params.get("hub.mode")
        if mode == "denied":
            subscription.status = SubscriptionStatus.DENIED
            self._scheduler.cancel(subscription_id)
            await self._persistence.save(subscription)
            self.report_error(
                VerificationDeniedError(
                    f"hub denied subscription: {params.get('hub.reason', 'unknown reason')}",
                    subscription_id=subscription_id,
                    operation="verify",
                )
            )
            return 200, ""

        if params.get("hub.topic") != subscription.topic or "hub.challenge" not in params:
            return 404, ""

        if mode == "subscribe":
            lease_seconds = int(params.get("hub.lease_seconds", subscription.lease_seconds))
            subscription.status = SubscriptionStatus.ACTIVE
            subscription.expires_at = datetime.now(timezone.utc) + timedelta(seconds=lease_seconds)
            await self._persistence.save(subscription)
            self._scheduler.schedule(subscription)
            logger.info(
                "Subscription verified",
                extra={"subscription_id": subscription_id, "lease_seconds": lease_seconds},
            )
        elif mode != "unsubscribe":
            return 404, ""

        return 200, params["hub.challenge"]

    async def handle_notification(
        self, subscription_id: str, body: bytes, headers: Mapping[str, str]
    ) -> int:
        """
        Validate a notification and pass it to the message handler.

        Returns:
            int: HTTP status code for the hub
        """
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            return 404

        signature = headers.get("x-hub-signature", "")
        if not hmac.compare_digest(signature, sign_payload(subscription.secret, body)):
            self.report_error(
                InvalidSignatureError(
                    "notification signature mismatch",
                    subscription_id=subscription_id,
                    operation="notify",
                )
            )
            return 403

        try:
            payload = json.loads(body or b"{}")
        except ValueError as e:
            self.report_error(e, subscription_id=subscription_id, operation="notify")
            return 400

        message = WebhookMessage(
            subscription_id=subscription_id,
            topic=subscription.topic,
            message_id=headers.get("twitch-notification-id"),
            data=payload.get("data", []),
        )
        try:
            await self._handlers.on_message(self, message)
        except Exception as e:
            self.report_error(e, subscription_id=subscription_id, operation="message")
        return 200

    # ────────────────────────────────────────────────────────────
    # Errors
    # ────────────────────────────────────────────────────────────

    def report_error(
        self,
        error: Exception,
        *,
        subscription_id: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        """Deliver ``error`` to the ``on_error`` handler as a ``WebhookError``."""
        if not isinstance(error, WebhookError):
            wrapped = WebhookError(str(error), subscription_id=subscription_id, operation=operation)
            wrapped.__cause__ = error
            error = wrapped
        try:
            self._handlers.on_error(error)
        except Exception:
            logger.exception("Webhook error handler failed")
