"""
Subscription management endpoints.

Only users who completed the OAuth flow (an access token in their session)
may list, add or remove the stream-change subscriptions the service holds.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from streamhooks.schemas.webhooks import SubscriptionCreate, SubscriptionResponse
from streamhooks.webhooks.manager import WebhookError, WebhookManager, stream_changed_topic

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


def require_session_token(request: Request) -> str:
    """
    Dependency that requires a logged-in session.

    Raises:
        HTTPException 401: If the session carries no access token
    """
    token = request.session.get("access_token")
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Login required",
        )
    return token


def get_webhook_manager(request: Request) -> WebhookManager:
    return request.app.state.webhook_manager


@router.get("", response_model=List[SubscriptionResponse])
async def list_subscriptions(
    _token: str = Depends(require_session_token),
    manager: WebhookManager = Depends(get_webhook_manager),
) -> List[SubscriptionResponse]:
    return [SubscriptionResponse.from_subscription(s) for s in manager.subscriptions]


@router.post("", response_model=SubscriptionResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_subscription(
    body: SubscriptionCreate,
    _token: str = Depends(require_session_token),
    manager: WebhookManager = Depends(get_webhook_manager),
) -> SubscriptionResponse:
    """
    Subscribe to stream changes of a channel.

    The subscription is pending until the hub verifies it, hence 202.

    Raises:
        HTTPException 502: If the hub rejects the request
    """
    try:
        subscription = await manager.subscribe(stream_changed_topic(manager.api_url, body.user_id))
    except WebhookError as e:
        logger.warning("Subscription request failed", extra={"user_id": body.user_id, "error": str(e)})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return SubscriptionResponse.from_subscription(subscription)


@router.delete("/{subscription_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_subscription(
    subscription_id: str,
    _token: str = Depends(require_session_token),
    manager: WebhookManager = Depends(get_webhook_manager),
) -> Response:
    """
    Cancel a subscription.

    Raises:
        HTTPException 404: If the subscription is unknown
        HTTPException 502: If the hub rejects the request
    """
    if manager.get_subscription(subscription_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")
    try:
        await manager.unsubscribe(subscription_id)
    except WebhookError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
