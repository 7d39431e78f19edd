"""Push notification API endpoints."""

import hmac

import httpx
import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, field_validator

from hostpush.notifications.ece import PayloadTooLargeError
from hostpush.notifications.push import PushNotifier
from hostpush.notifications.store import SubscriptionStoreError

logger = structlog.get_logger()

router = APIRouter()


class ApiError(Exception):
    """Rendered as ``{"error": message}`` with the given status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class SubscribeRequest(BaseModel):
    host_id: str = Field(min_length=1)
    endpoint: str = Field(min_length=1)
    p256dh: str = Field(min_length=1)
    auth: str = Field(min_length=1)
    user_agent: str | None = None

    @field_validator("endpoint")
    @classmethod
    def endpoint_must_be_https(cls, v: str) -> str:
        try:
            url = httpx.URL(v)
        except httpx.InvalidURL as e:
            raise ValueError(f"invalid endpoint: {e}") from e
        if url.scheme != "https" or not url.host:
            raise ValueError("endpoint must be an absolute https URL")
        return v


class UnsubscribeRequest(BaseModel):
    host_id: str = Field(min_length=1)
    endpoint: str | None = None


class SendRequest(BaseModel):
    host_id: str = ""
    title: str = ""
    body: str = ""
    url: str | None = None


def require_service_token(request: Request) -> None:
    """Reject unless the bearer token equals the service secret."""
    secret = request.app.state.service_secret
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if (
        not secret
        or scheme != "Bearer"
        or not hmac.compare_digest(token.encode(), secret.encode())
    ):
        raise ApiError(401, "Unauthorized")


@router.get("/vapid-key")
async def vapid_key(request: Request) -> dict:
    """Return the VAPID application server key."""
    return {"public_key": request.app.state.vapid_public_key}


@router.post("/subscribe", status_code=201)
async def subscribe(body: SubscribeRequest, request: Request) -> dict:
    """Register (or refresh) a host's push subscription."""
    store = request.app.state.push_store
    try:
        store.subscribe(
            host_id=body.host_id,
            endpoint=body.endpoint,
            p256dh=body.p256dh,
            auth=body.auth,
            user_agent=body.user_agent,
        )
    except SubscriptionStoreError as e:
        logger.error("push_subscribe_failed", host_id=body.host_id, error=str(e))
        raise ApiError(500, "Failed to save subscription") from e
    return {"ok": True}


@router.post("/unsubscribe")
async def unsubscribe(body: UnsubscribeRequest, request: Request) -> dict:
    """Remove one endpoint, or every subscription, of a host."""
    store = request.app.state.push_store
    try:
        store.unsubscribe(host_id=body.host_id, endpoint=body.endpoint)
    except SubscriptionStoreError as e:
        logger.error("push_unsubscribe_failed", host_id=body.host_id, error=str(e))
        raise ApiError(500, "Failed to remove subscription") from e
    return {"ok": True}


@router.post("/send", dependencies=[Depends(require_service_token)])
async def send(body: SendRequest, request: Request) -> dict:
    """Notify every browser subscribed for a host."""
    if not body.host_id:
        raise ApiError(400, "host_id required")

    notifier: PushNotifier | None = request.app.state.push_notifier
    if notifier is None:
        raise ApiError(503, "Push notifications are not configured")

    try:
        summary = await notifier.notify_owner(
            body.host_id,
            body.title,
            body.body,
            body.url,
        )
    except PayloadTooLargeError as e:
        raise ApiError(413, str(e)) from e
    except SubscriptionStoreError as e:
        logger.error("push_cleanup_failed", host_id=body.host_id, error=str(e))
        raise ApiError(500, "Database error") from e

    return {
        "sent": summary.sent,
        "total": summary.total,
        "expired": summary.expired,
    }
