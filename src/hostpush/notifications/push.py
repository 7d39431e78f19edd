"""Web Push delivery: per-subscription dispatch and per-host fan-out."""

import asyncio
import json
import time
from dataclasses import dataclass
from enum import StrEnum

import httpx
import structlog

from hostpush.notifications import ece
from hostpush.notifications.store import (
    PushSubscription,
    PushSubscriptionStore,
)
from hostpush.notifications.vapid import (
    MAX_EXPIRY_SECONDS,
    VapidSigner,
    audience_for,
)

logger = structlog.get_logger()

_GONE_STATUSES = {404, 410}


class DeliveryOutcome(StrEnum):
    DELIVERED = "delivered"
    GONE = "gone"
    FAILED = "failed"


@dataclass(frozen=True)
class DeliveryResult:
    outcome: DeliveryOutcome
    status: int | None = None


@dataclass(frozen=True)
class FanOutSummary:
    sent: int
    total: int
    expired: int


@dataclass(frozen=True)
class PushConfig:
    """Static dispatch parameters, fixed at startup."""

    subject: str
    expiry_seconds: int = 12 * 60 * 60
    ttl_seconds: int = 24 * 60 * 60
    urgency: str = "high"

    def __post_init__(self) -> None:
        if not 0 < self.expiry_seconds <= MAX_EXPIRY_SECONDS:
            raise ValueError("VAPID expiry must be at most 24 hours")
        if self.ttl_seconds < 0:
            raise ValueError("TTL must not be negative")


def encode_payload(payload: dict) -> bytes:
    """Compact UTF-8 JSON, as a browser would produce it."""
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


class PushDispatcher:
    """Encrypt, sign and POST one message to one subscription.

    Never retries; the outcome is reported to the caller.
    """

    def __init__(
        self,
        signer: VapidSigner,
        config: PushConfig,
        client: httpx.AsyncClient,
    ) -> None:
        self._signer = signer
        self._config = config
        self._client = client

    @property
    def public_key(self) -> str:
        return self._signer.public_key

    def build_request(self, sub: PushSubscription, payload: dict) -> httpx.Request:
        """Assemble the signed, encrypted push request."""
        authorization = self._signer.authorization(
            audience_for(sub.endpoint),
            self._config.subject,
            self._config.expiry_seconds,
        )
        body = ece.encrypt(sub.p256dh, sub.auth, encode_payload(payload))
        return self._client.build_request(
            "POST",
            sub.endpoint,
            headers={
                "Authorization": authorization,
                "Content-Type": "application/octet-stream",
                "Content-Encoding": ece.CONTENT_ENCODING,
                "TTL": str(self._config.ttl_seconds),
                "Urgency": self._config.urgency,
            },
            content=body,
        )

    async def send_one(self, sub: PushSubscription, payload: dict) -> DeliveryResult:
        """Deliver a single push and classify the push service reply."""
        try:
            request = self.build_request(sub, payload)
        except (ValueError, httpx.InvalidURL) as e:
            logger.warning(
                "push_subscription_invalid",
                subscription_id=sub.id,
                error=str(e),
            )
            return DeliveryResult(DeliveryOutcome.FAILED)

        origin = audience_for(sub.endpoint)
        try:
            resp = await self._client.send(request)
        except httpx.HTTPError as e:
            logger.warning(
                "push_failed",
                subscription_id=sub.id,
                push_service=origin,
                error=str(e),
            )
            return DeliveryResult(DeliveryOutcome.FAILED)

        if resp.status_code in _GONE_STATUSES:
            logger.info(
                "push_endpoint_gone",
                subscription_id=sub.id,
                push_service=origin,
                status=resp.status_code,
            )
            return DeliveryResult(DeliveryOutcome.GONE, resp.status_code)
        if not resp.is_success:
            logger.warning(
                "push_failed",
                subscription_id=sub.id,
                push_service=origin,
                status=resp.status_code,
                detail=resp.text[:200],
            )
            return DeliveryResult(DeliveryOutcome.FAILED, resp.status_code)

        logger.debug("push_sent", subscription_id=sub.id, push_service=origin)
        return DeliveryResult(DeliveryOutcome.DELIVERED, resp.status_code)


def _make_tag() -> str:
    return f"booking-{int(time.time() * 1000)}"


class PushNotifier:
    """Send one notification to every subscription of a host.

    Subscriptions reported gone (404/410) are deleted afterwards.
    """

    def __init__(
        self,
        store: PushSubscriptionStore,
        dispatcher: PushDispatcher,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher

    @property
    def public_key(self) -> str:
        return self._dispatcher.public_key

    async def notify_owner(
        self,
        owner_id: str,
        title: str,
        body: str,
        url: str | None = None,
    ) -> FanOutSummary:
        """Fan a notification out to all of a host's browsers.

        Raises:
            ValueError: owner_id is empty.
            PayloadTooLargeError: the message cannot fit one record.
        """
        if not owner_id:
            raise ValueError("owner_id is required")

        subs = self._store.select(owner_id)
        if not subs:
            logger.info("push_no_subscriptions", host_id=owner_id)
            return FanOutSummary(sent=0, total=0, expired=0)

        payload = {"title": title, "body": body, "tag": _make_tag()}
        if url:
            payload["url"] = url
        ece.check_payload_size(encode_payload(payload))

        results = await asyncio.gather(
            *(self._dispatcher.send_one(sub, payload) for sub in subs)
        )

        sent = sum(1 for r in results if r.outcome is DeliveryOutcome.DELIVERED)
        gone = [
            sub.id
            for sub, r in zip(subs, results, strict=True)
            if r.outcome is DeliveryOutcome.GONE
        ]
        if gone:
            self._store.delete_many(gone)
            logger.info("push_expired_cleaned", host_id=owner_id, count=len(gone))

        summary = FanOutSummary(sent=sent, total=len(subs), expired=len(gone))
        logger.info(
            "push_fanout_done",
            host_id=owner_id,
            sent=summary.sent,
            total=summary.total,
            expired=summary.expired,
        )
        return summary
