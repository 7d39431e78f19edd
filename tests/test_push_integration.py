"""Delivery against a real push service.

Run with ``pytest -m integration``. Needs VAPID keys plus a browser
subscription exported as JSON (``PushSubscription.toJSON()``)::

    VAPID_PUBLIC_KEY=... VAPID_PRIVATE_KEY=...
    HOSTPUSH_IT_SUBSCRIPTION='{"endpoint": ..., "keys": {...}}'
"""

import json
import os

import httpx
import pytest

from hostpush.notifications.push import (
    DeliveryOutcome,
    PushConfig,
    PushDispatcher,
)
from hostpush.notifications.store import PushSubscription
from hostpush.notifications.vapid import VapidSigner

pytestmark = pytest.mark.integration


@pytest.mark.asyncio
async def test_real_push_service_accepts_message():
    raw = os.environ.get("HOSTPUSH_IT_SUBSCRIPTION")
    if not raw:
        pytest.skip("HOSTPUSH_IT_SUBSCRIPTION not set")
    data = json.loads(raw)
    sub = PushSubscription(
        id="it",
        host_id="it",
        endpoint=data["endpoint"],
        p256dh=data["keys"]["p256dh"],
        auth=data["keys"]["auth"],
    )
    signer = VapidSigner(
        os.environ["VAPID_PUBLIC_KEY"],
        os.environ["VAPID_PRIVATE_KEY"],
    )
    async with httpx.AsyncClient(timeout=15) as client:
        dispatcher = PushDispatcher(
            signer,
            PushConfig(subject=os.environ.get("VAPID_SUBJECT", "mailto:it@localhost")),
            client,
        )
        result = await dispatcher.send_one(
            sub,
            {"title": "hostpush", "body": "integration test", "tag": "it"},
        )
    assert result.outcome is DeliveryOutcome.DELIVERED, result
