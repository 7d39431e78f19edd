"""JSON-file-backed push subscription store."""

import json
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path

import structlog

logger = structlog.get_logger()


class SubscriptionStoreError(RuntimeError):
    """The store could not be written."""


@dataclass
class PushSubscription:
    """One browser registration for a host's notifications."""

    id: str
    host_id: str
    endpoint: str
    p256dh: str
    auth: str
    user_agent: str | None = None


class PushSubscriptionStore:
    """Push subscriptions keyed by (host_id, endpoint).

    All access runs on the async event loop, so no locking.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._subs: list[PushSubscription] = []
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            self._subs = []
            return
        try:
            data = json.loads(self._path.read_text())
            self._subs = [PushSubscription(**s) for s in data]
        except (json.JSONDecodeError, OSError, TypeError) as e:
            logger.warning("push_store_corrupt", path=str(self._path), error=str(e))
            self._subs = []

    def _save(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps([asdict(s) for s in self._subs], indent=2))
        except OSError as e:
            raise SubscriptionStoreError(f"cannot write {self._path}: {e}") from e

    def subscribe(
        self,
        host_id: str,
        endpoint: str,
        p256dh: str,
        auth: str,
        user_agent: str | None = None,
    ) -> PushSubscription:
        """Add or upsert a subscription; an existing row keeps its id."""
        existing = next(
            (s for s in self._subs if s.host_id == host_id and s.endpoint == endpoint),
            None,
        )
        sub = PushSubscription(
            id=existing.id if existing else uuid.uuid4().hex,
            host_id=host_id,
            endpoint=endpoint,
            p256dh=p256dh,
            auth=auth,
            user_agent=user_agent,
        )
        self._subs = [s for s in self._subs if s is not existing]
        self._subs.append(sub)
        self._save()
        return sub

    def unsubscribe(self, host_id: str, endpoint: str | None = None) -> int:
        """Remove one endpoint for a host, or all of its subscriptions.

        Returns the number of rows removed.
        """
        before = len(self._subs)
        self._subs = [
            s
            for s in self._subs
            if not (s.host_id == host_id and (endpoint is None or s.endpoint == endpoint))
        ]
        removed = before - len(self._subs)
        if removed:
            self._save()
        return removed

    def select(self, host_id: str) -> list[PushSubscription]:
        """All subscriptions belonging to a host."""
        return [s for s in self._subs if s.host_id == host_id]

    def delete_many(self, ids: list[str]) -> int:
        """Remove subscriptions by id (expired endpoint cleanup)."""
        doomed = set(ids)
        before = len(self._subs)
        self._subs = [s for s in self._subs if s.id not in doomed]
        removed = before - len(self._subs)
        if removed:
            self._save()
        return removed
