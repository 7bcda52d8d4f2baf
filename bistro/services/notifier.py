"""
Bistro — Notification fan-out

The lifecycle managers only know the `Notifier` protocol: one call,
`notify(account_id, event)`. How the event reaches a connected client is the
backend's concern. RedisNotifier publishes to `notifications:<account id>`;
the SSE endpoint in bistro.api.notifications relays that channel to the
browser EventSource.
"""
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from bistro.core.config import get_settings
from bistro.core.redis_client import get_redis

settings = get_settings()
logger = logging.getLogger(__name__)

RESERVATION_CREATED = "reservation_created"
RESERVATION_STATUS_UPDATED = "reservation_status_updated"
RESERVATION_DELETED = "reservation_deleted"
EVENT_TYPES = (RESERVATION_CREATED, RESERVATION_STATUS_UPDATED, RESERVATION_DELETED)


@dataclass
class NotificationEvent:
    type: str
    recipient_account_id: str
    title: str
    message: str
    priority: str = "medium"
    data: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(tz=timezone.utc).isoformat())

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        return {
            "type": payload["type"],
            "recipientAccountId": payload["recipient_account_id"],
            "title": payload["title"],
            "message": payload["message"],
            "priority": payload["priority"],
            "data": payload["data"],
            "createdAt": payload["created_at"],
        }


class Notifier(Protocol):
    async def notify(self, account_id: str, event: NotificationEvent) -> None: ...


def channel_for(account_id: str) -> str:
    return f"{settings.NOTIFICATION_CHANNEL_PREFIX}{account_id}"


class RedisNotifier:
    """Publishes events to the account's Redis pub/sub channel."""

    async def notify(self, account_id: str, event: NotificationEvent) -> None:
        redis = get_redis()
        receivers = await redis.publish(channel_for(account_id), json.dumps(event.to_payload()))
        logger.debug("Published %s to %s (%d listeners)", event.type, channel_for(account_id), receivers)


class LogNotifier:
    """Writes events to the log only. Used when no push channel is deployed."""

    async def notify(self, account_id: str, event: NotificationEvent) -> None:
        logger.info("Notification for %s: %s %s", account_id, event.type, event.message)


def build_notifier(backend: str | None = None) -> Notifier:
    backend = (backend or settings.NOTIFIER_BACKEND).lower()
    if backend == "redis":
        return RedisNotifier()
    if backend == "log":
        return LogNotifier()
    raise ValueError(f"Unknown notifier backend '{backend}'")


async def deliver(notifier: Notifier, account_id: str | None, event: NotificationEvent) -> bool:
    """Best-effort delivery: a failing channel never propagates to the caller."""
    if not account_id:
        return False
    try:
        await notifier.notify(account_id, event)
        return True
    except Exception as exc:
        # Notification failures MUST NOT affect the booking that triggered them
        logger.warning("Notification delivery failed for %s (%s): %s", account_id, event.type, exc)
        return False
