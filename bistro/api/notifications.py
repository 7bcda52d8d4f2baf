"""
Bistro — Notifications API: SSE relay over Redis pub/sub

Architecture:
  - Lifecycle managers publish events to Redis channel notifications:{account_id}
  - The SSE endpoint subscribes to the caller's channel and streams every
    event to the browser EventSource as `new_notification`
  - Admins can push an arbitrary notification to one account
"""
import json
import logging
import time
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import StreamingResponse

from bistro.api.deps import current_account, notifier, require_admin
from bistro.core.config import get_settings
from bistro.core.redis_client import get_redis
from bistro.core.security import Account
from bistro.schemas.notification import NotificationCreate, NotificationOut, NotificationSent
from bistro.services.notifier import NotificationEvent, Notifier, channel_for, deliver

settings = get_settings()
logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notifications", tags=["notifications"])


def format_event(event: str, payload: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


async def _sse_generator(account_id: str, request: Request) -> AsyncGenerator[str, None]:
    """Subscribe to the account's channel and yield SSE frames until the client leaves."""
    redis = get_redis()
    channel_name = channel_for(account_id)
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel_name)
    logger.info("SSE client connected for account %s", account_id)

    try:
        yield f"retry: {settings.SSE_RETRY_MILLISECONDS}\n\n"
        yield format_event("connected", {"message": "Connected to notification stream"})
        last_ping = time.monotonic()

        while True:
            if await request.is_disconnected():
                break

            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if message and message["type"] == "message":
                data = message["data"]
                try:
                    payload = json.loads(data)
                except (TypeError, ValueError):
                    payload = {"raw": data}
                yield format_event("new_notification", payload)
                last_ping = time.monotonic()
            elif time.monotonic() - last_ping >= settings.SSE_KEEPALIVE_INTERVAL_SECONDS:
                yield ": keepalive\n\n"
                last_ping = time.monotonic()

    finally:
        logger.info("SSE client disconnected for account %s", account_id)
        await pubsub.unsubscribe(channel_name)
        await pubsub.aclose()


@router.get("/stream")
async def stream_notifications(request: Request, account: Account = Depends(current_account)):
    """
    SSE endpoint. The browser opens an EventSource to this URL and receives
    every notification addressed to the authenticated account.
    """
    return StreamingResponse(
        _sse_generator(account.id, request),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",  # Disable Nginx buffering
            "Connection": "keep-alive",
        },
    )


@router.post("", response_model=NotificationSent, status_code=status.HTTP_201_CREATED)
async def send_notification(
    payload: NotificationCreate,
    _: Account = Depends(require_admin),
    channel: Notifier = Depends(notifier),
):
    event = NotificationEvent(
        type=payload.type,
        recipient_account_id=payload.user_id,
        title=payload.title,
        message=payload.message,
        priority=payload.priority,
        data=payload.data,
    )
    delivered = await deliver(channel, payload.user_id, event)
    return NotificationSent(
        msg="Notification sent" if delivered else "Notification accepted but could not be delivered",
        notification=NotificationOut(
            type=event.type,
            recipient_account_id=event.recipient_account_id,
            title=event.title,
            message=event.message,
            priority=event.priority,
            data=event.data,
            created_at=event.created_at,
            delivered=delivered,
        ),
    )
