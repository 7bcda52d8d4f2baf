"""
Notification fan-out — notifier backends, SSE relay, admin publish, health.
"""
import json

import pytest

from bistro.api.notifications import _sse_generator
from bistro.services.notifier import (
    RESERVATION_STATUS_UPDATED,
    LogNotifier,
    NotificationEvent,
    RedisNotifier,
    build_notifier,
    channel_for,
    deliver,
)

from conftest import FailingNotifier


class ConnectedRequest:
    async def is_disconnected(self) -> bool:
        return False


def _event(account_id: str = "acct-ada") -> NotificationEvent:
    return NotificationEvent(
        type=RESERVATION_STATUS_UPDATED,
        recipient_account_id=account_id,
        title="Reservation Confirmed",
        message="Great news!",
        data={"reservationId": "r-1", "status": "confirmed", "oldStatus": "pending"},
    )


def test_build_notifier_backends():
    assert isinstance(build_notifier("redis"), RedisNotifier)
    assert isinstance(build_notifier("LOG"), LogNotifier)
    with pytest.raises(ValueError):
        build_notifier("carrier-pigeon")


def test_payload_uses_camel_case():
    payload = _event().to_payload()
    assert payload["recipientAccountId"] == "acct-ada"
    assert payload["data"]["oldStatus"] == "pending"
    assert "createdAt" in payload


@pytest.mark.asyncio
async def test_deliver_swallows_failures():
    failing = FailingNotifier()
    assert await deliver(failing, "acct-ada", _event()) is False
    assert failing.attempts == 1
    assert await deliver(failing, None, _event()) is False
    assert failing.attempts == 1, "events without a recipient are dropped"


@pytest.mark.asyncio
async def test_redis_notifier_publishes_to_account_channel(fake_redis):
    pubsub = fake_redis.pubsub()
    await pubsub.subscribe(channel_for("acct-ada"))
    await pubsub.get_message(timeout=1.0)  # subscribe confirmation

    await RedisNotifier().notify("acct-ada", _event())
    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
    assert message is not None
    assert json.loads(message["data"])["title"] == "Reservation Confirmed"
    await pubsub.aclose()


@pytest.mark.asyncio
async def test_sse_stream_relays_account_events(fake_redis):
    stream = _sse_generator("acct-ada", ConnectedRequest())
    try:
        assert (await stream.__anext__()).startswith("retry: ")
        assert (await stream.__anext__()).startswith("event: connected")

        await RedisNotifier().notify("acct-ada", _event())
        frame = await stream.__anext__()
        assert frame.startswith("event: new_notification\n")
        data = json.loads(frame.split("data: ", 1)[1])
        assert data["type"] == RESERVATION_STATUS_UPDATED
    finally:
        await stream.aclose()


@pytest.mark.asyncio
async def test_stream_requires_jwt(client):
    r = await client.get("/notifications/stream")
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_admin_publish(client, auth, notifier):
    body = {
        "userId": "acct-ada",
        "type": RESERVATION_STATUS_UPDATED,
        "title": "Table ready",
        "message": "Your table is ready",
        "priority": "high",
    }
    r = await client.post("/notifications", json=body, headers=auth())
    assert r.status_code == 403

    r = await client.post("/notifications", json=body, headers=auth(sub="acct-admin", is_admin=True))
    assert r.status_code == 201, r.text
    assert r.json()["notification"]["delivered"] is True
    assert notifier.sent[0][0] == "acct-ada"
    assert notifier.sent[0][1].priority == "high"

    r = await client.post(
        "/notifications", json={**body, "type": "party_invite"}, headers=auth(sub="acct-admin", is_admin=True)
    )
    assert r.status_code == 400
    assert "type" in r.json()["details"]


@pytest.mark.asyncio
async def test_health_reports_dependencies(client):
    r = await client.get("/health")
    assert r.status_code == 200, r.text
    assert r.json()["dependencies"] == {"database": "ok", "redis": "ok"}
