"""
Orders API — idempotent checkout over HTTP.
"""
import asyncio

import pytest


@pytest.mark.asyncio
async def test_create_then_replay(client, auth, order_payload):
    headers = auth()
    r = await client.post("/orders", json=order_payload(), headers=headers)
    assert r.status_code == 201, r.text
    first = r.json()
    assert first["duplicate"] is False
    assert first["order"]["orderNumber"].startswith("ORD-")
    assert first["order"]["totalAmount"] == 31.0

    r = await client.post("/orders", json=order_payload(requestId="req-retry"), headers=headers)
    assert r.status_code == 409, "a replay is answered with the stored order"
    replay = r.json()
    assert replay["duplicate"] is True
    assert replay["duplicateType"] == "exact_duplicate"
    assert replay["order"]["id"] == first["order"]["id"]


@pytest.mark.asyncio
async def test_concurrent_submissions_one_order(client, auth, order_payload):
    headers = auth()
    responses = await asyncio.gather(*(client.post("/orders", json=order_payload(), headers=headers) for _ in range(4)))

    codes = sorted(r.status_code for r in responses)
    assert codes == [201, 409, 409, 409], codes
    assert len({r.json()["order"]["id"] for r in responses}) == 1


@pytest.mark.asyncio
async def test_total_mismatch_is_400(client, auth, order_payload):
    r = await client.post("/orders", json=order_payload(totalAmount=99), headers=auth())
    assert r.status_code == 400
    body = r.json()
    assert body["detail"] == "Total amount mismatch"
    assert body["details"]["calculated"] == 31.0


@pytest.mark.asyncio
async def test_schema_errors_are_400_with_fields(client, auth, order_payload):
    r = await client.post("/orders", json=order_payload(items=[], address="x"), headers=auth())
    assert r.status_code == 400
    assert {"items", "address"} <= set(r.json()["details"])


@pytest.mark.asyncio
async def test_order_access_rules(client, auth, order_payload):
    created = await client.post("/orders", json=order_payload(), headers=auth())
    oid = created.json()["order"]["id"]

    assert (await client.get(f"/orders/{oid}", headers=auth())).status_code == 200
    assert (await client.get(f"/orders/{oid}", headers=auth(sub="acct-eve", email="eve@example.com"))).status_code == 403
    assert (await client.get("/orders/nope", headers=auth())).status_code == 404

    mine = await client.get("/orders/mine", headers=auth())
    assert mine.status_code == 200 and mine.json()["pagination"]["total"] == 1

    assert (await client.get("/orders", headers=auth())).status_code == 403
    assert (await client.delete(f"/orders/{oid}", headers=auth())).status_code == 403


@pytest.mark.asyncio
async def test_admin_list_and_delete(client, auth, order_payload):
    admin = auth(sub="acct-admin", email="host@example.com", is_admin=True)
    created = await client.post("/orders", json=order_payload(), headers=auth())
    oid = created.json()["order"]["id"]

    r = await client.get("/orders", params={"userEmail": "GUEST", "sortOrder": "asc"}, headers=admin)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["pagination"]["total"] == 1
    assert body["filters"]["userEmail"] == "GUEST"
    assert body["filters"]["sortOrder"] == "asc"

    r = await client.delete(f"/orders/{oid}", headers=admin)
    assert r.status_code == 200
    assert r.json()["deletedOrder"]["id"] == oid


@pytest.mark.asyncio
async def test_order_create_rate_limited(client, auth, order_payload):
    headers = auth(sub="acct-hungry")
    bad = order_payload(totalAmount=99)
    for _ in range(5):
        assert (await client.post("/orders", json=bad, headers=headers)).status_code == 400
    r = await client.post("/orders", json=bad, headers=headers)
    assert r.status_code == 429
    assert r.json()["retry_after_seconds"] == 900
