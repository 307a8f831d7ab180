"""
HTTP surface tests: routing, header identity, error bodies and uploads.
"""

import json

import pytest
from fastapi import HTTPException

from agrilease.models import DeviceStatus, OrderStatus, OrderType

ADMIN = {"X-User-Id": "admin-1", "X-Active-Role": "admin"}
DISTRIBUTOR = {"X-User-Id": "dist-user-1", "X-Active-Role": "distributor", "X-User-Phone": "9123456789"}
FARMER = {"X-User-Id": "farmer-1", "X-Active-Role": "farmer"}


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/v1/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["environment"] == "development"


@pytest.mark.asyncio
async def test_create_order_over_http(client, seed, notifier, dispatcher):
    device = await seed.priced_device()
    await seed.commit()

    response = await client.post(
        "/v1/orders",
        json={"device_id": str(device.device_id), "requested_hours": 12},
        headers=DISTRIBUTOR,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["order_type"] == OrderType.LEASE.value
    assert body["status"] == OrderStatus.INTEREST_RAISED.value
    assert body["handler"] == {"kind": "administrator"}
    assert body["requester_phone"] == "9123456789"

    await dispatcher.drain()
    assert len(notifier.sent) == 2


@pytest.mark.asyncio
async def test_walk_order_and_list_transitions(client, seed):
    device = await seed.priced_device()
    order = await seed.order(device)
    await seed.commit()

    moved = await client.post(
        f"/v1/orders/{order.order_id}/status",
        json={"status": "under_review", "note": "Checking stock"},
        headers=ADMIN,
    )
    assert moved.status_code == 200
    assert moved.json()["status"] == "under_review"

    transitions = await client.get(f"/v1/orders/{order.order_id}/transitions", headers=ADMIN)
    assert transitions.json()["allowed_next_states"] == ["accepted", "rejected"]


@pytest.mark.asyncio
async def test_unknown_order_is_404(client, engine):
    response = await client.get(
        "/v1/orders/00000000-0000-0000-0000-000000000000", headers=ADMIN
    )

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "ORDER_NOT_FOUND"


@pytest.mark.asyncio
async def test_invalid_transition_is_409(client, seed):
    device = await seed.priced_device()
    order = await seed.order(device)
    await seed.commit()

    response = await client.post(
        f"/v1/orders/{order.order_id}/status", json={"status": "completed"}, headers=ADMIN
    )

    assert response.status_code == 409
    error = response.json()["error"]
    assert error["code"] == "INVALID_STATE_TRANSITION"
    assert error["message"]


@pytest.mark.asyncio
async def test_non_handler_is_403(client, seed):
    device = await seed.priced_device()
    order = await seed.order(device)
    await seed.commit()

    response = await client.post(
        f"/v1/orders/{order.order_id}/status", json={"status": "under_review"}, headers=FARMER
    )

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_anonymous_order_view_needs_authentication(client, seed):
    device = await seed.priced_device()
    order = await seed.order(device)
    await seed.commit()

    response = await client.get(f"/v1/orders/{order.order_id}")

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "AUTHENTICATION_REQUIRED"


@pytest.mark.asyncio
async def test_precondition_failure_is_412(client, seed):
    device = await seed.priced_device(status=DeviceStatus.DRAFT)
    await seed.commit()

    response = await client.post(
        "/v1/orders", json={"device_id": str(device.device_id)}, headers=DISTRIBUTOR
    )

    assert response.status_code == 412
    assert response.json()["error"]["code"] == "DEVICE_NOT_ORDERABLE"


@pytest.mark.asyncio
async def test_unknown_role_header_is_422(client, engine):
    response = await client.get(
        "/v1/orders/mine", headers={"X-User-Id": "u-1", "X-Active-Role": "landlord"}
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_extra_roles_header_counts(client, seed):
    """An admin acting as farmer is still an administrator."""
    device = await seed.priced_device()
    order = await seed.order(device)
    await seed.commit()

    response = await client.get(
        f"/v1/orders/{order.order_id}",
        headers={"X-User-Id": "admin-1", "X-Active-Role": "farmer", "X-User-Roles": "admin"},
    )

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_discovery_search_is_public(client, seed):
    await seed.priced_device(name="Near", latitude=12.98, longitude=77.60)
    await seed.commit()

    response = await client.get(
        "/v1/discovery/devices", params={"latitude": 12.9716, "longitude": 77.5946}
    )

    assert response.status_code == 200
    page = response.json()
    assert page["total_count"] == 1
    assert page["results"][0]["allowed_actions"] == ["show_interest"]


@pytest.mark.asyncio
async def test_create_lease_multipart(client, seed, uploader):
    distributor = await seed.distributor()
    device = await seed.priced_device()
    order = await seed.order(device, status=OrderStatus.ACCEPTED)
    await seed.commit()

    response = await client.post(
        "/v1/leases",
        data={
            "order_id": str(order.order_id),
            "deposit_amount": "5000",
            "operators": json.dumps([{"operator_id": "op-1", "role": "primary"}]),
            "attachment_types": "lease_agreement",
        },
        files=[("files", ("agreement.pdf", b"%PDF-1.4 signed", "application/pdf"))],
        headers=ADMIN,
    )

    assert response.status_code == 201, response.text
    lease = response.json()
    assert lease["distributor_id"] == distributor.distributor_id
    assert lease["deposit_amount"] == 5000.0
    assert lease["operators"][0]["operator_id"] == "op-1"
    assert lease["attachments"] == [
        {
            "url": f"memory://leases/{order.order_id}/0/agreement.pdf",
            "type": "lease_agreement",
            "uploaded_at": lease["attachments"][0]["uploaded_at"],
        }
    ]

    [(scope, entity_id, documents)] = uploader.calls
    assert (scope, entity_id) == ("leases", str(order.order_id))
    assert documents[0].content == b"%PDF-1.4 signed"

    fetched = await client.get(f"/v1/leases/{lease['lease_id']}", headers=ADMIN)
    assert fetched.status_code == 200


@pytest.mark.asyncio
async def test_create_lease_rejects_bad_operators(client, seed, uploader):
    await seed.distributor()
    device = await seed.priced_device()
    order = await seed.order(device, status=OrderStatus.ACCEPTED)
    await seed.commit()

    response = await client.post(
        "/v1/leases",
        data={"order_id": str(order.order_id), "operators": "not json"},
        headers=ADMIN,
    )

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_FAILED"
    assert uploader.calls == []


@pytest.mark.asyncio
async def test_metrics_endpoint(client, seed):
    device = await seed.priced_device()
    await seed.commit()
    await client.post("/v1/orders", json={"device_id": str(device.device_id)}, headers=DISTRIBUTOR)

    response = await client.get("/v1/metrics")

    assert response.status_code == 200
    snapshot = response.json()["metrics"]
    assert snapshot["counters"]["orders.created"] == 1
    assert "events.queued" in snapshot["gauges"]
    assert response.json()["sms_circuit"]["state"] == "closed"


@pytest.mark.asyncio
async def test_list_limit_clamped_to_configured_ceiling(client, seed, monkeypatch):
    from agrilease.config import settings

    device = await seed.priced_device()
    for _ in range(3):
        await seed.order(device)
    await seed.commit()
    monkeypatch.setattr(settings, "max_list_limit", 2)

    response = await client.get("/v1/orders/mine", params={"limit": 500}, headers=DISTRIBUTOR)

    assert response.status_code == 200
    assert len(response.json()) == 2


# ============================================================================
# API key
# ============================================================================


@pytest.fixture
def secured(monkeypatch):
    from agrilease.api import deps

    monkeypatch.setattr(deps.settings, "allow_insecure_dev", False)
    monkeypatch.setattr(deps.settings, "api_key", "s3cret")
    return deps


@pytest.mark.asyncio
async def test_api_key_accepted_as_bearer_or_header(secured):
    assert await secured.verify_api_key(authorization="Bearer s3cret", x_api_key=None) is None
    assert await secured.verify_api_key(authorization=None, x_api_key="s3cret") is None
    assert await secured.verify_api_key(authorization="bearer  s3cret", x_api_key=None) is None


@pytest.mark.asyncio
async def test_api_key_missing_or_wrong(secured):
    with pytest.raises(HTTPException) as missing:
        await secured.verify_api_key(authorization=None, x_api_key=None)
    assert missing.value.status_code == 401

    with pytest.raises(HTTPException) as wrong:
        await secured.verify_api_key(authorization="Bearer nope", x_api_key=None)
    assert wrong.value.status_code == 401


@pytest.mark.asyncio
async def test_api_key_unconfigured_fails_closed(secured, monkeypatch):
    monkeypatch.setattr(secured.settings, "api_key", None)

    with pytest.raises(HTTPException) as exc_info:
        await secured.verify_api_key(authorization="Bearer anything", x_api_key=None)
    assert exc_info.value.status_code == 503
