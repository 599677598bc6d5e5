"""
Tests for requesters withdrawing their requests.
"""

import pytest
from httpx import AsyncClient

from conftest import add_request, request_payload


@pytest.mark.asyncio
async def test_cancel_pending_request(
    client: AsyncClient, session_factory, requester_headers, requester, ride_listing
):
    request = await add_request(session_factory, ride_listing, requester)

    response = await client.delete(f"/api/v1/requests/{request.id}", headers=requester_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["request_id"] == request.id
    assert data["status"] == "cancelled"


@pytest.mark.asyncio
async def test_cancel_is_idempotent(
    client: AsyncClient, session_factory, requester_headers, requester, ride_listing
):
    request = await add_request(session_factory, ride_listing, requester)

    first = await client.delete(f"/api/v1/requests/{request.id}", headers=requester_headers)
    second = await client.delete(f"/api/v1/requests/{request.id}", headers=requester_headers)
    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["status"] == "cancelled"


@pytest.mark.asyncio
async def test_cancel_rejected_request(
    client: AsyncClient, session_factory, requester_headers, requester, ride_listing
):
    request = await add_request(session_factory, ride_listing, requester, status="rejected")

    response = await client.delete(f"/api/v1/requests/{request.id}", headers=requester_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"


@pytest.mark.asyncio
async def test_cannot_cancel_accepted_request(
    client: AsyncClient, session_factory, owner_headers, requester_headers, requester, ride_listing
):
    request = await add_request(session_factory, ride_listing, requester, quantity_requested=2)
    accepted = await client.put(
        f"/api/v1/requests/{request.id}/respond",
        json={"decision": "accept"},
        headers=owner_headers,
    )
    assert accepted.status_code == 200

    response = await client.delete(f"/api/v1/requests/{request.id}", headers=requester_headers)
    assert response.status_code == 409
    assert "contact the ride owner" in response.json()["detail"]

    # No refund: capacity stays consumed
    listing = await client.get(f"/api/v1/listings/{ride_listing.id}")
    assert listing.json()["remaining_capacity"] == 0


@pytest.mark.asyncio
async def test_cannot_cancel_someone_elses_request(
    client: AsyncClient, session_factory, owner_headers, other_headers, requester, ride_listing
):
    request = await add_request(session_factory, ride_listing, requester)

    # Not even the listing owner may withdraw on the requester's behalf
    for headers in (other_headers, owner_headers):
        response = await client.delete(f"/api/v1/requests/{request.id}", headers=headers)
        assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_can_cancel_any_request(
    client: AsyncClient, session_factory, admin_headers, requester, ride_listing
):
    request = await add_request(session_factory, ride_listing, requester)

    response = await client.delete(f"/api/v1/requests/{request.id}", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"


@pytest.mark.asyncio
async def test_cancel_missing_request(client: AsyncClient, requester_headers):
    response = await client.delete("/api/v1/requests/99999", headers=requester_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_cancelled_request_cannot_be_accepted(
    client: AsyncClient, session_factory, owner_headers, requester_headers, requester, ride_listing
):
    request = await add_request(session_factory, ride_listing, requester)
    await client.delete(f"/api/v1/requests/{request.id}", headers=requester_headers)

    response = await client.put(
        f"/api/v1/requests/{request.id}/respond",
        json={"decision": "accept"},
        headers=owner_headers,
    )
    assert response.status_code == 409
    listing = await client.get(f"/api/v1/listings/{ride_listing.id}")
    assert listing.json()["remaining_capacity"] == 2


@pytest.mark.asyncio
async def test_rerequest_after_cancel(
    client: AsyncClient, session_factory, requester_headers, requester, ride_listing
):
    request = await add_request(session_factory, ride_listing, requester)
    await client.delete(f"/api/v1/requests/{request.id}", headers=requester_headers)

    response = await client.post(
        f"/api/v1/listings/{ride_listing.id}/requests",
        json=request_payload(),
        headers=requester_headers,
    )
    assert response.status_code == 201
