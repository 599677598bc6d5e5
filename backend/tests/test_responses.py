"""
Tests for owner responses, including capacity races on acceptance.

The parallel race tests fire acceptances concurrently; SQLite serializes
them on its write lock, PostgreSQL (TEST_DATABASE_URL) contends on the row.
"""

import asyncio

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from conftest import add_request, make_user
from campus_market.models.listing import Listing


async def _accept(client: AsyncClient, request_id: int, headers: dict, **extra):
    return await client.put(
        f"/api/v1/requests/{request_id}/respond",
        json={"decision": "accept", **extra},
        headers=headers,
    )


async def _listing(client: AsyncClient, listing_id: int) -> dict:
    return (await client.get(f"/api/v1/listings/{listing_id}")).json()


@pytest.mark.asyncio
async def test_accept_consumes_capacity(
    client: AsyncClient, session_factory, owner_headers, requester, ride_listing
):
    request = await add_request(session_factory, ride_listing, requester, quantity_requested=1)

    response = await _accept(client, request.id, owner_headers, response_message="See you at 8")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "accepted"
    assert data["agreed_quantity"] == 1
    assert data["response_message"] == "See you at 8"
    assert data["responded_at"] is not None

    listing = await _listing(client, ride_listing.id)
    assert listing["remaining_capacity"] == 1
    assert listing["status"] == "active"


@pytest.mark.asyncio
async def test_second_acceptance_exceeding_capacity_conflicts(
    client: AsyncClient, session_factory, owner_headers,
    requester, other_requester, ride_listing,
):
    """Two seats: A asks for 2, B for 1. Accept A, then B must fail and stay pending."""
    request_a = await add_request(session_factory, ride_listing, requester, quantity_requested=2)
    request_b = await add_request(session_factory, ride_listing, other_requester, quantity_requested=1)

    first = await _accept(client, request_a.id, owner_headers)
    assert first.status_code == 200

    second = await _accept(client, request_b.id, owner_headers)
    assert second.status_code == 409
    assert "only 0 seats remaining" in second.json()["detail"]

    listing = await _listing(client, ride_listing.id)
    assert listing["remaining_capacity"] == 0
    # Counted kinds stay active when sold out
    assert listing["status"] == "active"

    pending = await client.get(
        f"/api/v1/listings/{ride_listing.id}/requests", headers=owner_headers
    )
    statuses = {r["id"]: r["status"] for r in pending.json()}
    assert statuses == {request_a.id: "accepted", request_b.id: "pending"}


@pytest.mark.asyncio
async def test_conflict_leaves_request_acceptable_later(
    client: AsyncClient, session_factory, owner_headers,
    requester, other_requester, ticket_listing,
):
    """A 409 on accept is not terminal: the owner can still reject the request."""
    big = await add_request(session_factory, ticket_listing, requester, quantity_requested=3)
    small = await add_request(session_factory, ticket_listing, other_requester, quantity_requested=1)

    assert (await _accept(client, big.id, owner_headers)).status_code == 200
    assert (await _accept(client, small.id, owner_headers)).status_code == 409

    rejected = await client.put(
        f"/api/v1/requests/{small.id}/respond",
        json={"decision": "reject", "response_message": "Sold out, sorry"},
        headers=owner_headers,
    )
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "rejected"


@pytest.mark.asyncio
async def test_room_resolves_on_accept(
    client: AsyncClient, session_factory, owner_headers,
    requester, other_requester, room_listing,
):
    first = await add_request(session_factory, room_listing, requester)
    second = await add_request(session_factory, room_listing, other_requester)

    response = await _accept(client, first.id, owner_headers, agreed_price="600.00")
    assert response.status_code == 200
    assert response.json()["agreed_price"] == "600.00"

    listing = await _listing(client, room_listing.id)
    assert listing["remaining_capacity"] == 0
    assert listing["status"] == "resolved"

    # The listing is no longer active, so the other request cannot be accepted
    late = await _accept(client, second.id, owner_headers)
    assert late.status_code == 409
    assert "no longer active" in late.json()["detail"]


@pytest.mark.asyncio
async def test_lostfound_resolves_on_accept(
    client: AsyncClient, session_factory, owner_headers, requester, lostfound_listing
):
    claim = await add_request(
        session_factory, lostfound_listing, requester, proof_description="Dent near the cap"
    )
    assert (await _accept(client, claim.id, owner_headers)).status_code == 200
    assert (await _listing(client, lostfound_listing.id))["status"] == "resolved"


@pytest.mark.asyncio
async def test_ticket_stays_active_until_sold_out(
    client: AsyncClient, session_factory, owner_headers,
    requester, other_requester, ticket_listing,
):
    a = await add_request(session_factory, ticket_listing, requester, quantity_requested=2)
    b = await add_request(session_factory, ticket_listing, other_requester, quantity_requested=1)

    assert (await _accept(client, a.id, owner_headers)).status_code == 200
    listing = await _listing(client, ticket_listing.id)
    assert listing["remaining_capacity"] == 1
    assert listing["status"] == "active"

    assert (await _accept(client, b.id, owner_headers)).status_code == 200
    listing = await _listing(client, ticket_listing.id)
    assert listing["remaining_capacity"] == 0
    assert listing["status"] == "active"


@pytest.mark.asyncio
async def test_agreed_quantity_below_requested(
    client: AsyncClient, session_factory, owner_headers, requester, ticket_listing
):
    request = await add_request(session_factory, ticket_listing, requester, quantity_requested=3)

    response = await _accept(client, request.id, owner_headers, agreed_quantity=2)
    assert response.status_code == 200
    assert response.json()["agreed_quantity"] == 2
    assert (await _listing(client, ticket_listing.id))["remaining_capacity"] == 1


@pytest.mark.asyncio
async def test_agreed_quantity_above_requested(
    client: AsyncClient, session_factory, owner_headers, requester, ticket_listing
):
    request = await add_request(session_factory, ticket_listing, requester, quantity_requested=1)

    response = await _accept(client, request.id, owner_headers, agreed_quantity=2)
    assert response.status_code == 422
    assert (await _listing(client, ticket_listing.id))["remaining_capacity"] == 3


@pytest.mark.asyncio
async def test_reject_keeps_capacity(
    client: AsyncClient, session_factory, owner_headers, requester, ride_listing
):
    request = await add_request(session_factory, ride_listing, requester, quantity_requested=2)

    response = await client.put(
        f"/api/v1/requests/{request.id}/respond",
        json={"decision": "reject", "response_message": "   "},
        headers=owner_headers,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert response.json()["response_message"] is None
    assert (await _listing(client, ride_listing.id))["remaining_capacity"] == 2


@pytest.mark.asyncio
async def test_respond_twice(client: AsyncClient, session_factory, owner_headers, requester, ride_listing):
    request = await add_request(session_factory, ride_listing, requester)
    assert (await _accept(client, request.id, owner_headers)).status_code == 200

    again = await client.put(
        f"/api/v1/requests/{request.id}/respond",
        json={"decision": "reject"},
        headers=owner_headers,
    )
    assert again.status_code == 409
    assert again.json()["detail"] == "This request has already been accepted"


@pytest.mark.asyncio
async def test_invalid_decision(client: AsyncClient, session_factory, owner_headers, requester, ride_listing):
    request = await add_request(session_factory, ride_listing, requester)
    response = await client.put(
        f"/api/v1/requests/{request.id}/respond",
        json={"decision": "maybe"},
        headers=owner_headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_non_owner_cannot_respond(
    client: AsyncClient, session_factory, requester_headers, other_headers,
    requester, ride_listing,
):
    request = await add_request(session_factory, ride_listing, requester)

    for headers in (requester_headers, other_headers):
        response = await _accept(client, request.id, headers)
        assert response.status_code == 403

    assert (await _listing(client, ride_listing.id))["remaining_capacity"] == 2


@pytest.mark.asyncio
async def test_admin_can_respond(
    client: AsyncClient, session_factory, admin_headers, requester, ride_listing
):
    request = await add_request(session_factory, ride_listing, requester, quantity_requested=2)

    response = await _accept(client, request.id, admin_headers)
    assert response.status_code == 200
    assert (await _listing(client, ride_listing.id))["remaining_capacity"] == 0


@pytest.mark.asyncio
async def test_respond_missing_request(client: AsyncClient, owner_headers):
    response = await _accept(client, 99999, owner_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_accept_on_expired_listing(
    client: AsyncClient, session_factory, owner_headers, admin_headers, requester, past_ride
):
    request = await add_request(session_factory, past_ride, requester)

    sweep = await client.post("/api/v1/admin/sweeper/run", headers=admin_headers)
    assert sweep.status_code == 200
    assert sweep.json()["failures"] == []

    # The sweep already cancelled the pending request
    response = await _accept(client, request.id, owner_headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_sequential_acceptances_never_oversell(
    client: AsyncClient, session_factory, owner, owner_headers, ticket_listing,
):
    """Five single-ticket requests against three tickets: exactly three are accepted."""
    requests = []
    for i in range(5):
        buyer = await make_user(session_factory, f"buyer{i}")
        requests.append(await add_request(session_factory, ticket_listing, buyer))

    results = [(await _accept(client, r.id, owner_headers)).status_code for r in requests]
    assert results.count(200) == 3
    assert results.count(409) == 2

    async with session_factory() as session:
        listing = await session.scalar(select(Listing).where(Listing.id == ticket_listing.id))
        assert listing.remaining_capacity == 0
        assert 0 <= listing.remaining_capacity <= listing.total_capacity


@pytest.mark.asyncio
async def test_parallel_acceptances_never_oversell(
    client: AsyncClient, session_factory, owner_headers, admin_headers, ride_listing,
):
    """Owner and admin race to accept requests for 2 + 1 seats on a 2-seat ride."""
    a = await add_request(
        session_factory, ride_listing, await make_user(session_factory, "racer_a"), quantity_requested=2
    )
    b = await add_request(
        session_factory, ride_listing, await make_user(session_factory, "racer_b"), quantity_requested=1
    )

    results = await asyncio.gather(
        _accept(client, a.id, owner_headers),
        _accept(client, b.id, admin_headers),
    )
    codes = sorted(r.status_code for r in results)
    assert codes == [200, 409]

    listing = await _listing(client, ride_listing.id)
    accepted_seats = sum(r.json()["agreed_quantity"] for r in results if r.status_code == 200)
    assert listing["remaining_capacity"] == 2 - accepted_seats
    assert listing["remaining_capacity"] >= 0


@pytest.mark.asyncio
async def test_parallel_ticket_acceptances_stop_at_capacity(
    client: AsyncClient, session_factory, owner_headers, ticket_listing,
):
    """Six buyers of one ticket each, accepted all at once, against three tickets."""
    requests = []
    for i in range(6):
        buyer = await make_user(session_factory, f"rush{i}")
        requests.append(await add_request(session_factory, ticket_listing, buyer))

    results = await asyncio.gather(*(_accept(client, r.id, owner_headers) for r in requests))
    codes = [r.status_code for r in results]
    assert codes.count(200) == 3
    assert codes.count(409) == 3

    listing = await _listing(client, ticket_listing.id)
    assert listing["remaining_capacity"] == 0
    assert listing["status"] == "active"

    received = await client.get(
        "/api/v1/requests/received", params={"status": "pending"}, headers=owner_headers
    )
    assert len(received.json()) == 3
