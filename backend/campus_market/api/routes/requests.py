"""
Booking request endpoints: inbox/outbox views, respond and cancel.
"""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from campus_market.core.logging import get_logger
from campus_market.core.security import Principal, get_current_principal
from campus_market.db.session import get_db
from campus_market.schemas.booking_request import (
    BookingRequestCancelResponse,
    BookingRequestRespond,
    BookingRequestResponse,
)
from campus_market.schemas.listing import ListingKindName
from campus_market.services.booking_service import (
    cancel_request,
    list_requests_received,
    list_requests_sent,
    respond_to_request,
)
from campus_market.services.cache_service import invalidate_listing_cache

logger = get_logger(__name__)
router = APIRouter(prefix="/requests", tags=["Requests"])

RequestStatusName = Literal["pending", "accepted", "rejected", "cancelled"]


@router.get("/received", response_model=list[BookingRequestResponse])
async def received_requests_endpoint(
    kind: Optional[ListingKindName] = Query(None),
    status_filter: Optional[RequestStatusName] = Query(None, alias="status"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Requests made against the caller's listings, newest first."""
    return await list_requests_received(db, principal.user_id, kind, status_filter)


@router.get("/sent", response_model=list[BookingRequestResponse])
async def sent_requests_endpoint(
    kind: Optional[ListingKindName] = Query(None),
    status_filter: Optional[RequestStatusName] = Query(None, alias="status"),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Requests the caller has made, newest first."""
    return await list_requests_sent(db, principal.user_id, kind, status_filter)


@router.put("/{request_id}/respond", response_model=BookingRequestResponse)
async def respond_endpoint(
    request_id: int,
    response: BookingRequestRespond,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """
    Accept or reject a pending request (listing owner or admin).

    Accepting consumes capacity atomically. If the listing no longer has room
    for the request, this returns 409 and the request stays pending.
    """
    request = await respond_to_request(
        db,
        request_id,
        principal,
        response.decision,
        response_message=response.response_message,
        agreed_price=response.agreed_price,
        agreed_quantity=response.agreed_quantity,
    )
    if request.status == "accepted":
        await invalidate_listing_cache()
    return request


@router.delete("/{request_id}", response_model=BookingRequestCancelResponse)
async def cancel_request_endpoint(
    request_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Withdraw a pending or rejected request (requester or admin)."""
    request = await cancel_request(db, request_id, principal)
    return BookingRequestCancelResponse(
        message="Request cancelled successfully",
        request_id=request.id,
        status=request.status,
    )
