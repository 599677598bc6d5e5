"""
Listing endpoints, plus the per-listing request endpoints.

Only the public browse view is cached; single listings and request views
always read the live row.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_market.core.logging import get_logger
from campus_market.core.security import Principal, get_current_principal
from campus_market.db.session import get_db
from campus_market.schemas.booking_request import BookingRequestCreate, BookingRequestResponse
from campus_market.schemas.listing import (
    ListingCreate,
    ListingKindName,
    ListingListResponse,
    ListingResponse,
    ListingUpdate,
    UserStatsResponse,
)
from campus_market.services.booking_service import create_request, list_requests_for_listing
from campus_market.services.cache_service import (
    get_cached_listings,
    invalidate_listing_cache,
    set_cached_listings,
)
from campus_market.services.listing_service import (
    create_listing,
    get_listing,
    get_user_stats,
    list_listings,
    list_owner_listings,
    update_listing,
    withdraw_listing,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/listings", tags=["Listings"])


@router.post("/", response_model=ListingResponse, status_code=status.HTTP_201_CREATED)
async def create_listing_endpoint(
    listing_data: ListingCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Post a room, ticket lot, ride or lost/found item."""
    listing = await create_listing(db, listing_data, principal)
    await invalidate_listing_cache()
    return listing


@router.get("/", response_model=ListingListResponse)
async def browse_listings_endpoint(
    kind: Optional[ListingKindName] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """
    Browse active listings, optionally filtered by kind.
    Results are cached in Redis; any change to capacity or status drops the cache.
    """
    cached = await get_cached_listings(kind, page, page_size)
    if cached:
        logger.info("listings_browse_cache_hit", kind=kind, page=page)
        cached["cached"] = True
        return ListingListResponse(**cached)

    listings, total = await list_listings(db, kind, page, page_size)

    response_data = {
        "listings": [ListingResponse.model_validate(item).model_dump(mode="json") for item in listings],
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }
    await set_cached_listings(kind, page, page_size, response_data)

    return ListingListResponse(**response_data)


@router.get("/mine", response_model=list[ListingResponse])
async def my_listings_endpoint(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """All of the caller's listings in every status."""
    return await list_owner_listings(db, principal.user_id)


@router.get("/stats", response_model=UserStatsResponse)
async def my_stats_endpoint(
    kind: Optional[ListingKindName] = Query(None),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """The caller's listings and requests counted by status."""
    return await get_user_stats(db, principal.user_id, kind)


@router.get("/{listing_id}", response_model=ListingResponse)
async def get_listing_endpoint(listing_id: int, db: AsyncSession = Depends(get_db)):
    return await get_listing(db, listing_id)


@router.put("/{listing_id}", response_model=ListingResponse)
async def update_listing_endpoint(
    listing_id: int,
    listing_data: ListingUpdate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Edit title, description, price, location or schedule. Capacity is fixed."""
    listing = await update_listing(db, listing_id, listing_data, principal)
    await invalidate_listing_cache()
    return listing


@router.delete("/{listing_id}", response_model=ListingResponse)
async def withdraw_listing_endpoint(
    listing_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Withdraw a listing (owner or admin). Pending requests on it are cancelled."""
    listing = await withdraw_listing(db, listing_id, principal)
    await invalidate_listing_cache()
    return listing


@router.post(
    "/{listing_id}/requests",
    response_model=BookingRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_request_endpoint(
    listing_id: int,
    payload: BookingRequestCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """
    Ask the owner for a slot on this listing.

    Nothing is reserved until the owner accepts, so several requesters may be
    pending against the same listing at once.
    """
    return await create_request(db, listing_id, principal, payload)


@router.get("/{listing_id}/requests", response_model=list[BookingRequestResponse])
async def listing_requests_endpoint(
    listing_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await list_requests_for_listing(db, listing_id, principal)
