"""
Listing service: create, browse, fetch, edit and withdraw listings, plus the
per-user status counts.

Capacity is set once at creation and afterwards only touched by the booking
service's conditional decrement. Withdrawing a listing never deletes the row;
it marks it `cancelled` and cascade-cancels the pending requests against it so
requesters see why their request closed.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from campus_market.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationFailedError,
)
from campus_market.core.logging import get_logger
from campus_market.core.security import Principal
from campus_market.models.booking_request import REQUEST_STATUSES, BookingRequest
from campus_market.models.listing import LISTING_STATUSES, Listing
from campus_market.schemas.listing import ListingCreate, ListingUpdate
from campus_market.services.listing_kinds import as_utc, get_kind

logger = get_logger(__name__)


async def create_listing(db: AsyncSession, data: ListingCreate, principal: Principal) -> Listing:
    kind = get_kind(data.kind)
    kind.validate_listing(data)
    capacity = kind.listing_capacity(data)

    listing = Listing(
        owner_id=principal.user_id,
        kind=kind.name,
        title=data.title.strip(),
        description=data.description,
        price=data.price,
        location=data.location,
        scheduled_at=as_utc(data.scheduled_at) if data.scheduled_at else None,
        total_capacity=capacity,
        remaining_capacity=capacity,
        status="active",
    )
    db.add(listing)
    await db.flush()
    await db.refresh(listing)

    logger.info(
        "listing_created",
        listing_id=listing.id,
        kind=listing.kind,
        owner_id=listing.owner_id,
        capacity=capacity,
    )
    return listing


async def get_listing(db: AsyncSession, listing_id: int) -> Listing:
    result = await db.execute(select(Listing).where(Listing.id == listing_id))
    listing = result.scalar_one_or_none()

    if not listing:
        raise NotFoundError(f"Listing {listing_id} not found")
    return listing


async def list_listings(
    db: AsyncSession,
    kind: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Listing], int]:
    """Browse active listings, soonest scheduled first, newest first otherwise."""
    query = select(Listing).where(Listing.status == "active")
    if kind:
        query = query.where(Listing.kind == get_kind(kind).name)

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    listings_query = (
        query
        .order_by(Listing.scheduled_at.is_(None), Listing.scheduled_at.asc(), Listing.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(listings_query)
    return list(result.scalars().all()), total


async def list_owner_listings(db: AsyncSession, owner_id: int) -> list[Listing]:
    result = await db.execute(
        select(Listing)
        .where(Listing.owner_id == owner_id)
        .order_by(Listing.created_at.desc(), Listing.id.desc())
    )
    return list(result.scalars().all())


async def cancel_pending_requests(
    db: AsyncSession,
    listing_id: int,
    reason: str,
    now: Optional[datetime] = None,
) -> int:
    """Close every pending request against a listing. Returns the number closed."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        update(BookingRequest)
        .where(
            BookingRequest.listing_id == listing_id,
            BookingRequest.status == "pending",
        )
        .values(status="cancelled", response_message=reason, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def withdraw_listing(db: AsyncSession, listing_id: int, principal: Principal) -> Listing:
    listing = await get_listing(db, listing_id)

    if listing.owner_id != principal.user_id and not principal.is_admin:
        raise ForbiddenError("You can only withdraw your own listings")

    now = datetime.now(timezone.utc)
    result = await db.execute(
        update(Listing)
        .where(Listing.id == listing_id, Listing.status == "active")
        .values(status="cancelled", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.refresh(listing)
        raise ConflictError(f"This listing is already {listing.status}")

    closed = await cancel_pending_requests(db, listing_id, "listing withdrawn", now)
    await db.refresh(listing)

    logger.info(
        "listing_withdrawn",
        listing_id=listing_id,
        by_user=principal.user_id,
        by_admin=principal.is_admin and listing.owner_id != principal.user_id,
        requests_cancelled=closed,
    )
    return listing


async def update_listing(
    db: AsyncSession, listing_id: int, data: ListingUpdate, principal: Principal
) -> Listing:
    """
    Edit a listing's descriptive fields (owner or admin).

    A new `scheduled_at` is only accepted while the listing is still active,
    and the write re-checks that in the same statement so it cannot revive a
    listing the sweeper expired a moment earlier.
    """
    listing = await get_listing(db, listing_id)

    if listing.owner_id != principal.user_id and not principal.is_admin:
        raise ForbiddenError("You can only edit your own listings")

    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationFailedError("Nothing to update")

    conditions = [Listing.id == listing_id]
    if "scheduled_at" in changes:
        kind = get_kind(listing.kind)
        kind.validate_schedule(changes["scheduled_at"])
        if changes["scheduled_at"] is not None:
            changes["scheduled_at"] = as_utc(changes["scheduled_at"])
        conditions.append(Listing.status == "active")

    result = await db.execute(
        update(Listing)
        .where(*conditions)
        .values(**changes, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    await db.refresh(listing)
    if result.rowcount == 0:
        raise ConflictError(f"Cannot reschedule a listing that is already {listing.status}")

    logger.info(
        "listing_updated",
        listing_id=listing_id,
        by_user=principal.user_id,
        fields=sorted(changes),
    )
    return listing


async def _status_counts(
    db: AsyncSession, model, party_column, user_id: int, statuses: tuple, kind: Optional[str]
) -> dict[str, int]:
    query = (
        select(model.status, func.count())
        .where(party_column == user_id)
        .group_by(model.status)
    )
    if kind:
        query = query.where(model.kind == kind)
    found = dict((await db.execute(query)).all())

    counts = {name: found.get(name, 0) for name in statuses}
    counts["total"] = sum(counts.values())
    return counts


async def get_user_stats(db: AsyncSession, user_id: int, kind: Optional[str] = None) -> dict:
    if kind:
        kind = get_kind(kind).name

    committed = select(
        func.coalesce(func.sum(Listing.total_capacity - Listing.remaining_capacity), 0)
    ).where(Listing.owner_id == user_id)
    if kind:
        committed = committed.where(Listing.kind == kind)

    return {
        "kind": kind,
        "listings": await _status_counts(db, Listing, Listing.owner_id, user_id, LISTING_STATUSES, kind),
        "requests_sent": await _status_counts(
            db, BookingRequest, BookingRequest.requester_id, user_id, REQUEST_STATUSES, kind
        ),
        "requests_received": await _status_counts(
            db, BookingRequest, BookingRequest.owner_id, user_id, REQUEST_STATUSES, kind
        ),
        "units_committed": (await db.execute(committed)).scalar(),
    }
