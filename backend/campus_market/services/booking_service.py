"""
Booking request lifecycle: create, respond, cancel, and the inbox/outbox views.

One engine serves every listing kind; kind-specific rules come from the
descriptors in `listing_kinds`.

STATE MACHINE
=============

    pending --accept (owner/admin)--> accepted
    pending --reject (owner/admin)--> rejected
    pending --cancel (requester/admin)--> cancelled
    rejected --cancel (requester/admin)--> cancelled
    pending --listing expired/withdrawn--> cancelled

Capacity is consumed only on acceptance, never on request creation, so any
number of requesters can queue up and the owner chooses among them.

CONCURRENCY STRATEGY: Conditional Decrement
===========================================

Problem:
  Two acceptances for the same ride race. Both read remaining_capacity=2, both
  subtract 2, both succeed. Result: four seats sold out of two.

Solution:
  The read and the write are one statement:

    UPDATE listings
       SET remaining_capacity = remaining_capacity - :q,
           status = CASE WHEN remaining_capacity - :q = 0   -- rooms, lost/found
                         THEN 'resolved' ELSE status END
     WHERE id = :listing_id
       AND status = 'active'
       AND remaining_capacity >= :q

  rowcount == 0 means the capacity was gone by the time this acceptance
  landed. The request is left `pending` and the owner gets a 409 explaining
  how much is left, so they can pick a smaller request or reject this one.
  No retry loop: unlike a version check, a failed floor check will not
  succeed on retry.

  The request row itself moves with `WHERE status = 'pending'`. Decrement and
  request update share a SAVEPOINT; if the request was cancelled between our
  read and our write, the savepoint rolls back and the capacity is restored.

  The DB CHECK constraints (0 <= remaining_capacity <= total_capacity) are the
  final safety net.

Duplicate requests:
  The pre-insert lookup gives callers a readable message; the partial unique
  index on (listing_id, requester_id) WHERE status = 'pending' is what makes
  two racing creates (or a retried create after an ambiguous failure) unable
  to both land.
"""

import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from campus_market.core.exceptions import (
    CapacityExhaustedError,
    ConflictError,
    ForbiddenError,
    InvalidOperationError,
    NotFoundError,
    ValidationFailedError,
)
from campus_market.core.logging import get_logger
from campus_market.core.metrics import (
    accept_latency,
    record_cancellation,
    record_request_creation,
    record_response,
)
from campus_market.core.security import Principal
from campus_market.models.booking_request import BookingRequest
from campus_market.models.listing import Listing
from campus_market.schemas.booking_request import BookingRequestCreate
from campus_market.services.listing_kinds import ListingKind, get_kind
from campus_market.services.listing_service import get_listing

logger = get_logger(__name__)

CANCELLABLE_STATUSES = ("pending", "rejected")


async def _find_open_request(
    db: AsyncSession, listing_id: int, requester_id: int
) -> Optional[BookingRequest]:
    """Pending or accepted request for this pair; either one blocks a new request."""
    result = await db.execute(
        select(BookingRequest)
        .where(
            BookingRequest.listing_id == listing_id,
            BookingRequest.requester_id == requester_id,
            BookingRequest.status.in_(("pending", "accepted")),
        )
        .order_by(BookingRequest.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _load_request(db: AsyncSession, request_id: int) -> BookingRequest:
    result = await db.execute(select(BookingRequest).where(BookingRequest.id == request_id))
    request = result.scalar_one_or_none()
    if not request:
        raise NotFoundError(f"Request {request_id} not found")
    return request


async def create_request(
    db: AsyncSession,
    listing_id: int,
    principal: Principal,
    payload: BookingRequestCreate,
) -> BookingRequest:
    """
    Create a pending request against a listing.

    Checks, in order: listing exists (404), listing active (409), caller is not
    the owner (400), payload passes kind rules (422), no open request from this
    caller (409), enough capacity left right now (409). None of these reserve
    capacity.
    """
    listing = await get_listing(db, listing_id)
    kind = get_kind(listing.kind)

    if not listing.is_active:
        record_request_creation(kind.name, "conflict")
        raise ConflictError(f"This {kind.label} is no longer active ({listing.status})")

    if listing.owner_id == principal.user_id:
        record_request_creation(kind.name, "invalid")
        raise InvalidOperationError(f"You cannot request your own {kind.label}")

    try:
        quantity = kind.validate_request(payload, listing)
    except ValidationFailedError:
        record_request_creation(kind.name, "validation_failed")
        raise

    existing = await _find_open_request(db, listing_id, principal.user_id)
    if existing:
        record_request_creation(kind.name, "conflict")
        raise ConflictError(f"You already have a {existing.status} request for this {kind.label}")

    if listing.remaining_capacity < quantity:
        record_request_creation(kind.name, "conflict")
        raise ConflictError(
            f"Only {listing.remaining_capacity} {kind.plural(listing.remaining_capacity)} "
            f"remaining but {quantity} requested"
        )

    request = BookingRequest(
        listing_id=listing.id,
        kind=kind.name,
        requester_id=principal.user_id,
        owner_id=listing.owner_id,
        quantity_requested=quantity,
        message=payload.message,
        contact_method=payload.contact_method,
        offered_price=payload.offered_price,
        pickup_preference=payload.pickup_preference,
        proof_description=payload.proof_description,
        move_in_date=payload.move_in_date,
        stay_duration=payload.stay_duration,
        occupants=payload.occupants,
        status="pending",
    )

    try:
        async with db.begin_nested():
            db.add(request)
            await db.flush()
    except IntegrityError:
        # Lost a race against a concurrent create for the same pair
        record_request_creation(kind.name, "conflict")
        logger.warning(
            "booking_request_duplicate_race",
            listing_id=listing_id,
            requester_id=principal.user_id,
        )
        raise ConflictError(f"You already have a pending request for this {kind.label}")

    await db.refresh(request)

    record_request_creation(kind.name, "created")
    logger.info(
        "booking_request_created",
        request_id=request.id,
        listing_id=listing_id,
        kind=kind.name,
        requester_id=principal.user_id,
        quantity=quantity,
    )
    return request


async def _accept(
    db: AsyncSession,
    request: BookingRequest,
    kind: ListingKind,
    principal: Principal,
    response_message: Optional[str],
    agreed_price: Optional[Decimal],
    agreed_quantity: Optional[int],
) -> None:
    quantity = agreed_quantity or request.quantity_requested
    if quantity > request.quantity_requested:
        raise ValidationFailedError(
            f"Agreed quantity {quantity} exceeds the {request.quantity_requested} requested"
        )

    now = datetime.now(timezone.utc)
    new_remaining = Listing.remaining_capacity - quantity
    listing_values = {"remaining_capacity": new_remaining, "updated_at": now}
    if kind.resolves_on_exhaustion:
        listing_values["status"] = case((new_remaining == 0, "resolved"), else_=Listing.status)

    start = time.perf_counter()
    try:
        async with db.begin_nested():
            decrement = await db.execute(
                update(Listing)
                .where(
                    Listing.id == request.listing_id,
                    Listing.status == "active",
                    Listing.remaining_capacity >= quantity,
                )
                .values(**listing_values)
                .execution_options(synchronize_session=False)
            )

            if decrement.rowcount == 0:
                raise _capacity_conflict(await _reload_listing(db, request.listing_id), kind, quantity)

            transition = await db.execute(
                update(BookingRequest)
                .where(BookingRequest.id == request.id, BookingRequest.status == "pending")
                .values(
                    status="accepted",
                    response_message=response_message,
                    agreed_price=agreed_price,
                    agreed_quantity=quantity,
                    responded_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )

            if transition.rowcount == 0:
                # Requester cancelled (or another response landed) mid-flight;
                # leaving the savepoint by exception restores the capacity.
                raise ConflictError("This request changed while it was being accepted; reload and retry")
    except ConflictError as exc:
        result = "capacity_conflict" if isinstance(exc, CapacityExhaustedError) else "conflict"
        record_response(kind.name, "accept", result)
        logger.warning(
            "booking_accept_conflict",
            request_id=request.id,
            listing_id=request.listing_id,
            quantity=quantity,
            reason=exc.detail,
        )
        raise
    finally:
        accept_latency.observe(time.perf_counter() - start)

    record_response(kind.name, "accept", "accepted")
    logger.info(
        "booking_request_accepted",
        request_id=request.id,
        listing_id=request.listing_id,
        kind=kind.name,
        quantity=quantity,
        by_admin=principal.is_admin and principal.user_id != request.owner_id,
    )


async def _reload_listing(db: AsyncSession, listing_id: int) -> Listing:
    listing = await db.get(Listing, listing_id)
    if listing is None:
        raise NotFoundError(f"Listing {listing_id} not found")
    await db.refresh(listing)
    return listing


def _capacity_conflict(listing: Listing, kind: ListingKind, quantity: int) -> ConflictError:
    if not listing.is_active:
        return ConflictError(f"This {kind.label} is no longer active ({listing.status})")
    return CapacityExhaustedError(
        f"Not enough capacity remaining: only {listing.remaining_capacity} "
        f"{kind.plural(listing.remaining_capacity)} remaining but {quantity} requested"
    )


async def _reject(
    db: AsyncSession,
    request: BookingRequest,
    kind: ListingKind,
    response_message: Optional[str],
) -> None:
    now = datetime.now(timezone.utc)
    transition = await db.execute(
        update(BookingRequest)
        .where(BookingRequest.id == request.id, BookingRequest.status == "pending")
        .values(
            status="rejected",
            response_message=response_message,
            responded_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if transition.rowcount == 0:
        await db.refresh(request)
        record_response(kind.name, "reject", "conflict")
        raise ConflictError(f"This request has already been {request.status}")

    record_response(kind.name, "reject", "rejected")
    logger.info("booking_request_rejected", request_id=request.id, listing_id=request.listing_id)


async def respond_to_request(
    db: AsyncSession,
    request_id: int,
    principal: Principal,
    decision: str,
    response_message: Optional[str] = None,
    agreed_price: Optional[Decimal] = None,
    agreed_quantity: Optional[int] = None,
) -> BookingRequest:
    """
    Owner (or admin) accepts or rejects a pending request.

    Ownership is checked against the parent listing, not the copy stored on
    the request. A capacity conflict on accept leaves the request pending.
    """
    request = await _load_request(db, request_id)
    listing = await get_listing(db, request.listing_id)
    kind = get_kind(listing.kind)

    if listing.owner_id != principal.user_id and not principal.is_admin:
        raise ForbiddenError(f"You can only respond to requests for your own {kind.label}s")

    if not request.is_pending:
        raise ConflictError(f"This request has already been {request.status}")

    message = response_message.strip() if response_message and response_message.strip() else None

    if decision == "accept":
        await _accept(db, request, kind, principal, message, agreed_price, agreed_quantity)
    elif decision == "reject":
        await _reject(db, request, kind, message)
    else:
        raise ValidationFailedError('Decision must be "accept" or "reject"')

    await db.refresh(request)
    await db.refresh(listing)
    return request


async def cancel_request(db: AsyncSession, request_id: int, principal: Principal) -> BookingRequest:
    """
    Requester (or admin) withdraws a request.

    Pending and rejected requests move to cancelled; an already-cancelled
    request is returned as-is. Accepted requests cannot be withdrawn here since
    their capacity is committed and there is no refund flow.
    """
    request = await _load_request(db, request_id)
    kind = get_kind(request.kind)

    if request.requester_id != principal.user_id and not principal.is_admin:
        raise ForbiddenError("You can only cancel your own requests")

    if request.status == "cancelled":
        record_cancellation(kind.name, "noop")
        return request

    if request.status == "accepted":
        record_cancellation(kind.name, "conflict")
        raise ConflictError(f"Cannot cancel an accepted request. Please contact the {kind.label} owner.")

    now = datetime.now(timezone.utc)
    transition = await db.execute(
        update(BookingRequest)
        .where(BookingRequest.id == request_id, BookingRequest.status.in_(CANCELLABLE_STATUSES))
        .values(status="cancelled", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(request)

    if transition.rowcount == 0 and request.status != "cancelled":
        # Accepted by the owner between our read and our write
        record_cancellation(kind.name, "conflict")
        raise ConflictError(f"This request has already been {request.status}")

    record_cancellation(kind.name, "cancelled")
    logger.info(
        "booking_request_cancelled",
        request_id=request_id,
        listing_id=request.listing_id,
        by_user=principal.user_id,
    )
    return request


async def list_requests_received(
    db: AsyncSession,
    owner_id: int,
    kind: Optional[str] = None,
    status: Optional[str] = None,
) -> list[BookingRequest]:
    """Requests on listings the caller owns, filtered on the listing's owner."""
    query = (
        select(BookingRequest)
        .join(Listing, Listing.id == BookingRequest.listing_id)
        .where(Listing.owner_id == owner_id)
    )
    if kind:
        query = query.where(BookingRequest.kind == get_kind(kind).name)
    if status:
        query = query.where(BookingRequest.status == status)

    result = await db.execute(
        query.order_by(BookingRequest.created_at.desc(), BookingRequest.id.desc())
    )
    return list(result.scalars().all())


async def list_requests_sent(
    db: AsyncSession,
    requester_id: int,
    kind: Optional[str] = None,
    status: Optional[str] = None,
) -> list[BookingRequest]:
    query = select(BookingRequest).where(BookingRequest.requester_id == requester_id)
    if kind:
        query = query.where(BookingRequest.kind == get_kind(kind).name)
    if status:
        query = query.where(BookingRequest.status == status)

    result = await db.execute(
        query.order_by(BookingRequest.created_at.desc(), BookingRequest.id.desc())
    )
    return list(result.scalars().all())


async def list_requests_for_listing(
    db: AsyncSession,
    listing_id: int,
    principal: Principal,
) -> list[BookingRequest]:
    listing = await get_listing(db, listing_id)
    if listing.owner_id != principal.user_id and not principal.is_admin:
        raise ForbiddenError("You can only view requests for your own listings")

    result = await db.execute(
        select(BookingRequest)
        .where(BookingRequest.listing_id == listing_id)
        .order_by(BookingRequest.created_at.asc(), BookingRequest.id.asc())
    )
    return list(result.scalars().all())
