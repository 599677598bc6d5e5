"""
Expiry sweeper: periodic cleanup that runs alongside live traffic.

Two passes per run, each split per listing kind so one kind failing does not
stop the others:

1. Listing expiry (kinds with `expires_on_schedule`: tickets, rides)
   Active listings whose `scheduled_at` is in the past are marked `expired`
   and their pending requests are cancelled with reason "listing expired".
   The UPDATE re-checks `status = 'active'` and the time, so a listing that
   was resolved or withdrawn after we selected it is left alone.
   Accepted requests are not touched; they stay as the record of the deal.

2. Terminal request purge (all kinds)
   Cancelled and rejected requests whose `updated_at` is older than the
   retention window are deleted. Accepted requests are never purged.

Both passes are idempotent: running them twice on the same state changes
nothing the second time. A failed pass is logged and counted; the next tick
is the retry.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from campus_market.core.config import get_settings
from campus_market.core.logging import get_logger
from campus_market.core.metrics import (
    sweeper_failures,
    sweeper_listings_expired,
    sweeper_requests_cancelled,
    sweeper_requests_purged,
)
from campus_market.models.booking_request import PURGEABLE_REQUEST_STATUSES, BookingRequest
from campus_market.models.listing import Listing
from campus_market.services.cache_service import invalidate_listing_cache
from campus_market.services.listing_kinds import LISTING_KINDS, ListingKind, expiring_kinds
from campus_market.services.listing_service import cancel_pending_requests

logger = get_logger(__name__)
settings = get_settings()

EXPIRY_REASON = "listing expired"


@dataclass
class SweepReport:
    started_at: datetime
    listings_expired: dict[str, int] = field(default_factory=dict)
    requests_cancelled: dict[str, int] = field(default_factory=dict)
    requests_purged: dict[str, int] = field(default_factory=dict)
    failures: list[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def total_expired(self) -> int:
        return sum(self.listings_expired.values())

    @property
    def total_purged(self) -> int:
        return sum(self.requests_purged.values())

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "listings_expired": self.listings_expired,
            "requests_cancelled": self.requests_cancelled,
            "requests_purged": self.requests_purged,
            "failures": self.failures,
            "duration_ms": self.duration_ms,
        }


class ExpirySweeper:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        retention: Optional[timedelta] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.session_factory = session_factory
        self.retention = retention or timedelta(hours=settings.REQUEST_RETENTION_HOURS)
        self.clock = clock
        self.last_report: Optional[SweepReport] = None

    async def run(self) -> SweepReport:
        now = self.clock()
        report = SweepReport(started_at=now)
        start = time.perf_counter()
        logger.info("sweeper_run_started")

        for kind in expiring_kinds():
            try:
                expired, cancelled = await self._expire_kind(kind, now)
                report.listings_expired[kind.name] = expired
                report.requests_cancelled[kind.name] = cancelled
            except Exception as e:
                sweeper_failures.labels(pass_name="expire_listings", kind=kind.name).inc()
                report.failures.append(f"expire_listings:{kind.name}")
                logger.error("sweeper_pass_failed", pass_name="expire_listings", kind=kind.name, error=str(e))

        cutoff = now - self.retention
        for kind in LISTING_KINDS.values():
            try:
                report.requests_purged[kind.name] = await self._purge_kind(kind, cutoff)
            except Exception as e:
                sweeper_failures.labels(pass_name="purge_requests", kind=kind.name).inc()
                report.failures.append(f"purge_requests:{kind.name}")
                logger.error("sweeper_pass_failed", pass_name="purge_requests", kind=kind.name, error=str(e))

        if report.total_expired:
            await invalidate_listing_cache()

        report.duration_ms = round((time.perf_counter() - start) * 1000, 2)
        self.last_report = report
        logger.info(
            "sweeper_run_completed",
            listings_expired=report.total_expired,
            requests_purged=report.total_purged,
            failures=len(report.failures),
            duration_ms=report.duration_ms,
        )
        return report

    async def _expire_kind(self, kind: ListingKind, now: datetime) -> tuple[int, int]:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(Listing.id).where(
                        Listing.kind == kind.name,
                        Listing.status == "active",
                        Listing.scheduled_at.is_not(None),
                        Listing.scheduled_at < now,
                    )
                )
                candidate_ids = list(result.scalars().all())

                expired = cancelled = 0
                for listing_id in candidate_ids:
                    if await self._expire_listing(session, listing_id, now):
                        expired += 1
                        cancelled += await cancel_pending_requests(session, listing_id, EXPIRY_REASON, now)

        if expired:
            sweeper_listings_expired.labels(kind=kind.name).inc(expired)
            sweeper_requests_cancelled.labels(kind=kind.name).inc(cancelled)
            logger.info("sweeper_listings_expired", kind=kind.name, expired=expired, requests_cancelled=cancelled)
        return expired, cancelled

    @staticmethod
    async def _expire_listing(session: AsyncSession, listing_id: int, now: datetime) -> bool:
        result = await session.execute(
            update(Listing)
            .where(
                Listing.id == listing_id,
                Listing.status == "active",
                Listing.scheduled_at < now,
            )
            .values(status="expired", updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _purge_kind(self, kind: ListingKind, cutoff: datetime) -> int:
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(BookingRequest)
                    .where(
                        BookingRequest.kind == kind.name,
                        BookingRequest.status.in_(PURGEABLE_REQUEST_STATUSES),
                        BookingRequest.updated_at < cutoff,
                    )
                    .execution_options(synchronize_session=False)
                )
                purged = result.rowcount

        if purged:
            sweeper_requests_purged.labels(kind=kind.name).inc(purged)
            logger.info("sweeper_requests_purged", kind=kind.name, purged=purged)
        return purged
