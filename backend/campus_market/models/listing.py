"""
Listing model: an owner-published offer with finite capacity.

Key design decisions:
- One table for all four kinds (room, ticket, ride, lostfound); per-kind
  behaviour lives in `services.listing_kinds`, not in subclasses
- `remaining_capacity` is denormalized so acceptance can decrement it with a
  single conditional UPDATE instead of counting accepted requests
- CHECK constraints keep 0 <= remaining_capacity <= total_capacity even if
  application code is wrong
- Index on (status, scheduled_at) serves the expiry sweep
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from campus_market.db.base import Base, TimestampMixin

LISTING_STATUSES = ("active", "resolved", "expired", "cancelled")


class Listing(Base, TimestampMixin):
    __tablename__ = "listings"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    kind = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(String(1000), nullable=True)
    price = Column(Numeric(10, 2), nullable=True)
    location = Column(String(255), nullable=True)
    # Move-in date, event date, ride departure; NULL for lost/found items
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    total_capacity = Column(Integer, nullable=False, default=1)
    remaining_capacity = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default="active")

    # Relationships
    owner = relationship("User", back_populates="listings", lazy="selectin")
    requests = relationship("BookingRequest", back_populates="listing", lazy="raise")

    __table_args__ = (
        CheckConstraint("total_capacity > 0", name="check_listing_total_capacity_positive"),
        CheckConstraint("remaining_capacity >= 0", name="check_listing_remaining_non_negative"),
        CheckConstraint(
            "remaining_capacity <= total_capacity", name="check_listing_remaining_lte_total"
        ),
        CheckConstraint(
            "status IN ('active', 'resolved', 'expired', 'cancelled')",
            name="check_listing_status",
        ),
        CheckConstraint(
            "kind IN ('room', 'ticket', 'ride', 'lostfound')",
            name="check_listing_kind",
        ),
        Index("ix_listings_kind_status", "kind", "status"),
        Index("ix_listings_status_scheduled_at", "status", "scheduled_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self) -> str:
        return (
            f"<Listing(id={self.id}, kind={self.kind}, status={self.status}, "
            f"remaining={self.remaining_capacity}/{self.total_capacity})>"
        )
