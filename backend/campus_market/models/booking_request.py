"""
BookingRequest model: a requester's interest in a listing, arbitrated by the owner.

Key design decisions:
- `owner_id` and `kind` are copied from the listing at creation so that the
  owner inbox and the per-kind sweep don't need a join
- Partial unique index allows only one *pending* request per (listing,
  requester); rejected/cancelled rows don't block a re-request
- Rows are never hard-deleted by users; cancelled/rejected rows are purged by
  the expiry sweeper after the retention window, accepted rows are kept
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    text,
)
from sqlalchemy.orm import relationship

from campus_market.db.base import Base, TimestampMixin

REQUEST_STATUSES = ("pending", "accepted", "rejected", "cancelled")
PURGEABLE_REQUEST_STATUSES = ("cancelled", "rejected")


class BookingRequest(Base, TimestampMixin):
    __tablename__ = "booking_requests"

    id = Column(Integer, primary_key=True, index=True)
    listing_id = Column(
        Integer, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind = Column(String(20), nullable=False)
    requester_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    quantity_requested = Column(Integer, nullable=False, default=1)
    message = Column(String(1000), nullable=False)
    contact_method = Column(String(500), nullable=False)
    status = Column(String(20), nullable=False, default="pending")

    # Kind details and negotiation
    offered_price = Column(Numeric(10, 2), nullable=True)
    pickup_preference = Column(String(500), nullable=True)
    proof_description = Column(String(1000), nullable=True)
    move_in_date = Column(Date, nullable=True)
    stay_duration = Column(String(100), nullable=True)
    occupants = Column(Integer, nullable=True)

    # Owner response
    response_message = Column(String(1000), nullable=True)
    agreed_price = Column(Numeric(10, 2), nullable=True)
    agreed_quantity = Column(Integer, nullable=True)
    responded_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    listing = relationship("Listing", back_populates="requests", lazy="selectin")
    requester = relationship(
        "User", back_populates="sent_requests", foreign_keys=[requester_id], lazy="selectin"
    )

    __table_args__ = (
        CheckConstraint("quantity_requested > 0", name="check_request_quantity_positive"),
        CheckConstraint("requester_id <> owner_id", name="check_request_not_self"),
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'cancelled')",
            name="check_request_status",
        ),
        CheckConstraint(
            "agreed_quantity IS NULL OR (agreed_quantity > 0 AND agreed_quantity <= quantity_requested)",
            name="check_request_agreed_quantity",
        ),
        Index(
            "uq_request_pending_per_requester",
            "listing_id",
            "requester_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_booking_requests_kind_status_updated", "kind", "status", "updated_at"),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    def __repr__(self) -> str:
        return (
            f"<BookingRequest(id={self.id}, listing={self.listing_id}, "
            f"requester={self.requester_id}, status={self.status})>"
        )
