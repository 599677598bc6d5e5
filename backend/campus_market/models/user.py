"""
User model with secure password storage and the platform admin flag.
"""

from sqlalchemy import Column, Integer, String, Boolean
from sqlalchemy.orm import relationship

from campus_market.db.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(100), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    hashed_password = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)

    # Relationships
    listings = relationship("Listing", back_populates="owner", lazy="raise")
    sent_requests = relationship(
        "BookingRequest",
        back_populates="requester",
        foreign_keys="BookingRequest.requester_id",
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, admin={self.is_admin})>"
