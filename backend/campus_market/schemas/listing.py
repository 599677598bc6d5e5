"""
Pydantic schemas for listing-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator

ListingKindName = Literal["room", "ticket", "ride", "lostfound"]


class ListingCreate(BaseModel):
    kind: ListingKindName
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    location: Optional[str] = Field(None, max_length=255)
    scheduled_at: Optional[datetime] = None
    # Ignored for rooms and lost/found items, which always offer exactly one slot
    capacity: int = Field(default=1, gt=0, le=1000)


class ListingUpdate(BaseModel):
    """Descriptive fields only. Kind, capacity and status cannot be edited."""

    model_config = {"extra": "forbid"}

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    location: Optional[str] = Field(None, max_length=255)
    scheduled_at: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: Optional[str]) -> str:
        if value is None or not value.strip():
            raise ValueError("title must not be blank")
        return value.strip()


class ListingSummary(BaseModel):
    id: int
    kind: str
    title: str
    price: Optional[Decimal]
    location: Optional[str]
    scheduled_at: Optional[datetime]
    remaining_capacity: int
    status: str

    model_config = {"from_attributes": True}


class ListingResponse(BaseModel):
    id: int
    owner_id: int
    kind: str
    title: str
    description: Optional[str]
    price: Optional[Decimal]
    location: Optional[str]
    scheduled_at: Optional[datetime]
    total_capacity: int
    remaining_capacity: int
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ListingListResponse(BaseModel):
    listings: list[ListingResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False


class UserStatsResponse(BaseModel):
    """Per-status counts for the caller, optionally narrowed to one kind."""

    kind: Optional[ListingKindName] = None
    listings: dict[str, int]
    requests_sent: dict[str, int]
    requests_received: dict[str, int]
    # Seats, tickets, rooms or claims handed out through accepted requests
    units_committed: int
