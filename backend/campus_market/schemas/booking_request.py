"""
Pydantic schemas for booking request validation.

Shape and bounds are checked here; rules that depend on the listing kind or on
the listing itself (quantity vs. seats, move-in date for rooms) are checked by
the kind descriptor in the service layer.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator

from campus_market.schemas.listing import ListingSummary
from campus_market.schemas.user import UserSummary


class BookingRequestCreate(BaseModel):
    message: str = Field(..., max_length=1000)
    contact_method: str = Field(..., max_length=500)
    quantity: Optional[int] = Field(None, gt=0)
    offered_price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    pickup_preference: Optional[str] = Field(None, max_length=500)
    proof_description: Optional[str] = Field(None, max_length=1000)
    move_in_date: Optional[date] = None
    stay_duration: Optional[str] = Field(None, max_length=100)
    occupants: Optional[int] = Field(None, ge=1, le=20)

    @field_validator("message", "contact_method")
    @classmethod
    def strip_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("pickup_preference", "proof_description", "stay_duration")
    @classmethod
    def strip_optional(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class BookingRequestRespond(BaseModel):
    decision: Literal["accept", "reject"]
    response_message: Optional[str] = Field(None, max_length=1000)
    agreed_price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    agreed_quantity: Optional[int] = Field(None, gt=0)


class BookingRequestResponse(BaseModel):
    id: int
    listing_id: int
    kind: str
    requester_id: int
    owner_id: int
    quantity_requested: int
    message: str
    contact_method: str
    status: str
    offered_price: Optional[Decimal]
    pickup_preference: Optional[str]
    proof_description: Optional[str]
    move_in_date: Optional[date]
    stay_duration: Optional[str]
    occupants: Optional[int]
    response_message: Optional[str]
    agreed_price: Optional[Decimal]
    agreed_quantity: Optional[int]
    responded_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    requester: Optional[UserSummary] = None
    listing: Optional[ListingSummary] = None

    model_config = {"from_attributes": True}


class BookingRequestCancelResponse(BaseModel):
    message: str
    request_id: int
    status: str
