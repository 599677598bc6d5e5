from campus_market.schemas.user import UserCreate, UserResponse, UserLogin, UserSummary, Token
from campus_market.schemas.listing import (
    ListingCreate,
    ListingResponse,
    ListingListResponse,
    ListingSummary,
)
from campus_market.schemas.booking_request import (
    BookingRequestCreate,
    BookingRequestRespond,
    BookingRequestResponse,
    BookingRequestCancelResponse,
)

__all__ = [
    "UserCreate", "UserResponse", "UserLogin", "UserSummary", "Token",
    "ListingCreate", "ListingResponse", "ListingListResponse", "ListingSummary",
    "BookingRequestCreate", "BookingRequestRespond", "BookingRequestResponse",
    "BookingRequestCancelResponse",
]
