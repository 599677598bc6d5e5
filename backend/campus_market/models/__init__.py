from campus_market.models.user import User
from campus_market.models.listing import Listing
from campus_market.models.booking_request import BookingRequest

__all__ = ["User", "Listing", "BookingRequest"]
