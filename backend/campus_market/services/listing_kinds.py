"""
Listing kind descriptors.

The booking engine is written once; everything that differs between rooms,
ticket lots, rides and lost/found items is captured here as data:

    kind        capacity   resolves at 0   expires on schedule   unit
    room        binary     yes             no                    room
    ticket      counted    no              yes                   ticket
    ride        counted    no              yes                   seat
    lostfound   binary     yes             no                    claim

Counted kinds keep selling until sold out and stay `active` at zero capacity
(new requests then fail the capacity check); binary kinds flip to `resolved`
in the same statement that consumes their only slot.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Optional

from campus_market.core.config import get_settings
from campus_market.core.exceptions import ValidationFailedError

if TYPE_CHECKING:
    from campus_market.models.listing import Listing
    from campus_market.schemas.booking_request import BookingRequestCreate
    from campus_market.schemas.listing import ListingCreate

settings = get_settings()


@dataclass(frozen=True)
class ListingKind:
    name: str
    label: str
    unit: str
    counted: bool
    resolves_on_exhaustion: bool
    expires_on_schedule: bool
    requires_schedule: bool = False
    requires_move_in_date: bool = False

    def plural(self, count: int) -> str:
        return self.unit if count == 1 else f"{self.unit}s"

    def listing_capacity(self, data: "ListingCreate") -> int:
        return data.capacity if self.counted else 1

    def validate_listing(self, data: "ListingCreate") -> None:
        self.validate_schedule(data.scheduled_at)

    def validate_schedule(self, scheduled_at: Optional[datetime]) -> None:
        if not self.requires_schedule:
            return
        if scheduled_at is None:
            raise ValidationFailedError(f"A {self.label} needs a scheduled date and time")
        if as_utc(scheduled_at) <= datetime.now(timezone.utc):
            raise ValidationFailedError(f"{self.label.capitalize()} date must be in the future")

    def requested_quantity(self, payload: "BookingRequestCreate") -> int:
        if not self.counted:
            if payload.quantity not in (None, 1):
                raise ValidationFailedError(f"A {self.label} request is always for exactly one {self.unit}")
            return 1
        return payload.quantity or 1

    def validate_request(self, payload: "BookingRequestCreate", listing: "Listing") -> int:
        """Check kind-specific request rules and return the quantity requested.

        The comparison against `total_capacity` is a soft pre-check only; the
        authoritative capacity decision happens at acceptance time.
        """
        if len(payload.message) < settings.REQUEST_MESSAGE_MIN_LENGTH:
            raise ValidationFailedError(
                f"Message must be at least {settings.REQUEST_MESSAGE_MIN_LENGTH} characters long"
            )

        quantity = self.requested_quantity(payload)
        if quantity > settings.MAX_REQUEST_QUANTITY:
            raise ValidationFailedError(
                f"Cannot request more than {settings.MAX_REQUEST_QUANTITY} {self.plural(2)} at once"
            )
        if quantity > listing.total_capacity:
            raise ValidationFailedError(
                f"This {self.label} only has {listing.total_capacity} "
                f"{self.plural(listing.total_capacity)} in total, but {quantity} were requested"
            )

        if self.requires_move_in_date:
            if payload.move_in_date is None:
                raise ValidationFailedError("Preferred move-in date is required")
            if payload.move_in_date < date.today():
                raise ValidationFailedError("Move-in date cannot be in the past")

        return quantity


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


ROOM = ListingKind(
    name="room",
    label="room",
    unit="room",
    counted=False,
    resolves_on_exhaustion=True,
    expires_on_schedule=False,
    requires_move_in_date=True,
)
TICKET = ListingKind(
    name="ticket",
    label="ticket listing",
    unit="ticket",
    counted=True,
    resolves_on_exhaustion=False,
    expires_on_schedule=True,
    requires_schedule=True,
)
RIDE = ListingKind(
    name="ride",
    label="ride",
    unit="seat",
    counted=True,
    resolves_on_exhaustion=False,
    expires_on_schedule=True,
    requires_schedule=True,
)
LOST_FOUND = ListingKind(
    name="lostfound",
    label="lost/found item",
    unit="claim",
    counted=False,
    resolves_on_exhaustion=True,
    expires_on_schedule=False,
)

LISTING_KINDS: dict[str, ListingKind] = {k.name: k for k in (ROOM, TICKET, RIDE, LOST_FOUND)}


def get_kind(name: str) -> ListingKind:
    try:
        return LISTING_KINDS[name]
    except KeyError:
        raise ValidationFailedError(f"Unknown listing kind: {name}")


def expiring_kinds() -> list[ListingKind]:
    return [k for k in LISTING_KINDS.values() if k.expires_on_schedule]
