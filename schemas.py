"""
Request schemas and enumerations for the StayFinder API.

Documents are stored in MongoDB with snake_case keys:
- User    -> "user"
- Listing -> "listing"
- Booking -> "booking"
Request bodies and responses use camelCase.
"""

from datetime import date
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class Role(str, Enum):
    host = "host"
    guest = "guest"


class PropertyType(str, Enum):
    apartment = "apartment"
    house = "house"
    condo = "condo"
    villa = "villa"
    studio = "studio"
    room = "room"


class RoomType(str, Enum):
    entire_place = "entire_place"
    private_room = "private_room"
    shared_room = "shared_room"


class Amenity(str, Enum):
    wifi = "WiFi"
    kitchen = "Kitchen"
    washer = "Washer"
    dryer = "Dryer"
    air_conditioning = "Air conditioning"
    heating = "Heating"
    parking = "Parking"
    pool = "Pool"
    hot_tub = "Hot tub"
    gym = "Gym"
    tv = "TV"
    workspace = "Workspace"
    fireplace = "Fireplace"
    balcony = "Balcony"
    garden = "Garden"


class BookingStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    completed = "completed"
    cancelled = "cancelled"


class PaymentStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    refunded = "refunded"
    failed = "failed"


class BookingListType(str, Enum):
    guest = "guest"
    host = "host"


ACTIVE_BOOKING_STATUSES = (BookingStatus.pending.value, BookingStatus.confirmed.value)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Users

class RegisterRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = Field(None, max_length=30)
    role: Role = Role.guest
    bio: Optional[str] = Field(None, max_length=500)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=30)
    bio: Optional[str] = Field(None, max_length=500)
    avatar_url: Optional[str] = None


# Listings

class Coordinates(CamelModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class Location(CamelModel):
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    coordinates: Optional[Coordinates] = None


class Image(CamelModel):
    url: str = Field(..., min_length=1)
    caption: str = ""


class Availability(CamelModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    blocked_dates: List[date] = Field(default_factory=list)


class HouseRules(CamelModel):
    check_in: Optional[str] = None
    check_out: Optional[str] = None
    smoking_allowed: bool = False
    pets_allowed: bool = False
    parties_allowed: bool = False


class ListingCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=1000)
    price: float = Field(..., ge=0)
    location: Location
    images: List[Image] = Field(default_factory=list)
    amenities: List[Amenity] = Field(default_factory=list)
    property_type: PropertyType
    room_type: RoomType
    max_guests: int = Field(..., ge=1)
    bedrooms: int = Field(..., ge=0)
    bathrooms: float = Field(..., ge=0)
    availability: Availability = Field(default_factory=Availability)
    rules: HouseRules = Field(default_factory=HouseRules)


class ListingUpdate(CamelModel):
    """Partial update. ``images`` are appended to the existing ones."""
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=1000)
    price: Optional[float] = Field(None, ge=0)
    location: Optional[Location] = None
    images: Optional[List[Image]] = None
    amenities: Optional[List[Amenity]] = None
    property_type: Optional[PropertyType] = None
    room_type: Optional[RoomType] = None
    max_guests: Optional[int] = Field(None, ge=1)
    bedrooms: Optional[int] = Field(None, ge=0)
    bathrooms: Optional[float] = Field(None, ge=0)
    availability: Optional[Availability] = None
    rules: Optional[HouseRules] = None
    is_active: Optional[bool] = None


class ListingSearch(BaseModel):
    city: Optional[str] = None
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    guests: Optional[int] = Field(None, ge=1)
    property_type: Optional[PropertyType] = None
    page: int = Field(1, ge=1)
    limit: int = Field(12, ge=1, le=50)


# Bookings

class GuestCount(CamelModel):
    adults: int = Field(..., ge=1)
    children: int = Field(0, ge=0)
    infants: int = Field(0, ge=0)

    @property
    def total(self) -> int:
        return self.adults + self.children + self.infants


class BookingCreate(CamelModel):
    listing_id: str = Field(..., min_length=1)
    check_in: date
    check_out: date
    guests: GuestCount
    special_requests: Optional[str] = Field(None, max_length=500)


class CancelRequest(CamelModel):
    reason: Optional[str] = Field(None, max_length=500)


class ReviewRequest(CamelModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)


class StatusUpdate(CamelModel):
    status: BookingStatus
