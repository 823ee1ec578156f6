from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .models import BookingStatus, FuelType, VehicleType


# ------------------------------------------------------------------
# Base class: camelCase on the wire, snake_case in Python
# ------------------------------------------------------------------
class APIModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class Message(APIModel):
    message: str


class Pagination(APIModel):
    current_page: int
    total_pages: int
    total_items: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def of(cls, page: int, limit: int, total: int) -> "Pagination":
        pages = -(-total // limit)
        return cls(
            current_page=page,
            total_pages=pages,
            total_items=total,
            has_next_page=page < pages,
            has_prev_page=page > 1,
        )


# ------------------------------------------------------------------
# Users
# ------------------------------------------------------------------
class UserRead(APIModel):
    id: int
    name: str
    email: str
    role: str


# ------------------------------------------------------------------
# Locations (flat columns, nested on the wire)
# ------------------------------------------------------------------
class Address(APIModel):
    street: str
    city: str
    state: str
    country: str
    zip_code: str


class AddressUpdate(APIModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None


class Coordinates(APIModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class CoordinatesUpdate(APIModel):
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class ContactInfo(APIModel):
    phone: Optional[str] = None
    email: Optional[str] = None


class OpeningHours(APIModel):
    open: str
    close: str


class LocationCreate(APIModel):
    name: str = Field(min_length=1)
    address: Address
    coordinates: Coordinates
    contact_info: Optional[ContactInfo] = None
    hours: Dict[str, OpeningHours] = Field(default_factory=dict)
    active: bool = True


class LocationUpdate(APIModel):
    name: Optional[str] = None
    address: Optional[AddressUpdate] = None
    coordinates: Optional[CoordinatesUpdate] = None
    contact_info: Optional[ContactInfo] = None
    hours: Optional[Dict[str, OpeningHours]] = None
    active: Optional[bool] = None


class LocationRead(APIModel):
    id: int
    name: str
    address: Address
    coordinates: Coordinates
    contact_info: ContactInfo
    hours: Dict[str, OpeningHours]
    active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_model(cls, loc) -> "LocationRead":
        return cls(
            id=loc.id,
            name=loc.name,
            address=Address(
                street=loc.street, city=loc.city, state=loc.state,
                country=loc.country, zip_code=loc.zip_code,
            ),
            coordinates=Coordinates(latitude=loc.latitude, longitude=loc.longitude),
            contact_info=ContactInfo(phone=loc.phone, email=loc.email),
            hours=loc.hours or {},
            active=loc.active,
            created_at=loc.created_at,
            updated_at=loc.updated_at,
        )


class LocationSummary(APIModel):
    id: int
    name: str
    address: Dict[str, str]


class LocationList(APIModel):
    locations: List[LocationRead]
    pagination: Pagination


# ------------------------------------------------------------------
# Vehicles
# ------------------------------------------------------------------
class BookedInterval(APIModel):
    start_date: datetime
    end_date: datetime


class VehicleCreate(APIModel):
    name: str = Field(min_length=1)
    type: VehicleType
    images: List[str] = Field(default_factory=list)
    price_per_day: float = Field(ge=0)
    location: int
    seats: int = Field(ge=1)
    fuel_type: Optional[FuelType] = None
    description: str
    features: List[str] = Field(default_factory=list)


class VehicleUpdate(APIModel):
    name: Optional[str] = None
    type: Optional[VehicleType] = None
    images: Optional[List[str]] = None
    price_per_day: Optional[float] = Field(None, ge=0)
    location: Optional[int] = None
    seats: Optional[int] = Field(None, ge=1)
    fuel_type: Optional[FuelType] = None
    available: Optional[bool] = None
    description: Optional[str] = None
    features: Optional[List[str]] = None


class VehicleRead(APIModel):
    id: int
    name: str
    type: str
    images: List[str]
    price_per_day: float
    location_id: int
    rating: float
    review_count: int
    seats: int
    fuel_type: Optional[str] = None
    available: bool
    description: str
    features: List[str]
    created_at: datetime
    updated_at: datetime


class VehicleDetail(VehicleRead):
    location: Optional[LocationSummary] = None
    booked_dates: List[BookedInterval] = Field(default_factory=list)


class VehicleList(APIModel):
    vehicles: List[VehicleRead]
    pagination: Pagination


class VehicleSummary(APIModel):
    id: int
    name: str
    type: str
    images: List[str]
    price_per_day: Optional[float] = None


class ReviewCreate(APIModel):
    rating: int = Field(ge=1, le=5)
    comment: str = Field(min_length=1)


class ReviewRead(APIModel):
    id: int
    user_id: int
    user_name: Optional[str] = None
    rating: int
    comment: str
    created_at: datetime


class ReviewList(APIModel):
    reviews: List[ReviewRead]
    rating: float
    review_count: int


class LocationAvailability(APIModel):
    location: LocationSummary
    date_range: BookedInterval
    available_vehicles: List[VehicleRead]
    vehicle_count: int


# ------------------------------------------------------------------
# Bookings
# ------------------------------------------------------------------
class BookingCreate(APIModel):
    vehicle_id: int
    start_date: datetime
    end_date: datetime
    pickup_location_id: int
    dropoff_location_id: int
    special_requests: Optional[str] = None


class BookingUpdate(APIModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    pickup_location_id: Optional[int] = None
    dropoff_location_id: Optional[int] = None
    special_requests: Optional[str] = None


class StatusUpdate(APIModel):
    status: BookingStatus


class BookingRead(APIModel):
    id: int
    vehicle_id: int
    user_id: int
    pickup_location_id: int
    dropoff_location_id: int
    start_date: datetime
    end_date: datetime
    total_days: int
    total_price: float
    service_fee: float
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    special_requests: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class BookingDetail(BookingRead):
    vehicle: Optional[VehicleSummary] = None
    pickup_location: Optional[LocationSummary] = None
    dropoff_location: Optional[LocationSummary] = None


class StatusChange(APIModel):
    message: str
    booking: BookingRead


# ------------------------------------------------------------------
# Quotes
# ------------------------------------------------------------------
class QuoteOptions(APIModel):
    insurance: bool = False
    extra_driver: bool = False
    child_seat: bool = False
    different_dropoff: bool = False


class QuoteRequest(APIModel):
    vehicle_id: int
    start_date: datetime
    end_date: datetime
    options: QuoteOptions = Field(default_factory=QuoteOptions)


class Duration(APIModel):
    start_date: datetime
    end_date: datetime
    total_days: int


class Taxes(APIModel):
    rate: float
    amount: float


class QuotePricing(APIModel):
    base_price: float
    service_fee: float
    additional_fees: float
    location_fee: float
    taxes: Taxes
    total_price: float


class Quote(APIModel):
    vehicle_id: int
    vehicle_name: str
    duration: Duration
    pricing: QuotePricing
    options: QuoteOptions


class PricingCard(APIModel):
    base: Dict[str, float]
    service_fee: float
    deposit: float
    taxes: Taxes


def to_read(schema, row: Any):
    """Validate a table row into a read schema by column name."""
    return schema.model_validate(row.model_dump())
