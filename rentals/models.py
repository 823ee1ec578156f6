from enum import Enum
from typing import Optional, List, Dict
from datetime import datetime, timezone

from sqlalchemy import Column, Index, JSON
from sqlmodel import SQLModel, Field, UniqueConstraint


def utcnow() -> datetime:
    # naive UTC, which is what the columns store
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class VehicleType(str, Enum):
    CAR = "car"
    MOTORCYCLE = "motorcycle"
    BICYCLE = "bicycle"
    BOAT = "boat"


class FuelType(str, Enum):
    PETROL = "Petrol"
    DIESEL = "Diesel"
    ELECTRIC = "Electric"
    HYBRID = "Hybrid"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"


class User(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("email"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str
    role: str = Role.CUSTOMER.value
    created_at: datetime = Field(default_factory=utcnow)


class Location(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    street: str
    city: str = Field(index=True)
    state: str
    country: str = Field(index=True)
    zip_code: str
    latitude: float
    longitude: float
    phone: Optional[str] = None
    email: Optional[str] = None
    hours: Dict[str, Dict[str, str]] = Field(default_factory=dict, sa_column=Column(JSON))
    active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Vehicle(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    type: str = Field(index=True)
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    price_per_day: float
    location_id: int = Field(foreign_key="location.id", index=True)
    rating: float = 0
    review_count: int = 0
    seats: int
    fuel_type: Optional[str] = None
    available: bool = Field(default=True, index=True)
    description: str
    features: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Review(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("vehicle_id", "user_id"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    vehicle_id: int = Field(foreign_key="vehicle.id", index=True)
    user_id: int = Field(foreign_key="user.id")
    rating: int
    comment: str
    created_at: datetime = Field(default_factory=utcnow)


class Booking(SQLModel, table=True):
    __table_args__ = (Index("ix_booking_vehicle_dates", "vehicle_id", "start_date", "end_date"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    vehicle_id: int = Field(foreign_key="vehicle.id")
    user_id: int = Field(foreign_key="user.id", index=True)
    pickup_location_id: int = Field(foreign_key="location.id")
    dropoff_location_id: int = Field(foreign_key="location.id")
    start_date: datetime
    end_date: datetime
    total_days: int
    total_price: float             # base price only, fees are separate
    service_fee: float
    status: str = Field(default=BookingStatus.PENDING.value, index=True)
    payment_status: str = PaymentStatus.PENDING.value
    payment_method: Optional[str] = None
    special_requests: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class BookedDate(SQLModel, table=True):
    """Reserved interval on a vehicle; one row per active booking."""
    id: Optional[int] = Field(default=None, primary_key=True)
    vehicle_id: int = Field(foreign_key="vehicle.id", index=True)
    booking_id: Optional[int] = Field(default=None, foreign_key="booking.id")
    start_date: datetime
    end_date: datetime
