"""Vehicle catalog, reviews and the location registry."""
import logging
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlmodel import Session, select, col

from .auth import Actor
from .availability import DateInterval, booked_dates, free_during
from .errors import InvalidInput, InvalidState, NotFound
from .models import Booking, Location, Review, User, Vehicle, utcnow
from . import schemas as s

logger = logging.getLogger(__name__)

VEHICLE_SORTS = {
    "createdAt": Vehicle.created_at,
    "pricePerDay": Vehicle.price_per_day,
    "rating": Vehicle.rating,
    "name": Vehicle.name,
    "seats": Vehicle.seats,
}


def _page(page: int, limit: int) -> Tuple[int, int]:
    if page < 1 or limit < 1:
        raise InvalidInput("page and limit must be positive")
    return (page - 1) * limit, limit


# =========================== vehicles ===========================
def get_vehicle(session: Session, vehicle_id: int) -> Vehicle:
    vehicle = session.get(Vehicle, vehicle_id)
    if not vehicle:
        raise NotFound("Vehicle not found")
    return vehicle


def list_vehicles(
    session: Session,
    *,
    type: Optional[str] = None,
    location: Optional[int] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    available: Optional[bool] = None,
    min_seats: Optional[int] = None,
    search: Optional[str] = None,
    sort: str = "createdAt",
    order: str = "desc",
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[Vehicle], int]:
    if sort not in VEHICLE_SORTS:
        raise InvalidInput(f"sort must be one of: {', '.join(VEHICLE_SORTS)}")
    if order not in ("asc", "desc"):
        raise InvalidInput("order must be asc or desc")

    filters = []
    if type:
        filters.append(Vehicle.type == type)
    if location is not None:
        filters.append(Vehicle.location_id == location)
    if available is not None:
        filters.append(Vehicle.available == available)
    if min_seats is not None:
        filters.append(Vehicle.seats >= min_seats)
    if min_price is not None:
        filters.append(Vehicle.price_per_day >= min_price)
    if max_price is not None:
        filters.append(Vehicle.price_per_day <= max_price)
    if search:
        pattern = f"%{search}%"
        filters.append(or_(col(Vehicle.name).ilike(pattern), col(Vehicle.description).ilike(pattern)))

    key = col(VEHICLE_SORTS[sort])
    offset, limit = _page(page, limit)
    rows = session.exec(
        select(Vehicle).where(*filters)
        .order_by(key.asc() if order == "asc" else key.desc(), col(Vehicle.id))
        .offset(offset).limit(limit)
    ).all()
    total = session.exec(select(func.count()).select_from(Vehicle).where(*filters)).one()
    return list(rows), int(total)


def vehicle_types(session: Session) -> List[str]:
    return sorted(session.exec(select(Vehicle.type).distinct()).all())


def available_vehicles(
    session: Session, interval: DateInterval, location_id: Optional[int] = None
) -> List[Vehicle]:
    query = select(Vehicle).where(Vehicle.available == True, free_during(interval))  # noqa: E712
    if location_id is not None:
        query = query.where(Vehicle.location_id == location_id)
    return list(session.exec(query.order_by(col(Vehicle.id))).all())


def vehicle_detail(session: Session, vehicle_id: int) -> s.VehicleDetail:
    vehicle = get_vehicle(session, vehicle_id)
    loc = session.get(Location, vehicle.location_id)
    return s.VehicleDetail(
        **vehicle.model_dump(),
        location=_location_summary(loc) if loc else None,
        booked_dates=[
            s.BookedInterval(start_date=b.start_date, end_date=b.end_date)
            for b in booked_dates(session, vehicle.id)
        ],
    )


def create_vehicle(session: Session, payload: s.VehicleCreate) -> Vehicle:
    if not session.get(Location, payload.location):
        raise InvalidInput("Location does not exist")

    data = payload.model_dump(mode="json", exclude={"location"})
    vehicle = Vehicle(location_id=payload.location, **data)
    session.add(vehicle)
    session.commit()
    session.refresh(vehicle)
    logger.info("Vehicle %s created", vehicle.id)
    return vehicle


def update_vehicle(session: Session, vehicle_id: int, payload: s.VehicleUpdate) -> Vehicle:
    fields = payload.model_dump(mode="json", exclude_unset=True)
    if fields.get("location") is not None and not session.get(Location, fields["location"]):
        raise InvalidInput("Location does not exist")

    vehicle = get_vehicle(session, vehicle_id)
    location = fields.pop("location", None)
    if location is not None:
        vehicle.location_id = location
    for k, v in fields.items():
        # fuel type is the only field that may be cleared
        if v is None and k != "fuel_type":
            continue
        setattr(vehicle, k, v)
    vehicle.updated_at = utcnow()
    session.add(vehicle)
    session.commit()
    session.refresh(vehicle)
    return vehicle


def delete_vehicle(session: Session, vehicle_id: int) -> None:
    vehicle = get_vehicle(session, vehicle_id)
    bookings = session.exec(
        select(func.count(Booking.id)).where(Booking.vehicle_id == vehicle_id)
    ).one()
    if bookings:
        raise InvalidState(
            f"Cannot delete vehicle as it is referenced by {bookings} booking(s); mark it unavailable instead"
        )
    for review in session.exec(select(Review).where(Review.vehicle_id == vehicle_id)).all():
        session.delete(review)
    session.delete(vehicle)
    session.commit()
    logger.info("Vehicle %s removed", vehicle_id)


# ---------------- reviews ----------------
def add_review(session: Session, actor: Actor, vehicle_id: int, payload: s.ReviewCreate) -> Review:
    vehicle = get_vehicle(session, vehicle_id)
    already = session.exec(
        select(Review).where((Review.vehicle_id == vehicle_id) & (Review.user_id == actor.id))
    ).first()
    if already:
        raise InvalidState("Vehicle already reviewed")

    review = Review(vehicle_id=vehicle_id, user_id=actor.id, rating=payload.rating, comment=payload.comment)
    session.add(review)
    session.flush()

    ratings = session.exec(select(Review.rating).where(Review.vehicle_id == vehicle_id)).all()
    vehicle.review_count = len(ratings)
    vehicle.rating = sum(ratings) / len(ratings)
    vehicle.updated_at = utcnow()
    session.add(vehicle)
    session.commit()
    session.refresh(review)
    return review


def vehicle_reviews(session: Session, vehicle_id: int) -> s.ReviewList:
    vehicle = get_vehicle(session, vehicle_id)
    rows = session.exec(
        select(Review, User.name)
        .join(User, User.id == Review.user_id, isouter=True)
        .where(Review.vehicle_id == vehicle_id)
        .order_by(col(Review.created_at).desc())
    ).all()
    return s.ReviewList(
        reviews=[s.ReviewRead(**r.model_dump(), user_name=name) for r, name in rows],
        rating=vehicle.rating,
        review_count=vehicle.review_count,
    )


# =========================== locations ===========================
def _location_summary(loc: Location) -> s.LocationSummary:
    return s.LocationSummary(id=loc.id, name=loc.name, address={"city": loc.city})


def get_location(session: Session, location_id: int) -> Location:
    loc = session.get(Location, location_id)
    if not loc:
        raise NotFound("Location not found")
    return loc


def list_locations(
    session: Session,
    *,
    country: Optional[str] = None,
    city: Optional[str] = None,
    active: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[Location], int]:
    filters = []
    if country:
        filters.append(Location.country == country)
    if city:
        filters.append(Location.city == city)
    if active is not None:
        filters.append(Location.active == active)
    if search:
        pattern = f"%{search}%"
        filters.append(or_(
            col(Location.name).ilike(pattern),
            col(Location.city).ilike(pattern),
            col(Location.country).ilike(pattern),
        ))

    offset, limit = _page(page, limit)
    rows = session.exec(
        select(Location).where(*filters)
        .order_by(col(Location.country), col(Location.city), col(Location.id))
        .offset(offset).limit(limit)
    ).all()
    total = session.exec(select(func.count()).select_from(Location).where(*filters)).one()
    return list(rows), int(total)


def create_location(session: Session, payload: s.LocationCreate) -> Location:
    contact = payload.contact_info or s.ContactInfo()
    loc = Location(
        name=payload.name,
        latitude=payload.coordinates.latitude,
        longitude=payload.coordinates.longitude,
        phone=contact.phone,
        email=contact.email,
        hours={day: h.model_dump() for day, h in payload.hours.items()},
        active=payload.active,
        **payload.address.model_dump(),
    )
    session.add(loc)
    session.commit()
    session.refresh(loc)
    logger.info("Location %s created", loc.id)
    return loc


def update_location(session: Session, location_id: int, payload: s.LocationUpdate) -> Location:
    loc = get_location(session, location_id)

    # nested objects merge into what is stored
    if payload.name:
        loc.name = payload.name
    for part in (payload.address, payload.coordinates, payload.contact_info):
        if part is None:
            continue
        for k, v in part.model_dump(exclude_unset=True).items():
            if v is not None:
                setattr(loc, k, v)
    if payload.hours is not None:
        loc.hours = {**(loc.hours or {}), **{d: h.model_dump() for d, h in payload.hours.items()}}
    if payload.active is not None:
        loc.active = payload.active

    loc.updated_at = utcnow()
    session.add(loc)
    session.commit()
    session.refresh(loc)
    return loc


def delete_location(session: Session, location_id: int) -> None:
    loc = get_location(session, location_id)
    in_use = session.exec(
        select(func.count(Vehicle.id)).where(Vehicle.location_id == location_id)
    ).one()
    if in_use:
        raise InvalidState(f"Cannot delete location as it is used by {in_use} vehicle(s)")
    booked = session.exec(
        select(func.count(Booking.id)).where(or_(
            Booking.pickup_location_id == location_id,
            Booking.dropoff_location_id == location_id,
        ))
    ).one()
    if booked:
        raise InvalidState(f"Cannot delete location as it is used by {booked} booking(s)")
    session.delete(loc)
    session.commit()
    logger.info("Location %s removed", location_id)


def location_availability(
    session: Session, location_id: int, interval: DateInterval
) -> s.LocationAvailability:
    loc = get_location(session, location_id)
    vehicles = available_vehicles(session, interval, location_id)
    return s.LocationAvailability(
        location=s.LocationSummary(
            id=loc.id,
            name=loc.name,
            address={
                "street": loc.street, "city": loc.city, "state": loc.state,
                "country": loc.country, "zipCode": loc.zip_code,
            },
        ),
        date_range=s.BookedInterval(start_date=interval.start, end_date=interval.end),
        available_vehicles=[s.to_read(s.VehicleRead, v) for v in vehicles],
        vehicle_count=len(vehicles),
    )
