"""Booking lifecycle: create, modify, cancel, status changes, quotes and listings.

A booking owns its date range and price snapshot. The vehicle's reservation
list mirrors the active bookings; every path that changes a booking's dates
or cancels it updates both inside one vehicle lock and one commit.
"""
import logging
from typing import List, Optional

from sqlmodel import Session, select, col

from .auth import Actor
from .availability import DateInterval, check_availability, locked_vehicle, release, reserve
from .errors import Conflict, Forbidden, InvalidInput, InvalidState, NotFound
from .models import Booking, BookingStatus, Location, PaymentStatus, Vehicle, utcnow
from .pricing import price_booking
from . import schemas as s

logger = logging.getLogger(__name__)

TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}
TERMINAL = {status for status, targets in TRANSITIONS.items() if not targets}

# statuses a customer may still cancel from
CUSTOMER_CANCELLABLE = {BookingStatus.PENDING, BookingStatus.CONFIRMED}

UNAVAILABLE = "Vehicle is not available for the selected dates"


# ---------------- helpers ----------------
def booking_interval(booking: Booking) -> DateInterval:
    return DateInterval(booking.start_date, booking.end_date)


def _get_booking(session: Session, booking_id: int) -> Booking:
    booking = session.get(Booking, booking_id)
    if not booking:
        raise NotFound("Booking not found")
    return booking


def _check_access(booking: Booking, actor: Actor) -> None:
    if not actor.is_admin and booking.user_id != actor.id:
        raise Forbidden("Not authorized to access this booking")


def _require_location(session: Session, location_id: int, label: str) -> Location:
    location = session.get(Location, location_id)
    if not location:
        raise NotFound(f"{label} location not found")
    return location


def _apply_price(booking: Booking, vehicle: Vehicle, interval: DateInterval) -> None:
    price = price_booking(vehicle, interval)
    booking.start_date = interval.start
    booking.end_date = interval.end
    booking.total_days = price.total_days
    booking.total_price = price.base_price
    booking.service_fee = price.service_fee


# ---------------- create ----------------
def create_booking(session: Session, actor: Actor, payload: s.BookingCreate) -> Booking:
    interval = DateInterval.of(payload.start_date, payload.end_date)
    if interval.starts_in_past():
        raise InvalidInput("Start date cannot be in the past")

    with locked_vehicle(session, payload.vehicle_id) as vehicle:
        if not vehicle.available:
            raise InvalidState("Vehicle is currently not available for booking")
        if not check_availability(session, vehicle, interval):
            logger.warning("Rejected booking on vehicle %s for %s: overlap", vehicle.id, interval)
            raise Conflict(UNAVAILABLE)

        _require_location(session, payload.pickup_location_id, "Pickup")
        _require_location(session, payload.dropoff_location_id, "Dropoff")

        price = price_booking(vehicle, interval)
        booking = Booking(
            vehicle_id=vehicle.id,
            user_id=actor.id,
            pickup_location_id=payload.pickup_location_id,
            dropoff_location_id=payload.dropoff_location_id,
            start_date=interval.start,
            end_date=interval.end,
            total_days=price.total_days,
            total_price=price.base_price,
            service_fee=price.service_fee,
            status=BookingStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            special_requests=payload.special_requests,
        )
        session.add(booking)
        session.flush()  # assigns booking.id

        reserve(session, vehicle, interval, booking.id)
        session.commit()

    session.refresh(booking)
    logger.info("Booking %s created for vehicle %s by user %s", booking.id, booking.vehicle_id, actor.id)
    return booking


# ---------------- update ----------------
def _check_editable(booking: Booking, actor: Actor) -> None:
    if booking.status != BookingStatus.PENDING.value and not actor.is_admin:
        raise InvalidState("Cannot update booking once it has been confirmed")


def _reload(session: Session, booking: Booking) -> None:
    # the copy loaded before the vehicle lock may be stale
    session.refresh(booking, with_for_update=True)


def update_booking(
    session: Session, actor: Actor, booking_id: int, payload: s.BookingUpdate
) -> Booking:
    booking = _get_booking(session, booking_id)
    _check_access(booking, actor)
    _check_editable(booking, actor)

    fields = payload.model_dump(exclude_unset=True)

    # resolve locations before touching anything
    if fields.get("pickup_location_id") is not None:
        _require_location(session, fields["pickup_location_id"], "Pickup")
    if fields.get("dropoff_location_id") is not None:
        _require_location(session, fields["dropoff_location_id"], "Dropoff")

    if payload.start_date is None and payload.end_date is None:
        _apply_details(booking, fields)
        session.add(booking)
        session.commit()
    else:
        with locked_vehicle(session, booking.vehicle_id) as vehicle:
            _reload(session, booking)
            _check_editable(booking, actor)

            old_interval = booking_interval(booking)
            new_interval = DateInterval.of(
                payload.start_date or booking.start_date,
                payload.end_date or booking.end_date,
            )
            if new_interval != old_interval:
                if booking.status == BookingStatus.CANCELLED.value:
                    raise InvalidState("Cannot change the dates of a cancelled booking")
                if new_interval.start != old_interval.start and new_interval.starts_in_past():
                    raise InvalidInput("Start date cannot be in the past")
                if not check_availability(session, vehicle, new_interval, exclude_booking_id=booking.id):
                    logger.warning("Rejected date change of booking %s to %s: overlap", booking.id, new_interval)
                    raise Conflict(UNAVAILABLE)

                release(session, vehicle, old_interval)
                reserve(session, vehicle, new_interval, booking.id)
                _apply_price(booking, vehicle, new_interval)

            _apply_details(booking, fields)
            session.add(booking)
            session.commit()

    session.refresh(booking)
    logger.info("Booking %s updated by user %s", booking.id, actor.id)
    return booking


def _apply_details(booking: Booking, fields: dict) -> None:
    if fields.get("pickup_location_id") is not None:
        booking.pickup_location_id = fields["pickup_location_id"]
    if fields.get("dropoff_location_id") is not None:
        booking.dropoff_location_id = fields["dropoff_location_id"]
    if "special_requests" in fields:
        booking.special_requests = fields["special_requests"]
    booking.updated_at = utcnow()


# ---------------- cancel / status ----------------
def _cancel(session: Session, vehicle: Vehicle, booking: Booking) -> None:
    """Mark cancelled and release the reservation. Caller holds the vehicle lock."""
    booking.status = BookingStatus.CANCELLED.value
    booking.updated_at = utcnow()
    session.add(booking)
    release(session, vehicle, booking_interval(booking))
    session.commit()


def cancel_booking(session: Session, actor: Actor, booking_id: int) -> Booking:
    booking = _get_booking(session, booking_id)
    _check_access(booking, actor)

    with locked_vehicle(session, booking.vehicle_id) as vehicle:
        _reload(session, booking)
        status = BookingStatus(booking.status)
        if status in TERMINAL:
            raise InvalidState(f"Booking is already {status.value}")
        if status not in CUSTOMER_CANCELLABLE and not actor.is_admin:
            raise InvalidState("Cannot cancel booking that is already in progress or completed")
        _cancel(session, vehicle, booking)

    session.refresh(booking)
    logger.info("Booking %s cancelled by user %s", booking.id, actor.id)
    return booking


def set_status(session: Session, actor: Actor, booking_id: int, status: str) -> Booking:
    """Administrative status change.

    Any of the five statuses may be set, including jumps the normal flow does
    not take (e.g. pending -> completed). A cancelled booking stays cancelled:
    its reservation has been released and may already be taken.
    """
    if not actor.is_admin:
        raise Forbidden("Not authorized as an admin")
    try:
        target = BookingStatus(status)
    except ValueError:
        allowed = ", ".join(st.value for st in BookingStatus)
        raise InvalidInput(f"Status must be one of: {allowed}")

    booking = _get_booking(session, booking_id)
    with locked_vehicle(session, booking.vehicle_id) as vehicle:
        _reload(session, booking)
        current = BookingStatus(booking.status)
        if target == current:
            session.commit()
            return booking
        if current == BookingStatus.CANCELLED:
            raise InvalidState("Cannot change the status of a cancelled booking")
        if target not in TRANSITIONS[current]:
            logger.warning("Booking %s moved %s -> %s outside the normal flow by admin %s",
                           booking.id, current.value, target.value, actor.id)

        if target == BookingStatus.CANCELLED:
            _cancel(session, vehicle, booking)
        else:
            booking.status = target.value
            booking.updated_at = utcnow()
            session.add(booking)
            session.commit()

    session.refresh(booking)
    logger.info("Booking %s status set to %s", booking.id, target.value)
    return booking


# ---------------- quote ----------------
def quote(session: Session, payload: s.QuoteRequest) -> s.Quote:
    interval = DateInterval.of(payload.start_date, payload.end_date)
    vehicle = session.get(Vehicle, payload.vehicle_id)
    if not vehicle:
        raise NotFound("Vehicle not found")

    price = price_booking(vehicle, interval, payload.options.model_dump())
    return s.Quote(
        vehicle_id=vehicle.id,
        vehicle_name=vehicle.name,
        duration=s.Duration(start_date=interval.start, end_date=interval.end, total_days=price.total_days),
        pricing=s.QuotePricing(
            base_price=price.base_price,
            service_fee=price.service_fee,
            additional_fees=price.additional_fees,
            location_fee=price.location_fee,
            taxes=s.Taxes(rate=price.tax_rate, amount=price.tax_amount),
            total_price=price.total_price,
        ),
        options=payload.options,
    )


# ---------------- reads ----------------
def _vehicle_summary(session: Session, vehicle_id: int, with_price: bool) -> Optional[s.VehicleSummary]:
    vehicle = session.get(Vehicle, vehicle_id)
    if not vehicle:
        return None
    return s.VehicleSummary(
        id=vehicle.id,
        name=vehicle.name,
        type=vehicle.type,
        images=vehicle.images or [],
        price_per_day=vehicle.price_per_day if with_price else None,
    )


def _location_summary(session: Session, location_id: int, full_address: bool) -> Optional[s.LocationSummary]:
    loc = session.get(Location, location_id)
    if not loc:
        return None
    address = {"city": loc.city}
    if full_address:
        address = {
            "street": loc.street, "city": loc.city, "state": loc.state,
            "country": loc.country, "zipCode": loc.zip_code,
        }
    return s.LocationSummary(id=loc.id, name=loc.name, address=address)


def _detail(session: Session, booking: Booking, full: bool) -> s.BookingDetail:
    return s.BookingDetail(
        **booking.model_dump(),
        vehicle=_vehicle_summary(session, booking.vehicle_id, with_price=full),
        pickup_location=_location_summary(session, booking.pickup_location_id, full_address=full),
        dropoff_location=_location_summary(session, booking.dropoff_location_id, full_address=full),
    )


def get_booking(session: Session, actor: Actor, booking_id: int) -> s.BookingDetail:
    booking = _get_booking(session, booking_id)
    _check_access(booking, actor)
    return _detail(session, booking, full=True)


def list_user_bookings(session: Session, actor: Actor, user_id: int) -> List[s.BookingDetail]:
    if not actor.is_admin and actor.id != user_id:
        raise Forbidden("Not authorized to access these bookings")

    rows = session.exec(
        select(Booking)
        .where(Booking.user_id == user_id)
        .order_by(col(Booking.created_at).desc(), col(Booking.id).desc())
    ).all()
    return [_detail(session, b, full=False) for b in rows]
