from datetime import timedelta

import pytest
from sqlmodel import Session, select

from conftest import actor_of, may
from rentals import bookings as svc
from rentals.availability import booked_dates
from rentals.database import engine
from rentals.errors import Conflict, Forbidden, InvalidInput, InvalidState, NotFound
from rentals.models import Booking, utcnow
from rentals.schemas import BookingCreate, BookingUpdate, QuoteOptions, QuoteRequest


@pytest.fixture
def book(session, vehicle, location, customer):
    def make(start=may(1), end=may(5), user=None, vehicle_id=None, **extra):
        payload = BookingCreate(
            vehicle_id=vehicle_id or vehicle.id,
            start_date=start,
            end_date=end,
            pickup_location_id=extra.pop("pickup", location.id),
            dropoff_location_id=extra.pop("dropoff", location.id),
            **extra,
        )
        return svc.create_booking(session, actor_of(user or customer), payload)
    return make


def reserved(session, vehicle):
    return [(b.start_date, b.end_date) for b in booked_dates(session, vehicle.id)]


# ---------------- create ----------------
def test_create_booking(session, book, vehicle, customer):
    booking = book(special_requests="GPS please")

    assert booking.status == "pending"
    assert booking.payment_status == "pending"
    assert booking.user_id == customer.id
    assert booking.total_days == 4
    assert booking.total_price == 260
    assert booking.service_fee == 26
    assert booking.special_requests == "GPS please"

    entries = booked_dates(session, vehicle.id)
    assert [(e.start_date, e.end_date, e.booking_id) for e in entries] == [(may(1), may(5), booking.id)]


def test_overlapping_booking_conflicts(session, book, vehicle):
    book(may(1), may(5))

    with pytest.raises(Conflict):
        book(may(3), may(7))

    assert reserved(session, vehicle) == [(may(1), may(5))]
    assert len(session.exec(select(Booking)).all()) == 1


def test_adjacent_booking_is_allowed(session, book, vehicle):
    book(may(1), may(5))
    book(may(5), may(8))

    assert reserved(session, vehicle) == [(may(1), may(5)), (may(5), may(8))]


def test_start_in_past_is_rejected(book):
    now = utcnow()
    with pytest.raises(InvalidInput, match="past"):
        book(now - timedelta(days=1), now + timedelta(days=2))


def test_end_before_start_is_rejected(book):
    with pytest.raises(InvalidInput):
        book(may(5), may(1))


def test_unknown_vehicle(book):
    with pytest.raises(NotFound, match="Vehicle"):
        book(vehicle_id=999)


def test_unknown_location_leaves_nothing_behind(session, book, vehicle):
    with pytest.raises(NotFound, match="Dropoff"):
        book(dropoff=999)

    assert reserved(session, vehicle) == []


def test_vehicle_marked_unavailable(session, book, make_vehicle):
    parked = make_vehicle(name="Parked", available=False)
    with pytest.raises(InvalidState):
        book(vehicle_id=parked.id)


# ---------------- update ----------------
def test_update_dates_moves_reservation(session, book, vehicle, customer):
    booking = book(may(1), may(5))

    updated = svc.update_booking(
        session, actor_of(customer), booking.id,
        BookingUpdate(start_date=may(10), end_date=may(12)),
    )

    assert (updated.start_date, updated.end_date) == (may(10), may(12))
    assert updated.total_days == 2
    assert updated.total_price == 130
    assert updated.service_fee == 13
    assert reserved(session, vehicle) == [(may(10), may(12))]


def test_update_may_overlap_its_own_dates(session, book, vehicle, customer):
    booking = book(may(1), may(5))

    svc.update_booking(session, actor_of(customer), booking.id, BookingUpdate(end_date=may(6)))

    assert reserved(session, vehicle) == [(may(1), may(6))]


def test_update_into_another_booking_conflicts(session, book, vehicle, customer, other_user):
    mine = book(may(1), may(5))
    book(may(10), may(15), user=other_user)

    with pytest.raises(Conflict):
        svc.update_booking(session, actor_of(customer), mine.id, BookingUpdate(end_date=may(11)))

    session.refresh(mine)
    assert mine.end_date == may(5)
    assert sorted(reserved(session, vehicle)) == [(may(1), may(5)), (may(10), may(15))]


def test_update_special_requests_only(session, book, vehicle, customer):
    booking = book()

    updated = svc.update_booking(
        session, actor_of(customer), booking.id, BookingUpdate(special_requests="Child seat")
    )

    assert updated.special_requests == "Child seat"
    assert reserved(session, vehicle) == [(may(1), may(5))]


def test_update_location(session, book, customer, make_location):
    booking = book()
    airport = make_location(name="Airport")

    updated = svc.update_booking(
        session, actor_of(customer), booking.id, BookingUpdate(dropoff_location_id=airport.id)
    )
    assert updated.dropoff_location_id == airport.id

    with pytest.raises(NotFound, match="Pickup"):
        svc.update_booking(session, actor_of(customer), booking.id, BookingUpdate(pickup_location_id=999))


def test_confirmed_booking_locked_for_customer(session, book, customer, admin):
    booking = book()
    svc.set_status(session, actor_of(admin), booking.id, "confirmed")

    with pytest.raises(InvalidState):
        svc.update_booking(session, actor_of(customer), booking.id, BookingUpdate(special_requests="x"))

    updated = svc.update_booking(session, actor_of(admin), booking.id, BookingUpdate(special_requests="x"))
    assert updated.special_requests == "x"


# ---------------- cancel ----------------
def test_cancel_confirmed_booking(session, book, vehicle, customer, admin):
    booking = book(may(1), may(5))
    book(may(10), may(12))
    svc.set_status(session, actor_of(admin), booking.id, "confirmed")

    cancelled = svc.cancel_booking(session, actor_of(customer), booking.id)

    assert cancelled.status == "cancelled"
    assert reserved(session, vehicle) == [(may(10), may(12))]

    with pytest.raises(InvalidState):
        svc.cancel_booking(session, actor_of(customer), booking.id)


def test_cancelled_dates_can_be_booked_again(session, book, customer):
    booking = book(may(1), may(5))
    svc.cancel_booking(session, actor_of(customer), booking.id)

    assert book(may(2), may(4)).status == "pending"


def test_customer_cannot_cancel_in_progress(session, book, customer, admin):
    booking = book()
    svc.set_status(session, actor_of(admin), booking.id, "in-progress")

    with pytest.raises(InvalidState):
        svc.cancel_booking(session, actor_of(customer), booking.id)

    assert svc.cancel_booking(session, actor_of(admin), booking.id).status == "cancelled"


def test_other_users_cannot_touch_booking(session, book, other_user):
    booking = book()
    stranger = actor_of(other_user)

    with pytest.raises(Forbidden):
        svc.get_booking(session, stranger, booking.id)
    with pytest.raises(Forbidden):
        svc.update_booking(session, stranger, booking.id, BookingUpdate(special_requests="x"))
    with pytest.raises(Forbidden):
        svc.cancel_booking(session, stranger, booking.id)


def test_missing_booking(session, customer):
    with pytest.raises(NotFound):
        svc.cancel_booking(session, actor_of(customer), 404)


# ---------------- stale copies ----------------
# A second session loads the booking, another request commits a change, then
# the second session acts on what it loaded earlier.
def test_interleaved_date_changes_keep_one_reservation(session, book, vehicle, customer):
    booking = book(may(1), may(5))
    actor = actor_of(customer)

    with Session(engine) as other:
        other.get(Booking, booking.id)
        svc.update_booking(session, actor, booking.id, BookingUpdate(start_date=may(10), end_date=may(12)))
        svc.update_booking(other, actor, booking.id, BookingUpdate(start_date=may(20), end_date=may(22)))

    entries = booked_dates(session, vehicle.id)
    assert [(e.start_date, e.end_date, e.booking_id) for e in entries] == [(may(20), may(22), booking.id)]


def test_date_change_after_cancel_is_rejected(session, book, vehicle, customer):
    booking = book(may(1), may(5))
    actor = actor_of(customer)

    with Session(engine) as other:
        other.get(Booking, booking.id)
        svc.cancel_booking(session, actor, booking.id)
        with pytest.raises(InvalidState):
            svc.update_booking(other, actor, booking.id, BookingUpdate(start_date=may(20), end_date=may(22)))
        with pytest.raises(InvalidState):
            svc.cancel_booking(other, actor, booking.id)

    session.refresh(booking)
    assert booking.status == "cancelled"
    assert reserved(session, vehicle) == []


def test_status_change_after_cancel_is_rejected(session, book, vehicle, customer, admin):
    booking = book(may(1), may(5))

    with Session(engine) as other:
        other.get(Booking, booking.id)
        svc.cancel_booking(session, actor_of(customer), booking.id)
        with pytest.raises(InvalidState):
            svc.set_status(other, actor_of(admin), booking.id, "confirmed")

    assert reserved(session, vehicle) == []


# ---------------- status ----------------
def test_status_requires_admin(session, book, customer):
    booking = book()
    with pytest.raises(Forbidden):
        svc.set_status(session, actor_of(customer), booking.id, "confirmed")


def test_status_must_be_known(session, book, admin):
    booking = book()
    with pytest.raises(InvalidInput, match="Status must be one of"):
        svc.set_status(session, actor_of(admin), booking.id, "lost")


def test_status_walks_through_lifecycle(session, book, vehicle, admin):
    booking = book()
    for status in ("confirmed", "in-progress", "completed"):
        assert svc.set_status(session, actor_of(admin), booking.id, status).status == status

    # completed bookings keep their reservation
    assert reserved(session, vehicle) == [(may(1), may(5))]


def test_admin_may_skip_states(session, book, admin):
    booking = book()
    assert svc.set_status(session, actor_of(admin), booking.id, "completed").status == "completed"


def test_status_cancel_releases_and_is_final(session, book, vehicle, admin):
    booking = book()
    svc.set_status(session, actor_of(admin), booking.id, "cancelled")

    assert reserved(session, vehicle) == []
    with pytest.raises(InvalidState):
        svc.set_status(session, actor_of(admin), booking.id, "pending")


# ---------------- reads ----------------
def test_get_booking_detail(session, book, customer):
    booking = book()
    detail = svc.get_booking(session, actor_of(customer), booking.id)

    assert detail.vehicle.name == "Civic"
    assert detail.vehicle.price_per_day == 65
    assert detail.pickup_location.address["city"] == "Austin"
    assert detail.pickup_location.address["street"] == "1 Main St"


def test_list_user_bookings(session, book, customer, other_user, admin):
    first = book(may(1), may(3))
    second = book(may(4), may(6))
    book(may(7), may(9), user=other_user)

    mine = svc.list_user_bookings(session, actor_of(customer), customer.id)
    assert [b.id for b in mine] == [second.id, first.id]
    assert mine[0].vehicle.name == "Civic"
    assert mine[0].pickup_location.address == {"city": "Austin"}

    with pytest.raises(Forbidden):
        svc.list_user_bookings(session, actor_of(other_user), customer.id)

    assert len(svc.list_user_bookings(session, actor_of(admin), customer.id)) == 2


# ---------------- quote ----------------
def test_quote(session, vehicle):
    result = svc.quote(session, QuoteRequest(
        vehicle_id=vehicle.id, start_date=may(1), end_date=may(5),
        options=QuoteOptions(insurance=True, different_dropoff=True),
    ))

    assert result.vehicle_name == "Civic"
    assert result.duration.total_days == 4
    assert result.pricing.base_price == 260
    assert result.pricing.taxes.rate == 0.08
    assert result.pricing.total_price == pytest.approx(427.68)
    assert booked_dates(session, vehicle.id) == []


def test_quote_unknown_vehicle(session):
    with pytest.raises(NotFound):
        svc.quote(session, QuoteRequest(vehicle_id=5, start_date=may(1), end_date=may(2)))
