"""Date intervals and the per-vehicle reservation list.

A vehicle's reserved intervals live in the ``bookeddate`` table, one row per
active booking. Every write to that table goes through :func:`reserve` and
:func:`release`, and every check-then-write sequence runs inside
:func:`locked_vehicle` so two requests for the same vehicle cannot both pass
the availability check before either writes.
"""
import logging
import math
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterator, List, Optional

from sqlmodel import Session, select

from .errors import InvalidInput, NotFound
from .models import BookedDate, Vehicle, utcnow

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


def as_utc(value: datetime) -> datetime:
    """Normalise to naive UTC; aware values are converted first."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@dataclass(frozen=True)
class DateInterval:
    """Half-open range ``[start, end)``."""
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise InvalidInput("End date must be after start date")

    @classmethod
    def of(cls, start: datetime, end: datetime) -> "DateInterval":
        return cls(as_utc(start), as_utc(end))

    @property
    def total_days(self) -> int:
        # any part of a day counts as a whole day
        return max(1, math.ceil((self.end - self.start) / ONE_DAY))

    def overlaps(self, other: "DateInterval") -> bool:
        return self.start < other.end and self.end > other.start

    def starts_in_past(self, now: Optional[datetime] = None) -> bool:
        return self.start < (now or utcnow())


def booked_dates(session: Session, vehicle_id: int) -> List[BookedDate]:
    """Reserved intervals in insertion order."""
    return list(session.exec(
        select(BookedDate)
        .where(BookedDate.vehicle_id == vehicle_id)
        .order_by(BookedDate.id)
    ).all())


def check_availability(
    session: Session,
    vehicle: Vehicle,
    interval: DateInterval,
    exclude_booking_id: Optional[int] = None,
) -> bool:
    for entry in booked_dates(session, vehicle.id):
        if exclude_booking_id is not None and entry.booking_id == exclude_booking_id:
            continue
        if interval.start < entry.end_date and interval.end > entry.start_date:
            return False
    return True


def reserve(
    session: Session,
    vehicle: Vehicle,
    interval: DateInterval,
    booking_id: Optional[int] = None,
) -> BookedDate:
    """Append ``interval`` to the vehicle's reservations.

    Does not re-check availability and does not commit; callers run it inside
    :func:`locked_vehicle` after :func:`check_availability` and commit together
    with the booking record.
    """
    entry = BookedDate(
        vehicle_id=vehicle.id,
        booking_id=booking_id,
        start_date=interval.start,
        end_date=interval.end,
    )
    session.add(entry)
    vehicle.updated_at = utcnow()
    session.add(vehicle)
    return entry


def release(session: Session, vehicle: Vehicle, interval: DateInterval) -> int:
    """Drop reservations whose start and end both equal ``interval``'s."""
    matches = session.exec(
        select(BookedDate).where(
            (BookedDate.vehicle_id == vehicle.id) &
            (BookedDate.start_date == interval.start) &
            (BookedDate.end_date == interval.end)
        )
    ).all()
    for entry in matches:
        session.delete(entry)
    vehicle.updated_at = utcnow()
    session.add(vehicle)
    if not matches:
        logger.warning("No reservation %s on vehicle %s to release", interval, vehicle.id)
    return len(matches)


def free_during(interval: DateInterval):
    """SQL criterion: the vehicle has no reservation overlapping ``interval``."""
    overlapping = select(BookedDate.id).where(
        (BookedDate.vehicle_id == Vehicle.id) &
        (BookedDate.start_date < interval.end) &
        (BookedDate.end_date > interval.start)
    )
    return ~overlapping.exists()


# ---------------- per-vehicle serialisation ----------------
_locks: Dict[int, threading.Lock] = {}
_locks_guard = threading.Lock()


def _lock_for(vehicle_id: int) -> threading.Lock:
    with _locks_guard:
        return _locks.setdefault(vehicle_id, threading.Lock())


@contextmanager
def locked_vehicle(session: Session, vehicle_id: int) -> Iterator[Vehicle]:
    """Hold the vehicle exclusively for a check-then-write sequence.

    The in-process lock serialises workers of this process; the row lock
    (``SELECT ... FOR UPDATE``) serialises across processes on databases that
    support it. Anything raised inside the block rolls the session back.
    """
    with _lock_for(vehicle_id):
        vehicle = session.exec(
            select(Vehicle).where(Vehicle.id == vehicle_id).with_for_update()
        ).one_or_none()
        if not vehicle:
            raise NotFound("Vehicle not found")
        try:
            yield vehicle
        except Exception:
            session.rollback()
            raise
