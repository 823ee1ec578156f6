# rentals/main.py
import logging
import os
from datetime import datetime
from typing import List, Optional

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .database import init_db, get_session
from .auth import Actor, get_current_actor, require_admin
from .availability import DateInterval
from .errors import NotFound, RentalError
from .pricing import pricing_card
from . import bookings as svc
from . import catalog
from . import models as m
from . import schemas as s

APP_VERSION = "1.0.0"

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _describe(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        where = ".".join(str(p) for p in err.get("loc", ())[1:])
        parts.append(f"{where}: {err.get('msg')}" if where else str(err.get("msg")))
    return "; ".join(parts) or "Invalid request"


def create_app() -> FastAPI:
    _configure_logging()
    app = FastAPI(title="Vehicle Rental API", version=APP_VERSION)

    # CORS
    origins = os.getenv("ALLOWED_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173")
    allow_origins = [o.strip() for o in origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def _startup():
        init_db()

    # ---------------- Errors ----------------
    @app.exception_handler(RentalError)
    async def _rental_error(request: Request, exc: RentalError):
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"message": _describe(exc)})

    @app.exception_handler(SQLAlchemyError)
    async def _db_error(request: Request, exc: SQLAlchemyError):
        logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"message": "Server Error"})

    # ---------------- Health ----------------
    @app.get("/api/health")
    def health():
        return {"status": "ok", "version": APP_VERSION}

    # ---------------- Users -----------------
    @app.get("/api/users/me", response_model=s.UserRead)
    def me(
        actor: Actor = Depends(get_current_actor),
        session: Session = Depends(get_session),
    ):
        user = session.get(m.User, actor.id)
        if not user:
            raise NotFound("User not found")
        return s.to_read(s.UserRead, user)

    @app.get("/api/users/{user_id}/bookings", response_model=List[s.BookingDetail])
    def user_bookings(
        user_id: int,
        actor: Actor = Depends(get_current_actor),
        session: Session = Depends(get_session),
    ):
        return svc.list_user_bookings(session, actor, user_id)

    # --------------- Bookings ---------------
    @app.post("/api/bookings", response_model=s.BookingRead, status_code=201)
    def create_booking(
        payload: s.BookingCreate,
        actor: Actor = Depends(get_current_actor),
        session: Session = Depends(get_session),
    ):
        return s.to_read(s.BookingRead, svc.create_booking(session, actor, payload))

    @app.post("/api/bookings/calculate", response_model=s.Quote)
    def calculate_booking_cost(
        payload: s.QuoteRequest,
        session: Session = Depends(get_session),
    ):
        return svc.quote(session, payload)

    @app.get("/api/bookings/{booking_id}", response_model=s.BookingDetail)
    def get_booking(
        booking_id: int,
        actor: Actor = Depends(get_current_actor),
        session: Session = Depends(get_session),
    ):
        return svc.get_booking(session, actor, booking_id)

    @app.put("/api/bookings/{booking_id}", response_model=s.BookingRead)
    def update_booking(
        booking_id: int,
        payload: s.BookingUpdate,
        actor: Actor = Depends(get_current_actor),
        session: Session = Depends(get_session),
    ):
        return s.to_read(s.BookingRead, svc.update_booking(session, actor, booking_id, payload))

    @app.delete("/api/bookings/{booking_id}", response_model=s.Message)
    def cancel_booking(
        booking_id: int,
        actor: Actor = Depends(get_current_actor),
        session: Session = Depends(get_session),
    ):
        svc.cancel_booking(session, actor, booking_id)
        return s.Message(message="Booking cancelled successfully")

    @app.put("/api/bookings/{booking_id}/status", response_model=s.StatusChange)
    def update_booking_status(
        booking_id: int,
        payload: s.StatusUpdate,
        actor: Actor = Depends(get_current_actor),
        session: Session = Depends(get_session),
    ):
        booking = svc.set_status(session, actor, booking_id, payload.status.value)
        return s.StatusChange(
            message=f"Booking status updated to {booking.status}",
            booking=s.to_read(s.BookingRead, booking),
        )

    # --------------- Vehicles ---------------
    @app.get("/api/vehicles", response_model=s.VehicleList)
    def list_vehicles(
        type: Optional[str] = None,
        location: Optional[int] = None,
        min_price: Optional[float] = Query(None, alias="minPrice"),
        max_price: Optional[float] = Query(None, alias="maxPrice"),
        available: Optional[bool] = None,
        min_seats: Optional[int] = Query(None, alias="minSeats"),
        search: Optional[str] = None,
        sort: str = "createdAt",
        order: str = "desc",
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        session: Session = Depends(get_session),
    ):
        rows, total = catalog.list_vehicles(
            session, type=type, location=location, min_price=min_price, max_price=max_price,
            available=available, min_seats=min_seats, search=search,
            sort=sort, order=order, page=page, limit=limit,
        )
        return s.VehicleList(
            vehicles=[s.to_read(s.VehicleRead, v) for v in rows],
            pagination=s.Pagination.of(page, limit, total),
        )

    @app.get("/api/vehicles/types", response_model=List[str])
    def vehicle_types(session: Session = Depends(get_session)):
        return catalog.vehicle_types(session)

    @app.get("/api/vehicles/availability", response_model=List[s.VehicleRead])
    def available_vehicles(
        start_date: datetime = Query(..., alias="startDate"),
        end_date: datetime = Query(..., alias="endDate"),
        location_id: Optional[int] = Query(None, alias="locationId"),
        session: Session = Depends(get_session),
    ):
        interval = DateInterval.of(start_date, end_date)
        rows = catalog.available_vehicles(session, interval, location_id)
        return [s.to_read(s.VehicleRead, v) for v in rows]

    @app.get("/api/vehicles/{vehicle_id}", response_model=s.VehicleDetail)
    def get_vehicle(vehicle_id: int, session: Session = Depends(get_session)):
        return catalog.vehicle_detail(session, vehicle_id)

    @app.get("/api/vehicles/{vehicle_id}/pricing", response_model=s.PricingCard)
    def vehicle_pricing(vehicle_id: int, session: Session = Depends(get_session)):
        vehicle = catalog.get_vehicle(session, vehicle_id)
        return s.PricingCard(**pricing_card(vehicle.price_per_day))

    @app.post("/api/vehicles/{vehicle_id}/reviews", response_model=s.ReviewRead, status_code=201)
    def add_review(
        vehicle_id: int,
        payload: s.ReviewCreate,
        actor: Actor = Depends(get_current_actor),
        session: Session = Depends(get_session),
    ):
        review = catalog.add_review(session, actor, vehicle_id, payload)
        return s.to_read(s.ReviewRead, review)

    @app.get("/api/vehicles/{vehicle_id}/reviews", response_model=s.ReviewList)
    def get_reviews(vehicle_id: int, session: Session = Depends(get_session)):
        return catalog.vehicle_reviews(session, vehicle_id)

    @app.post("/api/vehicles", response_model=s.VehicleRead, status_code=201)
    def create_vehicle(
        payload: s.VehicleCreate,
        actor: Actor = Depends(require_admin),
        session: Session = Depends(get_session),
    ):
        return s.to_read(s.VehicleRead, catalog.create_vehicle(session, payload))

    @app.put("/api/vehicles/{vehicle_id}", response_model=s.VehicleRead)
    def update_vehicle(
        vehicle_id: int,
        payload: s.VehicleUpdate,
        actor: Actor = Depends(require_admin),
        session: Session = Depends(get_session),
    ):
        return s.to_read(s.VehicleRead, catalog.update_vehicle(session, vehicle_id, payload))

    @app.delete("/api/vehicles/{vehicle_id}", response_model=s.Message)
    def delete_vehicle(
        vehicle_id: int,
        actor: Actor = Depends(require_admin),
        session: Session = Depends(get_session),
    ):
        catalog.delete_vehicle(session, vehicle_id)
        return s.Message(message="Vehicle removed")

    # --------------- Locations --------------
    @app.get("/api/locations", response_model=s.LocationList)
    def list_locations(
        country: Optional[str] = None,
        city: Optional[str] = None,
        active: Optional[bool] = None,
        search: Optional[str] = None,
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        session: Session = Depends(get_session),
    ):
        rows, total = catalog.list_locations(
            session, country=country, city=city, active=active, search=search,
            page=page, limit=limit,
        )
        return s.LocationList(
            locations=[s.LocationRead.from_model(loc) for loc in rows],
            pagination=s.Pagination.of(page, limit, total),
        )

    @app.get("/api/locations/{location_id}", response_model=s.LocationRead)
    def get_location(location_id: int, session: Session = Depends(get_session)):
        return s.LocationRead.from_model(catalog.get_location(session, location_id))

    @app.get("/api/locations/{location_id}/availability", response_model=s.LocationAvailability)
    def location_availability(
        location_id: int,
        start_date: datetime = Query(..., alias="startDate"),
        end_date: datetime = Query(..., alias="endDate"),
        session: Session = Depends(get_session),
    ):
        interval = DateInterval.of(start_date, end_date)
        return catalog.location_availability(session, location_id, interval)

    @app.post("/api/locations", response_model=s.LocationRead, status_code=201)
    def create_location(
        payload: s.LocationCreate,
        actor: Actor = Depends(require_admin),
        session: Session = Depends(get_session),
    ):
        return s.LocationRead.from_model(catalog.create_location(session, payload))

    @app.put("/api/locations/{location_id}", response_model=s.LocationRead)
    def update_location(
        location_id: int,
        payload: s.LocationUpdate,
        actor: Actor = Depends(require_admin),
        session: Session = Depends(get_session),
    ):
        return s.LocationRead.from_model(catalog.update_location(session, location_id, payload))

    @app.delete("/api/locations/{location_id}", response_model=s.Message)
    def delete_location(
        location_id: int,
        actor: Actor = Depends(require_admin),
        session: Session = Depends(get_session),
    ):
        catalog.delete_location(session, location_id)
        return s.Message(message="Location removed")

    return app

app = create_app()
