import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("FIREBASE_PROJECT_ID", "test-project")

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session

from rentals import models as m
from rentals.auth import Actor, get_current_actor
from rentals.database import engine, get_session
from rentals.main import app


def may(day: int, hour: int = 0) -> datetime:
    return datetime(2031, 5, day, hour)


def actor_of(user: m.User) -> Actor:
    return Actor(id=user.id, role=user.role)


@pytest.fixture
def session():
    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


def _add(session, row):
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


@pytest.fixture
def customer(session):
    return _add(session, m.User(name="Casey", email="casey@example.com"))


@pytest.fixture
def other_user(session):
    return _add(session, m.User(name="Robin", email="robin@example.com"))


@pytest.fixture
def admin(session):
    return _add(session, m.User(name="Admin", email="admin@example.com", role=m.Role.ADMIN.value))


@pytest.fixture
def make_location(session):
    def make(name="Downtown", city="Austin", country="USA"):
        return _add(session, m.Location(
            name=name, street="1 Main St", city=city, state="TX", country=country,
            zip_code="78701", latitude=30.27, longitude=-97.74,
        ))
    return make


@pytest.fixture
def location(make_location):
    return make_location()


@pytest.fixture
def make_vehicle(session, location):
    def make(name="Civic", price=65.0, available=True, type="car", seats=5, location_id=None):
        return _add(session, m.Vehicle(
            name=name, type=type, price_per_day=price, seats=seats,
            location_id=location_id or location.id, available=available,
            description=f"{name} for rent", images=[f"{name.lower()}.jpg"],
        ))
    return make


@pytest.fixture
def vehicle(make_vehicle):
    return make_vehicle()


@pytest.fixture
def client(session, customer):
    current = {"actor": actor_of(customer)}
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_current_actor] = lambda: current["actor"]

    c = TestClient(app)
    c.act_as = lambda user: current.update(actor=actor_of(user))
    yield c
    app.dependency_overrides.clear()
