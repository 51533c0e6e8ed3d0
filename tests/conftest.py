"""
Pytest configuration and shared fixtures for testing the Tour Booking API.
"""
import os

# Must be set before the application reads its settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["APP_ENV"] = "test"

import json
import smtplib
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tourbooking import models
from tourbooking.database import Base
from tourbooking.deps import get_db
from tourbooking.errors import PaymentWebhookError
from tourbooking.mailer import get_mailer
from tourbooking.main import app
from tourbooking.payments import get_payment_gateway


# Use an in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeMailer:
    """Collects outgoing messages instead of talking to an SMTP server."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, text):
        if self.fail:
            raise smtplib.SMTPException("SMTP server unavailable")
        self.sent.append({"to": to, "subject": subject, "text": text})


class FakeGateway:
    """Payment gateway double: fixed checkout sessions, signature ``valid`` accepted."""

    def __init__(self):
        self.sessions = []

    def create_checkout_session(self, *, tour, customer_email, success_url, cancel_url, image_url):
        self.sessions.append({"tour_id": tour.id, "customer_email": customer_email})
        return {"id": "cs_test_123", "url": "https://checkout.example.com/cs_test_123"}

    def construct_event(self, payload, signature):
        if signature != "valid":
            raise PaymentWebhookError("Webhook error: No signatures found matching the expected signature")
        return json.loads(payload)


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture(scope="function")
def client(db_session, mailer, gateway):
    """
    Create a test client with the test database, mailer and payment gateway.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def make_user(db_session, name, email, password, role="user"):
    user = models.User(name=name, email=email, password=password, role=role)
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def admin_user(db_session):
    """
    Create an admin user for testing.
    """
    return make_user(db_session, "Admin User", "admin@example.com", "adminpass123", role="admin")


@pytest.fixture
def regular_user(db_session):
    """
    Create a regular user for testing.
    """
    return make_user(db_session, "Regular User", "regular@example.com", "regularpass123")


@pytest.fixture
def other_user(db_session):
    """
    Create a second regular user for testing.
    """
    return make_user(db_session, "Other User", "other@example.com", "otherpass123")


@pytest.fixture
def lead_guide(db_session):
    """
    Create a lead guide for testing.
    """
    return make_user(db_session, "Lead Guide", "lead@example.com", "leadpass123", role="lead-guide")


@pytest.fixture
def guide(db_session):
    """
    Create a guide for testing.
    """
    return make_user(db_session, "Tour Guide", "guide@example.com", "guidepass123", role="guide")


def login(client, email, password):
    response = client.post("/api/v1/users/login", json={"email": email, "password": password})
    # Tests pass tokens explicitly; keep the cookie jar clean
    client.cookies.clear()
    return response.json()["token"]


@pytest.fixture
def admin_token(client, admin_user):
    """
    Get an admin authentication token.
    """
    return login(client, "admin@example.com", "adminpass123")


@pytest.fixture
def regular_token(client, regular_user):
    """
    Get a regular user authentication token.
    """
    return login(client, "regular@example.com", "regularpass123")


@pytest.fixture
def other_token(client, other_user):
    """
    Get the second regular user's authentication token.
    """
    return login(client, "other@example.com", "otherpass123")


@pytest.fixture
def lead_guide_token(client, lead_guide):
    """
    Get a lead guide authentication token.
    """
    return login(client, "lead@example.com", "leadpass123")


@pytest.fixture
def guide_token(client, guide):
    """
    Get a guide authentication token.
    """
    return login(client, "guide@example.com", "guidepass123")


def make_tour(db_session, name, **fields):
    values = {
        "duration": 5,
        "max_group_size": 25,
        "difficulty": "easy",
        "price": 497,
        "summary": "Breathtaking hike through the Canadian Banff National Park",
        "image_cover": "tour-1-cover.jpg",
    }
    values.update(fields)
    tour = models.Tour(name=name, **values)
    db_session.add(tour)
    db_session.commit()
    db_session.refresh(tour)
    return tour


@pytest.fixture
def tour_factory(db_session):
    """
    Create tours with custom fields.
    """
    def factory(name, **fields):
        return make_tour(db_session, name, **fields)

    return factory


@pytest.fixture
def sample_tour(db_session):
    """
    Create a sample tour for testing.
    """
    return make_tour(
        db_session,
        "The Forest Hiker",
        start_dates=[datetime(2021, 4, 25, 9), datetime(2021, 7, 20, 9)],
        start_location={
            "type": "Point",
            "coordinates": [-115.570154, 51.178456],
            "address": "224 Banff Ave, Banff, AB, Canada",
            "description": "Banff, CAN",
        },
    )


@pytest.fixture
def sample_tours(db_session):
    """
    Create multiple sample tours for testing, one of them secret.
    """
    return [
        make_tour(
            db_session,
            "The Sea Explorer",
            difficulty="medium",
            price=397,
            ratings_average=4.8,
            ratings_quantity=6,
            start_location={"type": "Point", "coordinates": [-80.185942, 25.774772], "description": "Miami, USA"},
        ),
        make_tour(
            db_session,
            "The Snow Adventurer",
            difficulty="difficult",
            price=997,
            ratings_average=4.5,
            ratings_quantity=3,
            start_location={"type": "Point", "coordinates": [-106.822318, 39.190872], "description": "Aspen, USA"},
        ),
        make_tour(
            db_session,
            "The City Wanderer",
            difficulty="easy",
            price=1197,
            ratings_average=4.8,
            ratings_quantity=8,
            start_location={"type": "Point", "coordinates": [-73.985141, 40.75894], "description": "NYC, USA"},
        ),
        make_tour(
            db_session,
            "The Park Camper",
            difficulty="medium",
            price=1497,
            ratings_average=4.9,
            ratings_quantity=7,
            start_location={"type": "Point", "coordinates": [-118.113491, 34.111745], "description": "Los Angeles, USA"},
        ),
        make_tour(
            db_session,
            "The Secret Retreat",
            difficulty="medium",
            price=2997,
            ratings_average=5.0,
            secret_tour=True,
        ),
    ]


@pytest.fixture
def sample_review(db_session, regular_user, sample_tour):
    """
    Create a sample review for testing.
    """
    review = models.Review(
        user_id=regular_user.id,
        tour_id=sample_tour.id,
        rating=4,
        review="Great tour with excellent guides!",
    )
    db_session.add(review)
    db_session.commit()
    db_session.refresh(review)
    return review


@pytest.fixture
def sample_booking(db_session, regular_user, sample_tour):
    """
    Create a sample booking for testing.
    """
    booking = models.Booking(user_id=regular_user.id, tour_id=sample_tour.id, price=sample_tour.price)
    db_session.add(booking)
    db_session.commit()
    db_session.refresh(booking)
    return booking


def get_auth_header(token: str) -> dict:
    """
    Helper function to create authorization header.
    """
    return {"Authorization": f"Bearer {token}"}
