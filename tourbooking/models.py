import math

from slugify import slugify
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declared_attr, relationship, validates

from .database import Base
from .security import hash_password, utcnow

ROLES = ("user", "guide", "lead-guide", "admin")
DIFFICULTIES = ("easy", "medium", "difficult")
DEFAULT_RATINGS_AVERAGE = 4.5


class VersionedMixin:
    """Adds the ORM bookkeeping counter (hidden from API output by default)."""

    version = Column(Integer, nullable=False)

    @declared_attr
    def __mapper_args__(cls):
        return {"version_id_col": cls.version}


tour_guides = Table(
    "tour_guides",
    Base.metadata,
    Column("tour_id", Integer, ForeignKey("tours.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class User(VersionedMixin, Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    photo = Column(String, nullable=False, default="default.jpg")
    role = Column(String, nullable=False, default="user")  # user, guide, lead-guide, admin
    hashed_password = Column(String, nullable=False)
    password_changed_at = Column(DateTime, nullable=True)
    password_reset_code = Column(String, nullable=True, index=True)
    password_reset_expires = Column(DateTime, nullable=True)
    # soft delete marker
    active = Column(Boolean, nullable=False, default=True)

    reviews = relationship("Review", back_populates="user", cascade="all, delete-orphan")
    bookings = relationship("Booking", back_populates="user", cascade="all, delete-orphan")

    @validates("email")
    def normalize_email(self, key, value):
        if value is None:
            return value
        return value.strip().lower()

    @property
    def password(self):
        raise AttributeError("password is write-only")

    @password.setter
    def password(self, plaintext: str):
        self.hashed_password = hash_password(plaintext)
        # New users have no tokens to invalidate yet
        if self.id is not None:
            self.password_changed_at = utcnow()

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"


class Tour(VersionedMixin, Base):
    __tablename__ = "tours"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(40), unique=True, index=True, nullable=False)
    slug = Column(String, index=True, nullable=False)
    duration = Column(Integer, nullable=False)
    max_group_size = Column(Integer, nullable=False)
    difficulty = Column(String, nullable=False)
    ratings_average = Column(Float, nullable=False, default=DEFAULT_RATINGS_AVERAGE)
    ratings_quantity = Column(Integer, nullable=False, default=0)
    price = Column(Float, nullable=False, index=True)
    price_discount = Column(Float, nullable=True)
    summary = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    image_cover = Column(String, nullable=False)
    images = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    secret_tour = Column(Boolean, nullable=False, default=False)
    # GeoJSON point: {"type": "Point", "coordinates": [lng, lat], "address", "description"}
    start_location = Column(JSON(none_as_null=True), nullable=True)
    # list of GeoJSON points with an extra "day"
    locations = Column(JSON, nullable=False, default=list)

    start_date_rows = relationship(
        "TourStartDate",
        back_populates="tour",
        cascade="all, delete-orphan",
        order_by="TourStartDate.start_date",
    )
    guides = relationship("User", secondary=tour_guides)
    reviews = relationship("Review", back_populates="tour", cascade="all, delete-orphan")
    bookings = relationship("Booking", back_populates="tour", cascade="all, delete-orphan")

    @validates("name")
    def set_slug(self, key, value):
        if value is None:
            return value
        value = value.strip()
        self.slug = slugify(value)
        return value

    @validates("ratings_average")
    def round_ratings_average(self, key, value):
        # one decimal, half up: 4.666 -> 4.7
        return math.floor(value * 10 + 0.5) / 10

    @property
    def duration_weeks(self) -> float:
        return self.duration / 7

    @property
    def start_dates(self):
        return [row.start_date for row in self.start_date_rows]

    @start_dates.setter
    def start_dates(self, values):
        self.start_date_rows = [TourStartDate(start_date=value) for value in values or []]

    def __repr__(self) -> str:
        return f"<Tour(id={self.id}, name='{self.name}', slug='{self.slug}')>"


class TourStartDate(Base):
    __tablename__ = "tour_start_dates"

    id = Column(Integer, primary_key=True, index=True)
    tour_id = Column(Integer, ForeignKey("tours.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date = Column(DateTime, nullable=False, index=True)

    tour = relationship("Tour", back_populates="start_date_rows")


class Review(VersionedMixin, Base):
    __tablename__ = "reviews"
    __table_args__ = (UniqueConstraint("user_id", "tour_id", name="uq_reviews_user_tour"),)

    id = Column(Integer, primary_key=True, index=True)
    review = Column(Text, nullable=False)
    rating = Column(Float, nullable=False, default=DEFAULT_RATINGS_AVERAGE)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    tour_id = Column(Integer, ForeignKey("tours.id", ondelete="CASCADE"), nullable=False)

    user = relationship("User", back_populates="reviews")
    tour = relationship("Tour", back_populates="reviews")


class Booking(VersionedMixin, Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    tour_id = Column(Integer, ForeignKey("tours.id", ondelete="CASCADE"), nullable=False)
    price = Column(Float, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    # admins may mark cash bookings as unpaid
    paid = Column(Boolean, nullable=False, default=True)

    user = relationship("User", back_populates="bookings")
    tour = relationship("Tour", back_populates="bookings")
