"""
Read-only reports over tours, and the rating aggregate kept on each tour.
"""
import logging
import math
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models
from .errors import BadRequest
from .handlers import commit
from .scopes import Operation, apply_scope, scoped_query

logger = logging.getLogger(__name__)

TOP_RATED_THRESHOLD = 4.5
MAX_PLAN_ROWS = 12

# radians = distance / radius, as used by spherical "within" queries
EARTH_RADIUS = {"mi": 3963.2, "km": 6378.1}
EARTH_RADIUS_METERS = 6378137
METERS_TO_UNIT = {"mi": 0.000621371, "km": 0.001}


def difficulty_stats(db: Session) -> list[dict]:
    """Statistics of top-rated tours grouped by difficulty, cheapest group first."""
    tour = models.Tour
    difficulty = func.upper(tour.difficulty)
    avg_price = func.avg(tour.price).label("avg_price")

    query = db.query(
        difficulty.label("difficulty"),
        func.count(tour.id).label("num_tours"),
        func.sum(tour.ratings_quantity).label("num_ratings"),
        func.avg(tour.ratings_average).label("avg_rating"),
        avg_price,
        func.min(tour.price).label("min_price"),
        func.max(tour.price).label("max_price"),
    )
    rows = (
        apply_scope(query, tour, Operation.AGGREGATE)
        .filter(tour.ratings_average >= TOP_RATED_THRESHOLD)
        .group_by(difficulty)
        .having(difficulty != "EASY")
        .order_by(avg_price.asc())
        .all()
    )
    return [
        {
            "difficulty": row.difficulty,
            "numTours": row.num_tours,
            "numRatings": row.num_ratings or 0,
            "avgRating": row.avg_rating,
            "avgPrice": row.avg_price,
            "minPrice": row.min_price,
            "maxPrice": row.max_price,
        }
        for row in rows
    ]


def monthly_plan(db: Session, year: int) -> list[dict]:
    """Tour starts per month of ``year``, busiest month first."""
    if not 1 <= year < 9999:
        raise BadRequest(f"Invalid year: {year}.")

    start = models.TourStartDate.start_date
    # one row per (tour, start date) inside the year
    query = db.query(start, models.Tour.name).join(models.TourStartDate.tour)
    rows = (
        apply_scope(query, models.Tour, Operation.AGGREGATE)
        .filter(start >= datetime(year, 1, 1), start < datetime(year + 1, 1, 1))
        .order_by(start.asc(), models.Tour.id.asc())
        .all()
    )

    groups: dict[int, list[str]] = {}
    for start_date, name in rows:
        groups.setdefault(start_date.month, []).append(name)

    plan = [
        {"month": month, "numTourStarts": len(names), "tours": names}
        for month, names in groups.items()
    ]
    plan.sort(key=lambda entry: (-entry["numTourStarts"], entry["month"]))
    return plan[:MAX_PLAN_ROWS]


def calc_average_ratings(db: Session, tour_id: int) -> None:
    """Recompute a tour's rating count and average from all of its reviews."""
    count, average = (
        db.query(func.count(models.Review.id), func.avg(models.Review.rating))
        .filter(models.Review.tour_id == tour_id)
        .one()
    )
    tour = db.query(models.Tour).filter(models.Tour.id == tour_id).first()
    if tour is None:
        return

    if count:
        tour.ratings_quantity = count
        tour.ratings_average = average
    else:
        tour.ratings_quantity = 0
        tour.ratings_average = models.DEFAULT_RATINGS_AVERAGE
    commit(db)
    logger.debug("Tour %s ratings: %s reviews, average %s", tour_id, count, tour.ratings_average)


def recalculate_tour_ratings(db: Session, review: dict) -> None:
    calc_average_ratings(db, review["tour_id"])


# ----- Geospatial -----
def parse_latlng(latlng: str) -> tuple[float, float]:
    try:
        lat, lng = (float(part) for part in latlng.split(","))
    except ValueError:
        raise BadRequest("Please provide latitude and longitude in the format lat,lng.")
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        raise BadRequest("Please provide latitude and longitude in the format lat,lng.")
    return lat, lng


def check_unit(unit: str) -> str:
    if unit not in EARTH_RADIUS:
        raise BadRequest("Unit must be either mi or km.")
    return unit


def central_angle(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle angle between two points, in radians (haversine)."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = phi2 - phi1
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * math.asin(min(1.0, math.sqrt(a)))


def _located_tours(db: Session):
    tours = scoped_query(db, models.Tour, Operation.FIND_MANY).all()
    for tour in tours:
        if tour.start_location and len(tour.start_location.get("coordinates") or []) == 2:
            lng, lat = tour.start_location["coordinates"]
            yield tour, lat, lng


def tours_within(db: Session, distance: float, lat: float, lng: float, unit: str) -> list:
    radius = distance / EARTH_RADIUS[check_unit(unit)]
    return [
        tour
        for tour, tour_lat, tour_lng in _located_tours(db)
        if central_angle(lat, lng, tour_lat, tour_lng) <= radius
    ]


def distances(db: Session, lat: float, lng: float, unit: str) -> list[dict]:
    multiplier = METERS_TO_UNIT[check_unit(unit)]
    results = [
        {
            "id": tour.id,
            "name": tour.name,
            "distance": central_angle(lat, lng, tour_lat, tour_lng) * EARTH_RADIUS_METERS * multiplier,
        }
        for tour, tour_lat, tour_lng in _located_tours(db)
    ]
    results.sort(key=lambda entry: entry["distance"])
    return results
