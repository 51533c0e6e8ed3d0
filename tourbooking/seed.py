"""
Load or wipe development data.

    python -m tourbooking.seed --import dev-data/
    python -m tourbooking.seed --delete

The directory holds ``users.json``, ``tours.json`` and ``reviews.json``. Users
carry a plaintext ``password``; tours use the API's camelCase fields with
``guides`` as user ids; reviews reference ``user`` and ``tour`` ids.
"""
import argparse
import json
import logging
from pathlib import Path

from sqlalchemy.orm import Session

from . import models, schemas
from .database import Base, SessionLocal, engine
from .reports import calc_average_ratings

logger = logging.getLogger(__name__)


def _read(directory: Path, name: str) -> list:
    path = directory / name
    if not path.exists():
        return []
    with path.open(encoding="utf-8") as fh:
        return json.load(fh)


def import_data(db: Session, directory: Path) -> dict:
    users = [
        models.User(
            # before id, so the password does not count as a change
            password=item["password"],
            id=item.get("id"),
            name=item["name"],
            email=item["email"],
            role=item.get("role", "user"),
            photo=item.get("photo", "default.jpg"),
        )
        for item in _read(directory, "users.json")
    ]
    db.add_all(users)
    db.flush()

    tours = []
    for item in _read(directory, "tours.json"):
        data = schemas.TourCreate.model_validate(item).model_dump()
        guide_ids = data.pop("guides")
        tour = models.Tour(id=item.get("id"), **data)
        if guide_ids:
            tour.guides = db.query(models.User).filter(models.User.id.in_(guide_ids)).all()
        tours.append(tour)
    db.add_all(tours)
    db.flush()

    reviews = [
        models.Review(
            review=item["review"],
            rating=item["rating"],
            user_id=item["user"],
            tour_id=item["tour"],
        )
        for item in _read(directory, "reviews.json")
    ]
    db.add_all(reviews)
    db.commit()

    for tour in tours:
        calc_average_ratings(db, tour.id)

    counts = {"users": len(users), "tours": len(tours), "reviews": len(reviews)}
    logger.info("Data successfully loaded: %s", counts)
    return counts


def delete_data(db: Session) -> None:
    db.execute(models.tour_guides.delete())
    for model in (models.Booking, models.Review, models.TourStartDate, models.Tour, models.User):
        db.query(model).delete()
    db.commit()
    logger.info("Data successfully deleted")


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--import", dest="directory", type=Path, help="directory holding the JSON files")
    group.add_argument("--delete", action="store_true", help="delete all users, tours, reviews and bookings")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        if args.delete:
            delete_data(db)
        else:
            import_data(db, args.directory)
    finally:
        db.close()


if __name__ == "__main__":
    main()
