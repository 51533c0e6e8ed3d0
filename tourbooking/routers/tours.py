from typing import List, Optional

from fastapi import APIRouter, Depends, File, Request, Response, UploadFile
from sqlalchemy.orm import Session

from .. import models, reports, schemas
from ..deps import get_db, require_roles
from ..errors import BadRequest, ValidationError
from ..handlers import ResourceHandler, success, success_list
from ..images import check_content_type, resize_tour_cover, resize_tour_image
from ..query import Projection, normalize_params
from ..scopes import Operation

router = APIRouter(prefix="/tours", tags=["tours"])

MAX_TOUR_IMAGES = 3
TOP_CHEAP_QUERY = {
    "limit": "5",
    "sort": "-ratingsAverage,price",
    "fields": "name,price,ratingsAverage,summary,difficulty",
}


def prepare_tour(db: Session, tour: models.Tour, data: dict) -> None:
    """Resolve guide ids to users before the payload is assigned."""
    if "guides" not in data:
        return
    guide_ids = set(data.pop("guides") or [])
    guides = db.query(models.User).filter(models.User.id.in_(guide_ids)).all() if guide_ids else []
    if len(guides) != len(guide_ids):
        raise ValidationError("Invalid input data. Every guide must reference an existing user.")
    tour.guides = guides


def check_tour(tour: models.Tour) -> None:
    # also enforced on partial updates, against the stored price
    if tour.price_discount is not None and tour.price is not None and tour.price_discount >= tour.price:
        raise ValidationError(
            f"Invalid input data. Discount price ({tour.price_discount}) must be below regular price"
        )


tour_handler = ResourceHandler(
    models.Tour,
    schemas.TourOut,
    detail_schema=schemas.TourDetailOut,
    prepare=prepare_tour,
    check=check_tour,
    not_found_message="No tour found with that ID",
)


@router.get("/")
def list_tours(request: Request, db: Session = Depends(get_db)):
    """
    List tours.

    Supports filtering (``?difficulty=easy&price[lt]=1500``), sorting
    (``?sort=-ratingsAverage,price``), field limiting (``?fields=name,price``)
    and pagination (``?page=2&limit=10``). Secret tours are never listed.
    """
    return tour_handler.get_all(db, request.query_params)


@router.get("/top-5-cheap")
def top_five_cheap(request: Request, db: Session = Depends(get_db)):
    """Best rated tours, cheapest first among equal ratings."""
    params = normalize_params(request.query_params)
    params.update(TOP_CHEAP_QUERY)
    return tour_handler.get_all(db, params)


@router.get("/tour-stats")
def tour_stats(db: Session = Depends(get_db)):
    return success(reports.difficulty_stats(db), key="stats")


@router.get("/monthly-plan/{year}")
def monthly_plan(
    year: int,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles("admin", "lead-guide", "guide")),
):
    return success(reports.monthly_plan(db, year), key="plan")


@router.get("/tours-within/{distance}/center/{latlng}/unit/{unit}")
def tours_within(
    distance: float,
    latlng: str,
    unit: str,
    db: Session = Depends(get_db),
):
    """Tours starting within ``distance`` of ``latlng`` (``lat,lng``), in ``mi`` or ``km``."""
    if distance < 0:
        raise BadRequest(f"Invalid distance: {distance}.")
    lat, lng = reports.parse_latlng(latlng)
    tours = reports.tours_within(db, distance, lat, lng, unit)
    projection = Projection()
    return success_list([projection.apply(schemas.dump(schemas.TourOut, tour)) for tour in tours])


@router.get("/distances/{latlng}/unit/{unit}")
def tour_distances(latlng: str, unit: str, db: Session = Depends(get_db)):
    lat, lng = reports.parse_latlng(latlng)
    return success(reports.distances(db, lat, lng, unit))


@router.get("/{tour_id}")
def get_tour(tour_id: int, db: Session = Depends(get_db)):
    return tour_handler.get_one(db, tour_id)


@router.post("/", status_code=201)
def create_tour(
    payload: schemas.TourCreate,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles("admin", "lead-guide")),
):
    return tour_handler.create_one(db, payload.model_dump())


@router.patch("/{tour_id}")
def update_tour(
    tour_id: int,
    payload: schemas.TourUpdate,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles("admin", "lead-guide")),
):
    return tour_handler.update_one(db, tour_id, payload.model_dump(exclude_unset=True))


@router.patch("/{tour_id}/images")
def update_tour_images(
    tour_id: int,
    image_cover: Optional[UploadFile] = File(None, alias="imageCover"),
    images: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles("admin", "lead-guide")),
):
    """Upload a cover image and/or up to three gallery images; each is resized."""
    tour = tour_handler.find(db, tour_id, Operation.UPDATE_ONE)
    images = images or []
    if len(images) > MAX_TOUR_IMAGES:
        raise BadRequest(f"A tour can have at most {MAX_TOUR_IMAGES} images.")

    data = {}
    if image_cover is not None:
        check_content_type(image_cover.content_type)
        data["image_cover"] = resize_tour_cover(image_cover.file.read(), tour.id)
    if images:
        for upload in images:
            check_content_type(upload.content_type)
        data["images"] = [
            resize_tour_image(upload.file.read(), tour.id, index)
            for index, upload in enumerate(images, start=1)
        ]
    if not data:
        raise BadRequest("Please upload a cover image or at least one image.")

    return success(schemas.dump(schemas.TourOut, tour_handler.update_record(db, tour, data)))


@router.delete("/{tour_id}", status_code=204, response_class=Response)
def delete_tour(
    tour_id: int,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles("admin", "lead-guide")),
):
    tour_handler.delete_one(db, tour_id)
    return Response(status_code=204)
