from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from .. import models, schemas
from ..deps import get_current_user, get_db, require_roles
from ..errors import Forbidden, NotFound, ValidationError
from ..handlers import ResourceHandler, success
from ..reports import recalculate_tour_ratings
from ..scopes import Operation, find_by_id

# Every review route requires a logged in user
router = APIRouter(prefix="/reviews", tags=["reviews"], dependencies=[Depends(get_current_user)])
tour_reviews_router = APIRouter(
    prefix="/tours/{tour_id}/reviews",
    tags=["reviews"],
    dependencies=[Depends(get_current_user)],
)

review_handler = ResourceHandler(
    models.Review,
    schemas.ReviewOut,
    after_commit=[recalculate_tour_ratings],
    not_found_message="No review found with that ID",
)


def create_review_for(db: Session, tour_id: int | None, payload: schemas.ReviewCreate, user: models.User):
    if tour_id is None:
        raise ValidationError("Invalid input data. Review must belong to a tour.")
    if find_by_id(db, models.Tour, tour_id) is None:
        raise NotFound("No tour found with that ID")

    data = {
        "review": payload.review,
        "rating": payload.rating,
        "tour_id": tour_id,
        "user_id": user.id,
    }
    return review_handler.create_one(db, data)


def find_own_review(db: Session, review_id: int, user: models.User, operation: Operation):
    review = review_handler.find(db, review_id, operation)
    # admins moderate every review, everyone else only their own
    if user.role != "admin" and review.user_id != user.id:
        raise Forbidden("You can only change your own reviews")
    return review


@router.get("/")
def list_reviews(request: Request, db: Session = Depends(get_db)):
    return review_handler.get_all(db, request.query_params)


@router.post("/", status_code=201)
def create_review(
    payload: schemas.ReviewCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles("user")),
):
    return create_review_for(db, payload.tour_id, payload, current_user)


@router.get("/{review_id}")
def get_review(review_id: int, db: Session = Depends(get_db)):
    return review_handler.get_one(db, review_id)


@router.patch("/{review_id}")
def update_review(
    review_id: int,
    payload: schemas.ReviewUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles("user", "admin")),
):
    review = find_own_review(db, review_id, current_user, Operation.UPDATE_ONE)
    review = review_handler.update_record(db, review, payload.model_dump(exclude_unset=True))
    return success(schemas.dump(schemas.ReviewOut, review))


@router.delete("/{review_id}", status_code=204, response_class=Response)
def delete_review(
    review_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles("user", "admin")),
):
    review = find_own_review(db, review_id, current_user, Operation.DELETE_ONE)
    review_handler.delete_record(db, review)
    return Response(status_code=204)


# ----- Nested under a tour -----
@tour_reviews_router.get("/")
def list_tour_reviews(tour_id: int, request: Request, db: Session = Depends(get_db)):
    return review_handler.get_all(db, request.query_params, tour_id=tour_id)


@tour_reviews_router.post("/", status_code=201)
def create_tour_review(
    tour_id: int,
    payload: schemas.ReviewCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_roles("user")),
):
    return create_review_for(db, tour_id, payload, current_user)
