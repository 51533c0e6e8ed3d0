import logging

import stripe
from fastapi import APIRouter, Depends, Request, Response
from pybreaker import CircuitBreakerError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..deps import get_current_user, get_db, require_roles
from ..errors import AppError, NotFound, ServiceUnavailable
from ..handlers import ResourceHandler
from ..payments import StripeGateway, get_payment_gateway
from ..scopes import Operation, find_by_id, scoped_query

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"], dependencies=[Depends(get_current_user)])
# Called by the payment provider, authenticated by signature instead of a token
webhook_router = APIRouter(tags=["bookings"])

staff_only = require_roles("admin", "lead-guide")


def prepare_booking(db: Session, booking: models.Booking, data: dict) -> None:
    if "tour_id" in data and find_by_id(db, models.Tour, data["tour_id"]) is None:
        raise NotFound("No tour found with that ID")
    if "user_id" in data and find_by_id(db, models.User, data["user_id"]) is None:
        raise NotFound("No user found with that ID")


booking_handler = ResourceHandler(
    models.Booking,
    schemas.BookingOut,
    prepare=prepare_booking,
    not_found_message="No booking found with that ID",
)


def create_booking_checkout(db: Session, session: dict) -> models.Booking | None:
    """Record the booking paid through a completed checkout session."""
    user = (
        scoped_query(db, models.User, Operation.FIND_ONE)
        .filter(models.User.email == (session.get("customer_email") or "").lower())
        .first()
    )
    if user is None:
        logger.warning("Checkout session %s: no user for %s", session.get("id"), session.get("customer_email"))
        return None

    data = {
        "tour_id": int(session["client_reference_id"]),
        "user_id": user.id,
        "price": session["amount_total"] / 100,
    }
    return booking_handler.create_record(db, data)


@router.get("/checkout-session/{tour_id}")
def get_checkout_session(
    tour_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    """
    Create a payment provider checkout session for a tour.

    The call to the provider is wrapped with a circuit breaker so repeated
    provider failures fail fast with 503 instead of piling up.
    """
    tour = find_by_id(db, models.Tour, tour_id)
    if tour is None:
        raise NotFound("No tour found with that ID")

    base_url = str(request.base_url)
    try:
        session = gateway.create_checkout_session(
            tour=tour,
            customer_email=current_user.email,
            success_url=f"{base_url}my-tours?alert=booking",
            cancel_url=f"{base_url}tour/{tour.slug}",
            image_url=f"{base_url}img/tours/{tour.image_cover}",
        )
    except CircuitBreakerError:
        raise ServiceUnavailable(
            "Payment service temporarily unavailable (circuit open). Please try again later."
        )
    except stripe.StripeError as exc:
        logger.error("Checkout session for tour %s failed: %s", tour.id, exc)
        raise AppError("Could not create a checkout session. Please try again later.", 502)

    return {"status": "success", "session": session}


@router.get("/my-bookings")
def list_my_bookings(
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return booking_handler.get_all(db, request.query_params, user_id=current_user.id)


@router.get("/")
def list_bookings(request: Request, db: Session = Depends(get_db), _: models.User = Depends(staff_only)):
    return booking_handler.get_all(db, request.query_params)


@router.post("/", status_code=201)
def create_booking(
    payload: schemas.BookingCreate,
    db: Session = Depends(get_db),
    _: models.User = Depends(staff_only),
):
    """Create a booking by hand, e.g. for a tour paid in cash."""
    return booking_handler.create_one(db, payload.model_dump())


@router.get("/{booking_id}")
def get_booking(booking_id: int, db: Session = Depends(get_db), _: models.User = Depends(staff_only)):
    return booking_handler.get_one(db, booking_id)


@router.patch("/{booking_id}")
def update_booking(
    booking_id: int,
    payload: schemas.BookingUpdate,
    db: Session = Depends(get_db),
    _: models.User = Depends(staff_only),
):
    return booking_handler.update_one(db, booking_id, payload.model_dump(exclude_unset=True))


@router.delete("/{booking_id}", status_code=204, response_class=Response)
def delete_booking(booking_id: int, db: Session = Depends(get_db), _: models.User = Depends(staff_only)):
    booking_handler.delete_one(db, booking_id)
    return Response(status_code=204)


async def raw_body(request: Request) -> bytes:
    # signature verification needs the exact bytes that were sent
    return await request.body()


@webhook_router.post("/webhook-checkout")
def webhook_checkout(
    request: Request,
    payload: bytes = Depends(raw_body),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    event = gateway.construct_event(payload, request.headers.get("stripe-signature"))

    if event["type"] == "checkout.session.completed":
        create_booking_checkout(db, event["data"]["object"])

    return {"received": True}
