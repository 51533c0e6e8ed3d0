import logging
import smtplib

from fastapi import APIRouter, Depends, File, Request, Response, UploadFile
from sqlalchemy.orm import Session

from .. import models, schemas
from ..config import settings
from ..deps import get_current_user, get_db, require_roles
from ..errors import AppError, BadRequest, NotFound, Unauthorized
from ..handlers import ResourceHandler, commit, success
from ..images import check_content_type, resize_user_photo
from ..mailer import Email, Mailer, get_mailer
from ..scopes import Operation, scoped_query
from ..security import hash_reset_code, issue_reset_code, issue_token, utcnow, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

user_handler = ResourceHandler(
    models.User,
    schemas.UserOut,
    not_found_message="No user found with that ID",
)


def send_token(user: models.User, response: Response) -> dict:
    """Issue a session token, set it as an httpOnly cookie and return it with the user."""
    token = issue_token(user.id)
    response.set_cookie(
        "jwt",
        token,
        max_age=settings.jwt_cookie_expires_in_days * 24 * 60 * 60,
        httponly=True,
        secure=not settings.is_development(),
        samesite="lax",
    )
    return {"status": "success", "token": token, "data": {"user": schemas.dump(schemas.UserOut, user)}}


def find_by_email(db: Session, email: str) -> models.User | None:
    return (
        scoped_query(db, models.User, Operation.FIND_ONE)
        .filter(models.User.email == email.strip().lower())
        .first()
    )


# ----- Authentication -----
@router.post("/signup", status_code=201)
def signup(
    payload: schemas.SignupIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    """
    Create an account with the ``user`` role and log it in.

    Roles other than ``user`` can only be granted by an administrator.
    """
    user = models.User(name=payload.name, email=payload.email, password=payload.password)
    db.add(user)
    commit(db)
    db.refresh(user)

    try:
        Email(mailer, user, str(request.url_for("read_current_user"))).send_welcome()
    except (smtplib.SMTPException, OSError):
        logger.exception("Could not send welcome email to user %s", user.id)

    return send_token(user, response)


@router.post("/login")
def login(payload: schemas.LoginIn, response: Response, db: Session = Depends(get_db)):
    user = find_by_email(db, payload.email)
    if user is None or not verify_password(payload.password, user.hashed_password):
        raise Unauthorized("Incorrect email or password")
    return send_token(user, response)


@router.get("/logout")
def logout(response: Response):
    # the cookie is httpOnly, so overwrite it with a short-lived dummy
    response.set_cookie("jwt", "loggedout", max_age=10, httponly=True)
    return {"status": "success"}


@router.post("/forgotPassword")
def forgot_password(
    payload: schemas.ForgotPasswordIn,
    request: Request,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    """
    Email a one-time reset code, valid for 10 minutes.

    Only the sha256 digest of the code is stored. If the email cannot be sent,
    the code is discarded again.
    """
    user = find_by_email(db, payload.email)
    if user is None:
        raise NotFound("There is no user with this email address.")

    code = issue_reset_code()
    user.password_reset_code = code.stored_hash
    user.password_reset_expires = code.expires_at
    commit(db)

    reset_url = str(request.url_for("reset_password", code=code.plaintext))
    try:
        Email(mailer, user, reset_url).send_password_reset()
    except (smtplib.SMTPException, OSError):
        logger.exception("Could not send password reset email to user %s", user.id)
        user.password_reset_code = None
        user.password_reset_expires = None
        commit(db)
        raise AppError("There was an error sending the email. Try again later!", 500)

    return {"status": "success", "message": "Token sent to email!"}


@router.patch("/resetPassword/{code}")
def reset_password(
    code: str,
    payload: schemas.ResetPasswordIn,
    response: Response,
    db: Session = Depends(get_db),
):
    """Set a new password with a reset code. The code can only be used once."""
    user = (
        scoped_query(db, models.User, Operation.FIND_ONE)
        .filter(
            models.User.password_reset_code == hash_reset_code(code),
            models.User.password_reset_expires > utcnow(),
        )
        .first()
    )
    if user is None:
        raise BadRequest("Token is invalid or has expired")

    user.password = payload.password
    user.password_reset_code = None
    user.password_reset_expires = None
    commit(db)
    return send_token(user, response)


@router.patch("/updateMyPassword")
def update_my_password(
    payload: schemas.UpdatePasswordIn,
    response: Response,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    if not verify_password(payload.password_current, current_user.hashed_password):
        raise Unauthorized("Your current password is wrong.")

    current_user.password = payload.password
    commit(db)
    return send_token(current_user, response)


# ----- Current user -----
@router.get("/me")
def read_current_user(current_user: models.User = Depends(get_current_user)):
    return success(schemas.dump(schemas.UserOut, current_user))


@router.patch("/me")
@router.patch("/updateMe")
def update_current_user(
    payload: schemas.UpdateMeIn,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Update name and email of the current user. Passwords have their own route."""
    if payload.password is not None or payload.password_confirm is not None:
        raise BadRequest("This route is not for password updates. Please use /updateMyPassword.")

    data = payload.model_dump(exclude_unset=True, include={"name", "email"})
    for field, value in data.items():
        setattr(current_user, field, value)
    commit(db)
    return success(schemas.dump(schemas.UserOut, current_user), key="user")


@router.patch("/me/photo")
def update_current_user_photo(
    photo: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    check_content_type(photo.content_type)
    current_user.photo = resize_user_photo(photo.file.read(), current_user.id)
    commit(db)
    return success(schemas.dump(schemas.UserOut, current_user), key="user")


@router.delete("/deleteMe", status_code=204, response_class=Response)
def delete_current_user(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Deactivate the account. The record is kept but hidden from every query."""
    current_user.active = False
    commit(db)
    return Response(status_code=204)


# ----- Administration -----
@router.get("/")
def list_users(
    request: Request,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles("admin")),
):
    return user_handler.get_all(db, request.query_params)


@router.get("/{user_id}")
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles("admin")),
):
    return user_handler.get_one(db, user_id)


@router.patch("/{user_id}")
def update_user(
    user_id: int,
    payload: schemas.UserAdminUpdate,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles("admin")),
):
    """Update any user. Passwords cannot be changed here."""
    return user_handler.update_one(db, user_id, payload.model_dump(exclude_unset=True))


@router.delete("/{user_id}", status_code=204, response_class=Response)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    _: models.User = Depends(require_roles("admin")),
):
    user_handler.delete_one(db, user_id)
    return Response(status_code=204)
