from typing import Generator

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from . import models
from .database import SessionLocal
from .errors import Forbidden, Unauthorized
from .scopes import find_by_id
from .security import ensure_fresh, verify_token


# ----- DB -----
def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# ----- Auth -----
bearer_scheme = HTTPBearer(auto_error=False)


def get_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str | None:
    """Bearer header first, then the ``jwt`` cookie set at login."""
    if credentials is not None:
        return credentials.credentials
    return request.cookies.get("jwt")


def get_current_user(
    token: str | None = Depends(get_token),
    db: Session = Depends(get_db),
) -> models.User:
    """
    Resolve the authenticated user or fail with 401.

    A request must carry a token, the token must verify, its user must still
    exist and be active, and the password must not have changed since the
    token was issued.
    """
    if not token:
        raise Unauthorized()

    claims = verify_token(token)

    user = find_by_id(db, models.User, claims.user_id)
    if user is None:
        raise Unauthorized("The user belonging to this token no longer exists.")

    ensure_fresh(user, claims)
    return user


def require_roles(*allowed_roles: str):
    """
    Usage: current_user: models.User = Depends(require_roles("admin", "lead-guide"))
    """
    def role_checker(current_user: models.User = Depends(get_current_user)) -> models.User:
        if current_user.role not in allowed_roles:
            raise Forbidden()
        return current_user

    return role_checker
