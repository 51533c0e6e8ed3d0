"""
Credential and token service.

Passwords are stored as bcrypt hashes, sessions are carried by signed JWTs and
password resets use one-time codes of which only a sha256 digest is persisted.
"""
import hashlib
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from .config import settings
from .errors import ExpiredToken, InvalidToken, StaleCredential

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.bcrypt_rounds,
)


def utcnow() -> datetime:
    """Naive UTC now; the database stores naive UTC datetimes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_timestamp(value: datetime) -> float:
    return value.replace(tzinfo=timezone.utc).timestamp()


# ----- Passwords -----
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


# ----- Session tokens -----
@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    issued_at: float


def issue_token(user_id: int, now: float | None = None) -> str:
    issued_at = time.time() if now is None else now
    expires = issued_at + timedelta(days=settings.jwt_expires_in_days).total_seconds()
    claims = {"sub": str(user_id), "iat": issued_at, "exp": int(expires)}
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> TokenClaims:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except ExpiredSignatureError:
        raise ExpiredToken()
    except JWTError:
        raise InvalidToken()

    try:
        return TokenClaims(user_id=int(payload["sub"]), issued_at=float(payload["iat"]))
    except (KeyError, TypeError, ValueError):
        raise InvalidToken()


def changed_password_after(user, issued_at: float) -> bool:
    if user.password_changed_at is None:
        return False
    return to_timestamp(user.password_changed_at) > issued_at


def ensure_fresh(user, claims: TokenClaims) -> None:
    """Reject tokens issued before the user's last password change."""
    if changed_password_after(user, claims.issued_at):
        raise StaleCredential()


# ----- Password reset codes -----
@dataclass(frozen=True)
class ResetCode:
    plaintext: str
    stored_hash: str
    expires_at: datetime


def hash_reset_code(plaintext: str) -> str:
    return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def issue_reset_code(now: datetime | None = None) -> ResetCode:
    plaintext = secrets.token_hex(32)
    issued = now or utcnow()
    return ResetCode(
        plaintext=plaintext,
        stored_hash=hash_reset_code(plaintext),
        expires_at=issued + timedelta(minutes=settings.reset_code_ttl_minutes),
    )
