"""
Operational error taxonomy.

Every error raised on purpose by the application is an ``AppError``: its message
is safe to show to the client. Anything else is treated as a programming error
by the exception handlers in ``error_handlers``.
"""
import re

from pydantic.alias_generators import to_camel

_UNIQUE_SQLITE = re.compile(r"UNIQUE constraint failed: (?P<columns>.+)")
_UNIQUE_POSTGRES = re.compile(r"Key \((?P<columns>[^)]+)\)=")
_NOT_NULL_SQLITE = re.compile(r"NOT NULL constraint failed: (?P<column>\S+)")
_NOT_NULL_POSTGRES = re.compile(r'null value in column "(?P<column>[^"]+)"')


class AppError(Exception):
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: str | None = None, status_code: int | None = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.is_operational = True
        super().__init__(self.message)

    @property
    def status(self) -> str:
        return "fail" if str(self.status_code).startswith("4") else "error"


class BadRequest(AppError):
    status_code = 400
    default_message = "Bad request"


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid input data."


class DuplicateKey(AppError):
    status_code = 400
    default_message = "Duplicate field value. Please use another value!"


class NotFound(AppError):
    status_code = 404
    default_message = "No document found with that ID"


class Unauthorized(AppError):
    status_code = 401
    default_message = "You are not logged in! Please log in to get access."


class InvalidToken(Unauthorized):
    default_message = "Invalid token. Please log in again!"


class ExpiredToken(Unauthorized):
    default_message = "Your token has expired! Please log in again."


class StaleCredential(Unauthorized):
    default_message = "User recently changed password! Please log in again."


class Forbidden(AppError):
    status_code = 403
    default_message = "You do not have permission to perform this action"


class PaymentWebhookError(AppError):
    status_code = 400
    default_message = "Webhook error"


class ServiceUnavailable(AppError):
    status_code = 503
    default_message = "Service temporarily unavailable. Please try again later."


def from_integrity_error(message: str) -> AppError:
    """Translate a database integrity failure message into a client error."""
    match = _UNIQUE_SQLITE.search(message) or _UNIQUE_POSTGRES.search(message)
    if match:
        columns = [column.strip().split(".")[-1] for column in match["columns"].split(",")]
        fields = ", ".join(to_camel(column) for column in columns)
        return DuplicateKey(f"Duplicate field value: {fields}. Please use another value!")
    if "unique" in message.lower() or "duplicate" in message.lower():
        return DuplicateKey()
    match = _NOT_NULL_SQLITE.search(message) or _NOT_NULL_POSTGRES.search(message)
    if match:
        field = to_camel(match["column"].split(".")[-1])
        return ValidationError(f"Invalid input data. {field} is required.")
    # driver text names tables and constraints, keep it out of the response
    return ValidationError()
