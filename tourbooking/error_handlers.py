import logging
import traceback

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .errors import AppError, BadRequest, NotFound, ValidationError, from_integrity_error

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "Something went very wrong!"


def error_response(error: AppError, cause: BaseException | None = None) -> JSONResponse:
    content = {"status": error.status, "message": error.message}
    if settings.is_development():
        source = cause or error
        content["error"] = type(source).__name__
        content["stack"] = "".join(traceback.format_exception(source))
    return JSONResponse(status_code=error.status_code, content=content)


def _describe(error: dict) -> str:
    message = error.get("msg", "Invalid value")
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    field = ".".join(str(part) for part in error.get("loc", ())[1:])
    return f"{field}: {message}" if field else message


def normalize_validation_error(exc: RequestValidationError) -> AppError:
    errors = exc.errors()
    for error in errors:
        loc = error.get("loc", ())
        # malformed identifiers in the path
        if loc and loc[0] == "path":
            return BadRequest(f"Invalid {loc[-1]}: {error.get('input')}.")
    return ValidationError(f"Invalid input data. {'. '.join(_describe(e) for e in errors)}")


def register_exception_handlers(app):
    """
    Register global exception handlers producing the
    ``{"status": "fail" | "error", "message": ...}`` envelope.
    """

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return error_response(normalize_validation_error(exc), exc)

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        return error_response(from_integrity_error(str(exc.orig)), exc)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            error = NotFound(f"Can't find {request.url.path} on this server!")
        else:
            error = AppError(str(exc.detail), exc.status_code)
        return error_response(error, exc)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        # Programming or unknown error: log everything, reveal nothing in production
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        if settings.is_development():
            return error_response(AppError(str(exc) or GENERIC_MESSAGE, 500), exc)
        return JSONResponse(status_code=500, content={"status": "error", "message": GENERIC_MESSAGE})
