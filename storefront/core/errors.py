"""Application error taxonomy and the handlers that render it as JSON."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal Server Error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request."


class UnauthorizedError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authorized."


class InvalidTokenError(UnauthorizedError):
    default_message = "Invalid or expired token"


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden."


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found."


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict."


class InternalError(AppError):
    pass


class MailDeliveryError(InternalError):
    default_message = "Unable to send email. Please try again later."


class DatabaseUnavailableError(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Database unavailable. Verify DATABASE_URL and database credentials."


def _message_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message})


def _first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return ValidationError.default_message

    error = errors[0]
    location = tuple(error.get("loc", ()))
    if error.get("type") == "missing":
        if location == ("body",):
            return "Request body is required"
        field = str(location[-1]) if location else "Field"
        return f"{field[:1].upper()}{field[1:]} is required"

    message = str(error.get("msg", ValidationError.default_message))
    # Pydantic prefixes messages raised from validators.
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return message


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _message_response(exc.status_code, exc.message)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _message_response(exc.status_code, str(exc.detail))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _message_response(status.HTTP_400_BAD_REQUEST, _first_validation_message(exc))


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Database error on %s %s", request.method, request.url.path)
    # Only connection-level failures mean the database is unreachable.
    if isinstance(exc, (OperationalError, InterfaceError)):
        return _message_response(DatabaseUnavailableError.status_code, DatabaseUnavailableError.default_message)
    return _message_response(status.HTTP_500_INTERNAL_SERVER_ERROR, InternalError.default_message)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _message_response(status.HTTP_500_INTERNAL_SERVER_ERROR, InternalError.default_message)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
