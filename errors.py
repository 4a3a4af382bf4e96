"""
Error taxonomy and JSON error handlers.

Every error response has the shape {"message": str, "errors": [...]?}.
"""

import logging
from typing import List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import AutoReconnect, ConnectionFailure, ExecutionTimeout, PyMongoError, WTimeoutError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

RETRYABLE_DB_ERRORS = (AutoReconnect, ConnectionFailure, ExecutionTimeout, WTimeoutError)


class AppError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, errors: Optional[List[dict]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors


class ValidationFailed(AppError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, errors: List[dict], message: str = "Validation failed"):
        super().__init__(message, errors)


class InvalidIdentifier(AppError):
    status_code = status.HTTP_400_BAD_REQUEST


class BadRequest(AppError):
    status_code = status.HTTP_400_BAD_REQUEST


class BookingRejected(BadRequest):
    """The listing cannot take this booking (inactive, over capacity)."""


class AuthenticationFailed(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDenied(AppError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(AppError):
    status_code = status.HTTP_409_CONFLICT


class ServiceUnavailable(AppError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Service temporarily unavailable, please retry"):
        super().__init__(message)


def field_error(field: str, message: str) -> dict:
    return {"field": field, "message": message}


def _body(message: str, errors: Optional[List[dict]] = None) -> dict:
    body = {"message": message}
    if errors:
        body["errors"] = errors
    return body


async def app_error_handler(request: Request, exc: AppError):
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationFailed) else None
    return JSONResponse(status_code=exc.status_code, content=_body(exc.message, exc.errors), headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        # drop the "body"/"query"/"path" prefix, keep the field path
        loc = [str(part) for part in err.get("loc", ())[1:]]
        errors.append(field_error(".".join(loc) or "body", err.get("msg", "Invalid value")))
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=_body("Validation failed", errors))


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content=_body(str(exc.detail)), headers=exc.headers)


async def database_error_handler(request: Request, exc: PyMongoError):
    if isinstance(exc, RETRYABLE_DB_ERRORS):
        logger.warning("Database unavailable during %s %s: %s", request.method, request.url.path, exc)
        unavailable = ServiceUnavailable()
        return JSONResponse(status_code=unavailable.status_code, content=_body(unavailable.message))
    logger.error("Database error during %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_body("Server error"))


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error during %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_body("Something went wrong!"))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(PyMongoError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
