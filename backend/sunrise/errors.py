"""API error types and the handlers that render them as the error envelope."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ErrorCodes:
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    EMAIL_TAKEN = "EMAIL_TAKEN"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"
    INVITATION_EMAIL_MISMATCH = "INVITATION_EMAIL_MISMATCH"
    SELF_ROLE_CHANGE = "SELF_ROLE_CHANGE"
    OAUTH_ERROR = "OAUTH_ERROR"


class APIError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = ErrorCodes.INTERNAL_ERROR
    default_message = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: dict | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.message = message or self.default_message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.details = details
        self.headers = headers
        super().__init__(self.message)


class ValidationError(APIError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = ErrorCodes.VALIDATION_ERROR
    default_message = "Validation failed"


class UnauthorizedError(APIError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = ErrorCodes.UNAUTHORIZED
    default_message = "Unauthorized"


class ForbiddenError(APIError):
    status_code = status.HTTP_403_FORBIDDEN
    code = ErrorCodes.FORBIDDEN
    default_message = "Forbidden"


class NotFoundError(APIError):
    status_code = status.HTTP_404_NOT_FOUND
    code = ErrorCodes.NOT_FOUND
    default_message = "Resource not found"


class EmailTakenError(APIError):
    status_code = status.HTTP_409_CONFLICT
    code = ErrorCodes.EMAIL_TAKEN
    default_message = "User already exists with this email"


class RateLimitError(APIError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = ErrorCodes.RATE_LIMIT_EXCEEDED
    default_message = "Too many requests. Please try again later."


def error_body(code: str, message: str, details: dict | None = None) -> dict:
    error = {"code": code, "message": message}
    if details:
        error["details"] = details
    return {"success": False, "error": error}


def _status_to_code(status_code: int) -> str:
    return {
        400: ErrorCodes.VALIDATION_ERROR,
        401: ErrorCodes.UNAUTHORIZED,
        403: ErrorCodes.FORBIDDEN,
        404: ErrorCodes.NOT_FOUND,
        409: ErrorCodes.EMAIL_TAKEN,
        429: ErrorCodes.RATE_LIMIT_EXCEEDED,
    }.get(status_code, ErrorCodes.INTERNAL_ERROR)


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.details),
        headers=exc.headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Group pydantic errors by dotted field path."""
    details: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        path = ".".join(loc) or "body"
        details.setdefault(path, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(ErrorCodes.VALIDATION_ERROR, "Validation failed", details),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(_status_to_code(exc.status_code), message),
        headers=getattr(exc, "headers", None),
    )


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.warning("Integrity error on %s: %s", request.url.path, exc.orig)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=error_body(
            ErrorCodes.EMAIL_TAKEN,
            "A record with this value already exists",
            {"constraint": "unique"},
        ),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(ErrorCodes.INTERNAL_ERROR, "An unexpected error occurred"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
