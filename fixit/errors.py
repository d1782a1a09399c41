"""Error taxonomy shared by the API, the lifecycle engine and the stores.

Every error carries an HTTP status code and a stable machine-readable code.
The handlers registered in ``register_error_handlers`` render them as::

    {"detail": "User-friendly message", "code": "ERROR_CODE"}
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

# Security logger for tracking rejected access
security_logger = logging.getLogger("fixit.security")


class FixItError(Exception):
    """Base class for errors raised by FixIt code."""

    default_code = "ERROR"
    default_message = "An error occurred."
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str | None = None, code: str | None = None):
        self.message = message or self.default_message
        self.code = code or self.default_code
        super().__init__(self.message)


class ValidationError(FixItError):
    """Malformed or missing input. Raised before any mutation happens."""

    default_code = "VALIDATION_ERROR"
    default_message = "Invalid request. Please check your input."
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidTransitionError(ValidationError):
    """The issue is not in a state the requested action can start from."""

    default_code = "INVALID_TRANSITION"
    default_message = "This action is not allowed in the issue's current status."


class AuthorizationError(FixItError):
    default_code = "FORBIDDEN"
    default_message = "You do not have permission to perform this action."
    status_code = status.HTTP_403_FORBIDDEN


class AuthenticationError(AuthorizationError):
    default_code = "UNAUTHORIZED"
    default_message = "Authentication required."
    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(FixItError):
    default_code = "NOT_FOUND"
    default_message = "The requested resource was not found."
    status_code = status.HTTP_404_NOT_FOUND


class ServiceUnavailableError(FixItError):
    default_code = "SERVICE_UNAVAILABLE"
    default_message = "Service temporarily unavailable. Please try again later."
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class ServerError(FixItError):
    default_code = "INTERNAL_ERROR"
    default_message = "An internal error occurred. Please try again later."
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def _error_response(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": message, "code": code})


def register_error_handlers(app: FastAPI) -> None:
    """Attach the FixIt exception handlers to the application."""

    @app.exception_handler(FixItError)
    async def fixit_error_handler(request: Request, exc: FixItError):
        if isinstance(exc, AuthorizationError):
            security_logger.warning(
                "Security event: %s %s rejected with %s",
                request.method,
                request.url.path,
                exc.status_code,
                extra={"code": exc.code},
            )
        elif exc.status_code >= 500:
            logger.error(
                "%s %s failed: %s",
                request.method,
                request.url.path,
                exc.message,
                extra={"code": exc.code},
            )
        return _error_response(exc.status_code, exc.message, exc.code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = ValidationError.default_message
        if errors:
            # Return the first validation error
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"Validation error: {field} - {first.get('msg')}" if field else first.get("msg", message)
        return _error_response(status.HTTP_400_BAD_REQUEST, message, ValidationError.default_code)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, ServerError.default_message, ServerError.default_code
        )
