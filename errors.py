"""
Application error hierarchy and FastAPI exception handlers.

AppError is the base for all typed errors. The global exception handler
converts AppError subclasses to consistent JSON responses.

Request-body validation failures are reshaped into the same envelope with a
400 status. Anything else is logged with its traceback and returned as a
generic 500 (with Sentry reporting in production).
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from shared.logging import get_logger

log = get_logger(__name__)


class AppError(Exception):
    """Base application error. All typed errors inherit from this."""

    status_code: int = 500
    error_code: str = "internal_error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details

    def to_dict(self) -> dict:
        payload: dict = {"success": False, "error": self.message, "code": self.error_code}
        if self.field is not None:
            payload["field"] = self.field
        if self.details is not None:
            payload["details"] = self.details
        if self.retryable:
            payload["retryable"] = True
        return payload

    def headers(self) -> Optional[dict]:
        """Extra response headers; None for most errors."""
        return None


class ValidationError(AppError):
    status_code = 400
    error_code = "validation_error"


class MismatchError(ValidationError):
    error_code = "password_mismatch"


class InvalidOrExpiredTokenError(AppError):
    status_code = 400
    error_code = "invalid_or_expired_token"


class AuthenticationError(AppError):
    status_code = 401
    error_code = "authentication_error"


class InvalidCredentialsError(AuthenticationError):
    error_code = "invalid_credentials"


class CurrentPasswordIncorrectError(InvalidCredentialsError):
    # The caller is already authenticated; this is a bad field, not a bad session
    status_code = 400
    error_code = "current_password_incorrect"


class AccountSuspendedError(AuthenticationError):
    error_code = "account_suspended"


class TokenInvalidError(AuthenticationError):
    error_code = "token_invalid"


class TokenExpiredError(AuthenticationError):
    error_code = "token_expired"


class InvalidRefreshTokenError(AuthenticationError):
    error_code = "invalid_refresh_token"


class NotFoundError(AppError):
    status_code = 404
    error_code = "not_found"


class ConflictError(AppError):
    status_code = 409
    error_code = "conflict"


class AccountLockedError(AppError):
    status_code = 423
    error_code = "account_locked"


class RateLimitError(AppError):
    status_code = 429
    error_code = "rate_limit_exceeded"

    def __init__(
        self, message: str, *, retry_after: Optional[int] = None, **kwargs: Any
    ) -> None:
        if retry_after is not None:
            kwargs.setdefault("details", {"retry_after": retry_after})
        super().__init__(message, **kwargs)
        self.retry_after = retry_after

    def headers(self) -> Optional[dict]:
        if self.retry_after is None:
            return None
        return {"Retry-After": str(self.retry_after)}


class OtpNotFoundError(NotFoundError):
    error_code = "otp_not_found"


class OtpExpiredError(AppError):
    status_code = 400
    error_code = "otp_expired"


class OtpMismatchError(AppError):
    status_code = 400
    error_code = "otp_invalid"


class OtpAttemptsExceededError(RateLimitError):
    error_code = "otp_attempts_exceeded"


class DeliveryError(AppError):
    status_code = 500
    error_code = "delivery_failed"
    retryable = True


class StoreUnavailableError(AppError):
    status_code = 503
    error_code = "store_unavailable"
    retryable = True


def _validation_details(exc: RequestValidationError) -> list[dict]:
    details = []
    for err in exc.errors():
        # loc is ("body", "field", ...) for body params
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        details.append({"field": ".".join(loc) or None, "message": err.get("msg")})
    return details


def register_error_handlers(app: FastAPI, *, expose_errors: bool = False) -> None:
    """Register global exception handlers on the FastAPI app.

    ``expose_errors`` echoes the text of unexpected exceptions back to the
    client; it must stay off in production.
    """

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers()
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        error = ValidationError("Validation failed", details=_validation_details(exc))
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        # Sentry integration: if sentry_sdk is initialized it will auto-capture
        # unhandled exceptions before this handler fires.
        log.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            exc_info=exc,
        )
        content = {
            "success": False,
            "error": "An internal server error occurred.",
            "code": "internal_error",
        }
        if expose_errors:
            content["details"] = str(exc)
        return JSONResponse(status_code=500, content=content)
