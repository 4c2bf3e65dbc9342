import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Base error carrying a stable code; only `detail` is meant for people."""

    code = "INTERNAL"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str = "", **context):
        super().__init__(detail or self.code)
        self.detail = detail or self.code
        self.context = context

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.detail}


class ValidationError(DomainError):
    code = "VALIDATION"
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(DomainError):
    """Slot overlap or stale version. Retry with fresh data."""

    code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT


class InvalidStateError(DomainError):
    code = "INVALID_STATE"
    status_code = status.HTTP_409_CONFLICT


class PolicyViolationError(DomainError):
    code = "POLICY_VIOLATION"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class AuthenticationError(DomainError):
    code = "UNAUTHORIZED"
    status_code = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(DomainError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(DomainError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class PaymentError(DomainError):
    code = "PAYMENT_FAILED"
    status_code = status.HTTP_402_PAYMENT_REQUIRED


class TransientError(DomainError):
    """I/O failure. Safe to retry, version checks prevent double application."""

    code = "TRANSIENT"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("Request failed", extra={"reason": exc.code, "error": exc.detail})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
