"""Domain exceptions and the handlers that render them as JSON envelopes.

Services raise these instead of ``HTTPException`` so they stay usable from
the CLI jobs. ``register_exception_handlers`` maps them onto HTTP responses
of the form ``{"success": false, "message": ..., **extra}``.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class DecyphersError(Exception):
    """Base class for business errors surfaced to API clients."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra


class NotFoundError(DecyphersError):
    status_code = status.HTTP_404_NOT_FOUND


class BusinessRuleError(DecyphersError):
    """A request that is well-formed but not allowed in the current state."""

    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(DecyphersError):
    """Write rejected because it collides with existing data (tier ranges, duplicates)."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class SubscriptionRequiredError(DecyphersError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message, subscription_required=True, **extra)


class InsufficientTokensError(DecyphersError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            f"Insufficient tokens: {required} required, {available} available",
            required=required,
            available=available,
        )


class PaymentGatewayError(DecyphersError):
    """Stripe (or another payment call) failed."""

    status_code = status.HTTP_502_BAD_GATEWAY


def _envelope(message: str, **extra: Any) -> dict[str, Any]:
    return {"success": False, "message": message, **extra}


async def _handle_domain_error(request: Request, exc: DecyphersError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=_envelope(exc.message, **exc.extra))


async def _handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    # Routers may pass a dict detail carrying extra fields
    if isinstance(exc.detail, dict):
        detail = dict(exc.detail)
        message = str(detail.pop("message", "Request failed"))
        content = _envelope(message, **detail)
    else:
        content = _envelope(str(exc.detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_envelope("Validation failed", errors=jsonable_errors(exc)),
    )


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_envelope("Internal server error"),
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Reduce pydantic error entries to JSON-safe location/message pairs."""
    return [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": str(err.get("msg", ""))}
        for err in exc.errors()
    ]


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the envelope handlers to the application."""
    app.add_exception_handler(DecyphersError, _handle_domain_error)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, _handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _handle_unexpected)
