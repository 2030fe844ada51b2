"""
Error handling for the waybill API

- Waybill errors → structured {success, error, message, details, timestamp}
  body with a status code per error class
- Carrier rejections keep the carrier message verbatim
- HTTPException (auth, 404) → same flat body
- Anything else → generic 500, full details logged only
- Stack traces are never returned to the client
"""
import logging
import traceback
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from lastmile.core.config import settings
from lastmile.core.exceptions import (
    CarrierConflictError,
    CarrierError,
    CarrierTransportError,
    PoolContentionError,
    PoolStoreUnavailableError,
    RetrySafetyLimitExceededError,
    TransportFailureError,
    WaybillAllocationFailedError,
    WaybillBaseError,
    WaybillPoolError,
)

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS_CODES = [
    (PoolStoreUnavailableError, 503),
    (PoolContentionError, 503),
    (WaybillAllocationFailedError, 503),
    (WaybillPoolError, 400),
    (CarrierConflictError, 409),
    (CarrierTransportError, 503),
    (TransportFailureError, 503),
    (CarrierError, 502),
    (RetrySafetyLimitExceededError, 500),
]

# Patterns that indicate internal/sensitive error information
SENSITIVE_PATTERNS = [
    "password",
    "secret",
    "token",
    "credential",
    "sqlalchemy",
    "asyncpg",
    "postgresql",
    "traceback",
]


def status_code_for(exc: WaybillBaseError) -> int:
    for error_cls, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_cls):
            return status_code
    return 500


def sanitize_error_message(message: str) -> str:
    """Hide store/driver internals from clients outside debug mode."""
    if settings.DEBUG:
        return message
    lowered = message.lower()
    if any(pattern in lowered for pattern in SENSITIVE_PATTERNS):
        return "An internal error occurred. Please try again later."
    if len(message) > 500:
        return message[:500] + "..."
    return message


def _is_carrier_text(exc: WaybillBaseError) -> bool:
    """Carrier rejections are surfaced verbatim; only store/transport text is filtered."""
    return isinstance(exc, CarrierError) and exc.carrier_message is not None


def error_body(code: str, message: str, details=None) -> dict:
    return {
        "success": False,
        "error": code,
        "message": message,
        "details": details or {},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def waybill_error_handler(request: Request, exc: WaybillBaseError) -> JSONResponse:
    status_code = status_code_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(f"{request.method} {request.url.path} -> {status_code}: {exc.to_dict()}")

    details = exc.details
    if isinstance(exc, PoolStoreUnavailableError) and not settings.DEBUG:
        details = {k: v for k, v in details.items() if k in ("vendor", "series", "code")}

    message = exc.message if _is_carrier_text(exc) else sanitize_error_message(exc.message)

    return JSONResponse(
        status_code=status_code,
        content=error_body(exc.code, message, details),
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict):
        body = error_body(
            detail.get("error", "HTTP_ERROR"),
            detail.get("message", ""),
            detail.get("details"),
        )
    else:
        body = error_body("HTTP_ERROR", str(detail))

    return JSONResponse(
        status_code=exc.status_code,
        content=body,
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error_id = f"{request.client.host if request.client else 'unknown'}-{id(exc)}"
    logger.error(
        f"Unhandled exception [{error_id}]: {type(exc).__name__}: {exc}\n"
        f"Path: {request.url.path}\n"
        f"Method: {request.method}\n"
        f"Traceback:\n{''.join(traceback.format_exception(type(exc), exc, exc.__traceback__))}"
    )

    message = str(exc) if settings.DEBUG else "An unexpected error occurred. Please try again later."
    return JSONResponse(
        status_code=500,
        content=error_body("INTERNAL_ERROR", message, {"error_id": error_id}),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WaybillBaseError, waybill_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
