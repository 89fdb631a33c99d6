import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..broker.errors import BrokerError, ErrorCode, NeedsReauthorization

LOG = logging.getLogger(__name__)


# PUBLIC_INTERFACE
class ErrorResponse(BaseModel):
    """Standardized error response shape across routes."""
    status: str = Field(default="error", description="Fixed value 'error'.")
    code: str = Field(..., description="Machine-readable error code.")
    message: str = Field(..., description="Human-readable description.")
    retryable: bool = Field(False, description="Whether repeating the same request may succeed.")
    needs_reauthorization: Optional[bool] = Field(
        None, description="True when the end user must run the OAuth flow again."
    )
    details: Optional[Dict[str, Any]] = Field(None, description="Optional additional error details.")
    request_id: Optional[str] = Field(None, description="Request id echoed in X-Request-ID.")


def error_response(
    status_code: int,
    code: str,
    message: str,
    request: Optional[Request] = None,
    retryable: bool = False,
    needs_reauthorization: Optional[bool] = None,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """Build a JSONResponse with the standardized error body."""
    payload = ErrorResponse(
        code=code,
        message=message,
        retryable=retryable,
        needs_reauthorization=needs_reauthorization,
        details=details,
        request_id=getattr(request.state, "request_id", None) if request is not None else None,
    )
    return JSONResponse(status_code=status_code, content=payload.model_dump(exclude_none=True))


async def broker_error_handler(request: Request, exc: BrokerError) -> JSONResponse:
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    LOG.log(level, "%s: %s", exc.code, exc.message, extra={
        "event": "broker_error",
        "request_id": getattr(request.state, "request_id", None),
        "path": request.url.path,
        "method": request.method,
        "status_code": exc.status_code,
    })
    return error_response(
        exc.status_code,
        exc.code,
        exc.message,
        request=request,
        retryable=exc.retryable,
        needs_reauthorization=True if isinstance(exc, NeedsReauthorization) else None,
        details=exc.details,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
    return error_response(
        400,
        ErrorCode.INVALID_INPUT,
        "Missing or malformed fields",
        request=request,
        details={"fields": [f for f in fields if f]},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Capture any unhandled exception, log it, and return a sanitized 500 with request_id."""
    LOG.exception("Unhandled exception", extra={
        "event": "unhandled_exception",
        "request_id": getattr(request.state, "request_id", None),
        "path": request.url.path,
        "method": request.method,
    })
    return error_response(500, ErrorCode.INTERNAL_ERROR, "Internal Server Error", request=request)


# PUBLIC_INTERFACE
def register_error_handlers(app: FastAPI) -> None:
    """Map broker failures and validation errors to ErrorResponse bodies."""
    app.add_exception_handler(BrokerError, broker_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
