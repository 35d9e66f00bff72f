"""Global error handlers: every failure renders as {"detail", "code"} JSON."""

import math
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from salesdojo.billing.checkout import BillingNotConfigured
from salesdojo.errors import EngineError, RateLimited

logger = structlog.get_logger()


def _rate_limit_headers(exc: RateLimited) -> dict[str, str]:
    remaining = (exc.reset_at - datetime.now(timezone.utc)).total_seconds()
    retry_after = max(1, math.ceil(remaining))
    return {
        "Retry-After": str(retry_after),
        "X-RateLimit-Limit": str(exc.limit),
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": str(int(exc.reset_at.timestamp())),
    }


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
        """Domain errors are user-visible: status and code come from the exception class."""
        headers = _rate_limit_headers(exc) if isinstance(exc, RateLimited) else None
        logger.info(
            "engine_error",
            code=exc.code,
            status=exc.status_code,
            path=request.url.path,
            detail=exc.detail,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "code": exc.code},
            headers=headers,
        )

    @app.exception_handler(BillingNotConfigured)
    async def billing_not_configured_handler(request: Request, exc: BillingNotConfigured) -> JSONResponse:
        logger.error("billing_not_configured", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=503,
            content={"detail": "Billing is not available", "code": "billing_unavailable"},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "code": "http_error"},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "code": "validation_error", "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions. Always JSON, never a crash."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "code": "internal_error"},
        )
