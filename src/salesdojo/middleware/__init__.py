"""Middleware registration."""

from fastapi import FastAPI

from salesdojo.config import Settings
from salesdojo.middleware.cors import setup_cors
from salesdojo.middleware.error_handler import setup_error_handlers
from salesdojo.middleware.logging import setup_logging
from salesdojo.middleware.rate_limit import RateLimitMiddleware
from salesdojo.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register logging, error handlers and middleware.

    Starlette runs middleware in reverse-add order, so CORS is added last to
    stay outermost and wrap 429 responses from the global limit.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
