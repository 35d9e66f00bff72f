"""Global per-IP request budget, enforced through the app's RateLimiter."""

from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from salesdojo.ratelimit.dependency import client_identifier

# Paths exempt from rate limiting
_EXEMPT_PATHS = frozenset({"/health", "/ready", "/version"})


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Coarse outer limit in front of the per-route presets."""

    def __init__(self, app: Any, requests_per_window: int = 100, window_seconds: int = 60) -> None:  # noqa: ANN401
        super().__init__(app)
        self.requests_per_window = requests_per_window
        self.window_seconds = window_seconds

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Check the global budget, return 429 if exceeded."""
        if request.url.path in _EXEMPT_PATHS:
            return await call_next(request)

        state = request.app.state
        limiter = getattr(state, "rate_limiter", None)
        if limiter is None or getattr(state, "disable_rate_limits", False):
            return await call_next(request)

        key = f"global:{client_identifier(request)}"
        result = await limiter.check(key, self.requests_per_window, self.window_seconds)
        if not result.allowed:
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later.", "code": "rate_limited"},
                headers={"Retry-After": str(result.retry_after_seconds), **result.headers()},
            )

        response = await call_next(request)
        # Per-route limits set their own, tighter headers.
        for header, value in result.headers().items():
            response.headers.setdefault(header, value)
        return response
