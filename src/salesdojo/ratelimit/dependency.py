"""Per-route rate limiting dependencies."""

from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request, Response

from salesdojo.auth.dependencies import get_current_account
from salesdojo.db.models import Account
from salesdojo.errors import RateLimited
from salesdojo.ratelimit.limiter import RateLimiter
from salesdojo.ratelimit.presets import RateLimitPreset, get_preset

KeyFunc = Callable[[Request], str]


def client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def by_path_param(name: str) -> KeyFunc:
    """Key on a path parameter, e.g. the session id of an unauthenticated beacon."""

    def _key(request: Request) -> str:
        return str(request.path_params.get(name, "unknown"))

    return _key


def get_rate_limiter(request: Request) -> RateLimiter | None:
    return getattr(request.app.state, "rate_limiter", None)


async def _enforce(request: Request, response: Response, key: str, budget: RateLimitPreset) -> None:
    if getattr(request.app.state, "disable_rate_limits", False):
        return
    limiter = get_rate_limiter(request)
    if limiter is None:
        return

    result = await limiter.check(key, budget.limit, budget.window_seconds)
    if not result.allowed:
        raise RateLimited(key, result.limit, result.reset_at)
    for header, value in result.headers().items():
        response.headers[header] = value


def rate_limit(prefix: str, preset: str, key_func: KeyFunc = client_identifier) -> Callable:
    """Return a FastAPI dependency that enforces a named preset per caller.

    Raises RateLimited when the window is exhausted; the error handler turns it
    into a 429 with Retry-After and X-RateLimit-* headers.
    """
    budget = get_preset(preset)

    async def _dependency(request: Request, response: Response) -> None:
        await _enforce(request, response, f"{prefix}:{key_func(request)}", budget)

    return _dependency


def account_rate_limit(prefix: str, preset: str) -> Callable:
    """Like rate_limit, keyed on the authenticated account. Yields the account."""
    budget = get_preset(preset)

    async def _dependency(
        request: Request,
        response: Response,
        account: Account = Depends(get_current_account),
    ) -> Account:
        await _enforce(request, response, f"{prefix}:account:{account.id}", budget)
        return account

    return _dependency
