"""Domain exceptions for the entitlement, credit and progression engine.

Every error carries a stable ``code`` and the HTTP status the error handler
renders it with. Billing and progression problems are logged rather than
raised to callers; see ``salesdojo.billing.ledger`` and
``salesdojo.progression.engine``.
"""

from __future__ import annotations

from datetime import datetime


class EngineError(Exception):
    """Base class for all user-visible engine errors."""

    code = "engine_error"
    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InsufficientCredit(EngineError):
    """Entitlement was false at issue time. Not retried."""

    code = "insufficient_credit"
    status_code = 403

    def __init__(self, account_id: int, reason: str = "No session credit available") -> None:
        super().__init__(reason)
        self.account_id = account_id


class InvalidSessionState(EngineError):
    """Operation attempted from a session state that does not permit it."""

    code = "invalid_session_state"
    status_code = 409

    def __init__(self, session_id: str, status: str, reason: str = "") -> None:
        detail = f"Session {session_id} is {status}"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail)
        self.session_id = session_id
        self.status = status


class ContentNotAvailable(EngineError):
    """Requested content item is unknown or locked for the account's plan."""

    code = "content_not_available"
    status_code = 403

    def __init__(self, content_id: str) -> None:
        super().__init__(f"Content {content_id} is not available on your plan")
        self.content_id = content_id


class SessionNotFound(EngineError):
    code = "session_not_found"
    status_code = 404

    def __init__(self, session_id: str) -> None:
        super().__init__("Session not found")
        self.session_id = session_id


class AccountNotFound(EngineError):
    code = "account_not_found"
    status_code = 404

    def __init__(self, reference: object) -> None:
        super().__init__("Account not found")
        self.reference = reference


class RateLimited(EngineError):
    """Caller must back off until ``reset_at``."""

    code = "rate_limited"
    status_code = 429

    def __init__(self, key: str, limit: int, reset_at: datetime) -> None:
        super().__init__("Too many requests. Try again later.")
        self.key = key
        self.limit = limit
        self.reset_at = reset_at


class UnknownSubscriptionReference(Exception):  # noqa: N818
    """A billing event could not be mapped to an account. Logged, never fatal."""

    def __init__(self, event_id: str, reference: str | None) -> None:
        super().__init__(f"No account for billing reference {reference!r} (event {event_id})")
        self.event_id = event_id
        self.reference = reference
