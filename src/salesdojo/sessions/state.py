"""Practice session lifecycle: pending -> active -> {completed | abandoned}."""

from __future__ import annotations

import enum

from salesdojo.errors import InvalidSessionState


class SessionStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({SessionStatus.COMPLETED, SessionStatus.ABANDONED})

# Allowed transitions. Anything not listed here is illegal.
TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.ACTIVE, SessionStatus.ABANDONED}),
    SessionStatus.ACTIVE: frozenset({SessionStatus.COMPLETED, SessionStatus.ABANDONED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.ABANDONED: frozenset(),
}


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    """True if `current -> target` is a legal lifecycle step."""
    return target in TRANSITIONS[current]


def sources_for(target: SessionStatus) -> frozenset[SessionStatus]:
    """All states from which `target` may be entered.

    Used to build the `WHERE status IN (...)` guard of conditional updates.
    """
    return frozenset(src for src, targets in TRANSITIONS.items() if target in targets)


def require_transition(session_id: str, current: SessionStatus, target: SessionStatus) -> None:
    """Raise InvalidSessionState unless `current -> target` is legal."""
    if not can_transition(current, target):
        raise InvalidSessionState(session_id, current.value, f"cannot move to {target.value}")
