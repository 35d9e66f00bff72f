"""Session lifecycle transition table."""

import pytest

from salesdojo.errors import InvalidSessionState
from salesdojo.sessions.state import SessionStatus, can_transition, require_transition, sources_for

P, A, C, X = SessionStatus.PENDING, SessionStatus.ACTIVE, SessionStatus.COMPLETED, SessionStatus.ABANDONED


@pytest.mark.parametrize(
    ("current", "target", "allowed"),
    [
        (P, A, True), (P, X, True), (P, C, False),
        (A, C, True), (A, X, True), (A, P, False),
        (C, A, False), (C, X, False), (C, C, False),
        (X, A, False), (X, C, False), (X, X, False),
    ],
)
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_terminal_states():
    assert C.is_terminal and X.is_terminal
    assert not P.is_terminal and not A.is_terminal


def test_sources_for():
    assert sources_for(A) == {P}
    assert sources_for(C) == {A}
    assert sources_for(X) == {P, A}


def test_require_transition_raises_with_state():
    with pytest.raises(InvalidSessionState) as exc_info:
        require_transition("s-1", C, A)
    assert exc_info.value.status == "completed"
    assert exc_info.value.status_code == 409
