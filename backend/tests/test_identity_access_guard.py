"""
Route guard state machine.
"""
from __future__ import annotations

import pytest

from identity_access.guard import (
    GuardState,
    RouteGuard,
    decide,
    is_inapp_path,
    login_redirect,
)


def test_unauthenticated_goes_to_login_with_next():
    d = decide(None, None, "instructor", next_path="/instructor/issue")
    assert d.state is GuardState.UNAUTHENTICATED
    assert d.redirect_to == "/auth/login?next=/instructor/issue"
    assert not d.allowed


def test_insufficient_role_redirects_to_own_dashboard():
    d = decide("p1", "candidate", "institution_admin")
    assert d.state is GuardState.AUTHENTICATED_UNAUTHORIZED
    assert d.redirect_to == "/candidate/dashboard"


def test_sufficient_role_is_authorized():
    assert decide("p1", "institution_admin", "instructor").allowed
    assert decide("p1", "issuer", "instructor").allowed
    assert decide("p1", "candidate", None).allowed


def test_unknown_role_is_treated_as_candidate():
    d = decide("p1", "wizard", "instructor")
    assert d.state is GuardState.AUTHENTICATED_UNAUTHORIZED
    assert d.redirect_to == "/candidate/dashboard"


def test_guard_starts_loading_and_reaches_terminal_state():
    guard = RouteGuard("instructor")
    assert guard.state is GuardState.LOADING
    guard.begin("nav-1")
    assert guard.pending_navigation == "nav-1"
    assert not guard.decision.terminal
    decision = guard.resolve("nav-1", "p1", "instructor")
    assert decision is not None and decision.allowed
    assert guard.pending_navigation is None
    assert guard.state is GuardState.AUTHENTICATED_AUTHORIZED


def test_late_result_for_abandoned_navigation_is_dropped():
    guard = RouteGuard("super_admin")
    guard.begin("nav-1")
    guard.begin("nav-2")
    assert guard.resolve("nav-1", "p1", "super_admin") is None
    assert guard.state is GuardState.LOADING
    decision = guard.resolve("nav-2", "p1", "candidate")
    assert decision is not None
    assert decision.state is GuardState.AUTHENTICATED_UNAUTHORIZED


@pytest.mark.parametrize(
    "value, ok",
    [
        ("/instructor/issue", True),
        ("//evil.example", False),
        ("https://evil.example", False),
        ("/a/../b", False),
        ("/a?x=1", False),
        ("relative", False),
    ],
)
def test_inapp_path_validation(value, ok):
    assert is_inapp_path(value) is ok


def test_login_redirect_drops_unsafe_next():
    assert login_redirect(next_path="//evil.example") == "/auth/login"
    assert login_redirect("/login", None) == "/login"


def test_evaluate_raises_when_navigation_is_superseded():
    class _Preempted(RouteGuard):
        def resolve(self, navigation_id, *args, **kwargs):
            self.begin("nav-newer")
            return super().resolve(navigation_id, *args, **kwargs)

    guard = _Preempted("instructor")
    with pytest.raises(RuntimeError):
        guard.evaluate("nav-1", "p1", "instructor")
    assert guard.pending_navigation == "nav-newer"
    assert guard.state is GuardState.LOADING
