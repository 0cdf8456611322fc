"""
Route Guard state machine.

States:
    LOADING -> {AUTHENTICATED_AUTHORIZED, AUTHENTICATED_UNAUTHORIZED, UNAUTHENTICATED}

`decide` is the pure transition from resolved inputs to a terminal state.
`RouteGuard` adds the navigation bookkeeping: a result that arrives for a
navigation which is no longer pending is dropped rather than applied to the
current route.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from .domain import DEFAULT_ROLE, canonical_role
from .paths import default_home_path
from .roles import has_access

logger = logging.getLogger("certchain.identity_access")

DEFAULT_LOGIN_PATH = "/auth/login"

# Absolute in-app path: no scheme/host, no "//", no "..", no query.
_INAPP_PATH = re.compile(r"^(?!.*//)(?!.*\.\.)/[A-Za-z0-9._\-/]*$")


class GuardState(str, enum.Enum):
    LOADING = "loading"
    AUTHENTICATED_AUTHORIZED = "authenticated_authorized"
    AUTHENTICATED_UNAUTHORIZED = "authenticated_unauthorized"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class GuardDecision:
    state: GuardState
    redirect_to: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.state is GuardState.AUTHENTICATED_AUTHORIZED

    @property
    def terminal(self) -> bool:
        return self.state is not GuardState.LOADING


LOADING_DECISION = GuardDecision(GuardState.LOADING)


def is_inapp_path(value: object) -> bool:
    return isinstance(value, str) and len(value) <= 256 and bool(_INAPP_PATH.match(value))


def login_redirect(login_path: str = DEFAULT_LOGIN_PATH, next_path: Optional[str] = None) -> str:
    """Login URL with an optional `next` back-link (dropped unless in-app)."""
    if next_path and is_inapp_path(next_path):
        return f"{login_path}?next={quote(next_path, safe='/')}"
    return login_path


def decide(
    principal_id: Optional[str],
    effective_role: Optional[str],
    required_role: Optional[str] = None,
    *,
    login_path: str = DEFAULT_LOGIN_PATH,
    next_path: Optional[str] = None,
) -> GuardDecision:
    """Map resolved session data to a terminal guard state.

    `required_role=None` means "any authenticated principal".
    """
    if not principal_id:
        return GuardDecision(GuardState.UNAUTHENTICATED, login_redirect(login_path, next_path))
    role = canonical_role(effective_role) or DEFAULT_ROLE
    if required_role is not None and not has_access(role, required_role):
        return GuardDecision(GuardState.AUTHENTICATED_UNAUTHORIZED, default_home_path(role))
    return GuardDecision(GuardState.AUTHENTICATED_AUTHORIZED)


class RouteGuard:
    """Per-session guard tracking the pending navigation.

    Usage:
        guard.begin("nav-2")
        ...fetch session and role...
        decision = guard.resolve("nav-2", principal_id, role)
        if decision is None: the result belonged to an abandoned navigation.
    """

    def __init__(self, required_role: Optional[str] = None, *, login_path: str = DEFAULT_LOGIN_PATH) -> None:
        self.required_role = required_role
        self.login_path = login_path
        self._pending: Optional[str] = None
        self._decision: GuardDecision = LOADING_DECISION

    @property
    def state(self) -> GuardState:
        return self._decision.state

    @property
    def decision(self) -> GuardDecision:
        return self._decision

    @property
    def pending_navigation(self) -> Optional[str]:
        return self._pending

    def begin(self, navigation_id: str) -> GuardDecision:
        self._pending = navigation_id
        self._decision = LOADING_DECISION
        return self._decision

    def resolve(
        self,
        navigation_id: str,
        principal_id: Optional[str],
        effective_role: Optional[str],
        *,
        next_path: Optional[str] = None,
    ) -> Optional[GuardDecision]:
        if navigation_id != self._pending:
            logger.debug("guard dropped late result navigation=%s", navigation_id)
            return None
        self._pending = None
        self._decision = decide(
            principal_id,
            effective_role,
            self.required_role,
            login_path=self.login_path,
            next_path=next_path,
        )
        return self._decision

    def evaluate(
        self,
        navigation_id: str,
        principal_id: Optional[str],
        effective_role: Optional[str],
        *,
        next_path: Optional[str] = None,
    ) -> GuardDecision:
        self.begin(navigation_id)
        decision = self.resolve(navigation_id, principal_id, effective_role, next_path=next_path)
        if decision is None:
            raise RuntimeError(f"navigation {navigation_id!r} was superseded during evaluation")
        return decision


__all__ = [
    "GuardState",
    "GuardDecision",
    "DEFAULT_LOGIN_PATH",
    "decide",
    "is_inapp_path",
    "login_redirect",
    "RouteGuard",
]
