"""
Role resolution and the access predicate.

Why:
    A principal may hold several `user_roles` rows (multi-role). Every screen
    needs exactly one effective role, and every guarded route needs the same
    answer to "may this role enter?". Both questions are answered here with
    pure functions so they can be unit tested without I/O.

Behavior:
    - `resolve_effective_role` picks the highest-precedence recognised role and
      falls back to `candidate`.
    - `has_access` encodes the hierarchy with its lateral `issuer`/`instructor`
      equivalence as an explicit rule chain (not a linear index comparison).
    Both functions are total: they never raise, whatever the input.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from .domain import (
    CANDIDATE,
    DEFAULT_ROLE,
    INSTITUTION_ADMIN,
    INSTRUCTOR,
    ROLE_PRECEDENCE,
    SUPER_ADMIN,
    canonical_role,
    normalize_role,
)

_INSTRUCTOR_OR_ABOVE = frozenset({INSTRUCTOR, INSTITUTION_ADMIN, SUPER_ADMIN})
_INSTITUTION_ADMIN_OR_ABOVE = frozenset({INSTITUTION_ADMIN, SUPER_ADMIN})


def _role_value(assignment: object) -> object:
    # Accept raw strings as well as rows like {"role": "instructor"}.
    if isinstance(assignment, Mapping):
        return assignment.get("role")
    return assignment


def resolve_effective_role(assignments: Optional[Iterable[object]]) -> str:
    """Return the single canonical role derived from a set of assignments.

    Parameters
    ----------
    assignments:
        Role strings or `{"role": ...}` rows held by one principal. May be
        empty or None.

    Returns
    -------
    str
        One of ROLE_PRECEDENCE. Unknown strings are ignored; an empty or
        fully unrecognised set yields `candidate`.
    """
    if isinstance(assignments, (str, Mapping)):
        assignments = [assignments]
    held = set()
    try:
        for assignment in assignments or ():
            canonical = canonical_role(_role_value(assignment))
            if canonical is not None:
                held.add(canonical)
    except TypeError:
        # Not iterable: treat like an empty assignment set.
        return DEFAULT_ROLE
    for role in ROLE_PRECEDENCE:
        if role in held:
            return role
    return DEFAULT_ROLE


def has_access(effective_role: object, required_role: object) -> bool:
    """Decide whether `effective_role` may access a resource requiring `required_role`.

    Rules (first match wins):
    1. super_admin (or legacy admin) is always granted.
    2. candidate (or legacy user) is required: every principal qualifies.
    3. instructor (or legacy issuer) is required: instructor, issuer,
       institution_admin and super_admin qualify.
    4. institution_admin is required: institution_admin and super_admin qualify.
    5. Any other required value: strict equality of the normalised strings.
    """
    effective = canonical_role(effective_role)
    required = canonical_role(required_role)

    if effective == SUPER_ADMIN:
        return True
    if required == CANDIDATE:
        return True
    if required == INSTRUCTOR:
        return effective in _INSTRUCTOR_OR_ABOVE
    if required == INSTITUTION_ADMIN:
        return effective in _INSTITUTION_ADMIN_OR_ABOVE
    if required == SUPER_ADMIN:
        return False
    raw_effective = normalize_role(effective_role)
    return bool(raw_effective) and raw_effective == normalize_role(required_role)


def has_any_access(effective_role: object, allowed_roles: Iterable[object]) -> bool:
    """Return True if `effective_role` satisfies at least one recognised role.

    Unknown names in `allowed_roles` are skipped, so a constraint made only of
    unknown names admits nobody except super_admin (fail-closed).
    """
    if canonical_role(effective_role) == SUPER_ADMIN:
        return True
    for allowed in allowed_roles:
        if canonical_role(allowed) is None:
            continue
        if has_access(effective_role, allowed):
            return True
    return False


__all__ = ["resolve_effective_role", "has_access", "has_any_access"]
