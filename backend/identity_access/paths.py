"""
Role-prefixed path generation.

Why:
    Dashboard routes live under a role namespace (`/instructor/issue`,
    `/candidate/my-certificates`), while a few namespaces are shared by every
    role (`/settings/...`, `/profile/...`, `/identity/...`). Links, redirects
    and the sidebar all build URLs through `build_path` so the prefix rule
    exists exactly once.
"""

from __future__ import annotations

from typing import Dict, Tuple

from .domain import CANDIDATE, INSTITUTION_ADMIN, INSTRUCTOR, SUPER_ADMIN, canonical_role

# Canonical role -> URL namespace.
ROLE_PREFIXES: Dict[str, str] = {
    SUPER_ADMIN: "super_admin",
    INSTITUTION_ADMIN: "institution_admin",
    INSTRUCTOR: "instructor",
    CANDIDATE: "candidate",
}

SHARED_NAMESPACES: Tuple[str, ...] = ("settings/", "profile/", "identity/")

DASHBOARD_TARGET = "dashboard"


def role_prefix(role: object) -> str:
    """Return the URL namespace for a role; unknown roles map to `candidate`."""
    canonical = canonical_role(role)
    return ROLE_PREFIXES.get(canonical or CANDIDATE, ROLE_PREFIXES[CANDIDATE])


def _clean_target(target: object) -> str:
    if not isinstance(target, str):
        return ""
    return target.strip().lstrip("/")


def is_shared_path(target: object) -> bool:
    """True when `target` belongs to a namespace exempt from role prefixing."""
    return _clean_target(target).startswith(SHARED_NAMESPACES)


def build_path(target: object, role: object) -> str:
    """Map a role-agnostic target (e.g. "dashboard") to a concrete path.

    Examples:
        build_path("dashboard", "institution_admin") -> "/institution_admin/dashboard"
        build_path("/settings/account", "instructor") -> "/settings/account"

    An empty target resolves to the role's dashboard.
    """
    clean = _clean_target(target) or DASHBOARD_TARGET
    if clean.startswith(SHARED_NAMESPACES):
        return f"/{clean}"
    return f"/{role_prefix(role)}/{clean}"


def default_home_path(role: object) -> str:
    """Landing page for a role (used by redirects after login and by the guard)."""
    return build_path(DASHBOARD_TARGET, role)


__all__ = [
    "ROLE_PREFIXES",
    "SHARED_NAMESPACES",
    "role_prefix",
    "is_shared_path",
    "build_path",
    "default_home_path",
]
