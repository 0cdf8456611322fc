"""
Identity domain constants and simple helpers.

Why:
- Centralize the role vocabulary so the resolver, the access predicate, the
  path builder and the sidebar never special-case role strings inline.
- Legacy role names (`admin`, `issuer`, `user`) still exist in stored
  assignments; they are mapped once here through a small alias table.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Optional, Tuple

SUPER_ADMIN = "super_admin"
INSTITUTION_ADMIN = "institution_admin"
INSTRUCTOR = "instructor"
CANDIDATE = "candidate"

# Highest privilege first. Immutable to prevent accidental mutation.
ROLE_PRECEDENCE: Tuple[str, ...] = (SUPER_ADMIN, INSTITUTION_ADMIN, INSTRUCTOR, CANDIDATE)

ALLOWED_ROLES = frozenset(ROLE_PRECEDENCE)

DEFAULT_ROLE = CANDIDATE

# Legacy name -> canonical name. `issuer` is a lateral alias of `instructor`.
LEGACY_ALIASES: Dict[str, str] = {
    "admin": SUPER_ADMIN,
    "issuer": INSTRUCTOR,
    "user": CANDIDATE,
}

# Roles an institution may attach to its staff (institution staff screens).
STAFF_ROLES = frozenset({INSTRUCTOR, "issuer"})


def normalize_role(value: object) -> str:
    """Return a trimmed, lower-cased role string ("" for non-strings)."""
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def canonical_role(value: object) -> Optional[str]:
    """Map a role string (canonical or legacy) to its canonical name.

    Returns None for unknown values; callers decide how to degrade.
    """
    role = normalize_role(value)
    if role in ALLOWED_ROLES:
        return role
    return LEGACY_ALIASES.get(role)


def aliases_of(role: object) -> FrozenSet[str]:
    """Return every spelling (canonical + legacy) equivalent to `role`.

    Example: aliases_of("issuer") == {"instructor", "issuer"}.
    """
    canonical = canonical_role(role)
    if canonical is None:
        return frozenset()
    legacy = {name for name, target in LEGACY_ALIASES.items() if target == canonical}
    return frozenset({canonical, *legacy})


def precedence_rank(role: object) -> int:
    """Rank of a role in ROLE_PRECEDENCE (0 = highest); unknown roles rank last."""
    canonical = canonical_role(role)
    if canonical is None:
        return len(ROLE_PRECEDENCE)
    return ROLE_PRECEDENCE.index(canonical)


__all__ = [
    "SUPER_ADMIN",
    "INSTITUTION_ADMIN",
    "INSTRUCTOR",
    "CANDIDATE",
    "ROLE_PRECEDENCE",
    "ALLOWED_ROLES",
    "DEFAULT_ROLE",
    "LEGACY_ALIASES",
    "STAFF_ROLES",
    "normalize_role",
    "canonical_role",
    "aliases_of",
    "precedence_rank",
]
