"""
Effective role resolution: highest privilege wins, legacy names are mapped,
unknown or missing assignments fall back to candidate.
"""
from __future__ import annotations

import pytest

from identity_access.domain import (
    CANDIDATE,
    INSTITUTION_ADMIN,
    INSTRUCTOR,
    SUPER_ADMIN,
    aliases_of,
    canonical_role,
    precedence_rank,
)
from identity_access.roles import resolve_effective_role


@pytest.mark.parametrize(
    "assignments, expected",
    [
        (["candidate", "instructor"], INSTRUCTOR),
        (["candidate", "instructor", "super_admin"], SUPER_ADMIN),
        (["institution_admin", "instructor"], INSTITUTION_ADMIN),
        (["admin"], SUPER_ADMIN),
        (["issuer"], INSTRUCTOR),
        (["user"], CANDIDATE),
        (["issuer", "institution_admin"], INSTITUTION_ADMIN),
    ],
)
def test_highest_precedence_role_wins(assignments, expected):
    assert resolve_effective_role(assignments) == expected


def test_empty_or_missing_assignments_default_to_candidate():
    assert resolve_effective_role([]) == CANDIDATE
    assert resolve_effective_role(None) == CANDIDATE


def test_unknown_roles_are_ignored():
    assert resolve_effective_role(["wizard"]) == CANDIDATE
    assert resolve_effective_role(["wizard", "instructor"]) == INSTRUCTOR


def test_rows_and_odd_spellings_are_accepted():
    rows = [{"role": " Instructor "}, {"role": None}, {"other": "x"}]
    assert resolve_effective_role(rows) == INSTRUCTOR
    assert resolve_effective_role("institution_admin") == INSTITUTION_ADMIN


def test_non_iterable_input_degrades_to_candidate():
    assert resolve_effective_role(42) == CANDIDATE  # type: ignore[arg-type]


def test_order_of_assignments_does_not_matter():
    assert resolve_effective_role(["super_admin", "candidate"]) == resolve_effective_role(["candidate", "super_admin"])


def test_canonical_role_and_aliases():
    assert canonical_role("ADMIN") == SUPER_ADMIN
    assert canonical_role("issuer") == INSTRUCTOR
    assert canonical_role("nope") is None
    assert canonical_role(None) is None
    assert aliases_of("issuer") == frozenset({"instructor", "issuer"})
    assert aliases_of("nope") == frozenset()


def test_precedence_rank_orders_roles():
    ranks = [precedence_rank(r) for r in (SUPER_ADMIN, INSTITUTION_ADMIN, INSTRUCTOR, CANDIDATE, "nope")]
    assert ranks == sorted(ranks)
    assert precedence_rank("issuer") == precedence_rank(INSTRUCTOR)
