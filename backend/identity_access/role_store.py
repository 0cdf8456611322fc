"""
Role Assignment store adapters.

Why:
    The resolver only needs "which role strings does this principal hold?".
    Admin screens additionally grant, revoke and replace rows. Keeping that
    behind a small Protocol lets tests use the in-memory store while the
    deployed app talks to the Supabase `user_roles` table.

Security:
    - Adapters raise on I/O failures; the resolver decides how to degrade.
    - Only opaque ids and exception class names are logged.
"""

from __future__ import annotations

import logging
from threading import RLock
from typing import Any, Dict, Iterable, Optional, Protocol, Set

logger = logging.getLogger("certchain.identity_access")


class RoleAssignmentStore(Protocol):
    def list_role_assignments(self, principal_id: str) -> Set[str]:
        ...

    def grant(self, principal_id: str, role: str) -> None:
        ...

    def revoke(self, principal_id: str, role: str) -> None:
        ...

    def replace(self, principal_id: str, roles: Iterable[str]) -> None:
        ...


class InMemoryRoleAssignmentStore:
    """Process-local store for dev and tests. Role strings are stored as given."""

    def __init__(self, assignments: Optional[Dict[str, Iterable[str]]] = None) -> None:
        self._lock = RLock()
        self._rows: Dict[str, Set[str]] = {}
        for principal_id, roles in (assignments or {}).items():
            self._rows[principal_id] = set(roles)

    def list_role_assignments(self, principal_id: str) -> Set[str]:
        with self._lock:
            return set(self._rows.get(principal_id, ()))

    def grant(self, principal_id: str, role: str) -> None:
        with self._lock:
            self._rows.setdefault(principal_id, set()).add(role)

    def revoke(self, principal_id: str, role: str) -> None:
        with self._lock:
            held = self._rows.get(principal_id)
            if held is not None:
                held.discard(role)

    def replace(self, principal_id: str, roles: Iterable[str]) -> None:
        with self._lock:
            self._rows[principal_id] = set(roles)


class SupabaseRoleAssignmentStore:
    """`user_roles` table (columns: user_id, role) via a supabase-py client.

    The client is duck-typed: anything exposing `.table(name)` with the
    PostgREST query builder (`select/eq/insert/delete/execute`) works.
    """

    TABLE = "user_roles"

    def __init__(self, client: Any) -> None:
        self._client = client

    def _table(self) -> Any:
        return self._client.table(self.TABLE)

    @staticmethod
    def _rows(response: Any) -> list:
        data = getattr(response, "data", None)
        if data is None and isinstance(response, dict):
            data = response.get("data")
        return list(data or [])

    def list_role_assignments(self, principal_id: str) -> Set[str]:
        response = self._table().select("role").eq("user_id", principal_id).execute()
        roles: Set[str] = set()
        for row in self._rows(response):
            value = row.get("role") if isinstance(row, dict) else None
            if isinstance(value, str) and value:
                roles.add(value)
        return roles

    def grant(self, principal_id: str, role: str) -> None:
        self._table().insert({"user_id": principal_id, "role": role}).execute()

    def revoke(self, principal_id: str, role: str) -> None:
        self._table().delete().eq("user_id", principal_id).eq("role", role).execute()

    def replace(self, principal_id: str, roles: Iterable[str]) -> None:
        # PostgREST has no transaction here: delete first, then insert the new set.
        self._table().delete().eq("user_id", principal_id).execute()
        rows = [{"user_id": principal_id, "role": role} for role in roles]
        if rows:
            self._table().insert(rows).execute()
        logger.info("user_roles replaced principal=%s count=%d", principal_id, len(rows))


__all__ = ["RoleAssignmentStore", "InMemoryRoleAssignmentStore", "SupabaseRoleAssignmentStore"]
