"""
RoleResolver service: store + cache + fail-safe.

Why:
    `resolve_effective_role` is pure. Something has to fetch the assignment set,
    cache the answer and degrade to least privilege when the store is down.
    That owner is this service; it is the only writer of the role cache.
"""

from __future__ import annotations

import logging
from typing import Optional

from .domain import DEFAULT_ROLE
from .role_cache import EffectiveRoleCache
from .role_store import RoleAssignmentStore
from .roles import resolve_effective_role

logger = logging.getLogger("certchain.identity_access")


class RoleResolver:
    def __init__(self, store: RoleAssignmentStore, cache: Optional[EffectiveRoleCache] = None) -> None:
        self.store = store
        self.cache = cache or EffectiveRoleCache()

    def effective_role(self, principal_id: Optional[str]) -> str:
        """Return the cached or freshly resolved role for `principal_id`.

        A store failure yields `candidate` and is not cached so the next
        request retries.
        """
        if not principal_id:
            return DEFAULT_ROLE
        cached = self.cache.get(principal_id)
        if cached is not None:
            return cached
        ticket = self.cache.begin_fetch(principal_id)
        try:
            assignments = self.store.list_role_assignments(principal_id)
        except Exception as exc:
            self.cache.cancel_fetch(ticket)
            logger.warning("role lookup failed principal=%s error=%s", principal_id, exc.__class__.__name__)
            return DEFAULT_ROLE
        role = resolve_effective_role(assignments)
        if not self.cache.complete_fetch(ticket, role):
            logger.debug("discarded stale role fetch principal=%s", principal_id)
        return role

    def invalidate(self, principal_id: str) -> None:
        """Role-change or sign-out event for one principal."""
        self.cache.invalidate(principal_id)

    def clear(self) -> None:
        self.cache.clear()


__all__ = ["RoleResolver"]
