"""
Bounded cache for effective roles.

Why:
    Resolving a role costs one round trip to the Role Assignment store. Pages,
    the sidebar and API calls all need the answer, so it is cached per
    principal for a short interval. Staleness within the interval is accepted;
    explicit role-change and sign-out events invalidate immediately.

Concurrency:
    A fetch is keyed by a `FetchTicket`. When the principal is invalidated, or a
    newer fetch starts, before the earlier fetch completes, the late result is
    discarded instead of overwriting fresher state. Only in-flight fetches hold
    a generation, drawn from one counter per cache, so a dropped ticket is
    never matched by a later one. No locks: writes are last-write-wins under
    the GIL and the event loop is single-threaded.

Memory:
    Expired entries are dropped when read, and at most once per TTL interval
    `put` sweeps out every expired entry.
"""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

DEFAULT_TTL_SECONDS = 300


@dataclass(frozen=True)
class FetchTicket:
    principal_id: str
    generation: int


class EffectiveRoleCache:
    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = max(0.0, float(ttl_seconds))
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._generations: Dict[str, int] = {}
        self._counter = itertools.count(1)
        self._last_sweep = clock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, principal_id: str) -> Optional[str]:
        entry = self._entries.get(principal_id)
        if entry is None:
            return None
        role, stored_at = entry
        if self._clock() - stored_at >= self._ttl:
            self._entries.pop(principal_id, None)
            return None
        return role

    def put(self, principal_id: str, role: str) -> None:
        now = self._clock()
        if now - self._last_sweep >= self._ttl:
            self._sweep(now)
        self._entries[principal_id] = (role, now)

    def _sweep(self, now: float) -> None:
        expired = [pid for pid, (_role, stored_at) in self._entries.items() if now - stored_at >= self._ttl]
        for principal_id in expired:
            del self._entries[principal_id]
        self._last_sweep = now

    def invalidate(self, principal_id: str) -> None:
        self._entries.pop(principal_id, None)
        self._generations.pop(principal_id, None)

    def clear(self) -> None:
        self._entries.clear()
        self._generations.clear()

    def begin_fetch(self, principal_id: str) -> FetchTicket:
        """Register a new in-flight fetch; earlier tickets become stale."""
        generation = next(self._counter)
        self._generations[principal_id] = generation
        return FetchTicket(principal_id=principal_id, generation=generation)

    def is_current(self, ticket: FetchTicket) -> bool:
        return self._generations.get(ticket.principal_id) == ticket.generation

    def complete_fetch(self, ticket: FetchTicket, role: str) -> bool:
        """Store `role` if `ticket` is still current. Returns whether it was applied."""
        if not self.is_current(ticket):
            return False
        del self._generations[ticket.principal_id]
        self.put(ticket.principal_id, role)
        return True

    def cancel_fetch(self, ticket: FetchTicket) -> None:
        """Abandon `ticket` without storing anything."""
        if self.is_current(ticket):
            del self._generations[ticket.principal_id]

    @property
    def in_flight(self) -> int:
        return len(self._generations)

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["DEFAULT_TTL_SECONDS", "FetchTicket", "EffectiveRoleCache"]
