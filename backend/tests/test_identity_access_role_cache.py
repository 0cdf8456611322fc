"""
Effective role cache and RoleResolver: TTL, invalidation, stale fetches and
fail-safe degradation when the store is unavailable.
"""
from __future__ import annotations

import logging

import pytest

from identity_access.resolver import RoleResolver
from identity_access.role_cache import EffectiveRoleCache
from identity_access.role_store import InMemoryRoleAssignmentStore


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class _CountingStore(InMemoryRoleAssignmentStore):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = 0

    def list_role_assignments(self, principal_id):
        self.calls += 1
        return super().list_role_assignments(principal_id)


class _BrokenStore:
    def list_role_assignments(self, principal_id):
        raise ConnectionError("db down")


def test_entries_expire_after_ttl():
    clock = _Clock()
    cache = EffectiveRoleCache(ttl_seconds=300, clock=clock)
    cache.put("p1", "instructor")
    clock.now += 299
    assert cache.get("p1") == "instructor"
    clock.now += 1
    assert cache.get("p1") is None
    assert len(cache) == 0


def test_late_fetch_after_invalidation_is_discarded():
    cache = EffectiveRoleCache()
    ticket = cache.begin_fetch("p1")
    cache.invalidate("p1")
    assert cache.complete_fetch(ticket, "super_admin") is False
    assert cache.get("p1") is None


def test_newer_fetch_supersedes_older_one():
    cache = EffectiveRoleCache()
    old = cache.begin_fetch("p1")
    new = cache.begin_fetch("p1")
    assert cache.complete_fetch(new, "candidate") is True
    assert cache.complete_fetch(old, "super_admin") is False
    assert cache.get("p1") == "candidate"


def test_clear_drops_entries_and_outstanding_fetches():
    cache = EffectiveRoleCache()
    ticket = cache.begin_fetch("p1")
    cache.put("p2", "instructor")
    cache.clear()
    assert cache.get("p2") is None
    assert cache.is_current(ticket) is False


def test_fetch_bookkeeping_is_released():
    cache = EffectiveRoleCache()
    done = cache.begin_fetch("p1")
    assert cache.complete_fetch(done, "instructor") is True
    dropped = cache.begin_fetch("p2")
    cache.invalidate("p2")
    abandoned = cache.begin_fetch("p3")
    cache.cancel_fetch(abandoned)
    assert cache.in_flight == 0
    assert cache.complete_fetch(dropped, "super_admin") is False
    assert cache.complete_fetch(abandoned, "super_admin") is False


def test_ticket_from_before_invalidation_never_matches_a_later_fetch():
    cache = EffectiveRoleCache()
    old = cache.begin_fetch("p1")
    cache.invalidate("p1")
    new = cache.begin_fetch("p1")
    assert old.generation != new.generation
    assert cache.complete_fetch(old, "super_admin") is False
    assert cache.is_current(new) is True


def test_put_sweeps_expired_entries_of_other_principals():
    clock = _Clock()
    cache = EffectiveRoleCache(ttl_seconds=300, clock=clock)
    for pid in ("p1", "p2", "p3"):
        cache.put(pid, "candidate")
    clock.now += 301
    cache.put("p4", "instructor")
    assert len(cache) == 1
    assert cache.get("p4") == "instructor"


def test_resolver_caches_within_ttl():
    store = _CountingStore({"p1": {"candidate", "instructor"}})
    resolver = RoleResolver(store)
    assert resolver.effective_role("p1") == "instructor"
    assert resolver.effective_role("p1") == "instructor"
    assert store.calls == 1


def test_role_change_is_visible_after_invalidation():
    store = _CountingStore({"p1": {"candidate"}})
    resolver = RoleResolver(store)
    assert resolver.effective_role("p1") == "candidate"
    store.replace("p1", ["institution_admin"])
    assert resolver.effective_role("p1") == "candidate"  # still cached
    resolver.invalidate("p1")
    assert resolver.effective_role("p1") == "institution_admin"


def test_store_failure_degrades_to_candidate_without_caching(caplog: pytest.LogCaptureFixture):
    resolver = RoleResolver(_BrokenStore())
    with caplog.at_level(logging.WARNING, logger="certchain.identity_access"):
        assert resolver.effective_role("p1") == "candidate"
    assert "ConnectionError" in caplog.text
    assert "db down" not in caplog.text
    assert resolver.cache.get("p1") is None
    assert resolver.cache.in_flight == 0


def test_missing_principal_is_candidate():
    store = _CountingStore()
    resolver = RoleResolver(store)
    assert resolver.effective_role(None) == "candidate"
    assert resolver.effective_role("") == "candidate"
    assert store.calls == 0
