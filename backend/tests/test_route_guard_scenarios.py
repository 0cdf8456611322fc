"""
Guarded dashboard routes end to end (middleware -> resolver -> guard).

Covers:
- insufficient role redirects to the principal's own dashboard
- no role rows still admits candidate pages
- unauthenticated visitors go to login, never to a role dashboard
- multi-row assignments resolve to the highest privilege
"""
from __future__ import annotations

import pytest
import httpx
from httpx import ASGITransport

import main  # type: ignore

pytestmark = pytest.mark.anyio("asyncio")


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


@pytest.mark.anyio
async def test_instructor_on_institution_admin_route_is_sent_home(identity):
    sid = identity.login("p-instructor", ["instructor"])
    async with _client() as c:
        c.cookies.set(main.SESSION_COOKIE_NAME, sid)
        r = await c.get("/institution_admin/dashboard", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/instructor/dashboard"
    assert r.headers.get("Cache-Control") == "private, no-store"


@pytest.mark.anyio
async def test_principal_without_roles_may_open_candidate_pages(identity):
    sid = identity.login("p-none")
    async with _client() as c:
        c.cookies.set(main.SESSION_COOKIE_NAME, sid)
        r = await c.get("/candidate/my-certificates")
    assert r.status_code == 200
    assert "My Certificates" in r.text


@pytest.mark.anyio
@pytest.mark.parametrize("path", ["/candidate/dashboard", "/super_admin/users", "/settings/account", "/dashboard"])
async def test_unauthenticated_visitor_is_sent_to_login(path):
    async with _client() as c:
        r = await c.get(path, follow_redirects=False)
    assert r.status_code == 302
    location = r.headers["location"]
    assert location.startswith("/auth/login")
    assert "/candidate/dashboard" not in location.split("?")[0]


@pytest.mark.anyio
async def test_login_redirect_carries_next_path():
    async with _client() as c:
        r = await c.get("/instructor/issue", follow_redirects=False)
    assert r.headers["location"] == "/auth/login?next=/instructor/issue"


@pytest.mark.anyio
async def test_multi_role_principal_gets_highest_privilege(identity):
    sid = identity.login("p-multi", ["super_admin", "candidate"])
    async with _client() as c:
        c.cookies.set(main.SESSION_COOKIE_NAME, sid)
        me = await c.get("/api/me")
        r = await c.get("/dashboard", follow_redirects=False)
    assert me.json()["role"] == "super_admin"
    assert r.status_code == 302
    assert r.headers["location"] == "/super_admin/dashboard"


@pytest.mark.anyio
async def test_legacy_issuer_enters_instructor_namespace(identity):
    sid = identity.login("p-issuer", ["issuer"])
    async with _client() as c:
        c.cookies.set(main.SESSION_COOKIE_NAME, sid)
        r = await c.get("/instructor/batch-issue")
    assert r.status_code == 200
    assert "Batch Issue" in r.text


@pytest.mark.anyio
async def test_higher_role_may_visit_lower_namespace(identity):
    sid = identity.login("p-inst-admin", ["institution_admin"])
    async with _client() as c:
        c.cookies.set(main.SESSION_COOKIE_NAME, sid)
        r = await c.get("/instructor/templates")
    assert r.status_code == 200


@pytest.mark.anyio
async def test_page_above_namespace_role_is_not_found(identity):
    sid = identity.login("p-admin", ["super_admin"])
    async with _client() as c:
        c.cookies.set(main.SESSION_COOKIE_NAME, sid)
        r = await c.get("/candidate/users")
        unknown = await c.get("/instructor/nope")
    assert r.status_code == 404
    assert unknown.status_code == 404


@pytest.mark.anyio
async def test_namespace_root_redirects_to_dashboard(identity):
    sid = identity.login("p-instructor", ["instructor"])
    async with _client() as c:
        c.cookies.set(main.SESSION_COOKIE_NAME, sid)
        r = await c.get("/instructor/", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/instructor/dashboard"


@pytest.mark.anyio
async def test_settings_pages_respect_page_role(identity):
    sid = identity.login("p-cand", ["candidate"])
    async with _client() as c:
        c.cookies.set(main.SESSION_COOKIE_NAME, sid)
        ok = await c.get("/settings/privacy")
        blocked = await c.get("/settings/api-keys", follow_redirects=False)
        missing = await c.get("/settings/unknown")
    assert ok.status_code == 200
    assert blocked.status_code == 302
    assert blocked.headers["location"] == "/candidate/dashboard"
    assert missing.status_code == 404


@pytest.mark.anyio
async def test_role_change_takes_effect_after_invalidation(identity):
    sid = identity.login("p-promoted", ["candidate"])
    async with _client() as c:
        c.cookies.set(main.SESSION_COOKIE_NAME, sid)
        before = await c.get("/instructor/issue", follow_redirects=False)
        identity.roles.replace("p-promoted", ["instructor"])
        identity.resolver.invalidate("p-promoted")
        after = await c.get("/instructor/issue", follow_redirects=False)
    assert before.status_code == 302
    assert after.status_code == 200
