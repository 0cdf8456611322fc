"""
Sign-in and sign-out through the server-rendered form.

The Supabase password grant is replaced by a fake client that returns a real
HS256-signed access token, so token verification runs unmodified.

Checks:
- successful login sets an httponly session cookie and redirects to the
  role home (or a validated `next`)
- bad credentials, missing fields and missing configuration
- logout deletes the session, expires the cookie and drops the cached role
"""
from __future__ import annotations

import time

import pytest
import httpx
from httpx import ASGITransport
from jose import jwt

import main  # type: ignore
from identity_access.auth_client import PasswordGrantError, SupabaseAuthConfig

pytestmark = pytest.mark.anyio("asyncio")

SECRET = "login-flow-test-secret"
CFG = SupabaseAuthConfig(url="https://proj.supabase.co", anon_key="anon", jwt_secret=SECRET)


class FakeAuthClient:
    def __init__(self, sub: str = "p-login", email: str = "jane.doe@example.org", fail: bool = False) -> None:
        self.sub = sub
        self.email = email
        self.fail = fail
        self.calls = []

    def password_grant(self, *, email: str, password: str):
        self.calls.append(email)
        if self.fail:
            raise PasswordGrantError("invalid_credentials")
        now = int(time.time())
        token = jwt.encode(
            {"sub": self.sub, "aud": "authenticated", "exp": now + 3600, "iat": now, "email": self.email},
            SECRET,
            algorithm="HS256",
        )
        return {"access_token": token, "expires_in": 3600}


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


def _configure(monkeypatch: pytest.MonkeyPatch, client: FakeAuthClient) -> None:
    monkeypatch.setattr(main, "AUTH_CFG", CFG)
    monkeypatch.setattr(main, "AUTH_CLIENT", client)


@pytest.mark.anyio
async def test_login_form_renders():
    async with _client() as c:
        r = await c.get("/auth/login", params={"next": "/instructor/issue"})
    assert r.status_code == 200
    assert 'action="/auth/login"' in r.text
    assert 'name="next" value="/instructor/issue"' in r.text
    assert r.headers.get("Cache-Control") == "private, no-store"


@pytest.mark.anyio
async def test_login_form_drops_external_next():
    async with _client() as c:
        r = await c.get("/auth/login", params={"next": "//evil.example"})
    assert 'name="next"' not in r.text


@pytest.mark.anyio
async def test_successful_login_sets_cookie_and_redirects_home(identity, monkeypatch: pytest.MonkeyPatch):
    _configure(monkeypatch, FakeAuthClient())
    identity.roles.replace("p-login", ["institution_admin"])
    async with _client() as c:
        r = await c.post("/auth/login", data={"email": "jane.doe@example.org", "password": "pw"}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/institution_admin/dashboard"
    set_cookie = r.headers.get("set-cookie", "")
    assert f"{main.SESSION_COOKIE_NAME}=" in set_cookie
    assert "HttpOnly" in set_cookie
    assert "Secure" in set_cookie
    assert "samesite=lax" in set_cookie.lower()
    assert "Domain=" not in set_cookie
    sid = set_cookie.split(f"{main.SESSION_COOKIE_NAME}=", 1)[1].split(";", 1)[0]
    rec = identity.sessions.get(sid)
    assert rec is not None
    assert rec.sub == "p-login"
    assert rec.name == "Jane Doe"


@pytest.mark.anyio
async def test_login_honours_validated_next(identity, monkeypatch: pytest.MonkeyPatch):
    _configure(monkeypatch, FakeAuthClient())
    async with _client() as c:
        r = await c.post(
            "/auth/login",
            data={"email": "a@example.org", "password": "pw", "next": "/settings/account"},
            follow_redirects=False,
        )
        evil = await c.post(
            "/auth/login",
            data={"email": "a@example.org", "password": "pw", "next": "https://evil.example/"},
            follow_redirects=False,
        )
    assert r.headers["location"] == "/settings/account"
    assert evil.headers["location"] == "/candidate/dashboard"


@pytest.mark.anyio
async def test_invalid_credentials_rerender_form_with_401(monkeypatch: pytest.MonkeyPatch):
    _configure(monkeypatch, FakeAuthClient(fail=True))
    async with _client() as c:
        r = await c.post("/auth/login", data={"email": "a@example.org", "password": "bad"}, follow_redirects=False)
    assert r.status_code == 401
    assert "Invalid e-mail or password." in r.text
    assert main.SESSION_COOKIE_NAME not in r.headers.get("set-cookie", "")


@pytest.mark.anyio
async def test_missing_fields_are_400(monkeypatch: pytest.MonkeyPatch):
    client = FakeAuthClient()
    _configure(monkeypatch, client)
    async with _client() as c:
        r = await c.post("/auth/login", data={"email": "a@example.org"})
    assert r.status_code == 400
    assert client.calls == []


@pytest.mark.anyio
async def test_login_without_configuration_is_503():
    async with _client() as c:
        r = await c.post("/auth/login", data={"email": "a@example.org", "password": "pw"})
    assert r.status_code == 503


@pytest.mark.anyio
async def test_cross_origin_login_post_is_rejected(monkeypatch: pytest.MonkeyPatch):
    client = FakeAuthClient()
    _configure(monkeypatch, client)
    async with _client() as c:
        r = await c.post(
            "/auth/login",
            data={"email": "a@example.org", "password": "pw"},
            headers={"Origin": "http://evil.example"},
        )
    assert r.status_code == 403
    assert client.calls == []


@pytest.mark.anyio
async def test_signed_in_user_visiting_login_goes_home(identity):
    sid = identity.login("p-back", ["instructor"])
    async with _client() as c:
        c.cookies.set(main.SESSION_COOKIE_NAME, sid)
        r = await c.get("/auth/login", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/instructor/dashboard"


@pytest.mark.anyio
async def test_logout_deletes_session_and_expires_cookie(identity):
    sid = identity.login("p-out", ["instructor"])
    identity.resolver.effective_role("p-out")
    assert identity.resolver.cache.get("p-out") == "instructor"
    async with _client() as c:
        c.cookies.set(main.SESSION_COOKIE_NAME, sid)
        r = await c.get("/auth/logout", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "/auth/logout/success"
    assert identity.sessions.get(sid) is None
    assert identity.resolver.cache.get("p-out") is None
    set_cookie = r.headers.get("set-cookie", "").lower()
    assert f"{main.SESSION_COOKIE_NAME}=" in set_cookie
    assert "max-age=0" in set_cookie


@pytest.mark.anyio
async def test_logout_success_renders_and_links_to_login():
    async with _client() as c:
        resp = await c.get("/auth/logout/success")
    assert resp.status_code == 200
    assert 'href="/auth/login"' in resp.text
