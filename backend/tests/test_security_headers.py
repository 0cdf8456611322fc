"""
Security headers middleware: CSP and friends on every response, stricter
script/style policy in prod.
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
async def test_dev_headers_present_on_public_page():
    async with _client() as c:
        r = await c.get("/")
    assert r.headers.get("X-Frame-Options") == "SAMEORIGIN"
    assert r.headers.get("X-Content-Type-Options") == "nosniff"
    assert "'unsafe-inline'" in r.headers.get("Content-Security-Policy", "")
    assert "Cross-Origin-Opener-Policy" not in r.headers


@pytest.mark.anyio
async def test_prod_csp_is_strict():
    main.SETTINGS.override_environment("prod")
    try:
        async with _client() as c:
            r = await c.get("/health")
    finally:
        main.SETTINGS.override_environment(None)
    csp = r.headers.get("Content-Security-Policy", "")
    assert "unsafe-inline" not in csp
    assert r.headers.get("Cross-Origin-Opener-Policy") == "same-origin"


@pytest.mark.anyio
async def test_unauthenticated_redirect_carries_security_headers():
    async with _client() as c:
        r = await c.get("/candidate/dashboard", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers.get("X-Content-Type-Options") == "nosniff"


@pytest.mark.anyio
async def test_personalised_pages_are_not_cached(identity):
    sid = identity.login("p-cache", ["candidate"])
    async with _client() as c:
        c.cookies.set(main.SESSION_COOKIE_NAME, sid)
        r = await c.get("/candidate/dashboard")
    assert r.headers.get("Cache-Control") == "private, no-store"
