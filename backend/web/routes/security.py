"""
Shared web security helpers (FastAPI-agnostic utilities for routes).

Contains the CSRF same-origin check used by every state-changing endpoint and
the small helpers the admin routers share. Keeping a single implementation
avoids security drift between routers.
"""
from __future__ import annotations

import os
import sys
from typing import Tuple
from urllib.parse import urlparse

from fastapi import Request

Origin = Tuple[str, str, int]


def _private_no_store() -> dict:
    return {"Cache-Control": "private, no-store"}


def _trust_proxy() -> bool:
    return (os.getenv("CERTCHAIN_TRUST_PROXY", "false") or "").lower() == "true"


def _default_port(scheme: str) -> int:
    return 443 if scheme == "https" else 80


def _parse_origin(url: str) -> Origin:
    p = urlparse(url)
    if not p.scheme or not p.hostname:
        raise ValueError("invalid_origin")
    scheme = p.scheme.lower()
    port = p.port if p.port is not None else _default_port(scheme)
    return scheme, p.hostname.lower(), int(port)


def _server_origin(request: Request) -> Origin:
    """Origin the server answers on; X-Forwarded-* only when CERTCHAIN_TRUST_PROXY=true."""
    if _trust_proxy():
        xf_proto = (request.headers.get("x-forwarded-proto") or request.url.scheme or "").split(",")[0].strip()
        xf_host = (request.headers.get("x-forwarded-host") or request.headers.get("host") or "").split(",")[0].strip()
        scheme = (xf_proto or request.url.scheme or "http").lower()
        if ":" in xf_host:
            host_only, port_str = xf_host.rsplit(":", 1)
            try:
                port = int(port_str)
            except ValueError:
                port = _default_port(scheme)
            host = host_only.lower()
        else:
            host = (xf_host or (request.url.hostname or "")).lower()
            port = int(request.url.port) if request.url.port else _default_port(scheme)
        xf_port_raw = request.headers.get("x-forwarded-port") or ""
        if xf_port_raw:
            try:
                port = int(xf_port_raw.split(",")[0].strip())
            except ValueError:
                port = _default_port(scheme)
        return scheme, host, port

    scheme = (request.url.scheme or "http").lower()
    host = (request.url.hostname or "").lower()
    port = int(request.url.port) if request.url.port else _default_port(scheme)
    return scheme, host, port


def _is_same_origin(request: Request) -> bool:
    """Verify same-origin using Origin or Referer headers.

    Behavior:
    - If Origin is present, require exact scheme/host/port match with server.
    - Else if Referer is present, validate its origin similarly.
    - Else (no headers): allow to not break non-browser API clients.
    """
    try:
        server = _server_origin(request)
        origin_val = request.headers.get("origin")
        if origin_val:
            return _parse_origin(origin_val) == server
        referer_val = request.headers.get("referer")
        if referer_val:
            return _parse_origin(referer_val) == server
        return True
    except ValueError:
        return False


def _resolve_active_main(request: Request):
    """Return the loaded main module whose `app` serves this request.

    Tests may import the app as either `main` or `backend.web.main`; routers
    read the shared stores from whichever module owns `request.app`.
    """
    candidates = [m for m in (sys.modules.get("main"), sys.modules.get("backend.web.main")) if m]
    for m in candidates:
        if getattr(m, "app", None) is getattr(request, "app", None):
            return m
    if candidates:
        return candidates[0]
    import main  # type: ignore

    return main


def _csrf_guard(request: Request):
    """Enforce same-origin for browser write requests.

    In production (or with STRICT_CSRF=true) an Origin or Referer header is
    required and must match. Otherwise `_is_same_origin` is applied, which lets
    header-less API clients through. Returns a 403 JSONResponse or None.
    """
    from fastapi.responses import JSONResponse

    prod_env = (os.getenv("CERTCHAIN_ENV", "dev") or "").lower() in {"prod", "production"}
    strict = prod_env or (os.getenv("STRICT_CSRF", "false") or "").lower() == "true"
    origin_present = request.headers.get("origin") or request.headers.get("referer")
    if (strict and not origin_present) or not _is_same_origin(request):
        return JSONResponse({"error": "forbidden", "detail": "csrf_violation"}, status_code=403, headers=_private_no_store())
    return None
