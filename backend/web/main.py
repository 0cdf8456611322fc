"CertChain dashboard"
from __future__ import annotations

from pathlib import Path
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple
from urllib.parse import quote
import logging
import os
import uuid
import sys as _sys

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles

from components import Layout, resolve_sections

from identity_access.auth_client import AuthClient, SupabaseAuthConfig
from identity_access.directory import AdminDirectory, InMemoryDirectoryBackend
from identity_access.domain import (
    CANDIDATE,
    INSTITUTION_ADMIN,
    INSTRUCTOR,
    ROLE_PRECEDENCE,
    SUPER_ADMIN,
)
from identity_access.guard import GuardState, RouteGuard
from identity_access.paths import ROLE_PREFIXES, default_home_path
from identity_access.resolver import RoleResolver
from identity_access.role_cache import EffectiveRoleCache
from identity_access.role_store import InMemoryRoleAssignmentStore
from identity_access.roles import has_access
from identity_access.stores import SessionStore
from identity_access.tokens import AccessTokenVerificationError, verify_access_token

try:
    from .auth_utils import SESSION_COOKIE_NAME, session_cookie_kwargs
except ImportError:
    from auth_utils import SESSION_COOKIE_NAME, session_cookie_kwargs

# Ensure legacy imports consistently reference the same module instance.
if __name__ == "main":
    _sys.modules.setdefault("backend.web.main", _sys.modules[__name__])
elif __name__ == "backend.web.main":
    _sys.modules["main"] = _sys.modules[__name__]


def _under_pytest() -> bool:
    return "pytest" in _sys.modules or bool(os.getenv("PYTEST_CURRENT_TEST"))


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest; tests provide their own env.
    - CERTCHAIN_ENABLE_DOTENV opts out (default true outside pytest).
    """
    if _under_pytest():
        return False
    flag = (os.getenv("CERTCHAIN_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


try:
    from dotenv import load_dotenv
    if _should_load_dotenv():
        load_dotenv()
except ImportError:
    pass

# Minimal production safety checks (fail-fast on insecure config)
try:
    import config as _cfg  # type: ignore
except ImportError:  # pragma: no cover - package layout
    from backend.web import config as _cfg  # type: ignore
_cfg.ensure_secure_config_on_startup()

# --- App & Settings Setup -------------------------------------------------------


class AuthSettings:
    def __init__(self) -> None:
        self._env_override: str | None = None

    @property
    def environment(self) -> str:
        if self._env_override is not None:
            return self._env_override
        return _cfg.current_env()

    def override_environment(self, env: str | None) -> None:
        """Override environment for tests (e.g., "prod"), or reset with None."""
        self._env_override = env


logger = logging.getLogger("certchain.web")
SETTINGS = AuthSettings()

app = FastAPI(title="CertChain", description="Role-aware dashboard for verifiable certificates", version="0.1.0")

# --- Static Files & Routers -----------------------------------------------------

static_dir = Path(__file__).parent / "static"
app.mount("/static", StaticFiles(directory=str(static_dir)), name="static")

from routes.auth import auth_router
from routes.institutions import institutions_router
from routes.users import users_router

try:
    from backend.web.supabase_wiring import build_supabase_adapters_if_configured  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - flat container layout
    from supabase_wiring import build_supabase_adapters_if_configured  # type: ignore

# --- Identity wiring --------------------------------------------------------------

_ADAPTERS = build_supabase_adapters_if_configured()
if _ADAPTERS is not None:
    ROLE_STORE = _ADAPTERS.role_store
    _DIRECTORY_BACKEND = _ADAPTERS.directory_backend
else:
    ROLE_STORE = InMemoryRoleAssignmentStore()
    _DIRECTORY_BACKEND = InMemoryDirectoryBackend()

ROLE_RESOLVER = RoleResolver(ROLE_STORE, EffectiveRoleCache(ttl_seconds=_cfg.role_cache_ttl_seconds()))
DIRECTORY = AdminDirectory(_DIRECTORY_BACKEND, ROLE_STORE, ROLE_RESOLVER)

AUTH_CFG: Optional[SupabaseAuthConfig] = SupabaseAuthConfig.from_env()
AUTH_CLIENT: Optional[AuthClient] = AuthClient(AUTH_CFG) if AUTH_CFG else None

if (not _under_pytest()) and os.getenv("SESSIONS_BACKEND", "memory").lower() == "db":
    from identity_access.stores_db import DBSessionStore
    SESSION_STORE = DBSessionStore()
else:
    SESSION_STORE = SessionStore()

# --- Auth Helpers & Middleware --------------------------------------------------


def _set_session_cookie(response: Response, value: str, *, max_age: int | None = None) -> None:
    response.set_cookie(key=SESSION_COOKIE_NAME, value=value, **session_cookie_kwargs(SETTINGS.environment, max_age=max_age))


def _expire_session_cookie(response: Response) -> None:
    response.set_cookie(key=SESSION_COOKIE_NAME, value="", expires=0, **session_cookie_kwargs(SETTINGS.environment, max_age=0))


def _is_public_path(path: str) -> bool:
    if path.startswith(("/auth/", "/static/")):
        return True
    return path in ("/", "/health", "/favicon.ico", "/verify") or path.startswith("/verify/")


def _principal_from_session(request: Request) -> Optional[Dict[str, object]]:
    sid = request.cookies.get(SESSION_COOKIE_NAME)
    if not sid:
        return None
    try:
        rec = SESSION_STORE.get(sid)
    except Exception as exc:
        logger.warning("Session store get failed: %s", exc.__class__.__name__)
        return None
    if not rec:
        return None
    return {"sub": rec.sub, "name": rec.name, "email": rec.email, "expires_at": rec.expires_at}


def _principal_from_bearer(request: Request) -> Optional[Dict[str, object]]:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer ") or AUTH_CFG is None:
        return None
    try:
        claims = verify_access_token(token=auth[7:].strip(), cfg=AUTH_CFG)
    except AccessTokenVerificationError as exc:
        logger.warning("Bearer token rejected: %s", exc.code)
        return None
    email = str(claims.get("email") or "")
    return {"sub": str(claims["sub"]), "name": email, "email": email, "expires_at": claims.get("exp")}


def _unauthenticated_response(request: Request) -> Response:
    path = request.url.path
    if path.startswith("/api/") or path.startswith("/internal/"):
        headers = {"Cache-Control": "private, no-store", "Vary": "Origin"}
        return JSONResponse({"error": "unauthenticated"}, status_code=401, headers=headers)
    decision = RouteGuard().evaluate(uuid.uuid4().hex, None, None, next_path=path if request.method == "GET" else None)
    return RedirectResponse(url=decision.redirect_to or "/auth/login", status_code=302, headers={"Cache-Control": "private, no-store"})


@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    path = request.url.path
    if path.startswith("/static/"):
        return await call_next(request)

    principal = _principal_from_session(request) or _principal_from_bearer(request)
    if principal is None:
        if _is_public_path(path):
            return await call_next(request)
        return _unauthenticated_response(request)

    # Expose minimal, read-only user context; the role is resolved per request
    # through the bounded cache, never stored in the session.
    principal["role"] = ROLE_RESOLVER.effective_role(str(principal["sub"]))
    request.state.user = principal
    return await call_next(request)


# --- Security Headers Middleware ----------------------------------------------


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    if SETTINGS.environment == "prod":
        csp = (
            "default-src 'self'; script-src 'self'; style-src 'self'; "
            "img-src 'self' data:; font-src 'self' data:; connect-src 'self';"
        )
    else:
        csp = (
            "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'; "
            "img-src 'self' data:; font-src 'self' data:; connect-src 'self';"
        )
    response.headers.setdefault("Content-Security-Policy", csp)
    response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if SETTINGS.environment == "prod":
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


app.include_router(auth_router)
app.include_router(users_router)
app.include_router(institutions_router)

# --- Page registry ----------------------------------------------------------------

# slug -> (title, minimum role, blurb). Reachable under every role namespace
# whose role satisfies the minimum.
DASHBOARD_PAGES: Dict[str, Tuple[str, str, str]] = {
    "dashboard": ("Dashboard", CANDIDATE, "Your overview."),
    "my-certificates": ("My Certificates", CANDIDATE, "Certificates issued to you."),
    "certificates": ("All Certificates", INSTRUCTOR, "Certificates issued by your institution."),
    "issue": ("Issue Certificate", INSTRUCTOR, "Issue a single certificate."),
    "batch-issue": ("Batch Issue", INSTRUCTOR, "Issue certificates from a CSV upload."),
    "batch-upload-history": ("Batch History", INSTRUCTOR, "Previous batch uploads."),
    "recipients": ("Recipients", INSTRUCTOR, "People you have issued certificates to."),
    "templates": ("Templates", INSTRUCTOR, "Certificate templates."),
    "analytics": ("Analytics", INSTRUCTOR, "Issuance and verification statistics."),
    "institution": ("Institution", INSTITUTION_ADMIN, "Institution profile."),
    "issuers": ("Issuers", INSTITUTION_ADMIN, "Staff allowed to issue for this institution."),
    "billing": ("Billing", INSTITUTION_ADMIN, "Plan and invoices."),
    "webhooks/logs": ("Webhook Logs", INSTITUTION_ADMIN, "Recent webhook deliveries."),
    "users": ("User Management", SUPER_ADMIN, "Platform accounts and roles."),
    "institutions": ("Institutions", SUPER_ADMIN, "All institutions on the platform."),
    "system": ("System Settings", SUPER_ADMIN, "Platform configuration."),
    "logs": ("Audit Logs", SUPER_ADMIN, "Administrative activity."),
}

# Shared `/settings/<slug>` pages: slug -> (title, minimum role or None)
SETTINGS_PAGES: Dict[str, Tuple[str, Optional[str]]] = {
    "account": ("Account", None),
    "notifications": ("Notifications", None),
    "privacy": ("Privacy", None),
    "security": ("Security", None),
    "wallets": ("Wallets", None),
    "api-keys": ("API Keys", INSTRUCTOR),
    "webhooks": ("Webhooks", INSTITUTION_ADMIN),
    "integrations": ("Integrations", INSTITUTION_ADMIN),
}

NAMESPACE_ROLES: Dict[str, str] = {ROLE_PREFIXES[role]: role for role in ROLE_PRECEDENCE}


def _layout_response(
    request: Request,
    layout: Layout,
    *,
    status_code: int = 200,
    headers: dict[str, str] | None = None,
) -> HTMLResponse:
    """Render the complete page; personalised pages default to `Cache-Control: private, no-store`."""
    response = HTMLResponse(content=layout.render(), status_code=status_code)
    is_personalized = bool(getattr(request.state, "user", None))
    if is_personalized and not (headers and "Cache-Control" in headers):
        response.headers["Cache-Control"] = "private, no-store"
    if headers:
        for key, value in headers.items():
            response.headers[key] = value
    return response


def _guard(request: Request, required_role: Optional[str] = None) -> Optional[Response]:
    """Evaluate the route guard for this request.

    Returns None when the page may render, else the redirect response.
    """
    user = getattr(request.state, "user", None) or {}
    guard = RouteGuard(required_role)
    decision = guard.evaluate(
        uuid.uuid4().hex,
        user.get("sub"),
        user.get("role"),
        next_path=request.url.path,
    )
    if decision.allowed:
        return None
    if decision.state is GuardState.AUTHENTICATED_UNAUTHORIZED:
        logger.info("Guard redirected principal=%s path=%s", user.get("sub"), request.url.path)
    target = decision.redirect_to or "/auth/login"
    return RedirectResponse(url=target, status_code=302, headers={"Cache-Control": "private, no-store"})


def _page(request: Request, title: str, body: str, *, status_code: int = 200) -> HTMLResponse:
    user = getattr(request.state, "user", None)
    content = f"""
    <div class="container">
        <h1>{Layout.escape(title)}</h1>
        {body}
    </div>
    """
    layout = Layout(title=title, content=content, user=user, current_path=request.url.path)
    return _layout_response(request, layout, status_code=status_code)


def _not_found(request: Request) -> HTMLResponse:
    return _page(request, "Not found", "<p>This page does not exist.</p>", status_code=404)


# --- Public pages ---------------------------------------------------------------


@app.get("/", response_class=HTMLResponse)
async def home(request: Request):
    user = getattr(request.state, "user", None)
    if user:
        cta = f'<a class="button button--primary" href="{default_home_path(user.get("role"))}">Open your dashboard</a>'
    else:
        cta = '<a class="button button--primary" href="/auth/login">Sign in</a>'
    body = f"""
        <p>Issue, hold and verify tamper-evident certificates.</p>
        <p>{cta} <a class="button" href="/verify">Verify a certificate</a></p>
    """
    return _page(request, "CertChain", body)


@app.get("/verify", response_class=HTMLResponse)
async def verify_index(request: Request):
    body = """
        <form method="get" action="/verify/lookup" class="form">
            <label for="certificate_id">Certificate ID</label>
            <input id="certificate_id" name="certificate_id" required>
            <button type="submit" class="button button--primary">Verify</button>
        </form>
    """
    return _page(request, "Verify a certificate", body)


@app.get("/verify/lookup")
async def verify_lookup(request: Request, certificate_id: str = ""):
    cid = certificate_id.strip()
    if not cid or "/" in cid or cid in (".", ".."):
        return RedirectResponse(url="/verify", status_code=302)
    return RedirectResponse(url=f"/verify/{quote(cid, safe='')}", status_code=302)


@app.get("/verify/{certificate_id}", response_class=HTMLResponse)
async def verify_detail(request: Request, certificate_id: str):
    body = f"""
        <p>Certificate <code>{Layout.escape(certificate_id)}</code></p>
        <p class="text-muted">Ledger verification is not connected in this deployment.</p>
    """
    return _page(request, "Verification", body)


@app.get("/health")
async def health_check():
    # Orchestrator probe; no-store so runtime status is never cached.
    return JSONResponse({"status": "healthy"}, headers={"Cache-Control": "private, no-store"})


# --- Guarded pages ----------------------------------------------------------------


@app.get("/dashboard")
async def dashboard_redirect(request: Request):
    """Send the principal to the dashboard of their effective role."""
    blocked = _guard(request)
    if blocked:
        return blocked
    user = getattr(request.state, "user", None) or {}
    return RedirectResponse(url=default_home_path(user.get("role")), status_code=302, headers={"Cache-Control": "private, no-store"})


def _render_role_page(request: Request, namespace: str, page: str):
    namespace_role = NAMESPACE_ROLES[namespace]
    blocked = _guard(request, namespace_role)
    if blocked:
        return blocked
    slug = page.strip("/")
    if not slug:
        return RedirectResponse(url=f"/{namespace}/dashboard", status_code=302)
    entry = DASHBOARD_PAGES.get(slug)
    if entry is None or not has_access(namespace_role, entry[1]):
        return _not_found(request)
    title, page_role, blurb = entry
    blocked = _guard(request, page_role)
    if blocked:
        return blocked
    user = getattr(request.state, "user", None) or {}
    body = f'<p>{Layout.escape(blurb)}</p>'
    if slug == "dashboard":
        body += f'<p class="text-muted">Signed in as {Layout.escape(str(user.get("name") or ""))}.</p>'
    return _page(request, title, body)


def _register_role_pages(namespace: str) -> None:
    async def role_page(request: Request, page: str):
        return _render_role_page(request, namespace, page)

    role_page.__name__ = f"{namespace}_pages"
    app.add_api_route(f"/{namespace}/{{page:path}}", role_page, methods=["GET"], response_class=HTMLResponse)


for _namespace in NAMESPACE_ROLES:
    _register_role_pages(_namespace)


@app.get("/settings/{page}", response_class=HTMLResponse)
async def settings_page(request: Request, page: str):
    entry = SETTINGS_PAGES.get(page)
    blocked = _guard(request, entry[1] if entry else None)
    if blocked:
        return blocked
    if entry is None:
        return _not_found(request)
    return _page(request, entry[0], "<p>Manage your preferences.</p>")


@app.get("/profile/{account_id}", response_class=HTMLResponse)
async def profile_page(request: Request, account_id: str):
    blocked = _guard(request)
    if blocked:
        return blocked
    return _page(request, "Profile", f"<p>Account <code>{Layout.escape(account_id)}</code></p>")


@app.get("/identity/did-setup", response_class=HTMLResponse)
async def did_setup_page(request: Request):
    blocked = _guard(request)
    if blocked:
        return blocked
    return _page(request, "Decentralized Identity", "<p>Link a decentralized identifier to your account.</p>")


# --- JSON APIs ----------------------------------------------------------------------


@app.get("/api/me")
async def get_me(request: Request):
    user = getattr(request.state, "user", None)
    if not user:
        return JSONResponse({"error": "unauthenticated"}, status_code=401, headers={"Cache-Control": "private, no-store"})
    exp = user.get("expires_at")
    exp_iso = datetime.fromtimestamp(int(exp), tz=timezone.utc).isoformat(timespec="seconds") if exp else None
    return JSONResponse({
        "sub": user.get("sub"),
        "name": user.get("name", ""),
        "email": user.get("email", ""),
        "role": user.get("role"),
        "home": default_home_path(user.get("role")),
        "expires_at": exp_iso,
    }, headers={"Cache-Control": "private, no-store"})


@app.get("/api/navigation")
async def get_navigation(request: Request):
    """Visible sidebar sections for the caller's effective role, with concrete paths."""
    user = getattr(request.state, "user", None)
    if not user:
        return JSONResponse({"error": "unauthenticated"}, status_code=401, headers={"Cache-Control": "private, no-store"})
    role = user.get("role")
    sections = [
        {"title": title, "items": [{"title": text, "href": href, "icon": icon} for href, text, icon in items]}
        for title, items in resolve_sections(role)
    ]
    return JSONResponse(
        {"role": role, "home": default_home_path(role), "sections": sections},
        headers={"Cache-Control": "private, no-store"},
    )
