"""
Authentication-related FastAPI routes (router-only module).

Why:
    Keep the login/logout endpoints in a dedicated router. The shared stores
    (sessions, role resolver, auth client) live on the `main` module and are
    looked up per request so tests can swap them with monkeypatch.

Flow:
    GET  /auth/login          -> sign-in form (optional validated `next`)
    POST /auth/login          -> Supabase password grant, verified access
                                 token, opaque server-side session cookie
    GET  /auth/logout         -> drop session + cached role, expire cookie
    GET  /auth/logout/success -> public confirmation page
"""

from __future__ import annotations

from typing import Optional
import logging

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from identity_access.auth_client import PasswordGrantError
from identity_access.directory import humanize_identifier
from identity_access.guard import is_inapp_path
from identity_access.paths import default_home_path
from identity_access.tokens import AccessTokenVerificationError, verify_access_token

from components import Layout
from routes.security import _is_same_origin, _private_no_store, _resolve_active_main

auth_router = APIRouter(tags=["Auth"])  # explicit paths, no prefix
logger = logging.getLogger("certchain.web.auth")

DEFAULT_SESSION_TTL_SECONDS = 3600
MAX_SESSION_TTL_SECONDS = 12 * 3600


def _safe_next(value: Optional[str]) -> Optional[str]:
    return value if (isinstance(value, str) and is_inapp_path(value) and not value.startswith("/auth/")) else None


def _redirect(request: Request, url: str) -> Response:
    return RedirectResponse(url=url, status_code=302, headers={"Cache-Control": "private, no-store"})


def _render_login_form(request: Request, *, next_path: Optional[str], error: Optional[str] = None, email: str = "", status_code: int = 200) -> HTMLResponse:
    esc = Layout.escape
    error_html = f'<div class="alert alert-error" role="alert">{esc(error)}</div>' if error else ""
    next_html = f'<input type="hidden" name="next" value="{esc(next_path)}">' if next_path else ""
    content = f"""
    <div class="container auth-card">
        <h1>Sign in</h1>
        {error_html}
        <form method="post" action="/auth/login" class="form">
            {next_html}
            <label for="email">E-mail</label>
            <input id="email" name="email" type="email" autocomplete="username" required value="{esc(email)}">
            <label for="password">Password</label>
            <input id="password" name="password" type="password" autocomplete="current-password" required>
            <button type="submit" class="button button--primary">Sign in</button>
        </form>
    </div>
    """
    layout = Layout(title="Sign in", content=content, user=None, current_path="/auth/login")
    return HTMLResponse(content=layout.render(), status_code=status_code, headers=_private_no_store())


@auth_router.get("/auth/login", response_class=HTMLResponse)
async def auth_login_form(request: Request, next: Optional[str] = None):
    """Render the sign-in form; signed-in users go straight to `next` or home.

    Permissions:
        Public.
    """
    next_path = _safe_next(next)
    user = getattr(request.state, "user", None)
    if user:
        return _redirect(request, next_path or default_home_path(user.get("role")))
    return _render_login_form(request, next_path=next_path)


@auth_router.post("/auth/login")
async def auth_login_submit(request: Request):
    """Password grant against Supabase Auth and session creation.

    Security:
        - Same-origin check on the form post (CSRF).
        - The access token is verified before a session is created.
        - Credentials and tokens are never logged.
    """
    if not _is_same_origin(request):
        return _render_login_form(request, next_path=None, error="Request origin not allowed.", status_code=403)
    mod = _resolve_active_main(request)
    form = await request.form()
    email = str(form.get("email") or "").strip()
    password = str(form.get("password") or "")
    next_path = _safe_next(str(form.get("next") or "") or None)

    if not email or not password:
        return _render_login_form(request, next_path=next_path, error="E-mail and password are required.", email=email, status_code=400)
    client = getattr(mod, "AUTH_CLIENT", None)
    cfg = getattr(mod, "AUTH_CFG", None)
    if client is None or cfg is None:
        return _render_login_form(request, next_path=next_path, error="Sign-in is not configured.", email=email, status_code=503)

    try:
        tokens = client.password_grant(email=email, password=password)
        claims = verify_access_token(token=str(tokens.get("access_token") or ""), cfg=cfg)
    except PasswordGrantError as exc:
        logger.warning("Password grant failed: %s", exc.code)
        return _render_login_form(request, next_path=next_path, error="Invalid e-mail or password.", email=email, status_code=401)
    except AccessTokenVerificationError as exc:
        logger.warning("Access token verification failed: %s", exc.code)
        return _render_login_form(request, next_path=next_path, error="Sign-in failed.", email=email, status_code=401)

    sub = str(claims["sub"])
    claim_email = str(claims.get("email") or email)
    meta = claims.get("user_metadata") if isinstance(claims.get("user_metadata"), dict) else {}
    display_name = str(meta.get("full_name") or meta.get("name") or humanize_identifier(claim_email) or "User")
    try:
        ttl = int(tokens.get("expires_in") or DEFAULT_SESSION_TTL_SECONDS)
    except (TypeError, ValueError):
        ttl = DEFAULT_SESSION_TTL_SECONDS
    ttl = max(60, min(MAX_SESSION_TTL_SECONDS, ttl))

    sess = mod.SESSION_STORE.create(
        sub=sub,
        name=display_name,
        email=claim_email,
        access_token=str(tokens.get("access_token")),
        ttl_seconds=ttl,
    )
    # A fresh sign-in starts from fresh role data.
    mod.ROLE_RESOLVER.invalidate(sub)
    role = mod.ROLE_RESOLVER.effective_role(sub)
    resp = _redirect(request, next_path or default_home_path(role))
    max_age = sess.ttl_seconds if mod.SETTINGS.environment == "prod" else None
    mod._set_session_cookie(resp, sess.session_id, max_age=max_age)
    logger.info("Sign-in succeeded principal=%s", sub)
    return resp


@auth_router.get("/auth/logout")
async def auth_logout(request: Request):
    """Sign out: delete the server-side session and the cached role, expire the cookie.

    Never fails: store errors are logged and the cookie is expired regardless.
    """
    mod = _resolve_active_main(request)
    sid = request.cookies.get(mod.SESSION_COOKIE_NAME)
    if sid:
        rec = None
        try:
            rec = mod.SESSION_STORE.get(sid)
        except Exception as exc:
            logger.warning("Session lookup failed during logout: %s", exc.__class__.__name__)
        try:
            mod.SESSION_STORE.delete(sid)
        except Exception as exc:
            logger.warning("Session delete failed during logout: %s", exc.__class__.__name__)
        if rec is not None:
            mod.ROLE_RESOLVER.invalidate(rec.sub)

    resp = RedirectResponse(url="/auth/logout/success", status_code=302)
    resp.headers["Cache-Control"] = "private, no-store"
    mod._expire_session_cookie(resp)
    return resp


@auth_router.get("/auth/logout/success", response_class=HTMLResponse)
async def auth_logout_success():
    """Minimal confirmation page with a link back to /auth/login (public)."""
    html = """
    <!DOCTYPE html>
    <html lang="en">
    <head>
      <meta charset="utf-8">
      <meta name="viewport" content="width=device-width, initial-scale=1" />
      <title>Signed out - CertChain</title>
      <link rel="stylesheet" href="/static/css/certchain.css" />
    </head>
    <body class="auth-info">
      <main class="container auth-card">
        <h1>Signed out</h1>
        <p>You have been signed out of CertChain.</p>
        <p><a class="button button--primary" href="/auth/login">Sign in again</a></p>
      </main>
    </body>
    </html>
    """
    return HTMLResponse(content=html, headers={"Cache-Control": "private, no-store"})
