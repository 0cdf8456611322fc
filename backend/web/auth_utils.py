"""
Shared authentication utilities.

Why:
    The session cookie is set by the login route and expired by the logout
    route; both must use identical flags or browsers keep a stale cookie.

Design:
    Pure helpers. Callers decide where the environment string comes from.
"""

from __future__ import annotations

SESSION_COOKIE_NAME = "certchain_session"


def cookie_opts(environment: str) -> dict:
    """Return hardened cookie flags (dev = prod).

    Returns a mapping with keys:
      - secure: True
      - samesite: "lax"  # cookie must survive the top-level redirect after login
    """
    return {"secure": True, "samesite": "lax"}


def session_cookie_kwargs(environment: str, *, max_age: int | None = None) -> dict:
    """Full keyword set for `Response.set_cookie` of the session cookie."""
    opts = cookie_opts(environment)
    kwargs = {
        "httponly": True,
        "secure": opts["secure"],
        "samesite": opts["samesite"],
        "path": "/",
    }
    if max_age is not None:
        kwargs["max_age"] = int(max_age)
    return kwargs
