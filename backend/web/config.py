"""
Configuration and startup security checks for CertChain.

Why: A dashboard that hands out admin rights must not boot with placeholder
secrets or plaintext endpoints. This module provides a single guard that
enforces minimal production safety without burdening local development, plus
a few small readers for tunables shared by the web layer.

Permissions: The caller needs no special privileges. The function simply reads
environment variables and raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

import os

DEFAULT_ROLE_CACHE_TTL_SECONDS = 300


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def current_env() -> str:
    return (os.getenv("CERTCHAIN_ENV", "dev") or "dev").strip().lower()


def role_cache_ttl_seconds() -> int:
    """TTL of the effective-role cache; invalid or negative values use the default."""
    raw = (os.getenv("ROLE_CACHE_TTL_SECONDS") or "").strip()
    if not raw:
        return DEFAULT_ROLE_CACHE_TTL_SECONDS
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_ROLE_CACHE_TTL_SECONDS
    return value if value >= 0 else DEFAULT_ROLE_CACHE_TTL_SECONDS


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Checks (prod/staging only):
    - Supabase service role key must be set and not a known dummy placeholder.
    - Supabase URL must be set and use https.
    - Access tokens must be verifiable: SUPABASE_JWT_SECRET or the project's
      JWKS (which requires SUPABASE_ANON_KEY).
    - DATABASE_URL must not explicitly disable TLS.
    """

    if not _is_prod_like(current_env()):
        return  # dev/test remain permissive

    # 1) Supabase service role key
    srole = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()
    if not srole or srole.upper() == "DUMMY_DO_NOT_USE":
        raise SystemExit(
            "Refusing to start: SUPABASE_SERVICE_ROLE_KEY is unset or a dummy placeholder in production."
        )

    # 2) Supabase URL must be present and https
    url = (os.getenv("SUPABASE_URL", "") or "").strip()
    if not url:
        raise SystemExit("Refusing to start: SUPABASE_URL is unset in production.")
    if url.lower().startswith("http://"):
        raise SystemExit("Refusing to start: SUPABASE_URL must use https in production (got http).")

    # 3) Token verification material
    secret = (os.getenv("SUPABASE_JWT_SECRET", "") or "").strip()
    anon = (os.getenv("SUPABASE_ANON_KEY", "") or "").strip()
    if secret.upper().startswith("CHANGE_ME"):
        raise SystemExit("Refusing to start: SUPABASE_JWT_SECRET is a placeholder in production.")
    if not secret and not anon:
        raise SystemExit(
            "Refusing to start: set SUPABASE_JWT_SECRET or SUPABASE_ANON_KEY so access tokens can be verified."
        )

    # 4) Postgres TLS: basic guard to avoid explicit disable
    dsn = os.getenv("DATABASE_URL", "")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )
