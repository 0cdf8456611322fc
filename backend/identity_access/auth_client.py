"""
Minimal Supabase Auth (GoTrue) client for the server-side login form.

This module is a thin, framework-agnostic adapter. The web layer posts the
user's e-mail/password here and receives the GoTrue token response, from which
it creates an opaque server-side session.

Security: Never log credentials or tokens. Nothing is persisted here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional
import os

# Small indirection to ease monkeypatching in tests
import requests as http


class IdentityError(Exception):
    """Base error of the identity adapters. `code` is a stable, loggable tag."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


class PasswordGrantError(IdentityError):
    """Raised when GoTrue rejects the credentials or answers unexpectedly."""


@dataclass(frozen=True)
class SupabaseAuthConfig:
    url: str  # e.g., https://xyz.supabase.co
    anon_key: str
    jwt_secret: Optional[str] = None  # HS256 secret; JWKS is used when unset

    @property
    def token_endpoint(self) -> str:
        return f"{self.url}/auth/v1/token?grant_type=password"

    @property
    def jwks_endpoint(self) -> str:
        return f"{self.url}/auth/v1/.well-known/jwks.json"

    @property
    def issuer(self) -> str:
        return f"{self.url}/auth/v1"

    @classmethod
    def from_env(cls) -> Optional["SupabaseAuthConfig"]:
        url = (os.getenv("SUPABASE_URL") or "").strip().rstrip("/")
        anon = (os.getenv("SUPABASE_ANON_KEY") or "").strip()
        if not url or not anon:
            return None
        secret = (os.getenv("SUPABASE_JWT_SECRET") or "").strip() or None
        return cls(url=url, anon_key=anon, jwt_secret=secret)


def http_post(url: str, *, json: Dict[str, str], headers: Dict[str, str], timeout: int = 10):
    return http.post(url, json=json, headers=headers, timeout=timeout)


class AuthClient:
    """Authenticate against Supabase Auth with the password grant.

    `password_grant` returns the token response (access_token, expires_in,
    user) on success and raises PasswordGrantError otherwise.
    """

    def __init__(self, cfg: SupabaseAuthConfig) -> None:
        self.cfg = cfg

    def password_grant(self, *, email: str, password: str) -> Dict[str, object]:
        headers = {"apikey": self.cfg.anon_key, "Content-Type": "application/json"}
        try:
            r = http_post(self.cfg.token_endpoint, json={"email": email, "password": password}, headers=headers)
        except http.RequestException as exc:
            raise PasswordGrantError("auth_unreachable") from exc
        if r.status_code in (400, 401):
            raise PasswordGrantError("invalid_credentials")
        if r.status_code != 200:
            raise PasswordGrantError("password_grant_failed")
        try:
            body = r.json()
        except ValueError as exc:
            raise PasswordGrantError("password_grant_failed") from exc
        if not isinstance(body, dict) or not body.get("access_token"):
            raise PasswordGrantError("access_token_missing")
        return body


__all__ = ["IdentityError", "PasswordGrantError", "SupabaseAuthConfig", "AuthClient"]
