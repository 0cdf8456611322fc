"""
Access-token verification for Supabase-issued JWTs.

Why: Keep cryptographic validation outside the web adapter so it can be unit
tested on its own. API clients may send `Authorization: Bearer <token>`; the
middleware accepts the principal only after this module verified the token.

Security: Tokens are verified with the project's HS256 secret when one is
configured, otherwise against the project's JWKS (asymmetric signing keys).
Audience must be `authenticated`; expiry is enforced with a small skew.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple
import time

import requests
from jose import jwt
from jose.exceptions import JOSEError

from .auth_client import IdentityError, SupabaseAuthConfig

EXPECTED_AUDIENCE = "authenticated"


class AccessTokenVerificationError(IdentityError):
    """Raised when an access token fails verification."""


@dataclass
class _CacheEntry:
    jwks: Dict[str, object]
    expires_at: float


class JWKSCache:
    """Small in-memory cache for JWKS responses."""

    def __init__(self, ttl_seconds: int = 300):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, _CacheEntry] = {}

    def get(self, cfg: SupabaseAuthConfig) -> Dict[str, object]:
        now = time.time()
        entry = self._entries.get(cfg.url)
        if entry and entry.expires_at > now:
            return entry.jwks
        jwks = self._fetch(cfg)
        self._entries[cfg.url] = _CacheEntry(jwks=jwks, expires_at=now + self.ttl_seconds)
        return jwks

    def _fetch(self, cfg: SupabaseAuthConfig) -> Dict[str, object]:
        try:
            resp = requests.get(cfg.jwks_endpoint, headers={"apikey": cfg.anon_key}, timeout=5)
        except requests.RequestException as exc:
            raise AccessTokenVerificationError("jwks_fetch_failed") from exc
        if resp.status_code != 200:
            raise AccessTokenVerificationError("jwks_fetch_failed")
        try:
            jwks = resp.json()
        except ValueError as exc:
            raise AccessTokenVerificationError("jwks_invalid") from exc
        if not isinstance(jwks, dict) or "keys" not in jwks:
            raise AccessTokenVerificationError("jwks_invalid")
        return jwks


JWKS_CACHE = JWKSCache()

MAX_CLOCK_SKEW_SECONDS = 5


def _signing_key(token: str, cfg: SupabaseAuthConfig, cache: JWKSCache) -> Tuple[object, str]:
    if cfg.jwt_secret:
        return cfg.jwt_secret, "HS256"
    try:
        header = jwt.get_unverified_header(token)
    except JOSEError as exc:
        raise AccessTokenVerificationError("invalid_access_token") from exc
    kid = header.get("kid")
    if not kid:
        raise AccessTokenVerificationError("missing_kid")
    key_dict = _find_key(cache.get(cfg), kid)
    if not key_dict:
        raise AccessTokenVerificationError("unknown_kid")
    return key_dict, str(key_dict.get("alg") or header.get("alg") or "RS256")


def verify_access_token(
    *,
    token: str,
    cfg: SupabaseAuthConfig,
    cache: Optional[JWKSCache] = None,
) -> Dict[str, object]:
    """Validate a Supabase access token and return its claims.

    Raises
    ------
    AccessTokenVerificationError:
        When the token is malformed, badly signed, expired, has the wrong
        audience or lacks a subject.
    """
    if not token or not isinstance(token, str):
        raise AccessTokenVerificationError("missing_token")
    key, alg = _signing_key(token, cfg, cache or JWKS_CACHE)
    try:
        claims = jwt.decode(
            token,
            key,
            algorithms=[alg],
            audience=EXPECTED_AUDIENCE,
            options={
                "verify_signature": True,
                "verify_aud": True,
                "verify_iss": False,
                "verify_exp": False,
                "verify_iat": False,
                "verify_nbf": False,
                "verify_at_hash": False,
            },
        )
    except JOSEError as exc:
        raise AccessTokenVerificationError("invalid_access_token") from exc

    _validate_temporal_claims(claims)
    if not isinstance(claims.get("sub"), str) or not claims.get("sub"):
        raise AccessTokenVerificationError("missing_sub")
    return claims


def _find_key(jwks: Dict[str, object], kid: str) -> Optional[Dict[str, object]]:
    keys = jwks.get("keys")
    if not isinstance(keys, list):
        return None
    for key in keys:
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    return None


def _validate_temporal_claims(claims: Dict[str, object]) -> None:
    now = time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise AccessTokenVerificationError("invalid_access_token")
    if exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise AccessTokenVerificationError("token_expired")

    iat = claims.get("iat")
    if isinstance(iat, (int, float)) and iat - MAX_CLOCK_SKEW_SECONDS > now:
        raise AccessTokenVerificationError("invalid_access_token")

    nbf = claims.get("nbf")
    if isinstance(nbf, (int, float)) and nbf - MAX_CLOCK_SKEW_SECONDS > now:
        raise AccessTokenVerificationError("invalid_access_token")
