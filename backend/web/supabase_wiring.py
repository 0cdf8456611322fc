"""
Shared helper for wiring Supabase-backed identity adapters.

Why:
    Role assignments and the admin directory live in Supabase in deployed
    environments, while dev and tests run on in-memory adapters. This helper
    decides once at startup which adapters the app uses, so `main` stays free
    of client construction details.

Security:
    Requires SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY. The service client is
    used server-side only; nothing about it is exposed to browsers.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional
import logging
import os

from identity_access.directory import SupabaseDirectoryBackend
from identity_access.role_store import SupabaseRoleAssignmentStore

logger = logging.getLogger("certchain.web")


@dataclass
class SupabaseAdapters:
    client: Any
    role_store: SupabaseRoleAssignmentStore
    directory_backend: SupabaseDirectoryBackend


def build_supabase_adapters_if_configured() -> Optional[SupabaseAdapters]:
    """Create Supabase-backed adapters when configuration is present.

    Behavior:
        - Returns None when URL or service key are missing (in-memory mode).
        - Returns None and logs a warning when the client cannot be created;
          the app then starts on in-memory adapters instead of crashing.
    """
    url = (os.getenv("SUPABASE_URL") or "").strip()
    key = (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not url or not key:
        return None
    try:
        from supabase import create_client

        client = create_client(url, key)
    except Exception as exc:
        logger.warning("Supabase client unavailable: %s", exc.__class__.__name__)
        return None
    logger.info("Supabase identity adapters wired")
    return SupabaseAdapters(
        client=client,
        role_store=SupabaseRoleAssignmentStore(client),
        directory_backend=SupabaseDirectoryBackend(client),
    )
