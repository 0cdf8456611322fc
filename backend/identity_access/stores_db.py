"""
Database-backed SessionStore (Postgres/Supabase) for deployed instances.

Why: In-memory sessions vanish on restart and are not shared between workers.
This store keeps sessions in Postgres while the cookie stays an opaque id.
E-mail addresses are not persisted; the row holds the principal id, a display
name and the upstream access token.

Security:
- Connect with a service-role DSN; the `app_sessions` table has RLS enabled
  and is not reachable for anon clients.
- The table name is validated against a strict identifier pattern before it is
  interpolated into SQL; all values are bound parameters.

Note: psycopg3 is an optional import so dev and tests can run with the
in-memory store (`SESSIONS_BACKEND=memory`).
"""
from __future__ import annotations

from typing import Optional
import os
import re
import time

from identity_access.stores import SessionRecord

try:
    import psycopg
    HAVE_PSYCOPG = True
except ImportError:  # pragma: no cover - optional dependency in dev
    psycopg = None  # type: ignore
    HAVE_PSYCOPG = False

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")


def _now() -> int:
    return int(time.time())


class DBSessionStore:
    """Postgres-backed session store.

    Parameters
    ----------
    dsn:
        Psycopg3 connection string. Falls back to `DATABASE_URL`.
    table:
        Table name, optionally schema-qualified. Defaults to `public.app_sessions`.
    """

    def __init__(self, dsn: Optional[str] = None, table: str = "public.app_sessions") -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBSessionStore")
        self._dsn = dsn or os.getenv("DATABASE_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBSessionStore")
        if not _TABLE_RE.match(table or ""):
            raise ValueError("Invalid table name")
        self._table = table

    def create(
        self,
        *,
        sub: str,
        name: str,
        email: str = "",
        access_token: Optional[str] = None,
        ttl_seconds: int = 3600,
    ) -> SessionRecord:
        expires_at = _now() + ttl_seconds
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"insert into {self._table} (session_id, sub, name, access_token, expires_at) "
                    f"values (gen_random_uuid()::text, %s, %s, %s, to_timestamp(%s)) returning session_id",
                    (sub, name, access_token, expires_at),
                )
                row = cur.fetchone()
        sid = str(row[0]) if row else ""
        return SessionRecord(
            session_id=sid,
            sub=sub,
            name=name,
            access_token=access_token,
            expires_at=expires_at,
            ttl_seconds=ttl_seconds,
        )

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"select session_id, sub, name, access_token, extract(epoch from expires_at)::bigint "
                    f"from {self._table} where session_id = %s and expires_at > now()",
                    (session_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return SessionRecord(
            session_id=str(row[0]),
            sub=row[1],
            name=row[2] or "",
            access_token=row[3],
            expires_at=int(row[4]) if row[4] is not None else None,
        )

    def delete(self, session_id: str) -> None:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(f"delete from {self._table} where session_id = %s", (session_id,))
