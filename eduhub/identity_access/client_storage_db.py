"""
Database-backed client storage (Postgres/Supabase).

Why: In-memory client storage is lost on restart, which would drop a running
demo session and the remember-me flag. This store keeps the key/value pairs of
one client in Postgres, keyed by the opaque client id from the cookie.

Security:
- Intended to be used with a service role connection string; anon clients must
  not access the `client_storage` table.
- Only the demo marker and the remember-me flag are stored; no PII.

Note: This module uses psycopg3. It is imported only when enabled via
`CLIENT_STORAGE_BACKEND=db`. Tests use a fake psycopg driver.
"""
from __future__ import annotations

import os
import re
from typing import Optional

try:
    import psycopg
    from psycopg import sql as _sql
    HAVE_PSYCOPG = True
except Exception:  # pragma: no cover - optional dependency in dev
    psycopg = None  # type: ignore
    _sql = None  # type: ignore
    HAVE_PSYCOPG = False

_TABLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}(?:\.[A-Za-z_][A-Za-z0-9_]{0,62})?$")


class DBClientStorage:
    """Postgres-backed key/value storage for one client.

    Parameters
    ----------
    client_id:
        Opaque client identifier (cookie value).
    dsn:
        Psycopg3 connection string. Use a service role in Supabase.
    table:
        Fully qualified table name. Defaults to `public.client_storage`.
    """

    def __init__(self, client_id: str, dsn: str | None = None, table: str = "public.client_storage") -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBClientStorage")
        if not client_id:
            raise ValueError("client_id is required")
        self._client_id = client_id
        self._dsn = dsn or os.getenv("DATABASE_URL") or os.getenv("SUPABASE_DB_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBClientStorage")
        # Validate table identifier early (defense-in-depth)
        if not _TABLE_RE.match(table or ""):
            raise ValueError("Invalid table name")
        self._table = table

    def _schema_and_name(self) -> tuple[str, str]:
        if "." in self._table:
            schema, name = self._table.split(".", 1)
        else:
            schema, name = "public", self._table
        return schema, name

    def _stmt(self, template: str):
        """Compose `template` with the table identifier.

        Falls back to plain formatting when psycopg.sql is unavailable (fake
        drivers in tests); the table name is validated in __init__.
        """
        if _sql is None:
            return template.replace("{}.{}", self._table)
        schema, name = self._schema_and_name()
        return _sql.SQL(template).format(_sql.Identifier(schema), _sql.Identifier(name))

    def get(self, key: str) -> Optional[str]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    self._stmt("select value from {}.{} where client_id = %s and key = %s"),
                    (self._client_id, key),
                )
                row = cur.fetchone()
        return str(row[0]) if row else None

    def set(self, key: str, value: str) -> None:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    self._stmt(
                        "insert into {}.{} (client_id, key, value, updated_at) values (%s, %s, %s, now()) "
                        "on conflict (client_id, key) do update set value = excluded.value, updated_at = now()"
                    ),
                    (self._client_id, key, str(value)),
                )

    def remove(self, key: str) -> None:
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    self._stmt("delete from {}.{} where client_id = %s and key = %s"),
                    (self._client_id, key),
                )


__all__ = ["DBClientStorage", "HAVE_PSYCOPG"]
