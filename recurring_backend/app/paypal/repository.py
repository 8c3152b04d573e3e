"""PostgreSQL persistence for capability state."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from recurring_backend.app_context import get_conn

from .models import CapabilityCacheEntry

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS paypal_capability_accounts (
    credential_fingerprint TEXT PRIMARY KEY,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS paypal_capability_cache (
    credential_fingerprint TEXT PRIMARY KEY,
    enabled BOOLEAN NOT NULL,
    cached_at TIMESTAMPTZ NOT NULL
);
"""


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_entry(row: dict) -> CapabilityCacheEntry:
    return CapabilityCacheEntry(
        credential_fingerprint=row["credential_fingerprint"],
        enabled=bool(row["enabled"]),
        cached_at=row["cached_at"],
    )


class PostgresCapabilityStore:
    """Capability store backed by two small PostgreSQL tables."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
            finally:
                cursor.close()

    def ensure_schema(self) -> None:
        with self._cursor() as cursor:
            cursor.execute(SCHEMA_SQL)

    def is_enabled_account(self, fingerprint: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT 1 FROM paypal_capability_accounts WHERE credential_fingerprint = %s",
                (fingerprint,),
            )
            return cursor.fetchone() is not None

    def add_enabled_account(self, fingerprint: str) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO paypal_capability_accounts (credential_fingerprint)
                VALUES (%s)
                ON CONFLICT (credential_fingerprint) DO NOTHING
                """,
                (fingerprint,),
            )
            cursor.execute(
                "DELETE FROM paypal_capability_cache WHERE credential_fingerprint = %s",
                (fingerprint,),
            )

    def get_entry(self, fingerprint: str) -> Optional[CapabilityCacheEntry]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT credential_fingerprint, enabled, cached_at
                FROM paypal_capability_cache
                WHERE credential_fingerprint = %s
                """,
                (fingerprint,),
            )
            row = cursor.fetchone()
        return _row_to_entry(row) if row else None

    def save_entry(self, entry: CapabilityCacheEntry) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO paypal_capability_cache (credential_fingerprint, enabled, cached_at)
                VALUES (%(credential_fingerprint)s, %(enabled)s, %(cached_at)s)
                ON CONFLICT (credential_fingerprint) DO UPDATE SET
                    enabled = EXCLUDED.enabled,
                    cached_at = EXCLUDED.cached_at
                """,
                {
                    "credential_fingerprint": entry.credential_fingerprint,
                    "enabled": entry.enabled,
                    "cached_at": entry.cached_at,
                },
            )

    def forget(self, fingerprint: str) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                "DELETE FROM paypal_capability_accounts WHERE credential_fingerprint = %s",
                (fingerprint,),
            )
            cursor.execute(
                "DELETE FROM paypal_capability_cache WHERE credential_fingerprint = %s",
                (fingerprint,),
            )


__all__ = ["PostgresCapabilityStore", "SCHEMA_SQL", "managed_connection"]
