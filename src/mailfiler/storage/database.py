"""PostgreSQL-backed property store using psycopg."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

import psycopg
from psycopg.rows import dict_row

from .properties import PropertyStore

logger = logging.getLogger(__name__)


class PostgresPropertyStore(PropertyStore):
    """Property store shared by every process pointing at the same database.

    Atomicity comes from the primary key: ``INSERT ... ON CONFLICT DO NOTHING``
    for set-if-absent and conditional ``UPDATE``/``DELETE`` for the
    compare-and-swap operations.
    """

    TABLE = "mailfiler_property"

    def __init__(self, database_url: str):
        """Initialize the store.

        Args:
            database_url: PostgreSQL connection string
        """
        self.database_url = database_url
        self._conn: Optional[psycopg.Connection] = None

    def connect(self):
        """Establish database connection and make sure the table exists."""
        if self._conn is None or self._conn.closed:
            self._conn = psycopg.connect(
                self.database_url,
                row_factory=dict_row,
                autocommit=False,  # We'll manage transactions explicitly
            )
            logger.info("Database connection established")
            self._ensure_schema()
        return self._conn

    def close(self):
        """Close database connection."""
        if self._conn and not self._conn.closed:
            self._conn.close()
            logger.info("Database connection closed")

    @contextmanager
    def transaction(self):
        """Commit on success, roll back on exception.

        Yields:
            psycopg.Connection: Database connection object
        """
        conn = self.connect()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"Transaction rolled back: {e}")
            raise

    def _ensure_schema(self):
        with self._conn.cursor() as cur:
            cur.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.TABLE} (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
            """)
        self._conn.commit()

    def get(self, key: str) -> Optional[str]:
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT value FROM {self.TABLE} WHERE key = %s", (key,))
                row = cur.fetchone()
                return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(f"""
                    INSERT INTO {self.TABLE} (key, value, updated_at)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (key) DO UPDATE
                    SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at
                """, (key, value, datetime.now()))

    def delete(self, key: str) -> None:
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(f"DELETE FROM {self.TABLE} WHERE key = %s", (key,))

    def set_if_absent(self, key: str, value: str) -> bool:
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(f"""
                    INSERT INTO {self.TABLE} (key, value, updated_at)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (key) DO NOTHING
                """, (key, value, datetime.now()))
                return cur.rowcount == 1

    def compare_and_set(self, key: str, expected: str, value: str) -> bool:
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(f"""
                    UPDATE {self.TABLE}
                    SET value = %s, updated_at = %s
                    WHERE key = %s AND value = %s
                """, (value, datetime.now(), key, expected))
                return cur.rowcount == 1

    def compare_and_delete(self, key: str, expected: str) -> bool:
        with self.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"DELETE FROM {self.TABLE} WHERE key = %s AND value = %s",
                    (key, expected),
                )
                deleted = cur.rowcount == 1
                if deleted:
                    logger.debug(f"Deleted property {key}")
                return deleted
