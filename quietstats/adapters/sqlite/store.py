"""
SQLite key-value store adapter.

Implements KeyValueStorePort over a single `items` table:
(pk, sk) primary key, (gsi1pk, gsi1sk) secondary index, JSON payload.
The table is created by SQLiteMigrator (migrations/0001_items.sql).

Every sqlite3.Error is re-raised as StorageError so callers can treat it
as a retryable failure.
"""

from __future__ import annotations

import json
import sqlite3
from typing import Any

from quietstats.core.ports.storage import Item, StorageError

# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------


def dict_factory(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    """Convert SQLite row to dictionary."""
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


def _load(row: dict[str, Any]) -> Item:
    return json.loads(row["data"])


# -----------------------------------------------------------------------------
# Base SQLite Repository
# -----------------------------------------------------------------------------


class SQLiteRepoBase:
    """Base class for SQLite repositories."""

    def __init__(self, db_path: str, connection: sqlite3.Connection | None = None):
        self.db_path = db_path
        self._external_conn = connection
        if connection is not None:
            connection.row_factory = dict_factory

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection (uses external if provided)."""
        if self._external_conn is not None:
            return self._external_conn

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = dict_factory
        return conn

    def _should_close(self) -> bool:
        """Whether to close connection after use."""
        return self._external_conn is None


# -----------------------------------------------------------------------------
# Key-Value Store
# -----------------------------------------------------------------------------


class SQLiteKeyValueStore(SQLiteRepoBase):
    """SQLite implementation of KeyValueStorePort."""

    def put_item(self, item: Item) -> None:
        try:
            conn = self._get_conn()
            try:
                conn.execute(
                    """
                    INSERT INTO items (pk, sk, gsi1pk, gsi1sk, data, updated_at)
                    VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT (pk, sk) DO UPDATE SET
                        gsi1pk = excluded.gsi1pk,
                        gsi1sk = excluded.gsi1sk,
                        data = excluded.data,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (
                        item["pk"],
                        item["sk"],
                        item.get("gsi1pk"),
                        item.get("gsi1sk"),
                        json.dumps(item, default=str),
                    ),
                )
                conn.commit()
            finally:
                if self._should_close():
                    conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"put_item failed: {e}") from e

    def get_item(self, pk: str, sk: str) -> Item | None:
        rows = self._select("SELECT data FROM items WHERE pk = ? AND sk = ?", (pk, sk))
        return _load(rows[0]) if rows else None

    def delete_item(self, pk: str, sk: str) -> None:
        try:
            conn = self._get_conn()
            try:
                conn.execute("DELETE FROM items WHERE pk = ? AND sk = ?", (pk, sk))
                conn.commit()
            finally:
                if self._should_close():
                    conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"delete_item failed: {e}") from e

    def query(
        self,
        pk: str,
        sk_prefix: str | None = None,
        sk_between: tuple[str, str] | None = None,
        limit: int | None = None,
    ) -> list[Item]:
        sql = "SELECT data FROM items WHERE pk = ?"
        params: list[Any] = [pk]

        if sk_prefix is not None:
            # substr comparison keeps "%" and "_" in keys literal
            sql += " AND substr(sk, 1, ?) = ?"
            params.extend([len(sk_prefix), sk_prefix])
        if sk_between is not None:
            sql += " AND sk BETWEEN ? AND ?"
            params.extend(sk_between)

        sql += " ORDER BY sk ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        return [_load(row) for row in self._select(sql, tuple(params))]

    def query_index(self, gsi1pk: str, sk_prefix: str | None = None) -> list[Item]:
        sql = "SELECT data FROM items WHERE gsi1pk = ?"
        params: list[Any] = [gsi1pk]
        if sk_prefix is not None:
            sql += " AND substr(gsi1sk, 1, ?) = ?"
            params.extend([len(sk_prefix), sk_prefix])
        sql += " ORDER BY gsi1sk ASC"
        return [_load(row) for row in self._select(sql, tuple(params))]

    def _select(self, sql: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
        try:
            conn = self._get_conn()
            try:
                return conn.execute(sql, params).fetchall()
            finally:
                if self._should_close():
                    conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"query failed: {e}") from e
