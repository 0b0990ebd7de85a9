"""
PostgreSQL storage — one encrypted blob per row.

Table layout (created on initialize):

    <prefix><namespace> (
        id          TEXT PRIMARY KEY,
        data        BYTEA NOT NULL,      -- AES-GCM(JSON record)
        created_at  TIMESTAMPTZ NOT NULL,
        updated_at  TIMESTAMPTZ NOT NULL
    )

Fields inside the blob are opaque to SQL, so filtering or sorting on them
decrypts the whole table in memory. Sorting by createdAt/updatedAt without a
filter is pushed down to SQL.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import UTC, datetime
from typing import Any

from keyward.crypto import decrypt, encrypt
from keyward.errors import DecryptionError
from keyward.storage.base import (
    QueryOptions,
    StorageAdapter,
    StorageKind,
    StorageResult,
    apply_query,
    matches,
)

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], AbstractContextManager[Any]]

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# Record fields that map onto real columns
_SQL_SORT_COLUMNS = {
    "createdAt": "created_at",
    "created_at": "created_at",
    "updatedAt": "updated_at",
    "updated_at": "updated_at",
}


def table_name(prefix: str, namespace: str) -> str:
    name = f"{prefix}{namespace}".replace("-", "_").replace(".", "_")
    if not _IDENTIFIER.fullmatch(name):
        raise ValueError(f"Invalid table name derived from namespace: {name!r}")
    return name


def _default_connection_factory() -> AbstractContextManager[Any]:
    from keyward.db.connection import get_connection

    return get_connection()


class PostgresStorage(StorageAdapter):
    kind = StorageKind.POSTGRES

    def __init__(
        self,
        master_key: bytes,
        namespace: str = "default",
        table_prefix: str = "keyward_",
        connection_factory: ConnectionFactory | None = None,
    ):
        super().__init__(namespace)
        self.table = table_name(table_prefix, namespace)
        self._key = master_key
        self._connect = connection_factory or _default_connection_factory

    # ── Lifecycle ────────────────────────────────────────────────────

    def _setup(self) -> None:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    id TEXT PRIMARY KEY,
                    data BYTEA NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
                """
            )
            cur.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{self.table}_created_at "
                f"ON {self.table} (created_at)"
            )
        logger.debug("Postgres storage ready: %s", self.table)

    # ── Codec ────────────────────────────────────────────────────────

    def _seal(self, record: dict) -> bytes:
        return encrypt(json.dumps(record, default=str), self._key)

    def _open(self, blob: Any) -> dict:
        return json.loads(decrypt(bytes(blob), self._key))

    def _open_rows(self, rows: list[tuple]) -> list[dict]:
        """Decrypt (id, data) rows, skipping any that no longer decrypt."""
        records = []
        for row_id, blob in rows:
            try:
                records.append(self._open(blob))
            except (DecryptionError, json.JSONDecodeError) as e:
                logger.error("Skipping unreadable row %s in %s: %s", row_id, self.table, e)
        return records

    # ── Operations ───────────────────────────────────────────────────

    def get(self, id: str) -> StorageResult:
        def op() -> dict:
            with self._connect() as conn, conn.cursor() as cur:
                cur.execute(f"SELECT data FROM {self.table} WHERE id = %s", (id,))
                row = cur.fetchone()
            if not row:
                raise self._missing(id)
            return self._open(row[0])

        return self._execute(op)

    def get_many(self, options: QueryOptions | None = None) -> StorageResult:
        def op() -> list[dict]:
            column = _SQL_SORT_COLUMNS.get(options.sort_field or "") if options else None
            if options is None or options.filter or (options.sort_field and not column):
                return apply_query(self._all(), options)

            sql = f"SELECT id, data FROM {self.table}"
            params: list[Any] = []
            if column:
                direction = "DESC" if options.sort_order == "desc" else "ASC"
                sql += f" ORDER BY {column} {direction}"
            if options.limit is not None:
                sql += " LIMIT %s"
                params.append(options.limit)
            if options.offset:
                sql += " OFFSET %s"
                params.append(options.offset)
            with self._connect() as conn, conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall()
            return self._open_rows(rows)

        return self._execute(op)

    def create(self, id: str, data: dict) -> StorageResult:
        def op() -> dict:
            record = {**data, "id": id}
            now = datetime.now(UTC)
            with self._connect() as conn, conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO {self.table} (id, data, created_at, updated_at)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (id) DO NOTHING
                    RETURNING id
                    """,
                    (id, self._seal(record), now, now),
                )
                inserted = cur.fetchone()
            if not inserted:
                raise self._duplicate(id)
            return record

        return self._execute(op)

    def update(self, id: str, partial: dict) -> StorageResult:
        def op() -> dict:
            with self._connect() as conn, conn.cursor() as cur:
                cur.execute(f"SELECT data FROM {self.table} WHERE id = %s FOR UPDATE", (id,))
                row = cur.fetchone()
                if not row:
                    raise self._missing(id)
                merged = {**self._open(row[0]), **partial, "id": id}
                cur.execute(
                    f"UPDATE {self.table} SET data = %s, updated_at = %s WHERE id = %s",
                    (self._seal(merged), datetime.now(UTC), id),
                )
            return merged

        return self._execute(op)

    def delete(self, id: str) -> StorageResult:
        def op() -> bool:
            with self._connect() as conn, conn.cursor() as cur:
                cur.execute(f"DELETE FROM {self.table} WHERE id = %s", (id,))
                deleted = cur.rowcount > 0
            if not deleted:
                raise self._missing(id)
            return True

        return self._execute(op)

    def query(self, criteria: dict[str, Any]) -> StorageResult:
        return self._execute(lambda: [r for r in self._all() if matches(r, criteria)])

    def clear(self) -> StorageResult:
        def op() -> None:
            with self._connect() as conn, conn.cursor() as cur:
                cur.execute(f"DELETE FROM {self.table}")

        return self._execute(op)

    def _all(self) -> list[dict]:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(f"SELECT id, data FROM {self.table} ORDER BY created_at")
            rows = cur.fetchall()
        return self._open_rows(rows)
