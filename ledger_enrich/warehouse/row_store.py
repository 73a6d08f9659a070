"""
Row store: generic keyed collections of JSON rows.

Two implementations share one contract:

- InMemoryRowStore keeps rows in dictionaries (tests, dry runs).
- PostgresRowStore keeps one table per collection with the row as JSONB,
  written with INSERT ... ON CONFLICT so writes are idempotent.

Rows are normalized to JSON types on the way in (Decimal and dates become
strings), so both stores return the same shapes.
"""

import copy
import hashlib
import json
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol

import psycopg
from psycopg import sql
from psycopg.types.json import Jsonb
from pydantic import BaseModel

from ledger_enrich.core.errors import PersistenceFault
from ledger_enrich.observability.logger import get_logger
from ledger_enrich.utils.validation import (
    ValidationError,
    sanitize_sql_identifier,
    validate_record_id,
)
from ledger_enrich.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)


def json_default(value: Any) -> Any:
    """json.dumps hook for the value types enrichment rows carry."""
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_row(data: dict[str, Any]) -> dict[str, Any]:
    """Normalize a mapping to plain JSON types."""
    return json.loads(json.dumps(data, default=json_default))


def calculate_checksum(data: dict[str, Any]) -> str:
    """MD5 of the row's canonical JSON form."""
    data_str = json.dumps(data, sort_keys=True, default=json_default)
    return hashlib.md5(data_str.encode()).hexdigest()


class RowStore(Protocol):
    """Generic read/find and write/upsert over named collections."""

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        ...

    def find(
        self,
        collection: str,
        criteria: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        ...

    def upsert(self, collection: str, record_id: str, data: dict[str, Any]) -> None:
        ...

    def insert(self, collection: str, data: dict[str, Any], record_id: str | None = None) -> str:
        ...

    def update(self, collection: str, record_id: str, changes: dict[str, Any]) -> bool:
        ...


class _BaseRowStore:
    """Shared validation and read-modify-write helpers."""

    def _check(self, collection: str, record_id: str | None = None) -> tuple[str, str | None]:
        try:
            collection = sanitize_sql_identifier(collection, "collection")
            if record_id is not None:
                record_id = validate_record_id(record_id)
        except ValidationError as e:
            raise PersistenceFault(str(collection), str(e), record_id) from e
        return collection, record_id

    def _prepare(self, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
        row = to_row(data)
        row["id"] = record_id
        return row

    def update(self, collection: str, record_id: str, changes: dict[str, Any]) -> bool:
        """
        Merge ``changes`` into an existing row.

        Returns:
            False when the row does not exist
        """
        current = self.get(collection, record_id)
        if current is None:
            return False
        current.update(to_row(changes))
        self.upsert(collection, record_id, current)
        return True


class InMemoryRowStore(_BaseRowStore):
    """Row store backed by dictionaries; rows keep insertion order."""

    def __init__(self, seed: dict[str, list[dict[str, Any]]] | None = None):
        """
        Initialize the store.

        Args:
            seed: Optional collection name -> rows (each with an "id")
        """
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        for collection, rows in (seed or {}).items():
            for row in rows:
                self.upsert(collection, row["id"], row)

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        collection, record_id = self._check(collection, record_id)
        row = self._collections.get(collection, {}).get(record_id)
        return copy.deepcopy(row) if row is not None else None

    def find(
        self,
        collection: str,
        criteria: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        collection, _ = self._check(collection)
        wanted = to_row(criteria or {})
        rows = [
            copy.deepcopy(row)
            for row in self._collections.get(collection, {}).values()
            if all(row.get(key) == value for key, value in wanted.items())
        ]
        if order_by:
            rows.sort(key=lambda row: (row.get(order_by) is None, str(row.get(order_by) or "")))
        return rows

    def upsert(self, collection: str, record_id: str, data: dict[str, Any]) -> None:
        collection, record_id = self._check(collection, record_id)
        self._collections.setdefault(collection, {})[record_id] = self._prepare(record_id, data)

    def insert(self, collection: str, data: dict[str, Any], record_id: str | None = None) -> str:
        record_id = record_id or data.get("id") or uuid.uuid4().hex.upper()
        collection, record_id = self._check(collection, record_id)
        rows = self._collections.setdefault(collection, {})
        if record_id in rows:
            raise PersistenceFault(collection, "duplicate id", record_id)
        rows[record_id] = self._prepare(record_id, data)
        return record_id

    def count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))


class PostgresRowStore(_BaseRowStore):
    """
    Row store over PostgreSQL.

    Each collection is a table ``(id TEXT PRIMARY KEY, seq BIGSERIAL,
    data JSONB, checksum TEXT, updated_at TIMESTAMPTZ)``. Tables are created
    on first use. Filters use JSONB containment (``data @> criteria``).
    """

    def __init__(self, pool: DatabaseConnectionPool, create_tables: bool = True):
        """
        Initialize the store.

        Args:
            pool: Open database connection pool
            create_tables: Create collection tables on first use
        """
        self.pool = pool
        self.create_tables = create_tables
        self._ensured: set[str] = set()

    @contextmanager
    def _db_errors(self, collection: str, record_id: str | None = None):
        try:
            yield
        except psycopg.DatabaseError as e:
            logger.error(f"Row store operation failed on {collection}/{record_id}: {e}")
            raise PersistenceFault(collection, str(e), record_id) from e

    def ensure_collection(self, collection: str) -> None:
        """Create the table (and its JSONB index) for a collection if missing."""
        collection, _ = self._check(collection)
        if collection in self._ensured or not self.create_tables:
            return

        table = sql.Identifier(collection)
        index = sql.Identifier(f"{collection}_data_gin")
        with self._db_errors(collection):
            self.pool.execute_command(
                sql.SQL(
                    """
                    CREATE TABLE IF NOT EXISTS {table} (
                        id TEXT PRIMARY KEY,
                        seq BIGSERIAL,
                        data JSONB NOT NULL,
                        checksum TEXT,
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                    """
                ).format(table=table)
            )
            self.pool.execute_command(
                sql.SQL(
                    "CREATE INDEX IF NOT EXISTS {index} ON {table} USING GIN (data jsonb_path_ops)"
                ).format(index=index, table=table)
            )
        self._ensured.add(collection)

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        collection, record_id = self._check(collection, record_id)
        self.ensure_collection(collection)
        query = sql.SQL("SELECT data FROM {table} WHERE id = %s").format(
            table=sql.Identifier(collection)
        )
        with self._db_errors(collection, record_id):
            rows = self.pool.execute_query(query, (record_id,))
        return rows[0]["data"] if rows else None

    def find(
        self,
        collection: str,
        criteria: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        collection, _ = self._check(collection)
        self.ensure_collection(collection)

        params: list[Any] = [Jsonb(to_row(criteria or {}))]
        query = sql.SQL("SELECT data FROM {table} WHERE data @> %s").format(
            table=sql.Identifier(collection)
        )
        if order_by:
            query += sql.SQL(" ORDER BY data->>%s::text NULLS LAST, seq")
            params.append(order_by)
        else:
            query += sql.SQL(" ORDER BY seq")

        with self._db_errors(collection):
            rows = self.pool.execute_query(query, tuple(params))
        return [row["data"] for row in rows]

    def upsert(self, collection: str, record_id: str, data: dict[str, Any]) -> None:
        collection, record_id = self._check(collection, record_id)
        self.ensure_collection(collection)
        row = self._prepare(record_id, data)

        command = sql.SQL(
            """
            INSERT INTO {table} (id, data, checksum, updated_at)
            VALUES (%s, %s, %s, now())
            ON CONFLICT (id) DO UPDATE SET
                data = EXCLUDED.data,
                checksum = EXCLUDED.checksum,
                updated_at = EXCLUDED.updated_at
            """
        ).format(table=sql.Identifier(collection))

        with self._db_errors(collection, record_id):
            self.pool.execute_command(command, (record_id, Jsonb(row), calculate_checksum(row)))

    def insert(self, collection: str, data: dict[str, Any], record_id: str | None = None) -> str:
        record_id = record_id or data.get("id") or uuid.uuid4().hex.upper()
        collection, record_id = self._check(collection, record_id)
        self.ensure_collection(collection)
        row = self._prepare(record_id, data)

        command = sql.SQL(
            "INSERT INTO {table} (id, data, checksum) VALUES (%s, %s, %s)"
        ).format(table=sql.Identifier(collection))

        with self._db_errors(collection, record_id):
            try:
                self.pool.execute_command(command, (record_id, Jsonb(row), calculate_checksum(row)))
            except psycopg.errors.UniqueViolation as e:
                raise PersistenceFault(collection, "duplicate id", record_id) from e
        return record_id
