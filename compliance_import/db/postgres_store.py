from __future__ import annotations

import logging
import os
from collections.abc import Collection, Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any

import psycopg2
import psycopg2.errors
from psycopg2 import sql
from psycopg2.extras import execute_values, register_uuid
from psycopg2.pool import ThreadedConnectionPool

from compliance_import.config.loader import DatabaseConfig
from compliance_import.db.store import (
    DuplicateRecordError,
    ExistingRecord,
    RecordTypeRow,
    StoreError,
    StoreWriteError,
    Triple,
)

"""PostgreSQL RecordStore on psycopg2.

Connections come from a ThreadedConnectionPool sized to the concurrency
window. Every call runs in its own short transaction (``with conn``), so a
failed write rolls back only itself and committed rows stay committed.

Lookups are one statement per reference kind (``= ANY(%s)``); the duplicate
check joins the target table against a VALUES list built with
``execute_values``.
"""

__all__ = [
    "PostgresRecordStore",
    "build_dsn",
]

logger = logging.getLogger(__name__)

register_uuid()


def build_dsn(db_cfg: DatabaseConfig) -> str:
    """Resolve connection parameters.

    Priority (.env is loaded into the environment with override beforehand):
        1. DATABASE_URL / PGDSN
        2. individual PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
        3. the ``database`` section of config/import.yml
    """
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


class PostgresRecordStore:
    def __init__(
        self,
        dsn: str,
        *,
        max_connections: int = 10,
        facility_table: str = "facilities",
        facility_key: str = "code",
        pool: Any | None = None,
    ) -> None:
        try:
            self._pool = pool or ThreadedConnectionPool(1, max_connections, dsn)
        except psycopg2.Error as e:
            raise StoreError(f"cannot connect to database: {e}") from e
        self._facility_table = facility_table
        self._facility_key = facility_key

    def close(self) -> None:
        self._pool.closeall()

    def __enter__(self) -> PostgresRecordStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        conn = self._pool.getconn()
        try:
            with conn:  # commit on success, rollback on error
                with conn.cursor() as cur:
                    yield cur
        finally:
            self._pool.putconn(conn, close=bool(conn.closed))

    # --- lookups ---------------------------------------------------------------------
    def find_subjects(self, table: str, key_column: str, keys: Collection[str]) -> dict[str, Any]:
        query = sql.SQL("SELECT {key}, id FROM {table} WHERE {key} = ANY(%s)").format(
            key=sql.Identifier(key_column), table=sql.Identifier(table)
        )
        return dict(self._fetch(query, (list(keys),)))

    def find_facilities(self, codes: Collection[str]) -> dict[str, Any]:
        query = sql.SQL("SELECT {key}, id FROM {table} WHERE {key} = ANY(%s)").format(
            key=sql.Identifier(self._facility_key), table=sql.Identifier(self._facility_table)
        )
        return dict(self._fetch(query, (list(codes),)))

    def find_record_types(self, table: str, facility_codes: Collection[str]) -> list[RecordTypeRow]:
        query = sql.SQL("SELECT id, name, facility, period_days FROM {table} WHERE facility = ANY(%s)").format(
            table=sql.Identifier(table)
        )
        return [RecordTypeRow(*row) for row in self._fetch(query, (list(facility_codes),))]

    def find_by_triples(self, table: str, columns: Sequence[str], triples: Collection[Triple]) -> list[ExistingRecord]:
        if not triples:
            return []
        a, b, c = (sql.Identifier(col) for col in columns)
        query = sql.SQL(
            "SELECT t.id, t.{a}, t.{b}, t.{c}, t.deleted_at IS NOT NULL"
            " FROM {table} AS t JOIN (VALUES %s) AS v(a, b, c)"
            " ON t.{a} = v.a AND t.{b} = v.b AND t.{c} = v.c"
        ).format(a=a, b=b, c=c, table=sql.Identifier(table))
        try:
            with self._cursor() as cur:
                rows = execute_values(cur, query, list(triples), fetch=True)
        except psycopg2.Error as e:
            raise StoreError(f"{table}: duplicate lookup failed: {_pg_message(e)}") from e
        return [ExistingRecord(id=r[0], triple=(r[1], r[2], r[3]), archived=bool(r[4])) for r in rows]

    def _fetch(self, query: sql.Composable, params: tuple[Any, ...]) -> list[tuple[Any, ...]]:
        try:
            with self._cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()
        except psycopg2.Error as e:
            raise StoreError(f"lookup failed: {_pg_message(e)}") from e

    # --- writes ----------------------------------------------------------------------
    def insert_record(self, table: str, values: Mapping[str, Any]) -> Any:
        columns = list(values)
        query = sql.SQL("INSERT INTO {table} ({cols}) VALUES ({vals}) RETURNING id").format(
            table=sql.Identifier(table),
            cols=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            vals=sql.SQL(", ").join(sql.Placeholder() for _ in columns),
        )
        with self._write(table) as cur:
            cur.execute(query, [values[c] for c in columns])
            return cur.fetchone()[0]

    def update_record(self, table: str, record_id: Any, values: Mapping[str, Any]) -> None:
        columns = list(values)
        query = sql.SQL("UPDATE {table} SET {assignments} WHERE id = %s").format(
            table=sql.Identifier(table),
            assignments=sql.SQL(", ").join(
                sql.SQL("{} = {}").format(sql.Identifier(c), sql.Placeholder()) for c in columns
            ),
        )
        with self._write(table) as cur:
            cur.execute(query, [values[c] for c in columns] + [record_id])
            if cur.rowcount == 0:
                raise StoreWriteError(f"{table}: record {record_id} not found")

    @contextmanager
    def _write(self, table: str) -> Iterator[Any]:
        try:
            with self._cursor() as cur:
                yield cur
        except psycopg2.errors.UniqueViolation as e:
            raise DuplicateRecordError(f"{table}: {_pg_message(e)}") from e
        except psycopg2.Error as e:
            raise StoreWriteError(f"{table}: {_pg_message(e)}") from e


def _pg_message(e: psycopg2.Error) -> str:
    text = (getattr(e, "pgerror", None) or str(e)).strip()
    return text.splitlines()[0] if text else type(e).__name__
