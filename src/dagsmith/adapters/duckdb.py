# dagsmith/adapters/duckdb.py
from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import Any

import duckdb

from dagsmith.adapters.base import AdapterConnection, Dialect, RelationKind, TargetAdapter

DUCKDB_DIALECT = Dialect(
    name="duckdb",
    replace_view=True,
    type_names={
        "boolean": "BOOLEAN",
        "integer": "BIGINT",
        "double": "DOUBLE",
        "text": "VARCHAR",
        "date": "DATE",
        "timestamp": "TIMESTAMP",
    },
)


class DuckConnection(AdapterConnection):
    """Wraps a DuckDB cursor (its own connection to the shared database)."""

    def __init__(self, cur: duckdb.DuckDBPyConnection):
        self.cur = cur

    def execute(self, sql: str) -> int:
        self.cur.execute(sql)
        desc = self.cur.description
        # DML statements report a single "Count" column
        if desc and len(desc) == 1 and str(desc[0][0]).lower() == "count":
            row = self.cur.fetchone()
            return int(row[0]) if row and row[0] is not None else -1
        return -1

    def fetchall(self, sql: str) -> list[tuple[Any, ...]]:
        return [tuple(r) for r in self.cur.execute(sql).fetchall()]

    def _fetch(self, sql: str, params: list[Any]) -> list[tuple[Any, ...]]:
        return [tuple(r) for r in self.cur.execute(sql, params).fetchall()]

    def begin(self) -> None:
        self.cur.begin()

    def commit(self) -> None:
        self.cur.commit()

    def rollback(self) -> None:
        self.cur.rollback()

    def relation_kind(self, identifier: str, schema: str | None) -> RelationKind | None:
        rows = self._fetch(
            """
            select table_type
            from information_schema.tables
            where table_catalog = current_database()
              and table_schema = ?
              and table_name = ?
            """,
            [schema or "main", identifier],
        )
        if not rows:
            return None
        return "view" if str(rows[0][0]).upper() == "VIEW" else "table"

    def columns(self, identifier: str, schema: str | None) -> list[tuple[str, str]]:
        rows = self._fetch(
            """
            select column_name, data_type
            from information_schema.columns
            where table_catalog = current_database()
              and table_schema = ?
              and table_name = ?
            order by ordinal_position
            """,
            [schema or "main", identifier],
        )
        return [(str(r[0]), str(r[1])) for r in rows]

    def query_columns(self, select_sql: str) -> list[tuple[str, str]]:
        rows = self.fetchall(f"describe select * from (\n{select_sql}\n) as q")
        return [(str(r[0]), str(r[1])) for r in rows]


class DuckAdapter(TargetAdapter):
    ENGINE_NAME = "duckdb"
    dialect = DUCKDB_DIALECT

    def __init__(self, db_path: str = ":memory:", schema: str | None = None):
        if db_path and db_path != ":memory:" and "://" not in db_path:
            with suppress(OSError):
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        super().__init__(schema=schema or "main")
        self.db_path = db_path
        self.con = duckdb.connect(db_path)
        self._lock = threading.Lock()

    @contextmanager
    def connection(self) -> Iterator[DuckConnection]:
        # cursor() opens a new connection to the same database, one per worker
        with self._lock:
            cur = self.con.cursor()
        try:
            yield DuckConnection(cur)
        finally:
            cur.close()

    def close(self) -> None:
        self.con.close()
