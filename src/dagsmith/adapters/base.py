# dagsmith/adapters/base.py
from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal

RelationKind = Literal["table", "view"]


def _q(ident: str) -> str:
    return '"' + ident.replace('"', '""') + '"'


@dataclass(frozen=True)
class Dialect:
    """SQL flavour of a target: quoting, view replacement and type names."""

    name: str
    replace_view: bool = True  # supports create or replace view with changed columns
    type_names: dict[str, str] = field(default_factory=dict)

    def quote(self, ident: str) -> str:
        return _q(ident)

    def qualify(self, identifier: str, schema: str | None = None) -> str:
        if schema:
            return f"{_q(schema)}.{_q(identifier)}"
        return _q(identifier)

    def drop(self, kind: RelationKind, relation: str) -> str:
        return f"drop {kind} if exists {relation}"

    def type_name(self, logical: str) -> str:
        """Map a logical type (integer, double, text, ...) onto the engine's name."""
        return self.type_names.get(logical, logical)

    def literal(self, value: Any) -> str:
        if value is None:
            return "null"
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float):
            if math.isnan(value) or math.isinf(value):
                return "null"
            return repr(value)
        if isinstance(value, datetime):
            return "'" + value.isoformat(sep=" ") + "'"
        if isinstance(value, date):
            return "'" + value.isoformat() + "'"
        return "'" + str(value).replace("'", "''") + "'"


class AdapterConnection(ABC):
    """
    One connection, used by exactly one worker at a time. All statements of
    one node run inside `transaction()`.
    """

    @abstractmethod
    def execute(self, sql: str) -> int:
        """Run a statement; return rows affected, or -1 when not reported."""

    @abstractmethod
    def fetchall(self, sql: str) -> list[tuple[Any, ...]]: ...

    @abstractmethod
    def begin(self) -> None: ...

    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def rollback(self) -> None: ...

    @contextmanager
    def transaction(self) -> Iterator[AdapterConnection]:
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()

    @abstractmethod
    def relation_kind(self, identifier: str, schema: str | None) -> RelationKind | None:
        """Return 'table', 'view' or None if nothing of that name exists."""

    @abstractmethod
    def columns(self, identifier: str, schema: str | None) -> list[tuple[str, str]]:
        """Physical (name, type) pairs in ordinal order; [] if the relation is missing."""

    @abstractmethod
    def query_columns(self, select_sql: str) -> list[tuple[str, str]]:
        """(name, type) pairs the SELECT would produce, without reading rows."""

    def scalar(self, sql: str) -> Any:
        rows = self.fetchall(sql)
        return rows[0][0] if rows else None


class TargetAdapter(ABC):
    """Shared handle on a target store; hands out per-node connections."""

    ENGINE_NAME: str = "base"
    dialect: Dialect

    def __init__(self, schema: str | None = None):
        self.schema = schema

    @property
    def engine_name(self) -> str:
        return self.ENGINE_NAME

    @abstractmethod
    def connection(self) -> AbstractContextManager[AdapterConnection]:
        """Context manager yielding a fresh AdapterConnection."""

    def quote(self, ident: str) -> str:
        return self.dialect.quote(ident)

    def qualify(self, identifier: str, schema: str | None = None) -> str:
        return self.dialect.qualify(identifier, schema or self.schema)

    def ensure_schema(self, schema: str | None) -> None:
        if not schema:
            return
        with self.connection() as conn, conn.transaction():
            conn.execute(f"create schema if not exists {self.quote(schema)}")

    def close(self) -> None:  # pragma: no cover - overridden where needed
        return None
