# src/dagsmith/materialize.py
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

from dagsmith import seeding
from dagsmith.adapters.base import Dialect, RelationKind
from dagsmith.config.models import ModelConfig, SeedConfig
from dagsmith.core import Node
from dagsmith.errors import ModelExecutionError

# Only "dml" rows count towards rows_affected; "swap" moves already counted rows.
StatementKind = Literal["ddl", "dml", "swap"]

BUILD_SUFFIX = "__dagsmith_build"
DELTA_SUFFIX = "__dagsmith_delta"


@dataclass(frozen=True)
class Statement:
    sql: str
    kind: StatementKind = "ddl"


@dataclass(frozen=True)
class TargetState:
    """
    What exists at the target before a node runs.

    kind           'table', 'view' or None
    columns        physical (name, type) of the existing relation
    query_columns  (name, type) the compiled query produces (models with an
                   existing relation only)
    """

    kind: RelationKind | None = None
    columns: tuple[tuple[str, str], ...] = ()
    query_columns: tuple[tuple[str, str], ...] = ()
    full_refresh: bool = False


def materialize(
    node: Node,
    compiled_sql: str | None,
    target_state: TargetState,
    dialect: Dialect,
) -> list[Statement]:
    """
    Produce the ordered statements that bring `node.relation` up to date.
    The caller runs them in a single transaction.
    """
    if not node.relation:
        raise ValueError(f"{node.name}: relation not bound; compile the project first")

    mat = node.materialized
    if mat == "seed":
        return _seed(node, target_state, dialect)

    if compiled_sql is None:
        raise ValueError(f"{node.name}: compiled SQL missing")

    if mat == "view":
        return _view(node, compiled_sql, target_state, dialect)
    if mat == "table":
        return _table(node, compiled_sql, target_state, dialect)
    if mat == "incremental":
        if target_state.kind != "table" or target_state.full_refresh:
            return _table(node, compiled_sql, target_state, dialect)
        return _incremental(node, compiled_sql, target_state, dialect)
    raise ValueError(f"{node.name}: unknown materialization '{mat}'")


# ---------- view ----------
def _view(node: Node, sql: str, state: TargetState, dialect: Dialect) -> list[Statement]:
    rel = node.relation
    assert rel is not None
    out: list[Statement] = []
    if state.kind == "table":
        out.append(Statement(dialect.drop("table", rel)))
    elif (
        state.kind == "view"
        and not dialect.replace_view
        and not _extends(state.columns, state.query_columns)
    ):
        # Postgres only replaces a view in place when the new column list
        # starts with the old one; anything else must be dropped first.
        out.append(Statement(dialect.drop("view", rel)))
    out.append(Statement(f"create or replace view {rel} as\n{sql}"))
    return out


# ---------- table (build, then swap) ----------
def _layout(columns: Sequence[tuple[str, str]]) -> list[tuple[str, str]]:
    return [(name, typ.strip().lower()) for name, typ in columns]


def _extends(old: Sequence[tuple[str, str]], new: Sequence[tuple[str, str]]) -> bool:
    return bool(old) and _layout(new)[: len(old)] == _layout(old)


def _swap(
    node: Node,
    build: str,
    build_columns: Sequence[tuple[str, str]],
    state: TargetState,
    dialect: Dialect,
) -> list[Statement]:
    """
    Move the build table's rows into `node.relation`.

    An existing table with the same column layout is refreshed in place, so
    views selecting from it stay valid. Otherwise the old relation is dropped
    and recreated; a drop blocked by dependent views fails the node.
    """
    rel = node.relation
    assert rel is not None
    out: list[Statement] = []
    if (
        state.kind == "table"
        and build_columns
        and _layout(state.columns) == _layout(build_columns)
    ):
        cols = ", ".join(dialect.quote(c) for c, _ in build_columns)
        out.append(Statement(f"delete from {rel}", kind="swap"))
        out.append(Statement(f"insert into {rel} ({cols}) select {cols} from {build}", kind="swap"))
    else:
        if state.kind is not None:
            out.append(Statement(dialect.drop(state.kind, rel)))
        out.append(Statement(f"create table {rel} as select * from {build}"))
    out.append(Statement(dialect.drop("table", build)))
    return out


def _table(node: Node, sql: str, state: TargetState, dialect: Dialect) -> list[Statement]:
    build = dialect.quote(node.identifier + BUILD_SUFFIX)
    return [
        Statement(f"create temporary table {build} as\n{sql}"),
        *_swap(node, build, state.query_columns, state, dialect),
    ]


# ---------- incremental ----------
def _incremental(node: Node, sql: str, state: TargetState, dialect: Dialect) -> list[Statement]:
    cfg = node.config
    assert isinstance(cfg, ModelConfig)
    rel = node.relation
    assert rel is not None
    q = dialect.quote

    existing = [c for c, _ in state.columns]
    incoming = list(state.query_columns)
    incoming_names = [c for c, _ in incoming]
    added = [(c, t) for c, t in incoming if c not in existing]
    removed = [c for c in existing if c not in incoming_names]

    policy = cfg.on_schema_change or "ignore"
    if policy == "fail" and (added or removed):
        detail = []
        if added:
            detail.append("new columns: " + ", ".join(c for c, _ in added))
        if removed:
            detail.append("missing columns: " + ", ".join(removed))
        raise ModelExecutionError(
            node.name,
            rel,
            "schema change detected with on_schema_change='fail' (" + "; ".join(detail) + ")",
        )

    delta = q(node.identifier + DELTA_SUFFIX)
    out = [Statement(f"create temporary table {delta} as\n{sql}")]

    if policy == "append_new_columns":
        for col, typ in added:
            out.append(Statement(f"alter table {rel} add column {q(col)} {typ}"))
        shared = incoming_names
    else:
        shared = [c for c in incoming_names if c in existing]

    if not shared:
        raise ModelExecutionError(node.name, rel, "no columns shared with the existing relation")

    cols = ", ".join(q(c) for c in shared)

    if cfg.effective_strategy == "merge":
        keys = list(cfg.unique_key or [])
        missing = [k for k in keys if k not in shared]
        if missing:
            raise ModelExecutionError(
                node.name, rel, f"unique_key column(s) not in the model output: {', '.join(missing)}"
            )
        wanted = cfg.merge_update_columns or shared
        update_cols = [c for c in wanted if c in shared and c not in keys]

        tbl = q(node.identifier)
        if update_cols:
            assignments = ", ".join(f"{q(c)} = s.{q(c)}" for c in update_cols)
            match = " and ".join(f"{tbl}.{q(k)} is not distinct from s.{q(k)}" for k in keys)
            changed = " or ".join(f"{tbl}.{q(c)} is distinct from s.{q(c)}" for c in update_cols)
            out.append(
                Statement(
                    f"update {rel} set {assignments}\n"
                    f"from {delta} as s\n"
                    f"where {match}\n  and ({changed})",
                    kind="dml",
                )
            )
        key_match = " and ".join(f"t.{q(k)} is not distinct from s.{q(k)}" for k in keys)
        select_cols = ", ".join(f"s.{q(c)}" for c in shared)
        out.append(
            Statement(
                f"insert into {rel} ({cols})\n"
                f"select {select_cols} from {delta} as s\n"
                f"where not exists (select 1 from {rel} as t where {key_match})",
                kind="dml",
            )
        )
    else:
        out.append(
            Statement(
                f"insert into {rel} ({cols})\n"
                f"select {cols} from {delta}\n"
                f"except\n"
                f"select {cols} from {rel}",
                kind="dml",
            )
        )

    out.append(Statement(dialect.drop("table", delta)))
    return out


# ---------- seed ----------
def _seed(node: Node, state: TargetState, dialect: Dialect) -> list[Statement]:
    cfg = node.config
    assert isinstance(cfg, SeedConfig)
    df = seeding.read_seed(node)
    try:
        columns = seeding.column_types(df, dialect, cfg.column_types)
    except ValueError as exc:
        raise ModelExecutionError(node.name, node.relation or node.name, str(exc)) from exc

    build = dialect.quote(node.identifier + BUILD_SUFFIX)
    out = [Statement(seeding.create_table_ddl(build, columns, dialect))]
    out += [Statement(sql, kind="dml") for sql in seeding.insert_batches(build, df, dialect)]
    out += _swap(node, build, columns, state, dialect)
    return out
