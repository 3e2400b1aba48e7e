# src/dagsmith/seeding.py
from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Any

import numpy as np
import pandas as pd
from pandas.api import types as ptypes

from dagsmith.adapters.base import Dialect
from dagsmith.config.models import SeedConfig
from dagsmith.core import Node
from dagsmith.errors import ModelExecutionError

INSERT_BATCH_SIZE = 500


# ----------------------------- File I/O & Schema (dtypes) -----------------------------

# Only spellings that survive a round trip through the target are narrowed.
# Values such as 00501 or NA stay text.
_INTEGER = r"-?(?:0|[1-9][0-9]{0,17})"
_DECIMAL = r"-?(?:0|[1-9][0-9]*)\.[0-9]+"


def read_seed(node: Node) -> pd.DataFrame:
    """
    Read a seed CSV into a DataFrame. The header row defines the column names
    and order. Every cell is read as written; only empty cells become null.
    Columns are then narrowed to boolean, integer or double when every value
    converts without loss. Columns listed in `column_types` stay text and are
    left to the target to cast.
    """
    cfg = node.config
    assert isinstance(cfg, SeedConfig)
    overrides = cfg.column_types or {}
    try:
        df = pd.read_csv(
            node.path,
            sep=cfg.delimiter or ",",
            dtype="string",
            keep_default_na=False,
            na_values=[""],
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
        raise ModelExecutionError(
            node.name, str(node.path), f"could not read seed file: {exc}"
        ) from exc
    for col in df.columns:
        if str(col) not in overrides:
            df[col] = _narrow(df[col])
    return df


def _narrow(series: pd.Series) -> pd.Series:
    values = series.dropna()
    if values.empty:
        return series
    if values.str.lower().isin(["true", "false"]).all():
        return (series.str.lower() == "true").astype("boolean")
    if values.str.fullmatch(_INTEGER).all():
        return series.astype("Int64")
    if values.str.fullmatch(_DECIMAL).all():
        return series.astype("Float64")
    return series


def _logical_type(series: pd.Series) -> str:
    if ptypes.is_bool_dtype(series):
        return "boolean"
    if ptypes.is_integer_dtype(series):
        return "integer"
    if ptypes.is_float_dtype(series):
        return "double"
    if ptypes.is_datetime64_any_dtype(series):
        return "timestamp"
    return "text"


def column_types(
    df: pd.DataFrame, dialect: Dialect, overrides: dict[str, str] | None = None
) -> list[tuple[str, str]]:
    """(column, SQL type) per CSV column; `overrides` wins over inferred dtypes."""
    overrides = overrides or {}
    unknown = sorted(set(overrides) - set(df.columns))
    if unknown:
        raise ValueError(f"column_types refers to unknown column(s): {', '.join(unknown)}")
    return [
        (str(col), overrides.get(str(col)) or dialect.type_name(_logical_type(df[col])))
        for col in df.columns
    ]


def _py(value: Any) -> Any:
    if value is None or value is pd.NA or value is pd.NaT:
        return None
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and np.isnan(value):
        return None
    return value


def _rows(df: pd.DataFrame) -> Iterator[list[Any]]:
    for row in df.itertuples(index=False, name=None):
        yield [_py(v) for v in row]


def insert_batches(
    table_sql: str,
    df: pd.DataFrame,
    dialect: Dialect,
    *,
    batch_size: int = INSERT_BATCH_SIZE,
) -> list[str]:
    """`insert into <table> (...) values (...), ...` statements, `batch_size` rows each."""
    if df.empty:
        return []
    cols = ", ".join(dialect.quote(str(c)) for c in df.columns)
    out: list[str] = []
    batch: list[str] = []
    for row in _rows(df):
        batch.append("(" + ", ".join(dialect.literal(v) for v in row) + ")")
        if len(batch) >= batch_size:
            out.append(_insert(table_sql, cols, batch))
            batch = []
    if batch:
        out.append(_insert(table_sql, cols, batch))
    return out


def _insert(table_sql: str, cols: str, values: Sequence[str]) -> str:
    return f"insert into {table_sql} ({cols}) values\n  " + ",\n  ".join(values)


def create_table_ddl(table_sql: str, columns: Sequence[tuple[str, str]], dialect: Dialect) -> str:
    body = ",\n  ".join(f"{dialect.quote(name)} {typ}" for name, typ in columns)
    return f"create temporary table {table_sql} (\n  {body}\n)"
