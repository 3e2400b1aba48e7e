# tests/unit/test_seeding_unit.py
from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

from dagsmith import seeding
from dagsmith.adapters.duckdb import DUCKDB_DIALECT
from dagsmith.config.models import SeedConfig
from dagsmith.core import Node
from dagsmith.errors import ModelExecutionError


def _seed(path: Path, **cfg) -> Node:
    return Node(name=path.stem, resource_type="seed", path=path, config=SeedConfig(**cfg))


@pytest.mark.unit
def test_read_seed_keeps_header_order(tmp_path: Path):
    p = tmp_path / "users.csv"
    p.write_text("id,name,score\n1,A,1.5\n2,B,\n", encoding="utf-8")

    df = seeding.read_seed(_seed(p))
    assert list(df.columns) == ["id", "name", "score"]
    assert len(df) == 2


@pytest.mark.unit
def test_read_seed_honours_delimiter_and_overrides(tmp_path: Path):
    p = tmp_path / "orders.csv"
    p.write_text("id;order_date\n1;2018-01-01\n", encoding="utf-8")

    df = seeding.read_seed(_seed(p, delimiter=";", column_types={"order_date": "date"}))
    assert list(df.columns) == ["id", "order_date"]
    assert df["order_date"].iloc[0] == "2018-01-01"


@pytest.mark.unit
def test_read_seed_keeps_cells_verbatim(tmp_path: Path):
    p = tmp_path / "people.csv"
    p.write_text(
        "id,zip,last_name,active,score\n1,00501,NA,true,0.50\n2,10001,,false,\n",
        encoding="utf-8",
    )

    df = seeding.read_seed(_seed(p))
    assert list(df["zip"]) == ["00501", "10001"]
    assert df["last_name"].iloc[0] == "NA"
    assert df["last_name"].isna().iloc[1]
    cols = dict(seeding.column_types(df, DUCKDB_DIALECT))
    assert cols == {
        "id": "BIGINT",
        "zip": "VARCHAR",
        "last_name": "VARCHAR",
        "active": "BOOLEAN",
        "score": "DOUBLE",
    }


@pytest.mark.unit
def test_read_seed_empty_file_is_execution_error(tmp_path: Path):
    p = tmp_path / "empty.csv"
    p.write_text("", encoding="utf-8")
    with pytest.raises(ModelExecutionError, match="could not read seed file"):
        seeding.read_seed(_seed(p))


@pytest.mark.unit
def test_column_types_inferred_and_overridden():
    df = pd.DataFrame(
        {
            "id": [1, 2],
            "ok": [True, False],
            "amount": [1.5, 2.0],
            "name": ["a", "b"],
            "ts": pd.to_datetime(["2020-01-01", "2020-01-02"]),
        }
    )
    cols = seeding.column_types(df, DUCKDB_DIALECT, {"name": "VARCHAR(10)"})
    assert cols == [
        ("id", "BIGINT"),
        ("ok", "BOOLEAN"),
        ("amount", "DOUBLE"),
        ("name", "VARCHAR(10)"),
        ("ts", "TIMESTAMP"),
    ]


@pytest.mark.unit
def test_column_types_rejects_unknown_override():
    df = pd.DataFrame({"id": [1]})
    with pytest.raises(ValueError, match="unknown column"):
        seeding.column_types(df, DUCKDB_DIALECT, {"nope": "int"})


@pytest.mark.unit
def test_insert_batches_split_and_render_nulls():
    df = pd.DataFrame({"id": [1, 2, 3], "v": ["x", None, "z'q"]})
    stmts = seeding.insert_batches('"t"', df, DUCKDB_DIALECT, batch_size=2)
    assert stmts == [
        "insert into \"t\" (\"id\", \"v\") values\n  (1, 'x'),\n  (2, null)",
        "insert into \"t\" (\"id\", \"v\") values\n  (3, 'z''q')",
    ]


@pytest.mark.unit
def test_insert_batches_empty_frame():
    assert seeding.insert_batches('"t"', pd.DataFrame({"id": []}), DUCKDB_DIALECT) == []


@pytest.mark.unit
def test_create_table_ddl():
    ddl = seeding.create_table_ddl('"b"', [("id", "BIGINT"), ("name", "VARCHAR")], DUCKDB_DIALECT)
    assert ddl == 'create temporary table "b" (\n  "id" BIGINT,\n  "name" VARCHAR\n)'
