from __future__ import annotations

import os
import shutil
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from dagsmith.adapters.duckdb import DuckAdapter
from dagsmith.compiler import CompiledProject, compile_project
from dagsmith.core import TargetInfo, load_project
from tests.common.utils import JAFFLE_SHOP, write_files

DUCK_TARGET = TargetInfo(name="test", engine="duckdb", schema="main")


# ---- Projects -----------------------------------------------------------------


@pytest.fixture
def make_project(tmp_path: Path) -> Callable[[dict[str, str]], Path]:
    """Factory: write a throwaway project tree and return its directory."""

    def _make(files: dict[str, str]) -> Path:
        proj = tmp_path / "proj"
        proj.mkdir(exist_ok=True)
        return write_files(proj, files)

    return _make


@pytest.fixture
def compile_dir() -> Callable[..., CompiledProject]:
    def _compile(project_dir: Path, *, cli_vars: dict[str, Any] | None = None) -> CompiledProject:
        return compile_project(load_project(project_dir), target=DUCK_TARGET, cli_vars=cli_vars)

    return _compile


@pytest.fixture
def jaffle_project(tmp_path: Path) -> Path:
    """A private copy of examples/jaffle_shop (artifacts land in tmp)."""
    dst = tmp_path / "jaffle_shop"
    shutil.copytree(
        JAFFLE_SHOP, dst, ignore=shutil.ignore_patterns(".local", "target", "*.duckdb")
    )
    return dst


# ---- DuckDB -------------------------------------------------------------------


@pytest.fixture
def duck_adapter() -> Iterator[DuckAdapter]:
    adapter = DuckAdapter(":memory:")
    try:
        yield adapter
    finally:
        adapter.close()


@pytest.fixture
def duckdb_env(tmp_path: Path) -> dict[str, str]:
    return {
        "DAGSMITH_ENGINE": "duckdb",
        "DAGSMITH_DUCKDB_PATH": str(tmp_path / ".local" / "test.duckdb"),
    }


# ---- Postgres -----------------------------------------------------------------


@pytest.fixture(scope="session")
def pg_env() -> dict[str, str]:
    dsn = os.environ.get("DAGSMITH_PG_DSN")
    if not dsn:
        pytest.skip("DAGSMITH_PG_DSN not set; skipping Postgres tests")
    schema = os.environ.get("DAGSMITH_PG_SCHEMA", "dagsmith_test")
    return {"DAGSMITH_ENGINE": "postgres", "DAGSMITH_PG_DSN": dsn, "DAGSMITH_PG_SCHEMA": schema}


# ---- CLI ----------------------------------------------------------------------


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()
