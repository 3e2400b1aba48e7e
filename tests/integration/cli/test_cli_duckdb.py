# tests/integration/cli/test_cli_duckdb.py
from __future__ import annotations

import json

import pytest

from dagsmith.cli import app


@pytest.mark.integration
@pytest.mark.duckdb
@pytest.mark.cli
def test_build_jaffle_shop(cli_runner, jaffle_project, duckdb_env):
    res = cli_runner.invoke(app, ["build", str(jaffle_project), "--env", "dev", "-j", "2"], env=duckdb_env)
    assert res.exit_code == 0, res.output

    target = jaffle_project / "target"
    manifest = json.loads((target / "manifest.json").read_text(encoding="utf-8"))
    assert "customers" in manifest["nodes"]
    assert manifest["parent_map"]["customers"] == ["stg_customers", "stg_orders"]

    results = json.loads((target / "run_results.json").read_text(encoding="utf-8"))
    assert results["run"]["status"] == "success"
    assert {t["status"] for t in results["tests"]} <= {"pass", "warn"}
    assert (target / "compiled" / "customers.sql").is_file()


@pytest.mark.integration
@pytest.mark.duckdb
@pytest.mark.cli
def test_seed_run_then_test(cli_runner, jaffle_project, duckdb_env):
    res = cli_runner.invoke(app, ["seed", str(jaffle_project)], env=duckdb_env)
    assert res.exit_code == 0, res.output
    assert "Seeded 3 table(s)" in res.output

    res = cli_runner.invoke(app, ["run", str(jaffle_project), "--select", "+customers"], env=duckdb_env)
    assert res.exit_code == 0, res.output

    res = cli_runner.invoke(app, ["test", str(jaffle_project), "--select", "customers"], env=duckdb_env)
    assert res.exit_code == 0, res.output
    assert "fail=0" in res.output


@pytest.mark.integration
@pytest.mark.duckdb
@pytest.mark.cli
def test_failed_test_exits_with_runtime_code(cli_runner, make_project, duckdb_env):
    proj = make_project(
        {
            "models/m.sql": "select 1 as id union all select 1",
            "models/schema.yml": """
                models:
                  - name: m
                    columns:
                      - name: id
                        tests: [unique]
            """,
        }
    )
    res = cli_runner.invoke(app, ["build", str(proj)], env=duckdb_env)
    assert res.exit_code == 1
    assert "unique.m.id" in res.output


@pytest.mark.integration
@pytest.mark.cli
@pytest.mark.parametrize(
    "files",
    [
        {"models/a.sql": "select * from {{ ref('b') }}", "models/b.sql": "select * from {{ ref('a') }}"},
        {"models/a.sql": "select * from {{ ref('nowhere') }}"},
        {"models/a.sql": "{% set n = 'b' %}select * from {{ ref(n) }}", "models/b.sql": "select 1"},
        {"models/a.sql": "{{ config(materialized='snapshot') }}select 1"},
    ],
)
def test_static_failures_exit_2_and_touch_nothing(cli_runner, make_project, duckdb_env, files):
    proj = make_project(files)
    res = cli_runner.invoke(app, ["run", str(proj)], env=duckdb_env)
    assert res.exit_code == 2, res.output
    assert not (proj / "target" / "run_results.json").exists()


@pytest.mark.integration
@pytest.mark.cli
def test_compile_and_dag_commands(cli_runner, jaffle_project, duckdb_env):
    res = cli_runner.invoke(app, ["compile", str(jaffle_project)], env=duckdb_env)
    assert res.exit_code == 0, res.output
    sql = (jaffle_project / "target" / "compiled" / "orders.sql").read_text(encoding="utf-8")
    assert '"main"."stg_orders"' in sql
    assert "gift_card_amount" in sql

    res = cli_runner.invoke(
        app,
        ["compile", str(jaffle_project), "--vars", "payment_methods=[cash]"],
        env=duckdb_env,
    )
    assert res.exit_code == 0, res.output
    sql = (jaffle_project / "target" / "compiled" / "orders.sql").read_text(encoding="utf-8")
    assert "cash_amount" in sql and "gift_card_amount" not in sql

    res = cli_runner.invoke(app, ["dag", str(jaffle_project)], env=duckdb_env)
    assert res.exit_code == 0, res.output
    mmd = (jaffle_project / "target" / "dag.mmd").read_text(encoding="utf-8")
    assert "stg_orders --> orders" in mmd


@pytest.mark.integration
@pytest.mark.cli
def test_docs_generate_includes_catalog(cli_runner, jaffle_project, duckdb_env):
    assert cli_runner.invoke(app, ["seed", str(jaffle_project)], env=duckdb_env).exit_code == 0
    res = cli_runner.invoke(app, ["docs-generate", str(jaffle_project)], env=duckdb_env)
    assert res.exit_code == 0, res.output
    manifest = json.loads((jaffle_project / "target" / "manifest.json").read_text(encoding="utf-8"))
    cols = {c["name"]: c["data_type"] for c in manifest["nodes"]["raw_orders"]["columns"]}
    assert cols["order_date"] == "DATE"


@pytest.mark.unit
@pytest.mark.cli
def test_version_and_help(cli_runner):
    res = cli_runner.invoke(app, ["--version"])
    assert res.exit_code == 0
    assert "dagsmith" in res.output

    res = cli_runner.invoke(app, ["run", "--help"])
    assert res.exit_code == 0
    assert "--full-refresh" in res.output
