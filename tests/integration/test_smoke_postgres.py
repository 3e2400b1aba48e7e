# tests/integration/test_smoke_postgres.py
from __future__ import annotations

import pytest
from sqlalchemy import create_engine, text

from dagsmith.cli import app


@pytest.mark.integration
@pytest.mark.postgres
@pytest.mark.cli
def test_pg_build_jaffle_shop(cli_runner, jaffle_project, pg_env):
    res = cli_runner.invoke(app, ["build", str(jaffle_project), "--env", "stg"], env=pg_env)
    assert res.exit_code == 0, res.output

    engine = create_engine(pg_env["DAGSMITH_PG_DSN"], future=True)
    schema = pg_env["DAGSMITH_PG_SCHEMA"]
    try:
        with engine.begin() as conn:
            n = conn.execute(
                text(f'select number_of_orders from "{schema}"."customers" where customer_id = 1')
            ).scalar()
            assert n == 2
    finally:
        engine.dispose()

    # second run: the incremental model merges nothing
    res = cli_runner.invoke(app, ["run", str(jaffle_project), "--env", "stg"], env=pg_env)
    assert res.exit_code == 0, res.output
    results = (jaffle_project / "target" / "run_results.json").read_text(encoding="utf-8")
    assert '"rows_affected": 0' in results


@pytest.mark.integration
@pytest.mark.postgres
@pytest.mark.cli
def test_pg_rebuild_keeps_dependent_views(cli_runner, jaffle_project, pg_env):
    res = cli_runner.invoke(app, ["build", str(jaffle_project), "--env", "stg"], env=pg_env)
    assert res.exit_code == 0, res.output

    engine = create_engine(pg_env["DAGSMITH_PG_DSN"], future=True)
    schema = pg_env["DAGSMITH_PG_SCHEMA"]
    try:
        with engine.begin() as conn:
            conn.execute(
                text(
                    f'create or replace view "{schema}"."customer_report" as '
                    f'select customer_id from "{schema}"."customers"'
                )
            )

        res = cli_runner.invoke(app, ["build", str(jaffle_project), "--env", "stg"], env=pg_env)
        assert res.exit_code == 0, res.output

        with engine.begin() as conn:
            n = conn.execute(text(f'select count(*) from "{schema}"."customer_report"')).scalar()
            assert n == 3
            conn.execute(text(f'drop view "{schema}"."customer_report"'))
    finally:
        engine.dispose()
