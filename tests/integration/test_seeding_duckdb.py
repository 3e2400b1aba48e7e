# tests/integration/test_seeding_duckdb.py
from __future__ import annotations

import datetime

import pytest

from dagsmith.run_executor import execute


@pytest.mark.integration
@pytest.mark.duckdb
def test_seed_round_trip(jaffle_project, compile_dir, duck_adapter):
    compiled = compile_dir(jaffle_project)
    seeds = [n for n, node in compiled.graph.nodes.items() if node.resource_type == "seed"]
    report = execute(compiled.graph, duck_adapter, select=seeds)

    assert report.status == "success"
    with duck_adapter.connection() as conn:
        rows = conn.fetchall('select id, first_name, last_name from "main"."raw_customers" order by id')
        assert rows[0] == (1, "Michael", "P.")
        assert len(rows) == 3
        assert conn.relation_kind("raw_customers", "main") == "table"
        first = conn.scalar('select order_date from "main"."raw_orders" where id = 1')
    assert first == datetime.date(2018, 1, 1)


@pytest.mark.integration
@pytest.mark.duckdb
def test_reseeding_replaces_contents(make_project, compile_dir, duck_adapter):
    proj = make_project({"seeds/people.csv": "id,name\n1,a\n2,b\n"})
    report = execute(compile_dir(proj).graph, duck_adapter)
    assert report.results["people"].rows_affected == 2

    (proj / "seeds" / "people.csv").write_text("id,name\n7,z\n", encoding="utf-8")
    execute(compile_dir(proj).graph, duck_adapter)
    with duck_adapter.connection() as conn:
        assert conn.fetchall('select id, name from "main"."people"') == [(7, "z")]


@pytest.mark.integration
@pytest.mark.duckdb
def test_bad_seed_override_fails_the_node(make_project, compile_dir, duck_adapter):
    proj = make_project(
        {
            "seeds/people.csv": "id,name\n1,a\n",
            "seeds/seeds.yml": """
                seeds:
                  - name: people
                    config:
                      column_types:
                        missing: int
            """,
        }
    )
    report = execute(compile_dir(proj).graph, duck_adapter)
    assert report.status == "failed"
    assert "unknown column" in (report.results["people"].error or "")


@pytest.mark.integration
@pytest.mark.duckdb
def test_seed_values_load_as_written(make_project, compile_dir, duck_adapter):
    proj = make_project({"seeds/zips.csv": "id,zip,last_name\n1,00501,NA\n2,10001,\n"})
    report = execute(compile_dir(proj).graph, duck_adapter)
    assert report.status == "success"
    with duck_adapter.connection() as conn:
        rows = conn.fetchall('select id, zip, last_name from "main"."zips" order by id')
    assert rows == [(1, "00501", "NA"), (2, "10001", None)]
