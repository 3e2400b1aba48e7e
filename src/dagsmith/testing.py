# src/dagsmith/testing.py
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass
from time import perf_counter
from typing import Any, Literal

from dagsmith import dag
from dagsmith.adapters.base import Dialect, TargetAdapter
from dagsmith.core import TestSpec
from dagsmith.errors import TestFailure
from dagsmith.logging import echo, echo_debug, get_logger
from dagsmith.run_executor import RunReport

TestStatus = Literal["pass", "fail", "warn", "error", "skipped"]

logger = get_logger("test")


@dataclass
class TestResult:
    __test__ = False

    unique_id: str
    kind: str
    node: str
    column: str
    status: TestStatus
    severity: str = "error"
    failures: int | None = None
    sql: str | None = None
    message: str | None = None
    duration_ms: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


# ===== SQL per test kind =================================================


def _filtered(relation: str, where: str | None) -> str:
    if where:
        return f"(select * from {relation} where {where}) as t"
    return f"{relation} as t"


def failing_rows_sql(spec: TestSpec, relation: str, dialect: Dialect, lookup: dict[str, str]) -> str:
    """
    One scalar query returning the failing-row count. Never mutates data.

    `lookup` maps node names and source ids to relations (for relationships).
    """
    col = dialect.quote(spec.column)
    src = _filtered(relation, spec.where)
    kw = spec.kwargs

    if spec.kind == "not_null":
        return f"select count(*) from {src} where t.{col} is null"
    if spec.kind == "unique":
        # surplus duplicate rows; nulls are ignored
        return f"select count(t.{col}) - count(distinct t.{col}) from {src}"
    if spec.kind == "relationships":
        parent = lookup[str(kw["to"])]
        field = dialect.quote(str(kw.get("field") or spec.column))
        return (
            f"select count(*) from {src}\n"
            f"where t.{col} is not null\n"
            f"  and not exists (select 1 from {parent} as p where p.{field} = t.{col})"
        )
    if spec.kind == "accepted_values":
        values = ", ".join(dialect.literal(v) for v in kw.get("values") or [])
        return f"select count(*) from {src} where t.{col} is not null and t.{col} not in ({values})"
    if spec.kind == "expression":
        return f"select count(*) from {src} where not ({kw['expression']})"
    raise ValueError(f"unknown test kind: {spec.kind}")


# ===== Runner ============================================================


def _relation_lookup(graph: dag.Graph) -> dict[str, str]:
    out: dict[str, str] = {}
    for name, node in graph.nodes.items():
        out[name] = node.relation or name
    for sid, src in graph.sources.items():
        out[sid] = src.relation or src.identifier
    return out


def _skip_reason(spec: TestSpec, report: RunReport | None) -> str | None:
    if report is None:
        return None
    deps = [spec.node]
    if spec.kind == "relationships":
        deps.append(str(spec.kwargs.get("to")))
    for dep in deps:
        res = report.results.get(dep)
        if res is not None and res.status != "success":
            return f"{dep} did not succeed ({res.status})"
    return None


def _target_of(spec: TestSpec, graph: dag.Graph) -> tuple[str, str | None]:
    """(identifier, schema) of the tested relation."""
    if spec.node in graph.nodes:
        node = graph.nodes[spec.node]
        return node.identifier, node.schema
    src = graph.sources[spec.node]
    return src.identifier, src.schema


def run_tests(
    graph: dag.Graph,
    adapter: TargetAdapter,
    run_report: RunReport | None = None,
    *,
    select: Iterable[str] | None = None,
) -> list[TestResult]:
    """
    Evaluate every test of the graph (or of the selected nodes).

    A failing test never stops the others. Tests whose node did not succeed
    in `run_report` are skipped; a missing relation is an error.
    """
    scope = None if select is None else set(select)
    lookup = _relation_lookup(graph)
    results: list[TestResult] = []

    for spec in sorted(graph.tests, key=lambda t: t.unique_id):
        if scope is not None and spec.node not in scope:
            continue
        result = TestResult(
            unique_id=spec.unique_id,
            kind=spec.kind,
            node=spec.node,
            column=spec.column,
            status="pass",
            severity=spec.severity,
        )
        results.append(result)

        reason = _skip_reason(spec, run_report)
        if reason:
            result.status = "skipped"
            result.message = reason
            echo(f"- {spec.unique_id}: skipped ({reason})")
            continue

        relation = lookup[spec.node]
        t0 = perf_counter()
        try:
            result.sql = failing_rows_sql(spec, relation, adapter.dialect, lookup)
            with adapter.connection() as conn:
                identifier, schema = _target_of(spec, graph)
                if conn.relation_kind(identifier, schema or adapter.schema) is None:
                    result.status = "error"
                    result.message = f"relation {relation} does not exist"
                else:
                    echo_debug(f"[{spec.unique_id}] {result.sql}")
                    count = int(conn.scalar(result.sql) or 0)
                    result.failures = count
                    if count:
                        result.status = "warn" if spec.severity == "warn" else "fail"
                        result.message = f"{count} failing row(s)"
        except Exception as exc:
            result.status = "error"
            result.message = f"{type(exc).__name__}: {exc}"
            logger.debug("test %s errored", spec.unique_id, exc_info=exc)
        result.duration_ms = int((perf_counter() - t0) * 1000)
        _echo_result(result)

    return results


def _echo_result(r: TestResult) -> None:
    mark = {"pass": "✓", "warn": "!", "fail": "✖", "error": "✖"}.get(r.status, "-")
    tail = f" ({r.message})" if r.message else ""
    echo(f"{mark} {r.unique_id}: {r.status.upper()}{tail}  {r.duration_ms} ms")


def summarize(results: Iterable[TestResult]) -> dict[str, int]:
    counts = {"pass": 0, "fail": 0, "warn": 0, "error": 0, "skipped": 0}
    for r in results:
        counts[r.status] += 1
    return counts


def raise_for_failures(results: Iterable[TestResult]) -> None:
    """Escalate failing or erroring error-severity tests to TestFailure."""
    failed = [r.unique_id for r in results if r.status in ("fail", "error")]
    if failed:
        raise TestFailure(failed)
