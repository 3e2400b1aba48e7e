# src/dagsmith/run_executor.py
from __future__ import annotations

import heapq
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from time import perf_counter
from typing import Any, Literal

from dagsmith import dag
from dagsmith.adapters.base import TargetAdapter
from dagsmith.core import Node, TargetInfo
from dagsmith.errors import ModelExecutionError
from dagsmith.logging import echo, echo_debug, get_logger
from dagsmith.materialize import TargetState, materialize

NodeStatus = Literal["pending", "running", "success", "failed", "skipped"]
RunStatus = Literal["success", "failed", "cancelled"]

logger = get_logger("run")


@dataclass
class NodeResult:
    name: str
    status: NodeStatus = "pending"
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_ms: int | None = None
    rows_affected: int | None = None
    error: str | None = None
    failed_upstream: str | None = None

    def as_dict(self) -> dict[str, Any]:
        out = asdict(self)
        for key in ("started_at", "finished_at"):
            if out[key] is not None:
                out[key] = out[key].isoformat()
        return out


@dataclass
class RunReport:
    status: RunStatus = "success"
    started_at: datetime | None = None
    finished_at: datetime | None = None
    target: TargetInfo | None = None
    results: dict[str, NodeResult] = field(default_factory=dict)

    def with_status(self, status: NodeStatus) -> list[str]:
        return [n for n, r in self.results.items() if r.status == status]

    @property
    def failed(self) -> list[str]:
        return self.with_status("failed")

    @property
    def succeeded(self) -> list[str]:
        return self.with_status("success")

    @property
    def skipped(self) -> list[str]:
        return self.with_status("skipped")

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "target": self.target.as_dict() if self.target else None,
            "results": [r.as_dict() for r in self.results.values()],
        }


# ----------------- Helpers -----------------


def _now() -> datetime:
    return datetime.now(UTC)


def _short(name: str, width: int) -> str:
    w = max(5, int(width))
    if len(name) <= w:
        return name
    head = (w - 1) // 2
    tail = w - 1 - head
    return f"{name[:head]}…{name[-tail:]}"


def _log_start(engine: str, name: str, width: int) -> None:
    echo(f"▶ [{engine}] {_short(name, width)}")


def _log_end(engine: str, name: str, ok: bool, ms: int, width: int, rows: int | None) -> None:
    mark = "✓" if ok else "✖"
    tail = f" • {rows} row(s)" if rows is not None else ""
    echo(f"{mark} [{engine}] {_short(name, width)}  {ms} ms{tail}")


def _node_schema(node: Node, adapter: TargetAdapter) -> str | None:
    return node.schema or adapter.schema


def run_node(node: Node, adapter: TargetAdapter, *, full_refresh: bool = False) -> int | None:
    """
    Materialize one node on its own connection, all statements in one
    transaction. Returns the summed rows of DML statements (None if there
    were none).
    """
    relation = node.relation or node.name
    schema = _node_schema(node, adapter)
    last_sql: str | None = None
    with adapter.connection() as conn:
        try:
            with conn.transaction():
                kind = conn.relation_kind(node.identifier, schema)
                columns: list[tuple[str, str]] = []
                query_columns: list[tuple[str, str]] = []
                if kind is not None:
                    columns = conn.columns(node.identifier, schema)
                    if node.resource_type == "model":
                        last_sql = node.compiled_sql
                        query_columns = conn.query_columns(node.compiled_sql or "")
                state = TargetState(
                    kind=kind,
                    columns=tuple(columns),
                    query_columns=tuple(query_columns),
                    full_refresh=full_refresh,
                )
                rows: int | None = None
                for stmt in materialize(node, node.compiled_sql, state, adapter.dialect):
                    last_sql = stmt.sql
                    echo_debug(f"[{node.name}] {stmt.sql}")
                    affected = conn.execute(stmt.sql)
                    if stmt.kind == "dml" and affected >= 0:
                        rows = (rows or 0) + affected
                return rows
        except ModelExecutionError:
            raise
        except Exception as exc:
            snippet = last_sql[:600] if last_sql else None
            raise ModelExecutionError(
                node.name, relation, f"{type(exc).__name__}: {exc}", sql_snippet=snippet
            ) from exc


def _error_text(exc: BaseException) -> str:
    if isinstance(exc, ModelExecutionError) and exc.sql_snippet:
        return f"{exc}\nSQL:\n{exc.sql_snippet}"
    return str(exc)


# ----------------- Orchestration -----------------


def execute(
    graph: dag.Graph,
    adapter: TargetAdapter,
    jobs: int = 1,
    *,
    select: Iterable[str] | None = None,
    fail_fast: bool = False,
    full_refresh: bool = False,
    cancel: threading.Event | None = None,
    target: TargetInfo | None = None,
    node_runner: Callable[[Node], int | None] | None = None,
    name_width: int = 28,
) -> RunReport:
    """
    Run the selected nodes in dependency order with up to `jobs` workers.

    A node is dispatched once all its in-scope parents succeeded. When a node
    fails, its descendants are marked skipped and never dispatched while
    independent branches keep going (unless `fail_fast`). Setting `cancel`
    (or Ctrl-C while waiting) stops dispatching; running nodes drain and
    the rest stay pending.
    """
    jobs = max(1, int(jobs))
    cancel = cancel or threading.Event()
    scope = set(graph.nodes) if select is None else {n for n in select if n in graph.nodes}
    order = dag.topo_sort(graph, scope)
    rank = {name: i for i, name in enumerate(order)}
    engine = adapter.engine_name

    def _default_runner(node: Node) -> int | None:
        return run_node(node, adapter, full_refresh=full_refresh)

    runner = node_runner or _default_runner

    report = RunReport(
        started_at=_now(),
        target=target,
        results={name: NodeResult(name) for name in order},
    )
    results = report.results
    waiting = {n: {p for p in graph.parents[n] if p in scope} for n in order}
    ready: list[tuple[int, str]] = [(rank[n], n) for n in order if not waiting[n]]
    heapq.heapify(ready)
    clocks: dict[str, float] = {}

    if node_runner is None:
        for schema in sorted({s for n in order if (s := _node_schema(graph.nodes[n], adapter))}):
            adapter.ensure_schema(schema)

    def _task(name: str) -> int | None:
        return runner(graph.nodes[name])

    def _skip_descendants(failed: str) -> None:
        for d in sorted(dag.descendants(graph, failed) & scope, key=rank.__getitem__):
            res = results[d]
            if res.status == "pending":
                res.status = "skipped"
                res.failed_upstream = failed
                logger.info("skipping %s (upstream %s failed)", d, failed)

    inflight: dict[Future[int | None], str] = {}
    any_failed = False
    with ThreadPoolExecutor(max_workers=jobs, thread_name_prefix="dagsmith-worker") as pool:
        while True:
            halted = cancel.is_set() or (fail_fast and any_failed)
            while ready and len(inflight) < jobs and not halted:
                _, name = heapq.heappop(ready)
                res = results[name]
                if res.status != "pending":
                    continue
                res.status = "running"
                res.started_at = _now()
                clocks[name] = perf_counter()
                _log_start(engine, name, name_width)
                inflight[pool.submit(_task, name)] = name

            if not inflight:
                break

            try:
                done, _ = wait(inflight, return_when=FIRST_COMPLETED)
            except KeyboardInterrupt:
                echo("Cancelling: waiting for running nodes to finish…", err=True)
                cancel.set()
                continue

            for fut in done:
                name = inflight.pop(fut)
                res = results[name]
                res.finished_at = _now()
                res.duration_ms = int((perf_counter() - clocks[name]) * 1000)
                try:
                    res.rows_affected = fut.result()
                except Exception as exc:
                    any_failed = True
                    res.status = "failed"
                    res.error = _error_text(exc)
                    _log_end(engine, name, False, res.duration_ms, name_width, None)
                    logger.debug("node %s failed", name, exc_info=exc)
                    _skip_descendants(name)
                    continue
                res.status = "success"
                _log_end(engine, name, True, res.duration_ms, name_width, res.rows_affected)
                for child in graph.children[name]:
                    if child not in scope:
                        continue
                    waiting[child].discard(name)
                    if not waiting[child] and results[child].status == "pending":
                        heapq.heappush(ready, (rank[child], child))

    if fail_fast and any_failed and not cancel.is_set():
        for res in results.values():
            if res.status == "pending":
                res.status = "skipped"

    report.finished_at = _now()
    if cancel.is_set():
        report.status = "cancelled"
    elif any_failed:
        report.status = "failed"
    else:
        report.status = "success"
    return report
