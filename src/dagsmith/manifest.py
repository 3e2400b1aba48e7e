# src/dagsmith/manifest.py
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from dagsmith import __version__, dag
from dagsmith.adapters.base import TargetAdapter
from dagsmith.core import ColumnSpec, TargetInfo
from dagsmith.logging import get_logger
from dagsmith.run_executor import RunReport
from dagsmith.testing import TestResult

logger = get_logger("manifest")

Catalog = dict[str, list[tuple[str, str]]]


@dataclass
class Manifest:
    metadata: dict[str, Any]
    nodes: dict[str, dict[str, Any]] = field(default_factory=dict)
    sources: dict[str, dict[str, Any]] = field(default_factory=dict)
    tests: dict[str, dict[str, Any]] = field(default_factory=dict)
    parent_map: dict[str, list[str]] = field(default_factory=dict)
    child_map: dict[str, list[str]] = field(default_factory=dict)
    edges: list[list[str]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _rel_path(path: Path, project_dir: Path | None) -> str:
    if project_dir is not None:
        try:
            return path.resolve().relative_to(project_dir.resolve()).as_posix()
        except ValueError:
            pass
    return path.as_posix()


def _columns(cols: list[ColumnSpec], physical: list[tuple[str, str]] | None) -> list[dict[str, Any]]:
    types = dict(physical or [])
    out = [
        {
            "name": c.name,
            "description": c.description,
            "data_type": types.pop(c.name, None),
            "tests": list(c.tests),
        }
        for c in cols
    ]
    # undocumented physical columns follow the documented ones
    for name, typ in (physical or []):
        if name in types:
            out.append({"name": name, "description": "", "data_type": typ, "tests": []})
    return out


def generate(
    graph: dag.Graph,
    catalog: Catalog | None = None,
    *,
    project_name: str = "",
    project_version: str = "",
    project_dir: Path | None = None,
    target: TargetInfo | None = None,
) -> Manifest:
    """
    Describe every node, source, test and edge of the graph. `catalog`
    maps node names / source ids to physical (column, type) pairs.
    """
    catalog = catalog or {}
    manifest = Manifest(
        metadata={
            "project": project_name,
            "version": project_version,
            "generated_at": datetime.now(UTC).isoformat(),
            "dagsmith_version": __version__,
            "target": target.as_dict() if target else None,
        }
    )

    for name in sorted(graph.nodes):
        node = graph.nodes[name]
        manifest.nodes[name] = {
            "name": name,
            "resource_type": node.resource_type,
            "path": _rel_path(node.path, project_dir),
            "relation": node.relation,
            "materialized": node.materialized,
            "description": node.description,
            "tags": node.tags,
            "columns": _columns(node.columns, catalog.get(name)),
            "depends_on": sorted(node.deps),
            "raw_sql": node.raw_sql or None,
            "compiled_sql": node.compiled_sql,
        }

    for sid in sorted(graph.sources):
        src = graph.sources[sid]
        manifest.sources[sid] = {
            "source_name": src.source_name,
            "table_name": src.table_name,
            "identifier": src.identifier,
            "schema": src.schema,
            "relation": src.relation,
            "description": src.description,
            "columns": _columns(src.columns, catalog.get(sid)),
        }

    for t in sorted(graph.tests, key=lambda t: t.unique_id):
        manifest.tests[t.unique_id] = {
            "kind": t.kind,
            "node": t.node,
            "column": t.column,
            "kwargs": dict(t.kwargs),
            "severity": t.severity,
            "where": t.where,
        }

    for name in sorted(graph.nodes):
        parents = sorted([*graph.parents[name], *graph.source_parents[name]])
        manifest.parent_map[name] = parents
        manifest.child_map[name] = list(graph.children[name])
        manifest.edges += [[p, name] for p in parents]
    for sid in sorted(graph.sources):
        manifest.child_map[sid] = sorted(n for n, ps in graph.source_parents.items() if sid in ps)

    return manifest


def read_catalog(graph: dag.Graph, adapter: TargetAdapter) -> Catalog:
    """Physical column types of every existing node and source relation."""
    out: Catalog = {}
    with adapter.connection() as conn:
        for name, node in graph.nodes.items():
            cols = conn.columns(node.identifier, node.schema or adapter.schema)
            if cols:
                out[name] = cols
        for sid, src in graph.sources.items():
            cols = conn.columns(src.identifier, src.schema or adapter.schema)
            if cols:
                out[sid] = cols
    return out


def _write_json(path: Path, data: dict[str, Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
    logger.info("wrote %s", path)
    return path


def write_manifest(manifest: Manifest, target_dir: Path) -> Path:
    return _write_json(target_dir / "manifest.json", manifest.as_dict())


def write_run_results(
    target_dir: Path,
    report: RunReport | None = None,
    tests: list[TestResult] | None = None,
) -> Path:
    """`<target>/run_results.json` with node results and, if given, test results."""
    data: dict[str, Any] = {
        "metadata": {
            "generated_at": datetime.now(UTC).isoformat(),
            "dagsmith_version": __version__,
        },
        "run": report.as_dict() if report is not None else None,
        "tests": [t.as_dict() for t in tests] if tests is not None else None,
    }
    return _write_json(target_dir / "run_results.json", data)
