# src/dagsmith/compiler.py
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dagsmith import dag
from dagsmith.adapters.base import Dialect
from dagsmith.adapters.duckdb import DUCKDB_DIALECT
from dagsmith.core import ProjectDefinitions, TargetInfo
from dagsmith.logging import get_logger
from dagsmith.resolver import SQL_BLANKS, ResolvedTemplate, Resolver, bind

logger = get_logger("compile")


@dataclass
class CompiledProject:
    defs: ProjectDefinitions
    graph: dag.Graph
    target: TargetInfo
    resolved: dict[str, ResolvedTemplate] = field(default_factory=dict)

    @property
    def target_path(self) -> Path:
        return self.defs.project_dir / self.defs.project.target_path


def _strip_sql(sql: str) -> str:
    out = sql.strip(SQL_BLANKS)
    while out.endswith(";"):
        out = out[:-1].rstrip(SQL_BLANKS)
    return out


def compile_project(
    defs: ProjectDefinitions,
    *,
    target: TargetInfo,
    cli_vars: Mapping[str, Any] | None = None,
    dialect: Dialect = DUCKDB_DIALECT,
) -> CompiledProject:
    """
    Resolve every model, validate the graph and bind physical relations.

    Nothing touches the target store here: a ParseError or CompileError
    means no node may run.
    """
    resolver = Resolver(defs, target=target, cli_vars=cli_vars)
    resolved: dict[str, ResolvedTemplate] = {}
    for name in sorted(defs.nodes):
        node = defs.nodes[name]
        if node.resource_type != "model":
            node.deps = []
            continue
        res = resolver.resolve(node)
        resolved[name] = res
        node.deps = res.deps

    graph = dag.build(defs.nodes, defs.sources, defs.tests)

    relations: dict[str, str] = {}
    for node in defs.nodes.values():
        node.relation = dialect.qualify(node.identifier, node.schema or target.schema)
        relations[node.name] = node.relation
    for src in defs.sources.values():
        src.relation = dialect.qualify(src.identifier, src.schema or target.schema)
        relations[src.unique_id] = src.relation

    for name, res in resolved.items():
        defs.nodes[name].compiled_sql = _strip_sql(bind(res, relations))

    logger.info(
        "compiled %d model(s), %d seed(s), %d source(s)",
        len(resolved),
        len(defs.nodes) - len(resolved),
        len(defs.sources),
    )
    return CompiledProject(defs=defs, graph=graph, target=target, resolved=resolved)


def write_compiled(project: CompiledProject, out_dir: Path | None = None) -> list[Path]:
    """Write `<target-path>/compiled/<model>.sql` for every compiled model."""
    out = out_dir or project.target_path / "compiled"
    out.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    for name in sorted(project.resolved):
        sql = project.graph.nodes[name].compiled_sql or ""
        path = out / f"{name}.sql"
        path.write_text(sql + "\n", encoding="utf-8")
        written.append(path)
    return written
