# dagsmith/cli/dag_cmd.py
from __future__ import annotations

import logging

import typer

from dagsmith import dag as dag_mod
from dagsmith.cli.bootstrap import _prepare_context
from dagsmith.cli.options import EngineOpt, EnvOpt, OutOpt, ProjectArg, SelectOpt, VarsOpt
from dagsmith.cli.selectors import select_nodes
from dagsmith.logging import LOG, echo


def dag(
    project: ProjectArg = ".",
    env_name: EnvOpt = "dev",
    engine: EngineOpt = None,
    vars: VarsOpt = None,
    out: OutOpt = None,
    select: SelectOpt = None,
) -> None:
    ctx = _prepare_context(project, env_name, engine, vars)
    compiled = ctx.compile()
    graph = compiled.graph
    if select:
        graph = dag_mod.subgraph(graph, select_nodes(graph, select))

    out_dir = out.resolve() if out is not None else ctx.target_dir
    out_dir.mkdir(parents=True, exist_ok=True)
    mmd = out_dir / "dag.mmd"
    mmd.write_text(dag_mod.mermaid(graph), encoding="utf-8")
    echo(f"Mermaid DAG written to {mmd}")

    if LOG.isEnabledFor(logging.INFO):
        for i, lvl in enumerate(dag_mod.levels(graph), start=1):
            echo(f"L{i:02d}: {', '.join(lvl)}")


def register(app: typer.Typer) -> None:
    app.command(
        help=(
            "Write the dependency graph as Mermaid text.\n\nExamples:\n  "
            "dagsmith dag .\n  dagsmith dag . --select +customers --out docs/"
        )
    )(dag)


__all__ = ["dag", "register"]
