# dagsmith/cli/seed_cmd.py
from __future__ import annotations

import typer

from dagsmith.cli.bootstrap import EXIT_RUNTIME, _prepare_context
from dagsmith.cli.options import EngineOpt, EnvOpt, JobsOpt, ProjectArg, SelectOpt, VarsOpt
from dagsmith.cli.run import _execute_selection
from dagsmith.cli.selectors import select_nodes
from dagsmith.logging import echo


def seed(
    project: ProjectArg = ".",
    env_name: EnvOpt = "dev",
    engine: EngineOpt = None,
    vars: VarsOpt = None,
    jobs: JobsOpt = None,
    select: SelectOpt = None,
) -> None:
    ctx = _prepare_context(project, env_name, engine, vars, jobs)
    compiled = ctx.compile()
    names = {
        n for n in select_nodes(compiled.graph, select)
        if compiled.graph.nodes[n].resource_type == "seed"
    }
    if not names:
        echo("No seeds found.")
        return
    adapter = ctx.make_adapter()
    try:
        report = _execute_selection(ctx, compiled, names, adapter)
    finally:
        adapter.close()
    if report.status != "success":
        raise typer.Exit(EXIT_RUNTIME)
    echo(f"✓ Seeded {len(report.succeeded)} table(s)")


def register(app: typer.Typer) -> None:
    app.command(
        help=(
            "Load seeds from seeds/ into the target.\n\nExamples:\n  dagsmith seed . "
            "--env dev\n  dagsmith seed examples/jaffle_shop --select raw_orders"
        )
    )(seed)


__all__ = ["register", "seed"]
