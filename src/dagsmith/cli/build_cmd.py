# dagsmith/cli/build_cmd.py
from __future__ import annotations

import typer

from dagsmith.cli.bootstrap import EXIT_RUNTIME, _prepare_context
from dagsmith.cli.options import (
    EngineOpt,
    EnvOpt,
    ExcludeOpt,
    FailFastOpt,
    FullRefreshOpt,
    JobsOpt,
    ProjectArg,
    SelectOpt,
    VarsOpt,
)
from dagsmith.cli.run import _execute_selection
from dagsmith.cli.selectors import select_nodes
from dagsmith.cli.test_cmd import _run_data_tests
from dagsmith.logging import echo


def build(
    project: ProjectArg = ".",
    env_name: EnvOpt = "dev",
    engine: EngineOpt = None,
    vars: VarsOpt = None,
    jobs: JobsOpt = None,
    select: SelectOpt = None,
    exclude: ExcludeOpt = None,
    full_refresh: FullRefreshOpt = False,
    fail_fast: FailFastOpt = False,
) -> None:
    ctx = _prepare_context(project, env_name, engine, vars, jobs)
    compiled = ctx.compile()
    names = select_nodes(compiled.graph, select, exclude)
    if not names:
        echo("Nothing selected.")
        return
    adapter = ctx.make_adapter()
    try:
        report = _execute_selection(
            ctx, compiled, names, adapter, full_refresh=full_refresh, fail_fast=fail_fast
        )
        results = _run_data_tests(ctx, compiled, names, adapter, report)
    finally:
        adapter.close()
    failed_tests = any(r.status in ("fail", "error") for r in results)
    if report.status != "success" or failed_tests:
        raise typer.Exit(EXIT_RUNTIME)


def register(app: typer.Typer) -> None:
    app.command(
        help=(
            "Run the selected nodes, then their data tests.\n\nExamples:\n"
            "  dagsmith build . --env dev --jobs 4"
        )
    )(build)


__all__ = ["build", "register"]
