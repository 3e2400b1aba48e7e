# dagsmith/cli/run.py
from __future__ import annotations

import threading
from collections.abc import Iterable

import typer

from dagsmith.adapters import TargetAdapter
from dagsmith.cli.bootstrap import EXIT_RUNTIME, CLIContext, _prepare_context
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
from dagsmith.cli.selectors import select_nodes
from dagsmith.compiler import CompiledProject, write_compiled
from dagsmith.logging import echo
from dagsmith.manifest import generate, write_manifest, write_run_results
from dagsmith.run_executor import RunReport, execute


def _print_node_error_block(name: str, error: str) -> None:
    header = "┌" + "─" * 70
    footer = "└" + "─" * 70
    echo(header, err=True)
    echo(f"│ Node: {name}", err=True)
    for line in error.splitlines():
        echo("│   " + line, err=True)
    echo(footer, err=True)


def _print_run_summary(report: RunReport) -> None:
    for name in report.failed:
        _print_node_error_block(name, report.results[name].error or "")
    counts = {s: len(report.with_status(s)) for s in ("success", "failed", "skipped", "pending")}
    echo(
        f"\nRun {report.status}: ok={counts['success']} failed={counts['failed']} "
        f"skipped={counts['skipped']} not_run={counts['pending']}"
    )
    for name in report.skipped:
        upstream = report.results[name].failed_upstream
        if upstream:
            echo(f"  - {name} skipped (upstream {upstream} failed)")


def _execute_selection(
    ctx: CLIContext,
    compiled: CompiledProject,
    names: Iterable[str],
    adapter: TargetAdapter,
    *,
    full_refresh: bool = False,
    fail_fast: bool = False,
) -> RunReport:
    """Run the named nodes and write the run artifacts."""
    write_compiled(compiled)
    report = execute(
        compiled.graph,
        adapter,
        ctx.jobs,
        select=names,
        fail_fast=fail_fast,
        full_refresh=full_refresh,
        cancel=threading.Event(),
        target=ctx.target,
    )

    write_manifest(
        generate(
            compiled.graph,
            project_name=ctx.defs.project.name,
            project_version=ctx.defs.project.version,
            project_dir=ctx.project,
            target=ctx.target,
        ),
        ctx.target_dir,
    )
    write_run_results(ctx.target_dir, report)
    _print_run_summary(report)
    return report


def run(
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
    finally:
        adapter.close()
    if report.status != "success":
        raise typer.Exit(EXIT_RUNTIME)


def register(app: typer.Typer) -> None:
    app.command(
        help=(
            "Materialize models and seeds in dependency order.\n\nExamples:\n"
            "  dagsmith run . --env dev\n"
            "  dagsmith run . --select +customers --jobs 4\n"
            "  dagsmith run . --select tag:nightly --full-refresh"
        )
    )(run)


__all__ = ["register", "run"]
