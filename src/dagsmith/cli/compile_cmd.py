# dagsmith/cli/compile_cmd.py
from __future__ import annotations

import typer

from dagsmith.cli.bootstrap import _prepare_context
from dagsmith.cli.options import EngineOpt, EnvOpt, OutOpt, ProjectArg, VarsOpt
from dagsmith.compiler import write_compiled
from dagsmith.logging import echo


def compile_(
    project: ProjectArg = ".",
    env_name: EnvOpt = "dev",
    engine: EngineOpt = None,
    vars: VarsOpt = None,
    out: OutOpt = None,
) -> None:
    ctx = _prepare_context(project, env_name, engine, vars)
    compiled = ctx.compile()
    out_dir = out.resolve() if out is not None else None
    written = write_compiled(compiled, out_dir)
    where = out_dir or compiled.target_path / "compiled"
    echo(f"✓ Compiled {len(written)} model(s) to {where}")


def register(app: typer.Typer) -> None:
    app.command(
        "compile",
        help=(
            "Resolve templates and validate the graph without touching the target.\n\n"
            "Examples:\n  dagsmith compile . --vars '{payment_methods: [card]}'"
        ),
    )(compile_)


__all__ = ["compile_", "register"]
