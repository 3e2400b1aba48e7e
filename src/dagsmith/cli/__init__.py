# dagsmith/cli/__init__.py
from __future__ import annotations

import typer

from dagsmith import __version__
from dagsmith.logging import setup_logging

from .bootstrap import (
    EXIT_OK,
    EXIT_RUNTIME,
    EXIT_STATIC,
    CLIContext,
    _die,
    _parse_cli_vars,
    _prepare_context,
    _resolve_project_path,
)
from .build_cmd import build, register as _register_build
from .compile_cmd import compile_, register as _register_compile
from .dag_cmd import dag, register as _register_dag
from .docs_cmd import docs_generate, register as _register_docs
from .run import register as _register_run, run
from .seed_cmd import register as _register_seed, seed
from .selectors import select_nodes
from .test_cmd import register as _register_test, test

app = typer.Typer(
    name="dagsmith",
    help="dagsmith - templated SQL models, built in dependency order",
    no_args_is_help=True,
    add_completion=False,
)


def _version_callback(value: bool | None) -> None:
    if value:
        typer.echo(f"dagsmith {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Increase verbosity (-v: INFO, -vv: DEBUG)"
    ),
    quiet: int = typer.Option(0, "--quiet", "-q", count=True, help="Reduce verbosity (-q: ERROR)"),
) -> None:
    setup_logging(verbose, quiet)


_register_run(app)
_register_seed(app)
_register_test(app)
_register_build(app)
_register_compile(app)
_register_docs(app)
_register_dag(app)


__all__ = [
    "EXIT_OK",
    "EXIT_RUNTIME",
    "EXIT_STATIC",
    "CLIContext",
    "_die",
    "_parse_cli_vars",
    "_prepare_context",
    "_resolve_project_path",
    "app",
    "build",
    "compile_",
    "dag",
    "docs_generate",
    "run",
    "seed",
    "select_nodes",
    "test",
]
