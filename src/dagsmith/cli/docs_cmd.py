# dagsmith/cli/docs_cmd.py
from __future__ import annotations

import logging
from typing import Annotated

import typer

from dagsmith.cli.bootstrap import _prepare_context
from dagsmith.cli.options import EngineOpt, EnvOpt, OutOpt, ProjectArg, VarsOpt
from dagsmith.dag import mermaid
from dagsmith.logging import LOG, echo
from dagsmith.manifest import generate, read_catalog, write_manifest


def docs_generate(
    project: ProjectArg = ".",
    env_name: EnvOpt = "dev",
    engine: EngineOpt = None,
    vars: VarsOpt = None,
    out: OutOpt = None,
    with_catalog: Annotated[
        bool,
        typer.Option(
            "--catalog/--no-catalog", help="Read physical column types from the target"
        ),
    ] = True,
) -> None:
    ctx = _prepare_context(project, env_name, engine, vars)
    compiled = ctx.compile()
    out_dir = out.resolve() if out is not None else ctx.target_dir

    catalog = None
    if with_catalog:
        adapter = ctx.make_adapter()
        try:
            catalog = read_catalog(compiled.graph, adapter)
        finally:
            adapter.close()

    manifest = generate(
        compiled.graph,
        catalog,
        project_name=ctx.defs.project.name,
        project_version=ctx.defs.project.version,
        project_dir=ctx.project,
        target=ctx.target,
    )
    path = write_manifest(manifest, out_dir)
    (out_dir / "dag.mmd").write_text(mermaid(compiled.graph), encoding="utf-8")
    echo(f"Manifest written to {path}")

    if LOG.isEnabledFor(logging.INFO):
        echo(f"Profile: {env_name} | Engine: {ctx.profile.engine}")


def register(app: typer.Typer) -> None:
    app.command(
        "docs-generate",
        help=(
            "Write manifest.json (nodes, sources, tests, lineage) and dag.mmd.\n\n"
            "Examples:\n  dagsmith docs-generate . --env dev\n"
            "  dagsmith docs-generate . --no-catalog --out site/"
        ),
    )(docs_generate)


__all__ = ["docs_generate", "register"]
