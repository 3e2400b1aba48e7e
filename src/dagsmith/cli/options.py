# dagsmith/cli/options.py
from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

ProjectArg = Annotated[
    str,
    typer.Argument(help="Project directory (contains project.yml, models/, seeds/)"),
]

EnvOpt = Annotated[
    str,
    typer.Option("--env", help="Profile name from profiles.yml (falls back to 'default')"),
]

EngineOpt = Annotated[
    str | None,
    typer.Option("--engine", help="Override the profile engine (duckdb|postgres)"),
]

VarsOpt = Annotated[
    list[str] | None,
    typer.Option(
        "--vars",
        help="Template vars as key=value pairs or one YAML mapping, e.g. --vars '{day: 2024-01-01}'",
    ),
]

JobsOpt = Annotated[
    int | None,
    typer.Option("--jobs", "-j", min=1, help="Max parallel nodes (default: DAGSMITH_JOBS or 1)"),
]

SelectOpt = Annotated[
    list[str] | None,
    typer.Option(
        "--select",
        "-s",
        help="Select nodes: name, glob, +name, name+, tag:<t>, type:<seed|model|view|table|...>",
    ),
]

ExcludeOpt = Annotated[
    list[str] | None,
    typer.Option("--exclude", help="Exclude nodes (same syntax as --select)"),
]

FullRefreshOpt = Annotated[
    bool,
    typer.Option("--full-refresh", help="Rebuild incremental models from scratch"),
]

FailFastOpt = Annotated[
    bool,
    typer.Option("--fail-fast", help="Stop dispatching new nodes after the first failure"),
]

OutOpt = Annotated[
    Path | None,
    typer.Option("--out", help="Output directory (default: <target-path>)"),
]

__all__ = [
    "EngineOpt",
    "EnvOpt",
    "ExcludeOpt",
    "FailFastOpt",
    "FullRefreshOpt",
    "JobsOpt",
    "OutOpt",
    "ProjectArg",
    "SelectOpt",
    "VarsOpt",
]
