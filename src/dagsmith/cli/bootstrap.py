# dagsmith/cli/bootstrap.py
from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NoReturn, cast, get_args

import typer
import yaml
from dotenv import dotenv_values

from dagsmith.adapters import TargetAdapter, dialect_for, make_adapter
from dagsmith.compiler import CompiledProject, compile_project
from dagsmith.core import ProjectDefinitions, TargetInfo, load_project
from dagsmith.errors import (
    CompileError,
    ConfigError,
    DagsmithError,
    ParseError,
)
from dagsmith.logging import echo, get_logger
from dagsmith.settings import (
    EngineType,
    EnvSettings,
    Profile,
    resolve_profile as _resolve_profile_impl,
)

EXIT_OK = 0
EXIT_RUNTIME = 1
EXIT_STATIC = 2

logger = get_logger("cli")


@dataclass
class CLIContext:
    project: Path
    env_name: str
    env_settings: EnvSettings
    profile: Profile
    defs: ProjectDefinitions
    cli_vars: dict[str, Any] = field(default_factory=dict)
    jobs: int = 1

    @property
    def target(self) -> TargetInfo:
        return TargetInfo(
            name=self.env_name, engine=self.profile.engine, schema=self.profile.target_schema
        )

    @property
    def target_dir(self) -> Path:
        return self.project / self.defs.project.target_path

    def make_adapter(self) -> TargetAdapter:
        with static_errors():
            return make_adapter(self.profile, jobs=self.jobs)

    def compile(self) -> CompiledProject:
        with static_errors():
            return compile_project(
                self.defs,
                target=self.target,
                cli_vars=self.cli_vars,
                dialect=dialect_for(self.profile.engine),
            )


def _resolve_project_path(project_arg: str) -> Path:
    """
    Validate a dagsmith project path:
      - must exist
      - must be a directory
      - must contain 'models/' or 'seeds/'
    """
    p = Path(project_arg).expanduser().resolve()
    if not p.exists():
        raise typer.BadParameter(
            f"Project path not found: {p}\nTip: use an absolute path or '.' in the project root."
        )
    if not p.is_dir():
        raise typer.BadParameter(
            f"Project path is not a directory: {p}\nTip: pass the directory, not a file."
        )
    if not (p / "models").is_dir() and not (p / "seeds").is_dir():
        raise typer.BadParameter(
            f"Invalid project at {p}\n"
            "Expected a 'models/' or 'seeds/' subdirectory.\n"
            "Tip: cd into the project and use '.'."
        )
    return p


def _die(msg: str, code: int = EXIT_RUNTIME) -> NoReturn:
    echo(f"\n❌ {msg}", err=True)
    raise typer.Exit(code)


@contextmanager
def static_errors() -> Iterator[None]:
    """Map dagsmith errors onto exit codes: static failures 2, runtime failures 1."""
    try:
        yield
    except (ConfigError, ParseError, CompileError) as exc:
        logger.debug("static failure", exc_info=exc)
        _die(str(exc), code=EXIT_STATIC)
    except DagsmithError as exc:
        _die(str(exc), code=EXIT_RUNTIME)


def _load_dotenv_layered(project_dir: Path, env_name: str) -> None:
    """
    Load .env in layers (lowest to highest precedence):
      1) <cwd>/.env
      2) <project>/.env
      3) <project>/.env.local
      4) <project>/.env.<env_name>
      5) <project>/.env.<env_name>.local
    Variables already present in the process environment always win.
    """
    original_env = dict(os.environ)
    merged: dict[str, str] = {}

    for p in (
        Path.cwd() / ".env",
        project_dir / ".env",
        project_dir / ".env.local",
        project_dir / f".env.{env_name}",
        project_dir / f".env.{env_name}.local",
    ):
        if not p.is_file():
            continue
        for key, value in dotenv_values(p).items():
            if value is not None:
                merged[key] = value

    for key, value in merged.items():
        if key not in original_env:
            os.environ[key] = value


def _check_engine(engine: str | None) -> EngineType | None:
    if engine is None:
        return None
    allowed = get_args(EngineType)
    if engine not in allowed:
        raise typer.BadParameter(f"--engine must be one of: {', '.join(allowed)} (got {engine})")
    return cast(EngineType, engine)


def _resolve_profile(
    env_name: str, engine: EngineType | None, proj: Path
) -> tuple[EnvSettings, Profile]:
    env = EnvSettings()
    if engine is not None:
        env = env.model_copy(update={"ENGINE": engine})
    with static_errors():
        prof = _resolve_profile_impl(proj, env_name, env)
    return env, prof


def _parse_cli_vars(items: list[str]) -> dict[str, Any]:
    """
    Parse --vars. Accepts key=value pairs (values YAML-parsed for light
    typing: --vars day=2025-10-01 limit=5) or YAML mappings
    (--vars '{limit: 5, methods: [card, cash]}'). Later items win.
    """
    out: dict[str, Any] = {}
    for item in items:
        text = item.strip()
        if text.startswith("{"):
            try:
                data = yaml.safe_load(text)
            except yaml.YAMLError as exc:
                raise typer.BadParameter(f"--vars is not valid YAML: {exc}") from exc
            if not isinstance(data, dict):
                raise typer.BadParameter(f"--vars expects a mapping, got: {item}")
            out.update({str(k): v for k, v in data.items()})
            continue
        if "=" not in text:
            raise typer.BadParameter(f"--vars expects key=value or a YAML mapping, got: {item}")
        k, v = text.split("=", 1)
        try:
            out[k.strip()] = yaml.safe_load(v)
        except yaml.YAMLError:
            out[k.strip()] = v
    return out


def _prepare_context(
    project_arg: str,
    env_name: str,
    engine: str | None,
    vars_opt: list[str] | None,
    jobs: int | None = None,
) -> CLIContext:
    proj = _resolve_project_path(project_arg)
    _load_dotenv_layered(proj, env_name)
    cli_vars = _parse_cli_vars(vars_opt or [])
    env_settings, prof = _resolve_profile(env_name, _check_engine(engine), proj)
    with static_errors():
        defs = load_project(proj)
    return CLIContext(
        project=proj,
        env_name=env_name,
        env_settings=env_settings,
        profile=prof,
        defs=defs,
        cli_vars=cli_vars,
        jobs=max(1, jobs or env_settings.JOBS or 1),
    )


__all__ = [
    "EXIT_OK",
    "EXIT_RUNTIME",
    "EXIT_STATIC",
    "CLIContext",
    "_die",
    "_load_dotenv_layered",
    "_parse_cli_vars",
    "_prepare_context",
    "_resolve_profile",
    "_resolve_project_path",
    "static_errors",
]
