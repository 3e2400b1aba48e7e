from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from dagsmith.config.models import (
    _format_validation_error,
    validate_model_config,
    validate_seed_config,
)
from dagsmith.errors import ConfigError


def read_yaml(path: Path) -> Any:
    """safe_load a YAML file, converting parser errors into ConfigError."""
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        where = f" (line {mark.line + 1}, column {mark.column + 1})" if mark else ""
        raise ConfigError(
            f"malformed YAML{where}: {getattr(exc, 'problem', None) or exc}",
            path=str(path),
            code="CFG_YAML",
        ) from exc


# ---------------------------------------------------------------------------
# project.yml - top-level model
# ---------------------------------------------------------------------------


class ProjectConfig(BaseModel):
    """
    Strict representation of project.yml.

    Example:

        name: jaffle_shop
        version: "0.1"
        profile: jaffle_shop
        target-path: target

        vars:
          payment_methods: [credit_card, coupon, bank_transfer, gift_card]

        models:
          materialized: view

        seeds:
          schema: raw
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str
    version: str = "0.1.0"
    profile: str | None = None
    target_path: str = Field(default="target", alias="target-path")

    # Arbitrary variables that can be accessed via var('key') in Jinja
    vars: dict[str, Any] = Field(default_factory=dict)

    # Project-level defaults, lowest precedence. Kept as written so that the
    # layer merge compares the shapes the user actually wrote.
    models: dict[str, Any] = Field(default_factory=dict)
    seeds: dict[str, Any] = Field(default_factory=dict)

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_str(cls, v: Any) -> str:
        return str(v)


# ---------------------------------------------------------------------------
# Helper: load & validate project.yml
# ---------------------------------------------------------------------------


def parse_project_yaml_config(project_dir: Path) -> ProjectConfig:
    """
    Read project.yml under `project_dir` and validate it strictly using Pydantic.

    A missing project.yml yields a config named after the directory.
    """
    cfg_path = project_dir / "project.yml"
    if not cfg_path.exists():
        return ProjectConfig(name=project_dir.resolve().name)
    raw = read_yaml(cfg_path) or {}
    if not isinstance(raw, dict):
        raise ConfigError("project.yml must be a mapping", path=str(cfg_path), code="CFG_YAML")
    try:
        cfg = ProjectConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(
            f"schema validation failed:\n{_format_validation_error(exc)}",
            path=str(cfg_path),
            code="CFG_SCHEMA",
            hint="Allowed top-level keys: name, version, profile, target-path, vars, models, seeds.",
        ) from exc

    # fail early on typos in the defaults
    validate_model_config(cfg.models, path=f"{cfg_path} → models", partial=True)
    validate_seed_config(cfg.seeds, path=f"{cfg_path} → seeds")
    return cfg
