# dagsmith/config/sources.py
from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dagsmith.config.models import ColumnProperties, _format_validation_error
from dagsmith.config.project import read_yaml
from dagsmith.errors import ConfigError

# ---------------------------------------------------------------------------
# Pydantic models mirroring sources.yml structure
# ---------------------------------------------------------------------------


class SourceTableConfig(BaseModel):
    """Schema for an individual table entry under a source group."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str
    identifier: str | None = None
    schema_: str | None = Field(default=None, alias="schema")
    description: str = ""
    columns: list[ColumnProperties] = Field(default_factory=list)


class SourceGroupConfig(BaseModel):
    """
    Schema for each entry under top-level `sources:` in sources.yml:

        sources:
          - name: jaffle
            schema: raw
            tables:
              - name: orders
                identifier: raw_orders
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str
    schema_: str | None = Field(default=None, alias="schema")
    description: str = ""
    tables: list[SourceTableConfig] = Field(default_factory=list)


class SourcesFileConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: int | None = None
    sources: list[SourceGroupConfig] = Field(default_factory=list)


def load_sources_config(project_dir: Path) -> SourcesFileConfig:
    """
    Read `sources.yml` under `project_dir` and validate it with Pydantic.

    Duplicate source groups or duplicate tables inside a group raise ConfigError.
    """
    cfg_path = project_dir / "sources.yml"
    if not cfg_path.exists():
        return SourcesFileConfig()
    raw = read_yaml(cfg_path) or {}

    try:
        parsed = SourcesFileConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(
            f"Failed to parse sources.yml:\n{_format_validation_error(exc)}",
            path=str(cfg_path),
            code="CFG_SOURCES",
        ) from exc

    seen: set[str] = set()
    for src in parsed.sources:
        if src.name in seen:
            raise ConfigError(
                f"duplicate source '{src.name}'", path=str(cfg_path), code="CFG_SOURCES"
            )
        seen.add(src.name)
        tables: set[str] = set()
        for tbl in src.tables:
            if tbl.name in tables:
                raise ConfigError(
                    f"source '{src.name}': duplicate table '{tbl.name}'",
                    path=str(cfg_path),
                    code="CFG_SOURCES",
                )
            tables.add(tbl.name)
    return parsed
