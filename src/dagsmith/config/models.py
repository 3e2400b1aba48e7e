from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from dagsmith.errors import ConfigError

Materialization = Literal["view", "table", "incremental", "seed"]
TestKind = Literal["unique", "not_null", "relationships", "accepted_values", "expression"]
Severity = Literal["error", "warn"]

TEST_KINDS: tuple[str, ...] = (
    "unique",
    "not_null",
    "relationships",
    "accepted_values",
    "expression",
)


def _as_str_list(v: Any) -> list[str] | None:
    if v is None:
        return None
    if isinstance(v, str):
        return [v]
    if isinstance(v, Sequence) and not isinstance(v, (str, bytes)):
        return [str(x) for x in v]
    raise TypeError("must be a string or a sequence of strings")


# ---------------------------------------------------------------------------
# Node configuration (project → directory → properties → inline)
# ---------------------------------------------------------------------------


class ModelConfig(BaseModel):
    """
    Resolved configuration of one model, for example:

        {{ config(materialized='incremental', unique_key='order_id') }}

    Every field is optional so that partial layers validate on their own;
    `effective_materialized` applies the default.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    materialized: Literal["view", "table", "incremental"] | None = None
    db_schema: str | None = Field(default=None, alias="schema")
    alias: str | None = None
    tags: list[str] | None = None
    enabled: bool | None = None

    # incremental
    unique_key: list[str] | None = None
    incremental_strategy: Literal["merge", "append"] | None = None
    merge_update_columns: list[str] | None = None
    on_schema_change: Literal["ignore", "fail", "append_new_columns"] | None = None

    @field_validator("tags", "unique_key", "merge_update_columns", mode="before")
    @classmethod
    def _normalize_lists(cls, v: Any) -> list[str] | None:
        return _as_str_list(v)

    @property
    def effective_materialized(self) -> str:
        return self.materialized or "view"

    @property
    def effective_strategy(self) -> str:
        if self.incremental_strategy:
            return self.incremental_strategy
        return "merge" if self.unique_key else "append"


class SeedConfig(BaseModel):
    """Configuration for CSV seeds (project.yml → seeds, seeds/*.yml)."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    materialized: Literal["seed"] | None = None
    db_schema: str | None = Field(default=None, alias="schema")
    alias: str | None = None
    tags: list[str] | None = None
    enabled: bool | None = None
    column_types: dict[str, str] | None = None
    delimiter: str | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, v: Any) -> list[str] | None:
        return _as_str_list(v)

    @property
    def effective_materialized(self) -> str:
        return "seed"


def _format_validation_error(exc: ValidationError) -> str:
    lines = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
        msg = err.get("msg", "invalid value")
        if loc:
            lines.append(f"• {loc}: {msg}")
        else:
            lines.append(f"• {msg}")
    return "\n".join(lines) if lines else str(exc)


def validate_model_config(
    raw: Mapping[str, Any],
    *,
    path: str | None = None,
    node: str | None = None,
    partial: bool = False,
) -> ModelConfig:
    """Validate a merged (or, with `partial=True`, a single-layer) model config."""
    if raw.get("materialized") == "seed":
        raise ConfigError(
            "materialized='seed' is reserved for CSV files under seeds/",
            path=path,
            node=node,
            field="materialized",
            code="CFG_SCHEMA",
        )
    try:
        cfg = ModelConfig.model_validate(dict(raw))
    except ValidationError as exc:
        raise ConfigError(
            f"schema validation failed:\n{_format_validation_error(exc)}",
            path=path,
            node=node,
            hint="Fix the fields listed above. Unknown keys are rejected (extra='forbid').",
            code="CFG_SCHEMA",
        ) from exc

    if not partial and cfg.incremental_strategy == "merge" and not cfg.unique_key:
        raise ConfigError(
            "incremental_strategy='merge' requires unique_key",
            path=path,
            node=node,
            field="unique_key",
            code="CFG_SCHEMA",
        )
    return cfg


def validate_seed_config(
    raw: Mapping[str, Any], *, path: str | None = None, node: str | None = None
) -> SeedConfig:
    try:
        return SeedConfig.model_validate(dict(raw))
    except ValidationError as exc:
        raise ConfigError(
            f"schema validation failed:\n{_format_validation_error(exc)}",
            path=path,
            node=node,
            hint="Seeds accept: schema, alias, tags, enabled, column_types, delimiter.",
            code="CFG_SCHEMA",
        ) from exc


# ---------------------------------------------------------------------------
# Layer merging
# ---------------------------------------------------------------------------


def _shape(value: Any) -> str:
    if isinstance(value, Mapping):
        return "mapping"
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        return "list"
    return "scalar"


def merge_config_layers(
    layers: Sequence[tuple[str, Mapping[str, Any] | None]],
    *,
    node: str | None = None,
    path: str | None = None,
) -> dict[str, Any]:
    """
    Merge configuration layers, lowest precedence first.

    Later layers override earlier ones key by key; keys a layer leaves unset
    fall through. A key set at two levels with different value shapes
    (mapping / list / scalar) cannot be reconciled and raises ConfigError.
    """
    merged: dict[str, Any] = {}
    origin: dict[str, str] = {}
    for level, layer in layers:
        for key, value in (layer or {}).items():
            if value is None:
                continue
            if key in merged and _shape(merged[key]) != _shape(value):
                raise ConfigError(
                    f"conflicting types for '{key}': {_shape(merged[key])} at "
                    f"{origin[key]} level vs {_shape(value)} at {level} level",
                    path=path,
                    node=node,
                    field=key,
                    code="CFG_CONFLICT",
                    hint="Use the same value type at every level that sets this key.",
                )
            merged[key] = value
            origin[key] = level
    return merged


# ---------------------------------------------------------------------------
# Properties files (models/**/*.yml, seeds/*.yml)
# ---------------------------------------------------------------------------


class ColumnProperties(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    description: str = ""
    tests: list[str | dict[str, Any]] = Field(default_factory=list)


class NodeProperties(BaseModel):
    """
    One entry under `models:` / `seeds:` in a properties file:

        models:
          - name: stg_orders
            description: Orders with renamed columns
            config:
              materialized: view
            columns:
              - name: order_id
                tests: [unique, not_null]
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    description: str = ""
    config: dict[str, Any] = Field(default_factory=dict)
    columns: list[ColumnProperties] = Field(default_factory=list)


class PropertiesFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: int | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    models: list[NodeProperties] = Field(default_factory=list)
    seeds: list[NodeProperties] = Field(default_factory=list)


def parse_properties(raw: Any, *, path: str) -> PropertiesFile:
    if raw is None:
        return PropertiesFile()
    try:
        return PropertiesFile.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(
            f"invalid properties file:\n{_format_validation_error(exc)}",
            path=path,
            code="CFG_PROPERTIES",
        ) from exc


# ---------------------------------------------------------------------------
# Column test entries
# ---------------------------------------------------------------------------

_REF_CALL = re.compile(r"^\s*ref\s*\(\s*['\"]([A-Za-z0-9_.\-]+)['\"]\s*\)\s*$")


class TestDefinition(BaseModel):
    """Normalized column test entry."""

    __test__ = False

    model_config = ConfigDict(extra="forbid")

    kind: TestKind
    severity: Severity = "error"
    where: str | None = None
    to: str | None = None
    field: str | None = None
    values: list[Any] | None = None
    expression: str | None = None


def parse_test_entry(entry: str | Mapping[str, Any], *, path: str, column: str) -> TestDefinition:
    """
    Accepted forms:

        - unique
        - not_null
        - relationships: {to: customers, field: customer_id}
        - relationships: {to: "ref('customers')", field: customer_id}
        - accepted_values: {values: [placed, shipped]}
        - accepted_values: [placed, shipped]
        - expression: "amount >= 0"
        - expression: {expression: "amount >= 0", severity: warn}
    """
    if isinstance(entry, str):
        kind, args = entry.strip(), {}
    elif isinstance(entry, Mapping) and len(entry) == 1:
        kind, raw_args = next(iter(entry.items()))
        if raw_args is None:
            args = {}
        elif isinstance(raw_args, Mapping):
            args = dict(raw_args)
        elif kind == "accepted_values" and isinstance(raw_args, Sequence):
            args = {"values": list(raw_args)}
        elif kind == "expression" and isinstance(raw_args, str):
            args = {"expression": raw_args}
        else:
            raise ConfigError(
                f"unsupported arguments for test '{kind}' on column '{column}'",
                path=path,
                field="tests",
                code="CFG_TEST",
            )
    else:
        raise ConfigError(
            f"test entries on column '{column}' must be a name or a single-key mapping",
            path=path,
            field="tests",
            code="CFG_TEST",
        )

    if kind not in TEST_KINDS:
        raise ConfigError(
            f"unknown test '{kind}' on column '{column}'",
            path=path,
            field="tests",
            code="CFG_TEST",
            hint="Known tests: " + ", ".join(TEST_KINDS),
        )

    to = args.get("to")
    if isinstance(to, str):
        m = _REF_CALL.match(to)
        if m:
            args["to"] = m.group(1)

    try:
        td = TestDefinition.model_validate({"kind": kind, **args})
    except ValidationError as exc:
        raise ConfigError(
            f"invalid '{kind}' test on column '{column}':\n{_format_validation_error(exc)}",
            path=path,
            field="tests",
            code="CFG_TEST",
        ) from exc

    if td.kind == "relationships" and not (td.to and td.field):
        raise ConfigError(
            f"relationships test on column '{column}' requires 'to' and 'field'",
            path=path,
            field="tests",
            code="CFG_TEST",
        )
    if td.kind == "accepted_values" and not td.values:
        raise ConfigError(
            f"accepted_values test on column '{column}' requires 'values'",
            path=path,
            field="tests",
            code="CFG_TEST",
        )
    if td.kind == "expression" and not (td.expression and td.expression.strip()):
        raise ConfigError(
            f"expression test on column '{column}' requires 'expression'",
            path=path,
            field="tests",
            code="CFG_TEST",
        )
    return td
