# src/dagsmith/core.py
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from jinja2 import Environment, nodes
from jinja2.exceptions import TemplateSyntaxError

from dagsmith.config.models import (
    ColumnProperties,
    ModelConfig,
    NodeProperties,
    PropertiesFile,
    SeedConfig,
    merge_config_layers,
    parse_properties,
    parse_test_entry,
    validate_model_config,
    validate_seed_config,
)
from dagsmith.config.project import ProjectConfig, parse_project_yaml_config, read_yaml
from dagsmith.config.sources import load_sources_config
from dagsmith.errors import ConfigError
from dagsmith.logging import get_logger

ResourceType = Literal["model", "seed"]

logger = get_logger("registry")

# Parse-only environment; templates are never rendered here.
_CONFIG_ENV = Environment()


@dataclass
class ColumnSpec:
    name: str
    description: str = ""
    tests: list[str] = field(default_factory=list)  # test unique ids


@dataclass
class Node:
    name: str
    resource_type: ResourceType
    path: Path
    config: ModelConfig | SeedConfig
    raw_sql: str = ""
    deps: list[str] = field(default_factory=list)
    description: str = ""
    columns: list[ColumnSpec] = field(default_factory=list)
    # set by the compile phase
    compiled_sql: str | None = None
    relation: str | None = None

    @property
    def materialized(self) -> str:
        return self.config.effective_materialized

    @property
    def tags(self) -> list[str]:
        return list(self.config.tags or [])

    @property
    def identifier(self) -> str:
        """Physical object name (alias or node name)."""
        return self.config.alias or self.name

    @property
    def schema(self) -> str | None:
        return self.config.db_schema


@dataclass
class SourceNode:
    source_name: str
    table_name: str
    identifier: str
    schema: str | None = None
    description: str = ""
    columns: list[ColumnSpec] = field(default_factory=list)
    relation: str | None = None

    @property
    def unique_id(self) -> str:
        return f"{self.source_name}.{self.table_name}"


@dataclass
class TestSpec:
    """One column-level data test bound to a node or a source."""

    __test__ = False

    unique_id: str
    kind: str
    node: str
    column: str
    kwargs: dict[str, Any] = field(default_factory=dict)
    severity: Literal["error", "warn"] = "error"
    where: str | None = None


@dataclass(frozen=True)
class TargetInfo:
    """What templates see as `target`; also recorded in artifacts."""

    name: str
    engine: str
    schema: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"name": self.name, "engine": self.engine, "schema": self.schema}


@dataclass
class ProjectDefinitions:
    """Everything the registry read from disk, before any compilation."""

    project_dir: Path
    project: ProjectConfig
    nodes: dict[str, Node]
    sources: dict[str, SourceNode]
    tests: list[TestSpec]
    macro_paths: list[Path] = field(default_factory=list)

    @property
    def vars(self) -> dict[str, Any]:
        return dict(self.project.vars)


class Registry:
    """
    Discovers models, seeds, sources, properties files and macros under a
    project directory and resolves the configuration of every node.

    Precedence of configuration layers (lowest first): project.yml defaults,
    directory-level `config:` of properties files (outer directories first),
    the node's own properties entry, and the inline `{{ config(...) }}` block.
    """

    def __init__(self):
        self.project_dir: Path | None = None
        self.project: ProjectConfig | None = None
        self.nodes: dict[str, Node] = {}
        self.sources: dict[str, SourceNode] = {}
        self.tests: list[TestSpec] = []
        self.macro_paths: list[Path] = []
        # properties per directory ("config:") and per node name
        self._dir_configs: dict[Path, list[tuple[Path, dict[str, Any]]]] = {}
        self._model_props: dict[str, tuple[Path, NodeProperties]] = {}
        self._seed_props: dict[str, tuple[Path, NodeProperties]] = {}
        self._source_columns: dict[str, list[ColumnProperties]] = {}

    def load(self, project_dir: Path) -> ProjectDefinitions:
        """Load a dagsmith project from the given directory."""
        self._reset_registry_state()
        project_dir = Path(project_dir)
        if not project_dir.is_dir():
            raise ConfigError(
                f"project directory not found: {project_dir}", code="CFG_PROJECT"
            )
        self.project_dir = project_dir
        self.project = parse_project_yaml_config(project_dir)

        self._load_sources_yaml(project_dir)
        self._load_properties(project_dir / "models", project_dir / "seeds")
        self._discover_sql_models(project_dir / "models")
        self._discover_seeds(project_dir / "seeds")
        self._warn_unknown_properties()
        self._collect_tests()
        self.macro_paths = _collect_macro_files(project_dir / "macros")

        logger.info(
            "loaded %d node(s), %d source table(s), %d test(s) from %s",
            len(self.nodes),
            len(self.sources),
            len(self.tests),
            project_dir,
        )
        return ProjectDefinitions(
            project_dir=project_dir,
            project=self.project,
            nodes=dict(self.nodes),
            sources=dict(self.sources),
            tests=list(self.tests),
            macro_paths=list(self.macro_paths),
        )

    def _reset_registry_state(self) -> None:
        self.project_dir = None
        self.project = None
        self.nodes.clear()
        self.sources.clear()
        self.tests.clear()
        self.macro_paths.clear()
        self._dir_configs.clear()
        self._model_props.clear()
        self._seed_props.clear()
        self._source_columns.clear()

    # --- sources / properties ------------------------------------------
    def _load_sources_yaml(self, project_dir: Path) -> None:
        cfg = load_sources_config(project_dir)
        for group in cfg.sources:
            for tbl in group.tables:
                src = SourceNode(
                    source_name=group.name,
                    table_name=tbl.name,
                    identifier=tbl.identifier or tbl.name,
                    schema=tbl.schema_ or group.schema_,
                    description=tbl.description,
                    columns=[ColumnSpec(c.name, c.description) for c in tbl.columns],
                )
                self.sources[src.unique_id] = src
                if tbl.columns:
                    self._source_columns[src.unique_id] = list(tbl.columns)

    def _load_properties(self, models_dir: Path, seeds_dir: Path) -> None:
        files: list[Path] = []
        for base in (models_dir, seeds_dir):
            if base.exists():
                files += sorted(p for p in base.rglob("*") if p.suffix in (".yml", ".yaml"))

        for path in files:
            props: PropertiesFile = parse_properties(read_yaml(path), path=str(path))
            if props.config:
                self._dir_configs.setdefault(path.parent, []).append((path, props.config))
            for entry in props.models:
                self._register_props(self._model_props, "model", entry, path)
            for entry in props.seeds:
                self._register_props(self._seed_props, "seed", entry, path)

    def _register_props(
        self,
        target: dict[str, tuple[Path, NodeProperties]],
        kind: str,
        entry: NodeProperties,
        path: Path,
    ) -> None:
        if entry.name in target:
            other, _ = target[entry.name]
            raise ConfigError(
                f"properties for {kind} '{entry.name}' declared twice (also in {other})",
                path=str(path),
                node=entry.name,
                code="CFG_PROPERTIES",
            )
        target[entry.name] = (path, entry)

    def _directory_layers(self, root: Path, file_dir: Path) -> list[tuple[str, dict[str, Any]]]:
        """`config:` blocks of properties files from `root` down to `file_dir`."""
        chain: list[Path] = []
        cur = file_dir
        while True:
            chain.append(cur)
            if cur == root or cur == cur.parent:
                break
            cur = cur.parent
        layers: list[tuple[str, dict[str, Any]]] = []
        for d in reversed(chain):
            for _path, cfg in self._dir_configs.get(d, []):
                layers.append(("directory", cfg))
        return layers

    # --- models ---------------------------------------------------------
    def _discover_sql_models(self, models_dir: Path) -> None:
        """Scan models/**/*.sql, merge config layers and register enabled models."""
        if not models_dir.exists():
            return
        assert self.project is not None
        project_layer = dict(self.project.models)

        for path in sorted(models_dir.rglob("*.sql")):
            name = path.stem
            raw_sql = path.read_text(encoding="utf-8")
            inline = self._parse_model_config(path, raw_sql)
            _, props = self._model_props.get(name, (None, None))

            layers = [("project", project_layer)]
            layers += self._directory_layers(models_dir, path.parent)
            layers.append(("properties", props.config if props else {}))
            layers.append(("inline", inline))
            merged = merge_config_layers(layers, node=name, path=str(path))
            cfg = validate_model_config(merged, path=str(path), node=name)

            if cfg.enabled is False:
                logger.debug("skipping disabled model %s (%s)", name, path)
                continue

            self._add_node_or_fail(
                Node(
                    name=name,
                    resource_type="model",
                    path=path,
                    config=cfg,
                    raw_sql=raw_sql,
                    description=props.description if props else "",
                    columns=_columns_from(props),
                )
            )

    # --- seeds ----------------------------------------------------------
    def _discover_seeds(self, seeds_dir: Path) -> None:
        if not seeds_dir.exists():
            return
        assert self.project is not None
        project_layer = dict(self.project.seeds)

        for path in sorted(seeds_dir.rglob("*.csv")):
            name = path.stem
            _, props = self._seed_props.get(name, (None, None))
            layers = [("project", project_layer)]
            layers += self._directory_layers(seeds_dir, path.parent)
            layers.append(("properties", props.config if props else {}))
            merged = merge_config_layers(layers, node=name, path=str(path))
            cfg = validate_seed_config(merged, path=str(path), node=name)

            if cfg.enabled is False:
                logger.debug("skipping disabled seed %s (%s)", name, path)
                continue

            self._add_node_or_fail(
                Node(
                    name=name,
                    resource_type="seed",
                    path=path,
                    config=cfg,
                    description=props.description if props else "",
                    columns=_columns_from(props),
                )
            )

    def _add_node_or_fail(self, node: Node) -> None:
        if node.name in self.nodes:
            other = self.nodes[node.name].path
            raise ConfigError(
                "Duplicate node name detected:\n"
                f"• already registered: {other}\n"
                f"• new {node.resource_type}:  {node.path}",
                node=node.name,
                code="CFG_DUPLICATE",
                hint="Rename one of the files (file name = node name).",
            )
        self.nodes[node.name] = node

    def _warn_unknown_properties(self) -> None:
        for kind, table in (("model", self._model_props), ("seed", self._seed_props)):
            for name, (path, _) in sorted(table.items()):
                node = self.nodes.get(name)
                if node is None and not self._is_disabled(name):
                    logger.warning(
                        "%s: properties declared for unknown %s '%s'", path, kind, name
                    )

    def _is_disabled(self, name: str) -> bool:
        assert self.project_dir is not None
        for base, pattern in (("models", f"{name}.sql"), ("seeds", f"{name}.csv")):
            root = self.project_dir / base
            if root.exists() and any(root.rglob(pattern)):
                return True
        return False

    # --- tests ----------------------------------------------------------
    def _collect_tests(self) -> None:
        seen: dict[str, int] = {}

        def _add(kind_owner: str, column: str, entries: Iterable[Any], path: Path) -> list[str]:
            ids: list[str] = []
            for entry in entries:
                td = parse_test_entry(entry, path=str(path), column=column)
                base = f"{td.kind}.{kind_owner}.{column}"
                n = seen.get(base, 0) + 1
                seen[base] = n
                uid = base if n == 1 else f"{base}.{n}"
                kwargs = {
                    k: v
                    for k, v in (
                        ("to", td.to),
                        ("field", td.field),
                        ("values", td.values),
                        ("expression", td.expression),
                    )
                    if v is not None
                }
                self.tests.append(
                    TestSpec(
                        unique_id=uid,
                        kind=td.kind,
                        node=kind_owner,
                        column=column,
                        kwargs=kwargs,
                        severity=td.severity,
                        where=td.where,
                    )
                )
                ids.append(uid)
            return ids

        for node in self.nodes.values():
            table = self._model_props if node.resource_type == "model" else self._seed_props
            path, props = table.get(node.name, (node.path, None))
            if props is None:
                continue
            for col_props, col in zip(props.columns, node.columns, strict=True):
                col.tests = _add(node.name, col.name, col_props.tests, path)

        if self._source_columns:
            assert self.project_dir is not None
            src_path = self.project_dir / "sources.yml"
            for uid, col_props_list in self._source_columns.items():
                src = self.sources[uid]
                for col_props, col in zip(col_props_list, src.columns, strict=True):
                    col.tests = _add(uid, col.name, col_props.tests, src_path)

    # -------- {{ config(...) }} parser --------
    def _parse_model_config(self, path: Path, text: str) -> dict[str, Any]:
        """
        Find the `{{ config(...) }}` call anywhere in the template and parse its
        keyword arguments.
        - No `config(...)` call → {}.
        - Arguments that are not literal key=value pairs → ConfigError.
        - Templates that do not parse are left to the resolver, which reports them.
        """
        try:
            tree = _CONFIG_ENV.parse(text)
        except TemplateSyntaxError:
            return {}
        calls = [
            c
            for c in tree.find_all(nodes.Call)
            if isinstance(c.node, nodes.Name) and c.node.name == "config"
        ]
        if not calls:
            return {}
        if len(calls) > 1:
            raise ConfigError(
                f"config() called {len(calls)} times",
                path=str(path),
                hint="Merge all settings into a single {{ config(...) }} call.",
            )
        call = calls[0]
        if call.args or call.dyn_args is not None:
            raise ConfigError(
                "config() accepts keyword arguments only",
                path=str(path),
                hint="Write config(materialized='table'), not config('table').",
            )
        if call.dyn_kwargs is not None:
            raise ConfigError(
                "unsupported **kwargs in config()",
                path=str(path),
                field="**kwargs",
                hint="Use explicit key=value pairs; expressions are not allowed.",
            )

        cfg: dict[str, Any] = {}
        for kw in call.kwargs:
            try:
                cfg[kw.key] = kw.value.as_const()
            except nodes.Impossible as err:
                raise ConfigError(
                    f"invalid literal for '{kw.key}' (line {kw.lineno}); "
                    "quote strings, no expressions",
                    path=str(path),
                    field=kw.key,
                    hint="All values must be literals (e.g. 'view', ['tag']).",
                ) from err
        return cfg


def load_project(project_dir: Path) -> ProjectDefinitions:
    return Registry().load(project_dir)


# ----------------- Helper -----------------


def _columns_from(props: NodeProperties | None) -> list[ColumnSpec]:
    if props is None:
        return []
    return [ColumnSpec(name=c.name, description=c.description) for c in props.columns]


def _collect_macro_files(macros_dir: Path) -> list[Path]:
    if not macros_dir.exists():
        return []
    files = list(macros_dir.rglob("*.sql"))
    files += list(macros_dir.rglob("*.sql.j2"))
    return sorted(files)
