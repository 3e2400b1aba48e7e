# src/dagsmith/resolver.py
from __future__ import annotations

import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from jinja2 import Environment, StrictUndefined, nodes
from jinja2.exceptions import TemplateSyntaxError, UndefinedError
from jinja2.runtime import Macro

from dagsmith.core import Node, ProjectDefinitions, TargetInfo
from dagsmith.errors import ParseError
from dagsmith.logging import get_logger

logger = get_logger("resolver")

# Placeholders survive rendering untouched and are bound to physical
# relations only after the graph has been validated.
_SEP = "\x1f"
_PLACEHOLDER = re.compile(_SEP + r"(ref|source):([^" + _SEP + r"]+)" + _SEP)
# str.strip() treats the separator as whitespace; trim only real blanks.
SQL_BLANKS = " \t\r\n"

_MISSING = object()


def ref_placeholder(name: str) -> str:
    return f"{_SEP}ref:{name}{_SEP}"


def source_placeholder(source_id: str) -> str:
    return f"{_SEP}source:{source_id}{_SEP}"


@dataclass(frozen=True)
class ResolvedTemplate:
    node: str
    rendered_sql: str
    refs: tuple[str, ...]
    sources: tuple[str, ...]

    @property
    def deps(self) -> list[str]:
        """Sorted node names and source ids reached while rendering."""
        return sorted(set(self.refs) | set(self.sources))


class _ThisProxy:
    """
    Jinja-compatible proxy for {{ this }}:
    - usable as a string ({{ this }}) → the node's own relation
    - attributes ({{ this.name }}, {{ this.schema }}, {{ this.materialized }})
    """

    def __init__(self, node: Node):
        self.name = node.identifier
        self.schema = node.schema
        self.materialized = node.materialized
        self._placeholder = ref_placeholder(node.name)

    def __str__(self) -> str:
        return self._placeholder

    def __repr__(self) -> str:
        return f"_ThisProxy(name={self.name!r})"


class _Recorder:
    def __init__(self) -> None:
        self.refs: set[str] = set()
        self.sources: set[str] = set()

    def ref(self, name: str) -> str:
        self.refs.add(name)
        return ref_placeholder(name)

    def source(self, source_name: str, table_name: str) -> str:
        sid = f"{source_name}.{table_name}"
        self.sources.add(sid)
        return source_placeholder(sid)


class Resolver:
    """
    Immutable compile context: one Jinja environment with `var`, `env_var`,
    `target`, `config` and the project macros. `resolve(node)` checks the
    template statically, renders it and records the references reached.
    """

    def __init__(
        self,
        defs: ProjectDefinitions,
        *,
        target: TargetInfo,
        cli_vars: Mapping[str, Any] | None = None,
    ):
        self.defs = defs
        self.target = target
        self.cli_vars = dict(cli_vars or {})
        self.env = self._init_jinja_env()
        self._load_macros(defs.macro_paths)

    def _init_jinja_env(self) -> Environment:
        env = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        project_vars = self.defs.vars
        cli_vars = self.cli_vars

        # CLI --vars override project vars
        def _var(key: str, default: Any = _MISSING) -> Any:
            if key in cli_vars:
                return cli_vars[key]
            if key in project_vars:
                return project_vars[key]
            if default is _MISSING:
                raise UndefinedError(f"var('{key}') is not defined and has no default")
            return default

        def _env_var(name: str, default: Any = _MISSING) -> Any:
            val = os.environ.get(name)
            if val is not None:
                return val
            if default is _MISSING:
                raise UndefinedError(f"env_var('{name}') is not set and has no default")
            return default

        def _config(**_kwargs: Any) -> str:
            # read by the registry from the file header; emits nothing
            return ""

        env.globals["var"] = _var
        env.globals["env_var"] = _env_var
        env.globals["config"] = _config
        env.globals["target"] = self.target.as_dict()
        return env

    def _load_macros(self, paths: list[Path]) -> None:
        """Register every macro defined under macros/ as a Jinja global."""
        for path in paths:
            text = path.read_text(encoding="utf-8")
            try:
                module = self.env.from_string(text).module
            except TemplateSyntaxError as exc:
                raise ParseError(
                    path.stem, f"macro file syntax error (line {exc.lineno}): {exc.message}",
                    path=str(path),
                ) from exc
            for name in dir(module):
                obj = getattr(module, name)
                if not name.startswith("_") and isinstance(obj, Macro):
                    self.env.globals[name] = obj
            logger.debug("loaded macros from %s", path)

    # ---------- static check ----------
    def check(self, node: Node) -> nodes.Template:
        """
        Parse the model and verify that `ref`/`source` only appear as direct
        calls with string-literal arguments (1 for ref, 2 for source).
        """
        try:
            tree = self.env.parse(node.raw_sql)
        except TemplateSyntaxError as exc:
            raise ParseError(
                node.name,
                f"template syntax error (line {exc.lineno}): {exc.message}",
                path=str(node.path),
            ) from exc

        arity = {"ref": 1, "source": 2}
        ok_names: set[int] = set()
        for call in tree.find_all(nodes.Call):
            target = call.node
            if not (isinstance(target, nodes.Name) and target.name in arity):
                continue
            fn = target.name
            literal = all(isinstance(a, nodes.Const) and isinstance(a.value, str) for a in call.args)
            if (
                not literal
                or len(call.args) != arity[fn]
                or call.kwargs
                or call.dyn_args is not None
                or call.dyn_kwargs is not None
            ):
                expected = "ref('model')" if fn == "ref" else "source('source', 'table')"
                raise ParseError(
                    node.name,
                    f"line {call.lineno}: {fn}() arguments must be string literals",
                    path=str(node.path),
                    hint=f"Write {expected}. Dependencies must be known before anything runs.",
                )
            ok_names.add(id(target))

        for name in tree.find_all(nodes.Name):
            if name.name in arity and id(name) not in ok_names:
                raise ParseError(
                    node.name,
                    f"line {name.lineno}: '{name.name}' may only be called directly",
                    path=str(node.path),
                    hint="Do not assign, pass around or shadow ref/source.",
                )
        return tree

    # ---------- rendering ----------
    def resolve(self, node: Node) -> ResolvedTemplate:
        tree = self.check(node)
        recorder = _Recorder()
        try:
            template = self.env.from_string(tree)
            rendered = template.render(
                ref=recorder.ref, source=recorder.source, this=_ThisProxy(node)
            )
        except UndefinedError as exc:
            raise ParseError(
                node.name,
                f"undefined: {exc.message}",
                path=str(node.path),
                hint="Define it under vars: in project.yml or pass --vars.",
            ) from exc
        except TemplateSyntaxError as exc:
            raise ParseError(
                node.name,
                f"template syntax error (line {exc.lineno}): {exc.message}",
                path=str(node.path),
            ) from exc
        except Exception as exc:
            raise ParseError(
                node.name, f"error while rendering: {exc}", path=str(node.path)
            ) from exc

        return ResolvedTemplate(
            node=node.name,
            rendered_sql=rendered.strip(SQL_BLANKS),
            refs=tuple(sorted(recorder.refs)),
            sources=tuple(sorted(recorder.sources)),
        )


def resolve(node: Node, context: Resolver) -> ResolvedTemplate:
    return context.resolve(node)


def bind(
    resolved: ResolvedTemplate | str,
    relation_lookup: Mapping[str, str] | Callable[[str], str],
) -> str:
    """Substitute every reference placeholder with its physical relation."""
    sql = resolved.rendered_sql if isinstance(resolved, ResolvedTemplate) else resolved
    lookup: Callable[[str], str] = (
        relation_lookup.__getitem__ if isinstance(relation_lookup, Mapping) else relation_lookup
    )
    return _PLACEHOLDER.sub(lambda m: lookup(m.group(2)), sql)
