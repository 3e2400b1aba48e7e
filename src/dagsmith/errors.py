# dagsmith/errors.py

from __future__ import annotations

from collections.abc import Iterable, Sequence


class DagsmithError(Exception):
    """
    Base class for all dagsmith errors.

    Attributes:
        message: Human-readable error message.
        code: Optional short error code (e.g., 'CFG_SCHEMA', 'DAG_CYCLE').
        hint: Optional human hint with remediation steps.
        node: Identifier of the offending node, when there is one.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        hint: str | None = None,
        node: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.hint = hint
        self.node = node

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message}\n\nHint:\n{self.hint}"
        return self.message


class ConfigError(DagsmithError):
    """Malformed or conflicting configuration. Raised before any compilation."""

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        field: str | None = None,
        node: str | None = None,
        hint: str | None = None,
        code: str | None = "CFG",
    ):
        where = path or node
        prefix = f"{where}: " if where else ""
        if field:
            prefix += f"[{field}] "
        super().__init__(prefix + message, code=code, hint=hint, node=node)
        self.path = path
        self.field = field


class ProfileConfigError(ConfigError):
    """Profile/configuration error with a short, actionable hint."""

    def __init__(self, message: str):
        # keep to a single line for CLI readability
        super().__init__(message.replace("\n", " ").strip(), code="PROFILE")


class ParseError(DagsmithError):
    """A reference macro or a compile-time construct could not be resolved statically."""

    def __init__(self, node: str, message: str, *, path: str | None = None, hint: str | None = None):
        location = f"{node} ({path})" if path else node
        super().__init__(f"{location}: {message}", code="PARSE", hint=hint, node=node)
        self.path = path


class CompileError(DagsmithError):
    """The dependency graph is invalid; nothing may execute."""


class UnresolvedReferenceError(CompileError):
    """Raised when a node references a model or source that does not exist."""

    def __init__(self, missing_map: dict[str, list[str]]):
        parts = []
        for depender, deps in sorted(missing_map.items()):
            parts.append(f"{depender} → missing: {', '.join(sorted(deps))}")

        msg = "❌ Unresolved reference.\n" + "\n".join(parts)
        hint = (
            "• Check file names under models/ and seeds/ (node name = file stem).\n"
            "• Ensure ref('…') matches the exact node name.\n"
            "• Raw tables must be declared in sources.yml and used via source('…', '…')."
        )
        first = next(iter(sorted(missing_map)), None)
        super().__init__(msg, code="DAG_MISSING", hint=hint, node=first)
        self.missing_map = missing_map


class ModelCycleError(CompileError):
    """
    Raised when a cycle is detected in the model DAG.

    Args:
        cycle: The cycle path, first node repeated at the end (a → b → a).
    """

    def __init__(self, cycle: Sequence[str]):
        path = list(cycle)
        msg = "Cycle detected in DAG: " + " → ".join(path)
        hint = (
            "Check for circular refs in your models:\n"
            "• Ensure A does not ref B while B (directly or indirectly) refs A.\n"
            "• Break the cycle by removing or refactoring one dependency."
        )
        super().__init__(msg, code="DAG_CYCLE", hint=hint, node=path[0] if path else None)
        self.cycle = path

    @property
    def affected_nodes(self) -> list[str]:
        return sorted(set(self.cycle))


class ModelExecutionError(DagsmithError):
    """Raised when a node fails to execute on the target.
    Carries friendly context for CLI formatting.
    """

    def __init__(self, node_name: str, relation: str, message: str, sql_snippet: str | None = None):
        super().__init__(f"{node_name}: {message}", code="RUNTIME", node=node_name)
        self.node_name = node_name
        self.relation = relation
        self.sql_snippet = sql_snippet


class TestFailure(DagsmithError):
    """Error class for data-quality checks that were escalated to a failure."""

    __test__ = False  # keep pytest from collecting this class

    def __init__(self, failed: Iterable[str]):
        names = sorted(failed)
        super().__init__(
            f"{len(names)} data test(s) failed: " + ", ".join(names),
            code="TEST_FAILURE",
            node=names[0] if names else None,
        )
        self.failed = names
