from __future__ import annotations

import fnmatch
from collections.abc import Callable, Iterable

from dagsmith import dag
from dagsmith.core import Node


def _parse_select(parts: Iterable[str] | None) -> list[str]:
    """Accept multiple --select occurrences or a single space-separated string."""
    out: list[str] = []
    for p in parts or []:
        out.extend(s for s in str(p).replace(",", " ").split() if s)
    return out


def _predicate(token: str) -> Callable[[Node], bool]:
    """
    Supported tokens:
      - name glob: e.g. orders*, stg_*  (matches Node.name)
      - tag:<tag>
      - type:<seed|model>  resource type, or a materialization (view|table|incremental)
    """
    if token.startswith("tag:"):
        want = token.split(":", 1)[1]
        return lambda n: want in n.tags
    if token.startswith("type:"):
        want = token.split(":", 1)[1]
        return lambda n: n.resource_type == want or n.materialized == want
    return lambda n: fnmatch.fnmatchcase(n.name, token)


def _match_token(graph: dag.Graph, token: str) -> set[str]:
    """Expand one token, honouring the +name (ancestors) and name+ (descendants) graph operators."""
    up = token.startswith("+")
    down = token.endswith("+") and len(token) > 1
    core = token.strip("+")
    pred = _predicate(core)
    hits = {name for name, node in graph.nodes.items() if pred(node)}
    out = set(hits)
    for name in hits:
        if up:
            out |= dag.ancestors(graph, name)
        if down:
            out |= dag.descendants(graph, name)
    return out


def select_nodes(
    graph: dag.Graph,
    select_tokens: Iterable[str] | None = None,
    exclude_tokens: Iterable[str] | None = None,
) -> set[str]:
    """
    Node names to execute: the union of all --select tokens (everything when
    omitted) minus the union of all --exclude tokens. Dependencies outside the
    result are not added; they are assumed to exist in the target already.
    """
    select = _parse_select(select_tokens)
    exclude = _parse_select(exclude_tokens)

    if select:
        chosen: set[str] = set()
        for tok in select:
            chosen |= _match_token(graph, tok)
    else:
        chosen = set(graph.nodes)

    for tok in exclude:
        chosen -= _match_token(graph, tok)
    return chosen


__all__ = ["select_nodes"]
