# src/dagsmith/dag.py
from __future__ import annotations

import heapq
import re
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from dagsmith.core import Node, SourceNode, TestSpec
from dagsmith.errors import ModelCycleError, UnresolvedReferenceError


@dataclass(frozen=True)
class Graph:
    """
    Validated dependency graph. Immutable once built.

    `parents[n]` lists the nodes `n` depends on, `children[n]` the nodes that
    depend on `n`; raw sources are kept apart in `source_parents`.
    """

    nodes: Mapping[str, Node]
    sources: Mapping[str, SourceNode]
    tests: tuple[TestSpec, ...]
    parents: Mapping[str, tuple[str, ...]]
    children: Mapping[str, tuple[str, ...]]
    source_parents: Mapping[str, tuple[str, ...]]

    def __contains__(self, name: object) -> bool:
        return name in self.nodes


def build(
    nodes: Mapping[str, Node],
    sources: Mapping[str, SourceNode] | None = None,
    tests: Iterable[TestSpec] = (),
) -> Graph:
    """
    Build and validate the graph from `node.deps`.

    Raises UnresolvedReferenceError when a dependency (or a relationships
    test target) names neither a node nor a raw source, and ModelCycleError
    with the full cycle path when the dependencies are not acyclic.
    """
    sources = dict(sources or {})
    tests = tuple(tests)

    missing: dict[str, set[str]] = defaultdict(set)
    for n in nodes.values():
        for d in n.deps:
            if d not in nodes and d not in sources:
                missing[n.name].add(d)
    for t in tests:
        to = t.kwargs.get("to")
        if t.kind == "relationships" and to not in nodes and to not in sources:
            missing[t.unique_id].add(str(to))
    if missing:
        raise UnresolvedReferenceError({k: sorted(v) for k, v in missing.items()})

    parents = {n.name: tuple(sorted({d for d in n.deps if d in nodes})) for n in nodes.values()}
    source_parents = {
        n.name: tuple(sorted({d for d in n.deps if d in sources})) for n in nodes.values()
    }
    children_sets: dict[str, set[str]] = {name: set() for name in nodes}
    for name, deps in parents.items():
        for d in deps:
            children_sets[d].add(name)

    _check_acyclic(parents)

    return Graph(
        nodes=MappingProxyType(dict(nodes)),
        sources=MappingProxyType(sources),
        tests=tests,
        parents=MappingProxyType(parents),
        children=MappingProxyType({k: tuple(sorted(v)) for k, v in children_sets.items()}),
        source_parents=MappingProxyType(source_parents),
    )


def _check_acyclic(parents: Mapping[str, tuple[str, ...]]) -> None:
    """Iterative DFS with a recursion-stack marker; reports the first cycle found."""
    done: set[str] = set()
    for root in sorted(parents):
        if root in done:
            continue
        stack: list[str] = [root]
        on_stack: dict[str, int] = {root: 0}
        iters = [iter(parents[root])]
        while iters:
            try:
                dep = next(iters[-1])
            except StopIteration:
                finished = stack.pop()
                del on_stack[finished]
                done.add(finished)
                iters.pop()
                continue
            if dep in on_stack:
                raise ModelCycleError([*stack[on_stack[dep] :], dep])
            if dep in done:
                continue
            on_stack[dep] = len(stack)
            stack.append(dep)
            iters.append(iter(parents[dep]))


def topo_sort(graph: Graph, subset: Iterable[str] | None = None) -> list[str]:
    """Dependencies first; ties broken lexicographically."""
    names = set(graph.nodes) if subset is None else set(subset)
    indeg = {k: 0 for k in names}
    for k in names:
        indeg[k] = sum(1 for d in graph.parents[k] if d in names)

    heap = [k for k, deg in indeg.items() if deg == 0]
    heapq.heapify(heap)
    order: list[str] = []
    while heap:
        u = heapq.heappop(heap)
        order.append(u)
        for v in graph.children[u]:
            if v in names:
                indeg[v] -= 1
                if indeg[v] == 0:
                    heapq.heappush(heap, v)
    return order


def levels(graph: Graph, subset: Iterable[str] | None = None) -> list[list[str]]:
    """
    Returns a level-wise topological ordering.
    - Each inner list contains nodes with no prerequisites inside the remaining
      graph (i.e. eligible to run in parallel).
    - Ordering within a level is lexicographically stable.
    """
    names = set(graph.nodes) if subset is None else set(subset)
    indeg = {k: sum(1 for d in graph.parents[k] if d in names) for k in names}

    current = sorted(k for k, deg in indeg.items() if deg == 0)
    lvls: list[list[str]] = []
    while current:
        lvls.append(current)
        next_zero: set[str] = set()
        for u in current:
            for v in graph.children[u]:
                if v in names:
                    indeg[v] -= 1
                    if indeg[v] == 0:
                        next_zero.add(v)
        current = sorted(next_zero)
    return lvls


def _walk(adjacency: Mapping[str, tuple[str, ...]], start: str) -> set[str]:
    seen: set[str] = set()
    todo = list(adjacency.get(start, ()))
    while todo:
        cur = todo.pop()
        if cur in seen:
            continue
        seen.add(cur)
        todo.extend(adjacency.get(cur, ()))
    return seen


def ancestors(graph: Graph, name: str) -> set[str]:
    return _walk(graph.parents, name)


def descendants(graph: Graph, name: str) -> set[str]:
    return _walk(graph.children, name)


def subgraph(graph: Graph, names: Iterable[str]) -> Graph:
    """
    Restrict the graph to `names`. Edges to nodes outside the selection are
    dropped; tests are kept when their node is selected.
    """
    keep = {n for n in names if n in graph.nodes}
    parents = {n: tuple(d for d in graph.parents[n] if d in keep) for n in keep}
    children = {n: tuple(c for c in graph.children[n] if c in keep) for n in keep}
    return Graph(
        nodes=MappingProxyType({n: graph.nodes[n] for n in keep}),
        sources=graph.sources,
        tests=tuple(t for t in graph.tests if t.node in keep),
        parents=MappingProxyType(parents),
        children=MappingProxyType(children),
        source_parents=MappingProxyType({n: graph.source_parents[n] for n in keep}),
    )


def _mm_id(name: str) -> str:
    s = re.sub(r"[^A-Za-z0-9_]", "_", name)
    return "_" + s if s and s[0].isdigit() else (s or "_node")


def _quote_label(s: str) -> str:
    s = s.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{s}"'


def mermaid(graph: Graph, *, with_sources: bool = True) -> str:
    lines = [
        "flowchart TD",
        "  classDef model fill:#e8f1ff,stroke:#5b8def,color:#0a1f44;",
        "  classDef seed  fill:#e9fbf1,stroke:#2bb673,color:#0b2e1f;",
        "  classDef src   fill:#fff6e0,stroke:#d99a00,color:#3d2b00;",
    ]

    if with_sources:
        used = sorted({s for deps in graph.source_parents.values() for s in deps})
        for sid in used:
            nid = _mm_id("src_" + sid)
            lines.append(f"  {nid}[({_quote_label(sid)})]")
            lines.append(f"  class {nid} src;")

    for n in sorted(graph.nodes.values(), key=lambda x: x.name):
        nid = _mm_id(n.name)
        label = _quote_label(f"{n.name}<br/>({n.materialized})")
        if n.resource_type == "seed":
            lines.append(f"  {nid}({label})")
            lines.append(f"  class {nid} seed;")
        else:
            lines.append(f"  {nid}[{label}]")
            lines.append(f"  class {nid} model;")

    for name in sorted(graph.nodes):
        tgt = _mm_id(name)
        for d in graph.parents[name]:
            lines.append(f"  {_mm_id(d)} --> {tgt}")
        if with_sources:
            for sid in graph.source_parents[name]:
                lines.append(f"  {_mm_id('src_' + sid)} --> {tgt}")

    lines.append("")
    return "\n".join(lines)
