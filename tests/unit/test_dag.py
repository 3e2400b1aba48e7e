# tests/unit/test_dag.py
from __future__ import annotations

from pathlib import Path

import pytest

from dagsmith import dag
from dagsmith.config.models import ModelConfig
from dagsmith.core import Node, SourceNode, TestSpec
from dagsmith.errors import CompileError, ModelCycleError, UnresolvedReferenceError


def _node(name: str, *deps: str) -> Node:
    return Node(
        name=name,
        resource_type="model",
        path=Path(f"models/{name}.sql"),
        config=ModelConfig(),
        deps=list(deps),
    )


def _graph(*nodes: Node, sources=None, tests=()) -> dag.Graph:
    return dag.build({n.name: n for n in nodes}, sources or {}, tests)


@pytest.mark.unit
def test_build_adjacency():
    g = _graph(_node("a"), _node("b", "a"), _node("c", "a", "b"))
    assert g.parents["c"] == ("a", "b")
    assert g.children["a"] == ("b", "c")
    assert g.children["c"] == ()


@pytest.mark.unit
def test_graph_is_read_only():
    g = _graph(_node("a"))
    with pytest.raises(TypeError):
        g.parents["x"] = ()  # type: ignore[index]


@pytest.mark.unit
def test_cycle_is_rejected_with_full_path():
    with pytest.raises(ModelCycleError) as exc:
        _graph(_node("a", "c"), _node("b", "a"), _node("c", "b"), _node("d"))
    err = exc.value
    assert isinstance(err, CompileError)
    assert err.cycle[0] == err.cycle[-1]
    assert set(err.cycle) == {"a", "b", "c"}
    assert len(err.cycle) == 4
    assert err.affected_nodes == ["a", "b", "c"]
    assert "→" in str(err)


@pytest.mark.unit
def test_self_reference_is_a_cycle():
    with pytest.raises(ModelCycleError) as exc:
        _graph(_node("a", "a"))
    assert exc.value.cycle == ["a", "a"]


@pytest.mark.unit
def test_unresolved_reference_lists_each_offender():
    with pytest.raises(UnresolvedReferenceError) as exc:
        _graph(_node("a", "missing"), _node("b", "a", "crm.nope"))
    assert exc.value.missing_map == {"a": ["missing"], "b": ["crm.nope"]}
    assert "missing" in str(exc.value)


@pytest.mark.unit
def test_sources_are_leaves():
    src = SourceNode(source_name="crm", table_name="accounts", identifier="accounts")
    g = _graph(_node("a", "crm.accounts"), sources={"crm.accounts": src})
    assert g.parents["a"] == ()
    assert g.source_parents["a"] == ("crm.accounts",)


@pytest.mark.unit
def test_relationships_test_to_unknown_node():
    t = TestSpec(
        unique_id="relationships.a.id",
        kind="relationships",
        node="a",
        column="id",
        kwargs={"to": "ghost", "field": "id"},
    )
    with pytest.raises(UnresolvedReferenceError) as exc:
        _graph(_node("a"), tests=[t])
    assert exc.value.missing_map == {"relationships.a.id": ["ghost"]}


@pytest.mark.unit
def test_topo_sort_dependencies_first():
    g = _graph(_node("a", "c"), _node("b", "c"), _node("c"))
    order = dag.topo_sort(g)
    assert order[0] == "c"
    assert order.index("c") < order.index("a")
    assert order.index("c") < order.index("b")


@pytest.mark.unit
def test_levels_and_subset():
    g = _graph(_node("a"), _node("b", "a"), _node("c", "b"), _node("x"))
    assert dag.levels(g) == [["a", "x"], ["b"], ["c"]]
    # out-of-subset parents are treated as already built
    assert dag.levels(g, ["b", "c"]) == [["b"], ["c"]]


@pytest.mark.unit
def test_ancestors_descendants_and_subgraph():
    g = _graph(_node("a"), _node("b", "a"), _node("c", "b"), _node("x"))
    assert dag.ancestors(g, "c") == {"a", "b"}
    assert dag.descendants(g, "a") == {"b", "c"}
    sub = dag.subgraph(g, ["b", "c"])
    assert set(sub.nodes) == {"b", "c"}
    assert sub.parents["b"] == ()


@pytest.mark.unit
def test_mermaid_contains_nodes_and_edges():
    src = SourceNode(source_name="crm", table_name="accounts", identifier="accounts")
    g = _graph(_node("a", "crm.accounts"), _node("b", "a"), sources={"crm.accounts": src})
    text = dag.mermaid(g)
    assert text.startswith("flowchart TD")
    assert "a --> b" in text
    assert "src_crm_accounts --> a" in text
