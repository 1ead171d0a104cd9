"""Tests for the flow model and the executor registry."""

import pytest
from conftest import EchoNode, edge, flow, node

from flowengine.graph import EdgeSpec, FlowDefinition, NodeExecutorRegistry
from flowengine.graph.builtins import BUILTIN_NODES, default_registry


def test_edge_accepts_editor_aliases():
    e = EdgeSpec.model_validate(
        {"id": "e1", "source": "a", "sourceHandle": "out", "target": "b", "targetHandle": "in"}
    )

    assert (e.source_handle, e.target_handle) == ("out", "in")


def test_definition_defaults():
    d = FlowDefinition.model_validate({"id": "f", "name": "F"})

    assert d.enabled is True
    assert d.allow_dangerous_execution is False
    assert d.flow.nodes == []


def test_node_disabled_and_version_flags():
    n = node("a", disabled=True, _version=2)

    assert n.disabled is True
    assert n.version == 2
    assert node("b").disabled is False


def test_descendants_and_ancestors_ignore_dangling_edges():
    spec = flow(
        [node("a"), node("b"), node("c"), node("d")],
        [edge("a", "b"), edge("b", "c"), edge("d", "c"), edge("c", "ghost")],
    )

    assert spec.descendants("b") == {"b", "c"}
    assert spec.ancestors("c") == {"a", "b", "c", "d"}
    assert spec.descendants("ghost") == set()


def test_subgraph_drops_edges_leaving_the_set():
    spec = flow([node("a"), node("b"), node("c")], [edge("a", "b"), edge("b", "c")])

    sub = spec.subgraph({"b", "c"})

    assert [n.id for n in sub.nodes] == ["b", "c"]
    assert [(e.source, e.target) for e in sub.edges] == [("b", "c")]


def test_registry_register_and_replace():
    registry = NodeExecutorRegistry()
    first, second = EchoNode(), EchoNode()

    registry.register("echo", first)
    registry.register("echo", second)

    assert registry.get("echo") is second
    assert "echo" in registry
    assert registry.unregister("echo") is True
    assert registry.get("echo") is None


def test_registry_rejects_non_executors():
    with pytest.raises(TypeError):
        NodeExecutorRegistry().register("bad", object())


def test_default_registry_capabilities():
    registry = default_registry()

    assert sorted(registry.types()) == sorted(BUILTIN_NODES)
    assert registry.is_branching("ifNode")
    assert registry.is_dangerous("httpRequestNode")
    assert registry.is_trigger("triggerNode")
    assert not registry.is_branching("stringNode")
