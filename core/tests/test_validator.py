"""Tests for FlowValidator."""

from conftest import edge, flow, node

from flowengine.graph import FlowValidator


def test_valid_flow(registry):
    result = FlowValidator(registry).validate(
        flow([node("a"), node("b")], [edge("a", "b")])
    )

    assert result.is_valid is True
    assert result.error == ""


def test_empty_flow_is_valid(registry):
    assert FlowValidator(registry).validate(flow([])).is_valid


def test_unknown_node_type(registry):
    result = FlowValidator(registry).validate(flow([node("x", "mystery")]))

    assert result.is_valid is False
    assert result.errors == ['Node [x]: Unknown node type "mystery".']
    assert result.invalid_node_ids == {"x"}


def test_node_data_is_validated_by_its_kind(registry):
    result = FlowValidator(registry).validate(flow([node("n", "numberNode", value="not a number")]))

    assert result.invalid_node_ids == {"n"}
    assert "value" in result.errors_by_node_id["n"][0]


def test_dangling_edges_are_reported(registry):
    result = FlowValidator(registry).validate(
        flow([node("a")], [edge("a", "ghost", edge_id="e1")])
    )

    assert result.invalid_edge_ids == {"e1"}
    assert 'Target node "ghost" not found.' in result.error


def test_cycle_is_reported(registry):
    result = FlowValidator(registry).validate(
        flow([node("a"), node("b"), node("c")], [edge("a", "b"), edge("b", "c"), edge("c", "a")])
    )

    assert "Flow has a cycle (circular dependency)." in result.errors


def test_diamond_is_not_a_cycle(registry):
    result = FlowValidator(registry).validate(
        flow(
            [node("a"), node("b"), node("c"), node("d")],
            [edge("a", "b"), edge("a", "c"), edge("b", "d"), edge("c", "d")],
        )
    )

    assert result.is_valid


def test_trigger_with_incoming_edge(registry):
    result = FlowValidator(registry).validate(
        flow([node("a"), node("t", "entry")], [edge("a", "t")])
    )

    assert result.errors == ["Node [t]: Trigger nodes cannot have incoming connections."]


def test_dangerous_node_requires_permission(registry):
    spec = flow([node("d", "dangerous")])
    validator = FlowValidator(registry)

    assert validator.validate(spec).invalid_node_ids == {"d"}
    assert validator.validate(spec, allow_dangerous=True).is_valid


def test_disabled_dangerous_node_is_allowed(registry):
    spec = flow([node("d", "dangerous", disabled=True)])

    assert FlowValidator(registry).validate(spec).is_valid


def test_http_request_node_is_dangerous(registry):
    spec = flow([node("h", "httpRequestNode", url="https://example.com")])

    assert not FlowValidator(registry).validate(spec).is_valid
