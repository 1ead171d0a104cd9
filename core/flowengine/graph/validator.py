"""Structural and semantic validation of flows.

Validation is a pass/fail gate in front of the scheduler: a flow that
fails here never runs a single node.
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from flowengine.graph.flow import FlowSpec
from flowengine.graph.registry import NodeExecutorRegistry

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of validating a flow."""

    errors: list[str] = field(default_factory=list)
    invalid_node_ids: set[str] = field(default_factory=set)
    invalid_edge_ids: set[str] = field(default_factory=set)
    errors_by_node_id: dict[str, list[str]] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def error(self) -> str:
        """Get combined error message."""
        return "; ".join(self.errors)

    def add_node_error(self, node_id: str, message: str) -> None:
        self.errors_by_node_id.setdefault(node_id, []).append(message)
        self.invalid_node_ids.add(node_id)
        self.errors.append(f"Node [{node_id}]: {message}")

    def add_edge_error(self, edge_id: str, message: str) -> None:
        self.invalid_edge_ids.add(edge_id)
        self.errors.append(f"Edge [{edge_id}]: {message}")


class ValidationGate(Protocol):
    """Anything that can approve or reject a flow before it runs."""

    def validate(self, flow: FlowSpec, allow_dangerous: bool = False) -> ValidationResult: ...


class FlowValidator:
    """
    Default ValidationGate backed by the executor registry.

    Checks, in order:
    1. Every node kind is registered and its data passes the kind's validation
    2. Edges reference existing nodes
    3. The graph is acyclic
    4. Trigger nodes have no incoming edges
    5. Dangerous kinds only appear when the flow allows dangerous execution
    """

    def __init__(self, registry: NodeExecutorRegistry):
        self.registry = registry

    def validate(self, flow: FlowSpec, allow_dangerous: bool = False) -> ValidationResult:
        result = ValidationResult()
        if not flow.nodes:
            return result

        node_ids = flow.node_ids()

        for node in flow.nodes:
            executor = self.registry.get(node.type)
            if executor is None:
                result.add_node_error(node.id, f'Unknown node type "{node.type}".')
                continue
            for issue in executor.validate(node.data):
                result.add_node_error(node.id, issue)

        for edge in flow.edges:
            if edge.source not in node_ids:
                result.add_edge_error(edge.id, f'Source node "{edge.source}" not found.')
            if edge.target not in node_ids:
                result.add_edge_error(edge.id, f'Target node "{edge.target}" not found.')

        if self._has_cycle(flow):
            result.errors.append("Flow has a cycle (circular dependency).")

        for node in flow.nodes:
            if self.registry.is_trigger(node.type) and flow.get_incoming_edges(node.id):
                result.add_node_error(node.id, "Trigger nodes cannot have incoming connections.")

        if not allow_dangerous:
            for node in flow.nodes:
                if self.registry.is_dangerous(node.type) and not node.disabled:
                    result.add_node_error(
                        node.id,
                        f'Node type "{node.type}" is dangerous and this flow does not '
                        "allow dangerous execution.",
                    )

        if not result.is_valid:
            logger.debug(f"Flow validation failed with {len(result.errors)} error(s)")
        return result

    def _has_cycle(self, flow: FlowSpec) -> bool:
        adjacency: dict[str, list[str]] = {node.id: [] for node in flow.nodes}
        for edge in flow.edges:
            if edge.source in adjacency and edge.target in adjacency:
                adjacency[edge.source].append(edge.target)

        # Iterative three-colour DFS
        WHITE, GREY, BLACK = 0, 1, 2
        colour = dict.fromkeys(adjacency, WHITE)
        for root in adjacency:
            if colour[root] != WHITE:
                continue
            stack: list[tuple[str, int]] = [(root, 0)]
            colour[root] = GREY
            while stack:
                node_id, index = stack[-1]
                neighbours = adjacency[node_id]
                if index < len(neighbours):
                    stack[-1] = (node_id, index + 1)
                    nxt = neighbours[index]
                    if colour[nxt] == GREY:
                        return True
                    if colour[nxt] == WHITE:
                        colour[nxt] = GREY
                        stack.append((nxt, 0))
                else:
                    colour[node_id] = BLACK
                    stack.pop()
        return False
