"""
Flow Protocol - How nodes and edges make up an executable flow.

A flow is a directed graph:
1. Nodes carry a kind tag (``type``) and opaque per-kind ``data``
2. Edges route data between a named output slot and a named input slot
3. A ``None`` handle means "the whole object"

Flows are authored in the visual editor and stored as JSON, so the models
accept the editor's camelCase field names (``sourceHandle``,
``allowDangerousExecution``) as aliases.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class NodeSpec(BaseModel):
    """
    A typed unit of work.

    ``data`` is read-only input for the node's executor. Two keys are
    understood by the engine itself: ``disabled`` and ``_version``.
    """

    id: str
    type: str = Field(description="Node kind tag used to look up the executor")
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")

    @property
    def disabled(self) -> bool:
        return bool(self.data.get("disabled", False))

    @property
    def version(self) -> int | None:
        return self.data.get("_version")


class EdgeSpec(BaseModel):
    """
    A directed data-routing link.

    Examples:
        # Spread the whole upstream output into the downstream input
        EdgeSpec(id="e1", source="start", target="log")

        # Route one key of the upstream output to a named input
        EdgeSpec(
            id="e2",
            source="request",
            source_handle="result",
            target="merge",
            target_handle="object_0",
        )
    """

    id: str
    source: str = Field(description="Source node ID")
    source_handle: str | None = Field(default=None, alias="sourceHandle")
    target: str = Field(description="Target node ID")
    target_handle: str | None = Field(default=None, alias="targetHandle")

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class FlowSpec(BaseModel):
    """
    The executable graph: nodes plus edges.

    Edges may reference node ids that do not exist; consumers ignore them.
    """

    nodes: list[NodeSpec] = Field(default_factory=list)
    edges: list[EdgeSpec] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")

    def get_node(self, node_id: str) -> NodeSpec | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def node_ids(self) -> set[str]:
        return {node.id for node in self.nodes}

    def get_outgoing_edges(self, node_id: str) -> list[EdgeSpec]:
        return [edge for edge in self.edges if edge.source == node_id]

    def get_incoming_edges(self, node_id: str) -> list[EdgeSpec]:
        return [edge for edge in self.edges if edge.target == node_id]

    def nodes_of_type(self, *types: str) -> list[NodeSpec]:
        return [node for node in self.nodes if node.type in types]

    def subgraph(self, node_ids: set[str]) -> "FlowSpec":
        """Restrict to ``node_ids``, keeping only edges with both ends inside the set."""
        return FlowSpec(
            nodes=[n for n in self.nodes if n.id in node_ids],
            edges=[e for e in self.edges if e.source in node_ids and e.target in node_ids],
        )

    def descendants(self, node_id: str) -> set[str]:
        """All nodes reachable from ``node_id``, inclusive."""
        return self._walk(node_id, lambda nid: [e.target for e in self.get_outgoing_edges(nid)])

    def ancestors(self, node_id: str) -> set[str]:
        """All nodes that can reach ``node_id``, inclusive."""
        return self._walk(node_id, lambda nid: [e.source for e in self.get_incoming_edges(nid)])

    def _walk(self, start: str, neighbours) -> set[str]:
        existing = self.node_ids()
        if start not in existing:
            return set()
        seen = {start}
        stack = [start]
        while stack:
            for nxt in neighbours(stack.pop()):
                if nxt in existing and nxt not in seen:
                    seen.add(nxt)
                    stack.append(nxt)
        return seen


class FlowDefinition(BaseModel):
    """A stored flow: identity, display name, permissions and the graph itself."""

    id: str
    name: str
    flow: FlowSpec = Field(default_factory=FlowSpec)
    flow_version: str | None = Field(default=None, alias="flowVersion")
    enabled: bool = True
    allow_dangerous_execution: bool = Field(default=False, alias="allowDangerousExecution")

    model_config = ConfigDict(extra="allow", populate_by_name=True)
