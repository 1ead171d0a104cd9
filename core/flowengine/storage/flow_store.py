"""Where the orchestrator looks up flow definitions by id or display name."""

import json
import logging
from pathlib import Path
from typing import Any, Protocol

from flowengine.graph.flow import FlowDefinition

logger = logging.getLogger(__name__)


class FlowStore(Protocol):
    def get(self, flow_id: str) -> FlowDefinition | None: ...

    def find_by_name(self, name: str) -> FlowDefinition | None: ...

    def all(self) -> list[FlowDefinition]: ...


class InMemoryFlowStore:
    """
    Flow definitions held in a dict.

    Lookups always return the current definition, so edits made between
    runs are picked up by the next run.
    """

    def __init__(self, flows: list[FlowDefinition] | None = None):
        self._flows: dict[str, FlowDefinition] = {}
        for flow in flows or []:
            self.put(flow)

    def put(self, flow: FlowDefinition) -> None:
        self._flows[flow.id] = flow

    def remove(self, flow_id: str) -> bool:
        return self._flows.pop(flow_id, None) is not None

    def get(self, flow_id: str) -> FlowDefinition | None:
        return self._flows.get(flow_id)

    def find_by_name(self, name: str) -> FlowDefinition | None:
        for flow in self._flows.values():
            if flow.name == name:
                return flow
        return None

    def all(self) -> list[FlowDefinition]:
        return list(self._flows.values())

    def __len__(self) -> int:
        return len(self._flows)


def parse_flows(data: Any) -> list[FlowDefinition]:
    """
    Accept either a list of flow definitions or a ``{id: definition}`` map.

    In the map form the key supplies ``id`` (and ``name`` when missing).
    """
    if isinstance(data, list):
        return [FlowDefinition.model_validate(item) for item in data]
    if isinstance(data, dict) and "flow" in data and "id" in data:
        return [FlowDefinition.model_validate(data)]
    if isinstance(data, dict):
        flows = []
        for flow_id, item in data.items():
            item = {"id": flow_id, "name": flow_id, **item}
            flows.append(FlowDefinition.model_validate(item))
        return flows
    raise ValueError("Flows file must contain a list or an object of flow definitions")


def load_flows(path: str | Path) -> InMemoryFlowStore:
    """Load flow definitions from a JSON file."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    flows = parse_flows(data)
    logger.debug(f"Loaded {len(flows)} flow(s) from {path}")
    return InMemoryFlowStore(flows)
