"""Node executor registration and lookup."""

import logging
from collections.abc import Iterator

from flowengine.graph.node import NodeExecutor

logger = logging.getLogger(__name__)


class NodeExecutorRegistry:
    """
    Maps a node kind tag to its executor.

    The registry is open: host code and plugins register new kinds at
    runtime, and re-registering a kind replaces its executor.

    Example:
        registry = NodeExecutorRegistry()
        registry.register("stringNode", StringNodeExecutor())
        executor = registry.get("stringNode")
    """

    def __init__(self, executors: dict[str, NodeExecutor] | None = None):
        self._executors: dict[str, NodeExecutor] = {}
        for node_type, executor in (executors or {}).items():
            self.register(node_type, executor)

    def register(self, node_type: str, executor: NodeExecutor) -> None:
        """
        Register an executor for a node kind.

        Raises:
            TypeError: If the executor does not satisfy the NodeExecutor protocol
        """
        if not isinstance(executor, NodeExecutor):
            raise TypeError(
                f"Executor for '{node_type}' must implement validate() and execute(), "
                f"got {type(executor).__name__}"
            )
        if node_type in self._executors:
            logger.debug(f"Replacing executor for node type '{node_type}'")
        self._executors[node_type] = executor

    def unregister(self, node_type: str) -> bool:
        return self._executors.pop(node_type, None) is not None

    def get(self, node_type: str) -> NodeExecutor | None:
        return self._executors.get(node_type)

    def has(self, node_type: str) -> bool:
        return node_type in self._executors

    def types(self) -> list[str]:
        return sorted(self._executors)

    def is_branching(self, node_type: str) -> bool:
        return bool(getattr(self._executors.get(node_type), "branching", False))

    def is_dangerous(self, node_type: str) -> bool:
        return bool(getattr(self._executors.get(node_type), "dangerous", False))

    def is_trigger(self, node_type: str) -> bool:
        return bool(getattr(self._executors.get(node_type), "trigger", False))

    def __contains__(self, node_type: object) -> bool:
        return node_type in self._executors

    def __iter__(self) -> Iterator[str]:
        return iter(self._executors)

    def __len__(self) -> int:
        return len(self._executors)
