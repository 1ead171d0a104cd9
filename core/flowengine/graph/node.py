"""
Node Protocol - The contract every node kind's executor satisfies.

The engine never decides what a node does. It decides when a node runs,
what input it receives, and how its outcome propagates. An executor:

1. Validates its kind's static ``data`` (``validate``)
2. Runs with the resolved input and an ExecutionContext (``execute``)
3. Returns a tagged NodeOutcome: continue with output, terminate the run
   gracefully, or fail

Executors may also raise; the scheduler wraps the exception with the node id.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel, ValidationError

from flowengine.graph.flow import FlowSpec, NodeSpec

if TYPE_CHECKING:
    from flowengine.graph.executor import ExecutionReport
    from flowengine.runtime.capabilities import CapabilityBag

logger = logging.getLogger(__name__)


class OutcomeKind(StrEnum):
    """How a node finished."""

    CONTINUE = "continue"
    TERMINATE = "terminate"  # Graceful whole-run short-circuit, not an error
    FAIL = "fail"


@dataclass(frozen=True)
class NodeOutcome:
    """Tagged result of one executor invocation."""

    kind: OutcomeKind
    output: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, output: Any = None) -> NodeOutcome:
        return cls(kind=OutcomeKind.CONTINUE, output=output)

    @classmethod
    def terminate(cls, output: Any = None) -> NodeOutcome:
        return cls(kind=OutcomeKind.TERMINATE, output=output)

    @classmethod
    def fail(cls, error: str | BaseException) -> NodeOutcome:
        return cls(kind=OutcomeKind.FAIL, error=str(error))


class NodeExecutionError(Exception):
    """An executor failed. Carries the originating node so reports can name it."""

    def __init__(self, node_id: str, node_type: str, message: str):
        self.node_id = node_id
        self.node_type = node_type
        self.message = message
        super().__init__(f"Execution failed at node {node_id} ({node_type}): {message}")


SubFlowRunner = Callable[..., Awaitable["ExecutionReport"]]


@dataclass
class ExecutionContext:
    """
    Everything a node executor may touch during one flow invocation.

    ``execution_variables`` is shared by reference across the whole top-level
    run, sub-flows included. ``cancellation`` is the run's cancellation
    signal; long-running executors should pass it on to host calls.
    """

    run_id: str
    flow: FlowSpec
    capabilities: CapabilityBag | Any
    execution_variables: dict[str, Any] = field(default_factory=dict)
    depth: int = 0
    cancellation: asyncio.Event = field(default_factory=asyncio.Event)
    execution_path: list[str] = field(default_factory=list)
    flow_id: str | None = None
    sub_flow_runner: SubFlowRunner | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancellation.is_set()

    async def run_sub_flow(
        self,
        flow_id: str,
        initial_input: dict[str, Any] | None = None,
        streaming: bool = False,
    ) -> ExecutionReport:
        """
        Invoke another flow as a direct nested call and wait for its report.

        Streaming invocations reuse this run's id so the host can correlate
        per-chunk sub-runs with the parent run.
        """
        if self.sub_flow_runner is None:
            raise RuntimeError("Sub-flow execution is not available in this context")
        return await self.sub_flow_runner(
            flow_id,
            initial_input or {},
            self.depth + 1,
            list(self.execution_path),
            run_id=self.run_id if streaming else None,
        )


@runtime_checkable
class NodeExecutor(Protocol):
    """
    Capability interface registered per node kind.

    Optional class attributes read by the engine:
        branching: output may carry ``activated_handle`` to prune edges
        dangerous: requires the flow's dangerous-execution permission
        trigger: an entry node that must not have incoming edges
    """

    def validate(self, data: dict[str, Any]) -> list[str]: ...

    async def execute(
        self,
        node: NodeSpec,
        input: dict[str, Any],
        ctx: ExecutionContext,
    ) -> NodeOutcome | Any: ...


ACTIVATED_HANDLE = "activated_handle"
# Branch executors written against the editor may report the handle in camelCase
ACTIVATED_HANDLE_ALIAS = "activatedHandle"


class BaseNodeExecutor:
    """
    Convenience base: validates ``data`` against a pydantic model.

    Subclasses set ``data_model`` and implement ``run``. Returning a plain
    value from ``run`` continues with that value as output.
    """

    data_model: type[BaseModel] | None = None
    branching: bool = False
    dangerous: bool = False
    trigger: bool = False

    def validate(self, data: dict[str, Any]) -> list[str]:
        if self.data_model is None:
            return []
        try:
            self.data_model.model_validate(data)
        except ValidationError as e:
            return [
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'} - {err['msg']}"
                for err in e.errors()
            ]
        return []

    def parse_data(self, node: NodeSpec) -> Any:
        if self.data_model is None:
            return node.data
        try:
            return self.data_model.model_validate(node.data)
        except ValidationError as e:
            raise ValueError(f"Invalid data: {'; '.join(self.validate(node.data))}") from e

    async def execute(
        self,
        node: NodeSpec,
        input: dict[str, Any],
        ctx: ExecutionContext,
    ) -> NodeOutcome | Any:
        return await self.run(node, self.parse_data(node), input, ctx)

    async def run(
        self,
        node: NodeSpec,
        data: Any,
        input: dict[str, Any],
        ctx: ExecutionContext,
    ) -> NodeOutcome | Any:
        raise NotImplementedError


def resolve_input(input: dict[str, Any], data: Any, key: str, attr: str | None = None) -> Any:
    """
    Connected input wins over the node's static field.

    ``key`` is the input handle id; ``attr`` is the attribute on a parsed
    data model when it differs from the handle id (camelCase handles).
    """
    value = input.get(key)
    if value is not None:
        return value
    if isinstance(data, dict):
        return data.get(key)
    return getattr(data, attr or key, None)
