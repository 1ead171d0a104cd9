"""Shared fixtures and fake node executors for flowengine tests."""

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from flowengine.config import EngineConfig
from flowengine.graph import (
    ACTIVATED_HANDLE,
    EdgeSpec,
    FlowDefinition,
    FlowSpec,
    NodeExecutorRegistry,
    NodeOutcome,
    NodeSpec,
)
from flowengine.graph.builtins import BUILTIN_NODES


# ---- Fake executors ----
class ConstNode:
    """Outputs ``data["value"]``."""

    def validate(self, data):
        return []

    async def execute(self, node, input, ctx):
        return node.data.get("value")


class EchoNode:
    """Outputs a copy of its resolved input."""

    def validate(self, data):
        return []

    async def execute(self, node, input, ctx):
        return dict(input)


class VoidNode:
    def validate(self, data):
        return []

    async def execute(self, node, input, ctx):
        return None


class FailNode:
    def validate(self, data):
        return []

    async def execute(self, node, input, ctx):
        raise ValueError("boom")


class FailOutcomeNode:
    def validate(self, data):
        return []

    async def execute(self, node, input, ctx):
        return NodeOutcome.fail("refused")


class StopNode:
    def validate(self, data):
        return []

    async def execute(self, node, input, ctx):
        return NodeOutcome.terminate()


class BranchNode:
    """Activates the handle named in ``data["handle"]``."""

    branching = True

    def validate(self, data):
        return []

    async def execute(self, node, input, ctx):
        return {ACTIVATED_HANDLE: node.data.get("handle")}


class AbortingNode:
    """Sets the run's cancellation signal, then continues."""

    def validate(self, data):
        return []

    async def execute(self, node, input, ctx):
        ctx.cancellation.set()
        return {"aborted_by": node.id}


class GatedNode:
    """Waits on ``gate`` before finishing; used to hold the execution slot."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.started = asyncio.Event()

    def validate(self, data):
        return []

    async def execute(self, node, input, ctx):
        self.started.set()
        await self.gate.wait()
        return {"done": node.id}


class SubFlowNode:
    """Runs ``data["flow_id"]`` as a sub-flow and fails if it fails."""

    def validate(self, data):
        return []

    async def execute(self, node, input, ctx):
        report = await ctx.run_sub_flow(node.data["flow_id"], dict(input))
        if report.error:
            return NodeOutcome.fail(report.error.message)
        return {"result": report.last_output}


class DangerousNode(EchoNode):
    dangerous = True


class EntryNode(EchoNode):
    trigger = True


FAKE_NODES: dict[str, Any] = {
    "const": ConstNode,
    "echo": EchoNode,
    "void": VoidNode,
    "fail": FailNode,
    "fail_outcome": FailOutcomeNode,
    "stop": StopNode,
    "branch": BranchNode,
    "abort": AbortingNode,
    "subflow": SubFlowNode,
    "dangerous": DangerousNode,
    "entry": EntryNode,
}


# ---- Builders ----
def node(node_id: str, type: str = "echo", **data) -> NodeSpec:
    return NodeSpec(id=node_id, type=type, data=data)


def edge(
    source: str,
    target: str,
    source_handle: str | None = None,
    target_handle: str | None = None,
    edge_id: str | None = None,
) -> EdgeSpec:
    return EdgeSpec(
        id=edge_id or f"{source}-{source_handle}-{target}-{target_handle}",
        source=source,
        source_handle=source_handle,
        target=target,
        target_handle=target_handle,
    )


def flow(nodes: list[NodeSpec], edges: list[EdgeSpec] | None = None) -> FlowSpec:
    return FlowSpec(nodes=nodes, edges=edges or [])


def definition(
    flow_id: str,
    nodes: list[NodeSpec],
    edges: list[EdgeSpec] | None = None,
    name: str | None = None,
    **kwargs,
) -> FlowDefinition:
    return FlowDefinition(id=flow_id, name=name or flow_id, flow=flow(nodes, edges), **kwargs)


@pytest.fixture
def registry() -> NodeExecutorRegistry:
    executors = {name: cls() for name, cls in BUILTIN_NODES.items()}
    executors.update({name: cls() for name, cls in FAKE_NODES.items()})
    return NodeExecutorRegistry(executors)


@pytest.fixture
def capabilities() -> MagicMock:
    bag = MagicMock()
    bag.notify = MagicMock()
    bag.confirm_user = AsyncMock(return_value=True)
    bag.make_simple_request = AsyncMock(return_value="hello")
    bag.make_structured_request = AsyncMock(return_value={"answer": 42})
    bag.update_message_block = AsyncMock()
    bag.save_chat = AsyncMock()
    bag.execute_slash_command = AsyncMock(
        return_value={"pipe": "ok", "is_error": False, "is_aborted": False}
    )
    return bag


@pytest.fixture
def engine_config(tmp_path) -> EngineConfig:
    return EngineConfig(
        max_sub_flow_depth=10,
        show_execution_notifications=True,
        max_history_length=50,
        history_storage_key="flowchart_execution_history",
        history_max_string_length=1000,
        storage_path=tmp_path / "storage",
    )
