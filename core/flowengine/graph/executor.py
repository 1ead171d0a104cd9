"""
Graph Scheduler - Runs one flow graph to completion or failure.

The scheduler:
1. Counts in-degrees over edges whose endpoints both exist
2. Seeds a FIFO ready queue with the roots
3. Checks the cancellation signal before every dequeue
4. Resolves each node's input from upstream outputs and dispatches it
5. Follows only the activated branch of branching nodes
6. Returns an ExecutionReport; it never raises for node or graph failures
"""

import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from flowengine.graph.flow import EdgeSpec, FlowSpec, NodeSpec
from flowengine.graph.node import (
    ACTIVATED_HANDLE,
    ACTIVATED_HANDLE_ALIAS,
    ExecutionContext,
    NodeExecutionError,
    NodeOutcome,
    OutcomeKind,
)
from flowengine.graph.registry import NodeExecutorRegistry
from flowengine.observability import set_trace_context

logger = logging.getLogger(__name__)

DISABLED_MARKER = "[DISABLED]"
TERMINATED_MARKER = "[TERMINATED]"
ABORTED_MESSAGE = "Execution aborted by user."


class ErrorKind(StrEnum):
    """Why a run stopped with an error."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    DEPTH_LIMIT = "depth_limit"
    CYCLE = "cycle"
    NODE = "node"
    ABORTED = "aborted"


@dataclass
class ExecutionError:
    """Error attached to a report. ``node_id`` is set for node failures."""

    message: str
    node_id: str | None = None
    kind: ErrorKind = ErrorKind.NODE

    @property
    def is_abort(self) -> bool:
        # Hosts still match on the message substring
        return self.kind == ErrorKind.ABORTED or "aborted" in self.message.lower()

    def to_dict(self) -> dict[str, Any]:
        return {"node_id": self.node_id, "message": self.message, "kind": self.kind.value}


@dataclass
class NodeReport:
    """One dispatched node: what it received and what it produced."""

    node_id: str
    type: str
    input: dict[str, Any] = field(default_factory=dict)
    output: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "node_id": self.node_id,
            "type": self.type,
            "input": self.input,
            "output": self.output,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class ExecutionReport:
    """Result of one scheduler invocation (or a gate failure in front of it)."""

    executed_nodes: list[NodeReport] = field(default_factory=list)
    error: ExecutionError | None = None
    last_output: Any = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def aborted(self) -> bool:
        return self.error is not None and self.error.is_abort

    @property
    def path(self) -> list[str]:
        """Node IDs in dispatch order."""
        return [n.node_id for n in self.executed_nodes]

    @classmethod
    def failure(
        cls,
        message: str,
        kind: ErrorKind,
        node_id: str | None = None,
    ) -> "ExecutionReport":
        return cls(error=ExecutionError(message=message, node_id=node_id, kind=kind))

    def to_dict(self) -> dict[str, Any]:
        return {
            "executed_nodes": [n.to_dict() for n in self.executed_nodes],
            "error": self.error.to_dict() if self.error else None,
            "last_output": self.last_output,
        }


@dataclass
class ExecutionOptions:
    """
    Per-invocation options.

    ``start_node_id`` runs only the start node and everything downstream of
    it ("Run From Here"); ``end_node_id`` runs only the end node and
    everything upstream of it ("Run To Here"). Both may be combined.
    ``run_id`` lets a caller reuse an existing run id.
    """

    start_node_id: str | None = None
    end_node_id: str | None = None
    run_id: str | None = None


class GraphScheduler:
    """
    Executes one flow graph in topological order.

    Example:
        scheduler = GraphScheduler(registry=default_registry())
        ctx = ExecutionContext(run_id="run_1", flow=flow, capabilities=bag)
        report = await scheduler.execute(ctx, initial_input={"initial": "input"})
    """

    def __init__(self, registry: NodeExecutorRegistry, event_bus: Any | None = None):
        self.registry = registry
        self._event_bus = event_bus

    async def execute(
        self,
        ctx: ExecutionContext,
        initial_input: dict[str, Any] | None = None,
        options: ExecutionOptions | None = None,
    ) -> ExecutionReport:
        options = options or ExecutionOptions()
        initial_input = initial_input if initial_input is not None else {}
        report = ExecutionReport()

        flow = ctx.flow
        try:
            flow = self._restrict(flow, options)
        except KeyError as e:
            report.error = ExecutionError(message=str(e.args[0]), kind=ErrorKind.NOT_FOUND)
            return report

        nodes = {node.id: node for node in flow.nodes}
        in_degree: dict[str, int] = dict.fromkeys(nodes, 0)
        outgoing: dict[str, list[EdgeSpec]] = defaultdict(list)
        incoming: dict[str, list[EdgeSpec]] = defaultdict(list)
        for edge in flow.edges:
            # Edges pointing at unknown nodes are ignored
            if edge.source not in nodes or edge.target not in nodes:
                continue
            in_degree[edge.target] += 1
            outgoing[edge.source].append(edge)
            incoming[edge.target].append(edge)

        ready: deque[str] = deque(node_id for node_id, deg in in_degree.items() if deg == 0)
        outputs: dict[str, Any] = {}

        def unlock(edges: list[EdgeSpec]) -> None:
            for edge in edges:
                in_degree[edge.target] -= 1
                if in_degree[edge.target] == 0:
                    ready.append(edge.target)

        logger.info(
            f"Executing flow with {len(nodes)} node(s)",
            extra={"event": "flow_started", "flow_id": ctx.flow_id},
        )

        while ready:
            if ctx.cancelled:
                logger.warning(
                    f"Run {ctx.run_id} aborted before dispatching {len(ready)} ready node(s)",
                    extra={"event": "flow_aborted", "flow_id": ctx.flow_id},
                )
                report.error = ExecutionError(message=ABORTED_MESSAGE, kind=ErrorKind.ABORTED)
                return report

            node = nodes[ready.popleft()]

            if node.disabled:
                report.executed_nodes.append(
                    NodeReport(node_id=node.id, type=node.type, output=DISABLED_MARKER)
                )
                unlock(outgoing[node.id])
                continue

            base = dict(initial_input) if not incoming[node.id] else {}
            resolved = self._resolve_input(base, incoming[node.id], outputs)

            set_trace_context(node_id=node.id)
            if self._event_bus:
                await self._event_bus.emit_node_started(
                    run_id=ctx.run_id, node_id=node.id, node_type=node.type, flow_id=ctx.flow_id
                )

            start = time.time()
            try:
                outcome = await self._dispatch(node, resolved, ctx)
            except NodeExecutionError as e:
                outcome = NodeOutcome.fail(e)
            latency_ms = int((time.time() - start) * 1000)

            if outcome.kind == OutcomeKind.TERMINATE:
                node_report = NodeReport(
                    node_id=node.id, type=node.type, input=resolved, output=TERMINATED_MARKER
                )
                report.executed_nodes.append(node_report)
                report.last_output = {}
                await self._emit_node_completed(ctx, node_report)
                logger.info(
                    f"Node {node.id} terminated the run",
                    extra={"event": "flow_terminated", "node_id": node.id, "node_type": node.type},
                )
                return report

            if outcome.kind == OutcomeKind.FAIL:
                message = outcome.error or "Unknown error"
                report.executed_nodes.append(
                    NodeReport(node_id=node.id, type=node.type, input=resolved, error=message)
                )
                report.error = ExecutionError(message=message, node_id=node.id, kind=ErrorKind.NODE)
                logger.error(
                    message,
                    extra={
                        "event": "node_failed",
                        "node_id": node.id,
                        "node_type": node.type,
                        "latency_ms": latency_ms,
                    },
                )
                return report

            output = outcome.output
            outputs[node.id] = output
            node_report = NodeReport(node_id=node.id, type=node.type, input=resolved, output=output)
            report.executed_nodes.append(node_report)
            report.last_output = output
            await self._emit_node_completed(ctx, node_report)
            logger.info(
                f"Node {node.id} ({node.type}) completed",
                extra={
                    "event": "node_completed",
                    "node_id": node.id,
                    "node_type": node.type,
                    "latency_ms": latency_ms,
                },
            )

            unlock(self._followed_edges(node, output, outgoing[node.id]))

        return report

    async def _dispatch(
        self,
        node: NodeSpec,
        resolved: dict[str, Any],
        ctx: ExecutionContext,
    ) -> NodeOutcome:
        """Invoke the node's executor and normalize whatever it returns to a NodeOutcome."""
        executor = self.registry.get(node.type)
        if executor is None:
            raise NodeExecutionError(
                node.id, node.type, f"No executor registered for node type '{node.type}'"
            )
        try:
            result = await executor.execute(node, resolved, ctx)
        except Exception as e:
            raise NodeExecutionError(node.id, node.type, str(e)) from e

        outcome = result if isinstance(result, NodeOutcome) else NodeOutcome.ok(result)
        if outcome.kind == OutcomeKind.FAIL:
            return NodeOutcome.fail(
                NodeExecutionError(node.id, node.type, outcome.error or "Unknown error")
            )
        if outcome.kind == OutcomeKind.CONTINUE and outcome.output is None:
            # Void executors pass their input through
            return NodeOutcome.ok(resolved)
        return outcome

    @staticmethod
    def _resolve_input(
        base: dict[str, Any],
        edges: list[EdgeSpec],
        outputs: dict[str, Any],
    ) -> dict[str, Any]:
        resolved = base
        for edge in edges:
            if edge.source not in outputs:
                continue
            source_output = outputs[edge.source]

            if edge.target_handle is None:
                if isinstance(source_output, dict):
                    resolved.update(source_output)
                else:
                    resolved["value"] = source_output
            elif (
                edge.source_handle is not None
                and isinstance(source_output, dict)
                and edge.source_handle in source_output
            ):
                resolved[edge.target_handle] = source_output[edge.source_handle]
            else:
                resolved[edge.target_handle] = source_output
        return resolved

    def _followed_edges(self, node: NodeSpec, output: Any, edges: list[EdgeSpec]) -> list[EdgeSpec]:
        """
        Edges whose targets get unlocked after ``node`` ran.

        For a branching node that reported an activated handle, only edges
        leaving that handle are followed. Targets of the other edges keep
        their in-degree and are never dispatched, even if they also hang
        off the taken branch. The handle is read from ``activated_handle``,
        falling back to ``activatedHandle``.
        """
        if not self.registry.is_branching(node.type) or not isinstance(output, dict):
            return edges
        activated = output.get(ACTIVATED_HANDLE)
        if activated is None:
            activated = output.get(ACTIVATED_HANDLE_ALIAS)
        if activated is None:
            return edges
        return [edge for edge in edges if edge.source_handle == activated]

    @staticmethod
    def _restrict(flow: FlowSpec, options: ExecutionOptions) -> FlowSpec:
        if options.start_node_id is None and options.end_node_id is None:
            return flow
        keep = flow.node_ids()
        if options.start_node_id is not None:
            if flow.get_node(options.start_node_id) is None:
                raise KeyError(f"Start node '{options.start_node_id}' not found in flow")
            keep &= flow.descendants(options.start_node_id)
        if options.end_node_id is not None:
            if flow.get_node(options.end_node_id) is None:
                raise KeyError(f"End node '{options.end_node_id}' not found in flow")
            keep &= flow.ancestors(options.end_node_id)
        return flow.subgraph(keep)

    async def _emit_node_completed(self, ctx: ExecutionContext, node_report: NodeReport) -> None:
        if self._event_bus:
            await self._event_bus.emit_node_completed(
                run_id=ctx.run_id,
                node_id=node_report.node_id,
                node_report=node_report,
                flow_id=ctx.flow_id,
            )
