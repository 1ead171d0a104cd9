"""Graph structures: flows, node executors, validation and scheduling."""

from flowengine.graph.builtins import BUILTIN_NODES, default_registry
from flowengine.graph.executor import (
    ErrorKind,
    ExecutionError,
    ExecutionOptions,
    ExecutionReport,
    GraphScheduler,
    NodeReport,
)
from flowengine.graph.flow import EdgeSpec, FlowDefinition, FlowSpec, NodeSpec
from flowengine.graph.node import (
    ACTIVATED_HANDLE,
    ACTIVATED_HANDLE_ALIAS,
    BaseNodeExecutor,
    ExecutionContext,
    NodeExecutionError,
    NodeExecutor,
    NodeOutcome,
    OutcomeKind,
)
from flowengine.graph.registry import NodeExecutorRegistry
from flowengine.graph.validator import FlowValidator, ValidationGate, ValidationResult

__all__ = [
    # Flow
    "NodeSpec",
    "EdgeSpec",
    "FlowSpec",
    "FlowDefinition",
    # Node
    "NodeExecutor",
    "BaseNodeExecutor",
    "NodeOutcome",
    "OutcomeKind",
    "ExecutionContext",
    "NodeExecutionError",
    "ACTIVATED_HANDLE",
    "ACTIVATED_HANDLE_ALIAS",
    # Registry
    "NodeExecutorRegistry",
    "BUILTIN_NODES",
    "default_registry",
    # Validation
    "FlowValidator",
    "ValidationGate",
    "ValidationResult",
    # Scheduling
    "GraphScheduler",
    "ExecutionReport",
    "NodeReport",
    "ExecutionError",
    "ErrorKind",
    "ExecutionOptions",
]
