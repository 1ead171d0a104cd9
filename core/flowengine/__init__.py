"""
flowengine - Execution engine for visual node/edge workflows.

Schedules one flow graph in topological order with typed-handle data
routing and branch pruning, and orchestrates top-level runs: single-flight
queueing, nested sub-flows with depth and cycle guards, cooperative
cancellation, lifecycle events and bounded execution history.
"""

from flowengine.config import EngineConfig, get_engine_config
from flowengine.graph import (
    ACTIVATED_HANDLE,
    BaseNodeExecutor,
    EdgeSpec,
    ErrorKind,
    ExecutionContext,
    ExecutionError,
    ExecutionOptions,
    ExecutionReport,
    FlowDefinition,
    FlowSpec,
    FlowValidator,
    GraphScheduler,
    NodeExecutor,
    NodeExecutorRegistry,
    NodeOutcome,
    NodeReport,
    NodeSpec,
    ValidationResult,
    default_registry,
)
from flowengine.runtime.capabilities import CapabilityBag
from flowengine.runtime.event_bus import EventBus, EventType, FlowEvent
from flowengine.runtime.orchestrator import RunOrchestrator
from flowengine.runtime.triggers import TriggerRouter
from flowengine.schemas.history import HistoryEntry, RunStatus
from flowengine.storage.flow_store import InMemoryFlowStore, load_flows
from flowengine.storage.history_store import HistoryStore
from flowengine.storage.kv import InMemoryStorage, JsonFileStorage

__version__ = "0.1.0"

__all__ = [
    # Flow model
    "FlowDefinition",
    "FlowSpec",
    "NodeSpec",
    "EdgeSpec",
    # Executors
    "NodeExecutor",
    "BaseNodeExecutor",
    "NodeOutcome",
    "ExecutionContext",
    "NodeExecutorRegistry",
    "default_registry",
    "ACTIVATED_HANDLE",
    # Validation and scheduling
    "FlowValidator",
    "ValidationResult",
    "GraphScheduler",
    "ExecutionOptions",
    "ExecutionReport",
    "NodeReport",
    "ExecutionError",
    "ErrorKind",
    # Runtime
    "RunOrchestrator",
    "TriggerRouter",
    "CapabilityBag",
    "EventBus",
    "EventType",
    "FlowEvent",
    # Storage
    "InMemoryFlowStore",
    "load_flows",
    "HistoryStore",
    "HistoryEntry",
    "RunStatus",
    "InMemoryStorage",
    "JsonFileStorage",
    # Config
    "EngineConfig",
    "get_engine_config",
]
