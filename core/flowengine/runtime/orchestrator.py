"""
Run Orchestrator - Queueing, sub-flow recursion and cancellation for flow runs.

Top-level runs (triggered from outside any flow) are strictly serialized:
one executes at a time and the rest wait in a FIFO queue. Sub-flow runs
are never queued; they execute as direct nested calls inside the invoking
node's executor, sharing the top-level run's execution variables and
cancellation signal.

Run lifecycle: QUEUED -> RUNNING -> COMPLETED | FAILED | ABORTED
"""

import asyncio
import inspect
import logging
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Any

from flowengine.config import EngineConfig
from flowengine.graph.executor import (
    ErrorKind,
    ExecutionOptions,
    ExecutionReport,
    GraphScheduler,
)
from flowengine.graph.flow import FlowDefinition, FlowSpec
from flowengine.graph.node import ExecutionContext
from flowengine.graph.registry import NodeExecutorRegistry
from flowengine.graph.validator import FlowValidator, ValidationGate
from flowengine.observability import clear_trace_context, get_trace_context, set_trace_context
from flowengine.runtime.event_bus import EventBus
from flowengine.schemas.history import HistoryEntry, RunStatus
from flowengine.storage.flow_store import FlowStore
from flowengine.storage.history_store import HistoryStore

logger = logging.getLogger(__name__)

FlowMigration = Callable[[FlowSpec], FlowSpec]


@dataclass
class RunQueueEntry:
    """A top-level run waiting for the single execution slot."""

    flow_id: str
    initial_input: dict[str, Any] = field(default_factory=dict)
    options: ExecutionOptions = field(default_factory=ExecutionOptions)
    queued_at: datetime = field(default_factory=datetime.now)
    # Set when a caller awaits the real report instead of observing events
    completion: asyncio.Future | None = None


@dataclass
class ActiveRun:
    """State owned by the top-level run currently holding the execution slot."""

    run_id: str
    flow_id: str
    cancellation: asyncio.Event = field(default_factory=asyncio.Event)
    execution_variables: dict[str, Any] = field(default_factory=dict)
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = field(default_factory=datetime.now)


class RunOrchestrator:
    """
    Owns top-level run queueing, sub-flow recursion, cancellation, lifecycle
    events and execution history.

    Example:
        orchestrator = RunOrchestrator(
            flow_store=InMemoryFlowStore(flows),
            registry=default_registry(),
            capabilities=host_bag,
            event_bus=EventBus(),
        )

        # Top-level: returns an empty placeholder report immediately
        await orchestrator.execute_flow("greeting", {"name": "Ada"})
        await orchestrator.wait_until_idle()
    """

    def __init__(
        self,
        flow_store: FlowStore,
        registry: NodeExecutorRegistry,
        capabilities: Any,
        validator: ValidationGate | None = None,
        event_bus: EventBus | None = None,
        history: HistoryStore | None = None,
        config: EngineConfig | None = None,
        migrate: FlowMigration | None = None,
    ):
        self.flow_store = flow_store
        self.registry = registry
        self.capabilities = capabilities
        self.validator = validator or FlowValidator(registry)
        self.config = config or EngineConfig()
        self.history = history if history is not None else HistoryStore.from_config(self.config)
        self._event_bus = event_bus
        self._migrate = migrate
        self._scheduler = GraphScheduler(registry, event_bus=event_bus)

        self._queue: deque[RunQueueEntry] = deque()
        self._is_executing = False
        self._active_run: ActiveRun | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        # Keep references so drain tasks are not garbage collected mid-run
        self._drain_tasks: set[asyncio.Task] = set()

    # === STATE ===

    @property
    def is_executing(self) -> bool:
        return self._is_executing

    @property
    def active_run(self) -> ActiveRun | None:
        return self._active_run

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    def queued_flow_ids(self) -> list[str]:
        return [entry.flow_id for entry in self._queue]

    def is_flow_active(self, flow_id: str) -> bool:
        """True when ``flow_id`` is running at top level or waiting in the queue."""
        if self._active_run is not None and self._active_run.flow_id == flow_id:
            return True
        return any(entry.flow_id == flow_id for entry in self._queue)

    async def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Wait until the queue is drained and no run is executing."""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    # === ENTRY POINTS ===

    async def execute_flow(
        self,
        flow_id: str,
        initial_input: dict[str, Any] | None = None,
        depth: int = 0,
        options: ExecutionOptions | None = None,
        execution_path: list[str] | None = None,
    ) -> ExecutionReport:
        """
        Run a flow.

        At ``depth == 0`` the flow is validated and queued, and an empty
        placeholder report is returned at once; results arrive through
        events and history. At ``depth > 0`` the flow runs as a nested call
        and its real report is returned.
        """
        initial_input = initial_input if initial_input is not None else {}
        options = options or ExecutionOptions()

        if depth > 0:
            return await self._run(flow_id, initial_input, depth, options, execution_path or [])

        gate_error = self._check_top_level(flow_id)
        if gate_error is not None:
            return gate_error

        await self._enqueue(RunQueueEntry(flow_id=flow_id, initial_input=initial_input, options=options))
        return ExecutionReport()

    async def run_and_wait(
        self,
        flow_id: str,
        initial_input: dict[str, Any] | None = None,
        options: ExecutionOptions | None = None,
    ) -> ExecutionReport:
        """
        Queue a top-level run and wait for its real report.

        Must not be awaited from inside a running flow: the caller would hold
        the execution slot the queued run is waiting for.
        """
        gate_error = self._check_top_level(flow_id)
        if gate_error is not None:
            return gate_error

        completion: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._enqueue(
            RunQueueEntry(
                flow_id=flow_id,
                initial_input=initial_input or {},
                options=options or ExecutionOptions(),
                completion=completion,
            )
        )
        return await completion

    # === CANCELLATION ===

    def abort_current_run(self) -> bool:
        """Signal the active top-level run to stop at its next safe point."""
        run = self._active_run
        if run is None or run.cancellation.is_set():
            return False
        run.cancellation.set()
        logger.info(f"Abort requested for run {run.run_id}", extra={"flow_id": run.flow_id})
        return True

    def abort_all_runs(self) -> str:
        """Clear the queue, abort the active run, and describe what was stopped."""
        cleared = len(self._queue)
        while self._queue:
            entry = self._queue.popleft()
            if entry.completion is not None and not entry.completion.done():
                entry.completion.set_result(
                    ExecutionReport.failure("Run aborted before it started.", ErrorKind.ABORTED)
                )

        active = self._active_run
        self.abort_current_run()
        if not self._is_executing:
            self._idle.set()

        parts = []
        # An already-signalled run is still winding down and still reported
        if active is not None:
            parts.append(f'Aborted the running flow "{self._flow_name(active.flow_id)}".')
        if cleared:
            parts.append(f"Cleared {cleared} queued run(s).")
        if not parts:
            return "No flows were running."
        return " ".join(parts)

    # === QUEUE ===

    async def _enqueue(self, entry: RunQueueEntry) -> None:
        self._queue.append(entry)
        self._idle.clear()
        logger.debug(f"Queued flow {entry.flow_id} (queue length {len(self._queue)})")
        if self._event_bus:
            await self._event_bus.emit_run_queued(entry.flow_id, len(self._queue))
        self._schedule_drain()

    def _schedule_drain(self) -> None:
        task = asyncio.create_task(self._process_queue())
        self._drain_tasks.add(task)
        task.add_done_callback(self._drain_tasks.discard)

    async def _process_queue(self) -> None:
        """
        Run the oldest queued entry if the execution slot is free.

        Not a loop: after each run finishes the drain schedules itself
        again, until the queue is empty.
        """
        if self._is_executing:
            return
        if not self._queue:
            self._idle.set()
            return

        entry = self._queue.popleft()
        self._is_executing = True
        try:
            report = await self._run(entry.flow_id, entry.initial_input, 0, entry.options, [])
            if entry.completion is not None and not entry.completion.done():
                entry.completion.set_result(report)
        except Exception as e:
            logger.exception(f"Unexpected error while running flow {entry.flow_id}: {e}")
            if entry.completion is not None and not entry.completion.done():
                entry.completion.set_exception(e)
        finally:
            self._is_executing = False
            self._active_run = None
            self._schedule_drain()

    # === RUN PATH ===

    def _check_top_level(self, flow_id: str) -> ExecutionReport | None:
        definition = self.flow_store.get(flow_id)
        if definition is None:
            message = f'Flow "{flow_id}" not found.'
            self.notify("error", message)
            return ExecutionReport.failure(message, ErrorKind.NOT_FOUND)
        flow = self._prepare(definition)
        result = self.validator.validate(flow, definition.allow_dangerous_execution)
        if not result.is_valid:
            message = f'Flow "{definition.name}" is invalid: {result.error}'
            self.notify("error", message)
            return ExecutionReport.failure(message, ErrorKind.VALIDATION)
        return None

    def _gate(
        self,
        flow_id: str,
        depth: int,
        execution_path: list[str],
    ) -> tuple[FlowDefinition | None, FlowSpec | None, ExecutionReport | None]:
        """Checks every run passes before the scheduler sees it: existence, cycle, depth, validity."""
        definition = self.flow_store.get(flow_id)
        if definition is None:
            return None, None, ExecutionReport.failure(
                f'Flow "{flow_id}" not found.', ErrorKind.NOT_FOUND
            )

        if flow_id in execution_path:
            cycle = " -> ".join(self._flow_name(fid) for fid in [*execution_path, flow_id])
            logger.warning(f"Circular sub-flow execution: {cycle}")
            return definition, None, ExecutionReport.failure(
                f"Circular sub-flow execution detected: {cycle}", ErrorKind.CYCLE
            )

        max_depth = self.config.max_sub_flow_depth
        if depth > max_depth:
            return definition, None, ExecutionReport.failure(
                f"Maximum sub-flow depth of {max_depth} exceeded while running "
                f'"{definition.name}".',
                ErrorKind.DEPTH_LIMIT,
            )

        flow = self._prepare(definition)
        validation = self.validator.validate(flow, definition.allow_dangerous_execution)
        if not validation.is_valid:
            return definition, flow, ExecutionReport.failure(
                f'Flow "{definition.name}" is invalid: {validation.error}', ErrorKind.VALIDATION
            )
        return definition, flow, None

    async def _run(
        self,
        flow_id: str,
        initial_input: dict[str, Any],
        depth: int,
        options: ExecutionOptions,
        execution_path: list[str],
        execution_variables: dict[str, Any] | None = None,
        cancellation: asyncio.Event | None = None,
    ) -> ExecutionReport:
        definition, flow, gate_error = self._gate(flow_id, depth, execution_path)
        if gate_error is not None:
            if depth == 0:
                # Queued runs were only checked at enqueue time; report the late failure
                run_id = options.run_id or f"run_{uuid.uuid4().hex[:12]}"
                await self._finish_top_level(flow_id, self._flow_name(flow_id), run_id, gate_error)
            return gate_error

        path = [*execution_path, flow_id]
        run_id = options.run_id or f"run_{uuid.uuid4().hex[:12]}"
        top_level = depth == 0

        if top_level:
            self._active_run = ActiveRun(run_id=run_id, flow_id=flow_id)
            execution_variables = self._active_run.execution_variables
            cancellation = self._active_run.cancellation
        else:
            active = self._active_run
            if execution_variables is None:
                execution_variables = active.execution_variables if active else {}
            if cancellation is None:
                cancellation = active.cancellation if active else asyncio.Event()

        ctx = ExecutionContext(
            run_id=run_id,
            flow=flow,
            capabilities=self.capabilities,
            execution_variables=execution_variables,
            depth=depth,
            cancellation=cancellation,
            execution_path=path,
            flow_id=flow_id,
        )
        ctx.sub_flow_runner = partial(
            self._run_nested,
            execution_variables=execution_variables,
            cancellation=cancellation,
        )

        saved_trace = get_trace_context()
        set_trace_context(run_id=run_id, flow_id=flow_id, depth=depth)
        try:
            if top_level and self._event_bus:
                await self._event_bus.emit_run_started(flow_id, run_id, depth)
            report = await self._scheduler.execute(ctx, initial_input, options)
        finally:
            clear_trace_context()
            if saved_trace:
                set_trace_context(**saved_trace)

        if top_level:
            await self._finish_top_level(flow_id, definition.name, run_id, report)
        return report

    async def _run_nested(
        self,
        flow_id: str,
        initial_input: dict[str, Any],
        depth: int,
        execution_path: list[str],
        run_id: str | None = None,
        *,
        execution_variables: dict[str, Any],
        cancellation: asyncio.Event,
    ) -> ExecutionReport:
        return await self._run(
            flow_id,
            initial_input,
            depth,
            ExecutionOptions(run_id=run_id),
            execution_path,
            execution_variables=execution_variables,
            cancellation=cancellation,
        )

    async def _finish_top_level(
        self,
        flow_id: str,
        flow_name: str,
        run_id: str,
        report: ExecutionReport,
    ) -> None:
        if self._active_run is not None:
            if report.error is None:
                self._active_run.status = RunStatus.COMPLETED
            elif report.aborted:
                self._active_run.status = RunStatus.ABORTED
            else:
                self._active_run.status = RunStatus.FAILED

        if report.error is None:
            logger.info(f'Flow "{flow_name}" completed', extra={"flow_id": flow_id})
            if self._event_bus:
                await self._event_bus.emit_run_completed(flow_id, run_id, report)
        elif report.aborted:
            logger.warning(f'Flow "{flow_name}" was aborted', extra={"flow_id": flow_id})
            if self._event_bus:
                await self._event_bus.emit_run_aborted(flow_id, run_id, report)
        else:
            message = report.error.message
            logger.error(f'Flow "{flow_name}" failed: {message}', extra={"flow_id": flow_id})
            self.notify("error", f'Flow "{flow_name}" failed: {message}')
            if self._event_bus:
                await self._event_bus.emit_run_failed(flow_id, run_id, report, message)

        if self.history is not None:
            entry = HistoryEntry.from_report(
                report,
                run_id=run_id,
                flow_id=flow_id,
                flow_name=flow_name,
                max_string_length=self.config.history_max_string_length,
            )
            self.history.add(entry)

    # === HELPERS ===

    def _prepare(self, definition: FlowDefinition) -> FlowSpec:
        if self._migrate is None:
            return definition.flow
        return self._migrate(definition.flow)

    def _flow_name(self, flow_id: str) -> str:
        definition = self.flow_store.get(flow_id)
        return definition.name if definition else flow_id

    def notify(self, level: str, message: str) -> None:
        if level == "error" and not self.config.show_execution_notifications:
            return
        notify = getattr(self.capabilities, "notify", None)
        if notify is None:
            return
        result = notify(level, message)
        if inspect.isawaitable(result):
            # Hosts with an async notify: fire and forget on the running loop
            task = asyncio.ensure_future(result)
            self._drain_tasks.add(task)
            task.add_done_callback(self._drain_tasks.discard)
