"""
Event Bus - Pub/sub for flow run and node lifecycle events.

Lets host code:
- Observe top-level run results (the only way to see them, since
  top-level ``execute_flow`` calls return a placeholder report)
- Follow node-by-node progress for a run
- Await a specific lifecycle event in tests or integrations
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events that can be published."""

    # Run lifecycle
    RUN_QUEUED = "run_queued"
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    RUN_ABORTED = "run_aborted"

    # Node lifecycle
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"


@dataclass
class FlowEvent:
    """An event emitted by the engine."""

    type: EventType
    flow_id: str | None = None
    run_id: str | None = None
    node_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "flow_id": self.flow_id,
            "run_id": self.run_id,
            "node_id": self.node_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[FlowEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_flow: str | None = None
    filter_run: str | None = None


class EventBus:
    """
    Async pub/sub event bus.

    Handler errors are logged and never reach the publisher, so a broken
    subscriber cannot fail a flow run.

    Example:
        bus = EventBus()

        async def on_failed(event: FlowEvent):
            print(f"Run {event.run_id} failed: {event.data['error']}")

        bus.subscribe(event_types=[EventType.RUN_FAILED], handler=on_failed)
    """

    def __init__(
        self,
        max_history: int = 1000,
        max_concurrent_handlers: int = 10,
    ):
        """
        Initialize event bus.

        Args:
            max_history: Maximum events to keep in history
            max_concurrent_handlers: Maximum concurrent handler executions
        """
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[FlowEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_flow: str | None = None,
        filter_run: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"
        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_flow=filter_flow,
            filter_run=filter_run,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: FlowEvent) -> None:
        """Publish an event to all matching subscribers."""
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history :]

        matching = [s.handler for s in self._subscriptions.values() if self._matches(s, event)]
        if matching:
            await self._execute_handlers(event, matching)

    def _matches(self, subscription: Subscription, event: FlowEvent) -> bool:
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_flow and subscription.filter_flow != event.flow_id:
            return False
        if subscription.filter_run and subscription.filter_run != event.run_id:
            return False
        return True

    async def _execute_handlers(self, event: FlowEvent, handlers: list[EventHandler]) -> None:
        """Execute handlers concurrently with rate limiting."""

        async def run_handler(handler: EventHandler) -> None:
            async with self._semaphore:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Handler error for {event.type}: {e}")

        await asyncio.gather(*[run_handler(h) for h in handlers], return_exceptions=True)

    # === CONVENIENCE PUBLISHERS ===

    async def emit_run_queued(self, flow_id: str, queue_length: int) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.RUN_QUEUED,
                flow_id=flow_id,
                data={"queue_length": queue_length},
            )
        )

    async def emit_run_started(self, flow_id: str, run_id: str, depth: int = 0) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.RUN_STARTED,
                flow_id=flow_id,
                run_id=run_id,
                data={"depth": depth},
            )
        )

    async def emit_run_completed(self, flow_id: str, run_id: str, report: Any) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.RUN_COMPLETED,
                flow_id=flow_id,
                run_id=run_id,
                data={"report": report},
            )
        )

    async def emit_run_failed(self, flow_id: str, run_id: str, report: Any, error: str) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.RUN_FAILED,
                flow_id=flow_id,
                run_id=run_id,
                data={"report": report, "error": error},
            )
        )

    async def emit_run_aborted(self, flow_id: str, run_id: str, report: Any) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.RUN_ABORTED,
                flow_id=flow_id,
                run_id=run_id,
                data={"report": report},
            )
        )

    async def emit_node_started(
        self,
        run_id: str,
        node_id: str,
        node_type: str,
        flow_id: str | None = None,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.NODE_STARTED,
                flow_id=flow_id,
                run_id=run_id,
                node_id=node_id,
                data={"node_type": node_type},
            )
        )

    async def emit_node_completed(
        self,
        run_id: str,
        node_id: str,
        node_report: Any,
        flow_id: str | None = None,
    ) -> None:
        await self.publish(
            FlowEvent(
                type=EventType.NODE_COMPLETED,
                flow_id=flow_id,
                run_id=run_id,
                node_id=node_id,
                data={"report": node_report},
            )
        )

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: EventType | None = None,
        flow_id: str | None = None,
        run_id: str | None = None,
        limit: int = 100,
    ) -> list[FlowEvent]:
        """
        Get event history with optional filtering.

        Returns:
            List of matching events (most recent first)
        """
        events = self._event_history[::-1]
        if event_type:
            events = [e for e in events if e.type == event_type]
        if flow_id:
            events = [e for e in events if e.flow_id == flow_id]
        if run_id:
            events = [e for e in events if e.run_id == run_id]
        return events[:limit]

    def get_stats(self) -> dict:
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.type.value] = type_counts.get(event.type.value, 0) + 1
        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
        }

    # === WAITING OPERATIONS ===

    async def wait_for(
        self,
        event_type: EventType,
        flow_id: str | None = None,
        run_id: str | None = None,
        timeout: float | None = None,
    ) -> FlowEvent | None:
        """
        Wait for a specific event to occur.

        Returns:
            The event if received, None if timeout
        """
        result: FlowEvent | None = None
        event_received = asyncio.Event()

        async def handler(event: FlowEvent) -> None:
            nonlocal result
            result = event
            event_received.set()

        sub_id = self.subscribe(
            event_types=[event_type],
            handler=handler,
            filter_flow=flow_id,
            filter_run=run_id,
        )

        try:
            if timeout:
                try:
                    await asyncio.wait_for(event_received.wait(), timeout=timeout)
                except TimeoutError:
                    return None
            else:
                await event_received.wait()
            return result
        finally:
            self.unsubscribe(sub_id)
