"""
Triggers - Start top-level runs from host events and manual activations.

Every trigger ends up in ``RunOrchestrator.execute_flow`` with depth 0, so
triggered runs are queued and serialized like any other top-level run.
"""

import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any

from flowengine.runtime.orchestrator import RunOrchestrator

logger = logging.getLogger(__name__)

EVENT_TRIGGER_TYPE = "triggerNode"
MANUAL_TRIGGER_TYPE = "manualTriggerNode"

# Positional host-event arguments -> named initial-input keys
DEFAULT_EVENT_PARAMETERS: dict[str, list[str]] = {
    "message_received": ["messageId", "type"],
    "character_message_rendered": ["messageId", "type"],
    "message_sent": ["index"],
    "user_message_rendered": ["index"],
    "message_edited": ["messageId"],
    "message_deleted": ["chatLength"],
    "message_updated": ["messageId"],
    "message_swiped": ["messageIndex"],
    "impersonate_ready": ["text"],
    "chat_changed": ["chatId"],
}


@dataclass
class EventTrigger:
    flow_id: str
    node_id: str
    prevent_recursive: bool = False


class TriggerRouter:
    """
    Maps host event types to the trigger nodes listening for them.

    Example:
        router = TriggerRouter(orchestrator)
        router.reinitialize()
        await router.dispatch("message_received", 42, "normal")
    """

    def __init__(
        self,
        orchestrator: RunOrchestrator,
        event_parameters: dict[str, list[str]] | None = None,
    ):
        self.orchestrator = orchestrator
        self.event_parameters = event_parameters or DEFAULT_EVENT_PARAMETERS
        self._triggers: dict[str, list[EventTrigger]] = {}

    def event_types(self) -> list[str]:
        return sorted(self._triggers)

    def triggers_for(self, event_type: str) -> list[EventTrigger]:
        return list(self._triggers.get(event_type, []))

    def reinitialize(self) -> dict[str, list[EventTrigger]]:
        """
        Rebuild the event table from the current flow definitions.

        Disabled flows are skipped. Invalid flows are skipped and each of
        their errors is reported to the user.
        """
        triggers: dict[str, list[EventTrigger]] = defaultdict(list)
        for definition in self.orchestrator.flow_store.all():
            if not definition.enabled:
                continue
            result = self.orchestrator.validator.validate(
                definition.flow, definition.allow_dangerous_execution
            )
            if not result.is_valid:
                self.orchestrator.notify(
                    "error", f'Flow "{definition.name}" is invalid and will not be run. Errors:'
                )
                for error in result.errors:
                    self.orchestrator.notify("error", f"- {error}")
                continue

            for node in definition.flow.nodes_of_type(EVENT_TRIGGER_TYPE):
                event_type = node.data.get("selectedEventType")
                if not event_type or node.disabled:
                    continue
                triggers[event_type].append(
                    EventTrigger(
                        flow_id=definition.id,
                        node_id=node.id,
                        prevent_recursive=bool(node.data.get("preventRecursive", False)),
                    )
                )

        self._triggers = dict(triggers)
        logger.info(f"Registered triggers for {len(self._triggers)} event type(s)")
        return {k: list(v) for k, v in self._triggers.items()}

    def build_input(self, event_type: str, args: tuple[Any, ...]) -> dict[str, Any]:
        names = self.event_parameters.get(event_type, [])
        return {name: args[i] if i < len(args) else None for i, name in enumerate(names)}

    async def dispatch(self, event_type: str, *args: Any) -> list[str]:
        """
        Fire every trigger listening for ``event_type``.

        Returns the ids of flows that were queued.
        """
        started = []
        for trigger in self._triggers.get(event_type, []):
            if trigger.prevent_recursive and self.orchestrator.is_flow_active(trigger.flow_id):
                logger.info(
                    f"Skipping re-entrant trigger for flow {trigger.flow_id} on {event_type}",
                    extra={"flow_id": trigger.flow_id, "node_id": trigger.node_id},
                )
                continue
            report = await self.orchestrator.execute_flow(
                trigger.flow_id, self.build_input(event_type, args)
            )
            if report.error is None:
                started.append(trigger.flow_id)
        return started

    async def run_manual_triggers(self, flow_id: str) -> int:
        """Queue one run per manual trigger node, each with its parsed JSON payload."""
        definition = self.orchestrator.flow_store.get(flow_id)
        if definition is None:
            self.orchestrator.notify("error", f'Flow "{flow_id}" not found for manual run.')
            return 0

        manual = [n for n in definition.flow.nodes_of_type(MANUAL_TRIGGER_TYPE) if not n.disabled]
        if not manual:
            self.orchestrator.notify("info", f'No Manual Trigger nodes found in flow "{definition.name}".')
            return 0

        queued = 0
        for node in manual:
            try:
                payload = json.loads(node.data.get("payload") or "{}")
            except json.JSONDecodeError:
                self.orchestrator.notify(
                    "error", f"Invalid JSON in Manual Trigger node {node.id}. Skipping."
                )
                continue
            if not isinstance(payload, dict):
                payload = {"value": payload}
            report = await self.orchestrator.execute_flow(flow_id, payload)
            if report.error is None:
                queued += 1
        return queued
