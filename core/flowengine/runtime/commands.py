"""
Host command surface: run a flow by name and stop everything.

The host binds these to its own command system (for example slash
commands), so results are plain strings.
"""

import json
import logging
from typing import Any

from flowengine.runtime.orchestrator import RunOrchestrator

logger = logging.getLogger(__name__)


def _format_result(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


async def run_flow_by_name(
    orchestrator: RunOrchestrator,
    name: str,
    json_params: str | None = None,
) -> str:
    """
    Run the flow called ``name`` and return its result as text.

    Returns the error message when the flow is missing, the parameters are
    not a JSON object, or the run fails. Must not be called from inside a
    running flow (the run waits for the single execution slot).
    """
    definition = orchestrator.flow_store.find_by_name(name)
    if definition is None:
        return f'Error: Flow "{name}" not found.'

    params: dict[str, Any] = {}
    if json_params and json_params.strip():
        try:
            params = json.loads(json_params)
        except json.JSONDecodeError as e:
            return f"Error: Invalid JSON parameters: {e}"
        if not isinstance(params, dict):
            return "Error: Parameters must be a JSON object."

    report = await orchestrator.run_and_wait(definition.id, params)
    if report.error is not None:
        return f"Error: {report.error.message}"
    return _format_result(report.last_output)


def stop_all_flows(orchestrator: RunOrchestrator) -> str:
    """Clear the queue and abort the active run."""
    summary = orchestrator.abort_all_runs()
    logger.info(summary)
    return summary
