"""
Built-in node kinds.

The host application normally registers its own catalog. These kinds cover
triggers, constants, messages, branching, run-scoped variables, sub-flows,
LLM requests, slash commands and HTTP, so flows can run end to end without
a host-specific catalog.
"""

import json
import logging
import re
from typing import Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field

from flowengine.graph.node import (
    ACTIVATED_HANDLE,
    BaseNodeExecutor,
    NodeOutcome,
    resolve_input,
)
from flowengine.graph.registry import NodeExecutorRegistry

logger = logging.getLogger(__name__)


class NodeData(BaseModel):
    """Base for node data models: accepts camelCase keys from the editor."""

    model_config = ConfigDict(populate_by_name=True)


def _parse_json(value: Any, what: str) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value or "{}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {what}: {e}") from e


def _indexed_keys(input: dict[str, Any], prefix: str) -> list[str]:
    """Input keys like ``messages_0``, ``messages_1`` sorted by index, not insertion order."""
    pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$")
    indexed = []
    for key in input:
        match = pattern.match(key)
        if match:
            indexed.append((int(match.group(1)), key))
    return [key for _, key in sorted(indexed)]


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


class TriggerData(NodeData):
    selected_event_type: str | None = Field(default=None, alias="selectedEventType")
    prevent_recursive: bool = Field(default=False, alias="preventRecursive")


class TriggerNode(BaseNodeExecutor):
    """Entry point for host events; exposes the event arguments as its output."""

    data_model = TriggerData
    trigger = True

    async def run(self, node, data, input, ctx):
        return dict(input)


class ManualTriggerData(NodeData):
    payload: str = "{}"


class ManualTriggerNode(BaseNodeExecutor):
    data_model = ManualTriggerData
    trigger = True

    async def run(self, node, data, input, ctx):
        try:
            return json.loads(data.payload)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON payload: {e}") from e


class OnStreamTriggerNode(BaseNodeExecutor):
    """Entry point of a flow run once per streamed chunk (``chunk``, ``full_text``)."""

    trigger = True

    async def run(self, node, data, input, ctx):
        return dict(input)


# ---------------------------------------------------------------------------
# Constants and messages
# ---------------------------------------------------------------------------


class StringData(NodeData):
    value: str = ""


class StringNode(BaseNodeExecutor):
    data_model = StringData

    async def run(self, node, data, input, ctx):
        if input.get("value") is not None:
            return str(input["value"])
        return data.value


class NumberData(NodeData):
    value: float = 0


class NumberNode(BaseNodeExecutor):
    data_model = NumberData

    async def run(self, node, data, input, ctx):
        value = input["value"] if input.get("value") is not None else data.value
        number = float(value)
        return int(number) if number.is_integer() else number


class LogData(NodeData):
    prefix: str = "[LogNode]"


class LogNode(BaseNodeExecutor):
    data_model = LogData

    async def run(self, node, data, input, ctx):
        logger.info(f"{data.prefix} {input}", extra={"node_id": node.id})
        return dict(input)


class MessageTemplate(NodeData):
    id: str
    role: Literal["system", "user", "assistant"] = "user"
    content: str = ""


class CustomMessageData(NodeData):
    messages: list[MessageTemplate] = Field(default_factory=list)


class CustomMessageNode(BaseNodeExecutor):
    """Builds a message list; a connected ``<id>`` or ``<id>_role`` input overrides the template."""

    data_model = CustomMessageData

    async def run(self, node, data, input, ctx):
        return [
            {
                "role": input.get(f"{m.id}_role") or m.role,
                "content": input[m.id] if input.get(m.id) is not None else m.content,
            }
            for m in data.messages
        ]


class MergeMessagesNode(BaseNodeExecutor):
    """Concatenates ``messages_<n>`` inputs in handle-index order."""

    async def run(self, node, data, input, ctx):
        merged: list[Any] = []
        for key in _indexed_keys(input, "messages_"):
            value = input[key]
            if isinstance(value, list):
                merged.extend(value)
            elif value is not None:
                merged.append(value)
        return merged


class MergeObjectsNode(BaseNodeExecutor):
    """Shallow-merges ``object_<n>`` inputs; later indices win."""

    async def run(self, node, data, input, ctx):
        merged: dict[str, Any] = {}
        for key in _indexed_keys(input, "object_"):
            if isinstance(input[key], dict):
                merged.update(input[key])
        return merged


# ---------------------------------------------------------------------------
# Branching and control
# ---------------------------------------------------------------------------


Operator = Literal[
    "equals",
    "not_equals",
    "greater_than",
    "less_than",
    "contains",
    "is_empty",
    "is_not_empty",
    "is_true",
    "is_false",
]


class Condition(NodeData):
    id: str
    source: Literal["input", "variable"] = "input"
    key: str = "value"
    operator: Operator = "equals"
    value: Any = None

    def evaluate(self, input: dict[str, Any], variables: dict[str, Any]) -> bool:
        actual = (input if self.source == "input" else variables).get(self.key)
        op = self.operator
        if op == "equals":
            return actual == self.value or str(actual) == str(self.value)
        if op == "not_equals":
            return not (actual == self.value or str(actual) == str(self.value))
        if op == "greater_than":
            return actual is not None and float(actual) > float(self.value)
        if op == "less_than":
            return actual is not None and float(actual) < float(self.value)
        if op == "contains":
            return actual is not None and self.value in actual
        if op == "is_empty":
            return not actual
        if op == "is_not_empty":
            return bool(actual)
        if op == "is_true":
            return actual is True
        if op == "is_false":
            return actual is False
        return False


class IfData(NodeData):
    conditions: list[Condition] = Field(default_factory=list)


class IfNode(BaseNodeExecutor):
    """
    Activates the handle of the first matching condition, else ``false``.

    Conditions compare a connected input (or a run-scoped variable) with a
    static value; there is no code evaluation.
    """

    data_model = IfData
    branching = True

    async def run(self, node, data, input, ctx):
        for condition in data.conditions:
            try:
                matched = condition.evaluate(input, ctx.execution_variables)
            except (TypeError, ValueError) as e:
                raise ValueError(f"Error evaluating condition '{condition.id}': {e}") from e
            if matched:
                return {ACTIVATED_HANDLE: condition.id}
        return {ACTIVATED_HANDLE: "false"}


class ConfirmUserData(NodeData):
    message: str | None = None


class ConfirmUserNode(BaseNodeExecutor):
    data_model = ConfirmUserData
    branching = True

    async def run(self, node, data, input, ctx):
        message = resolve_input(input, data, "message")
        if not message:
            raise ValueError("Confirmation message is required.")
        confirmed = await ctx.capabilities.confirm_user(message)
        return {ACTIVATED_HANDLE: "true" if confirmed else "false"}


class EndNode(BaseNodeExecutor):
    """Ends the whole run gracefully."""

    async def run(self, node, data, input, ctx):
        return NodeOutcome.terminate()


# ---------------------------------------------------------------------------
# Run-scoped variables
# ---------------------------------------------------------------------------


class FlowVariableData(NodeData):
    variable_name: str | None = Field(default=None, alias="variableName")


class SetFlowVariableNode(BaseNodeExecutor):
    """Stores ``value`` for the rest of the run, sub-flows included; passes its input through."""

    data_model = FlowVariableData

    async def run(self, node, data, input, ctx):
        name = resolve_input(input, data, "variableName", "variable_name")
        if not name:
            raise ValueError("Variable name is required.")
        ctx.execution_variables[name] = input.get("value")
        return None


class GetFlowVariableNode(BaseNodeExecutor):
    data_model = FlowVariableData

    async def run(self, node, data, input, ctx):
        name = resolve_input(input, data, "variableName", "variable_name")
        if not name:
            raise ValueError("Variable name is required.")
        if name not in ctx.execution_variables:
            raise KeyError(f'Execution variable "{name}" not found.')
        return {"value": ctx.execution_variables[name]}


# ---------------------------------------------------------------------------
# Sub-flows
# ---------------------------------------------------------------------------


class RunFlowData(NodeData):
    flow_id: str | None = Field(default=None, alias="flowId")
    parameters: str = "{}"


class RunFlowNode(BaseNodeExecutor):
    data_model = RunFlowData

    async def run(self, node, data, input, ctx):
        flow_id = resolve_input(input, data, "flowId", "flow_id")
        if not flow_id:
            raise ValueError("Flow ID is required.")
        params = _parse_json(resolve_input(input, data, "parameters"), "parameters")

        report = await ctx.run_sub_flow(flow_id, params)
        if report.error:
            raise RuntimeError(f'Sub-flow "{flow_id}" failed: {report.error.message}')
        return {"result": report.last_output}


class ForEachData(NodeData):
    flow_id: str | None = Field(default=None, alias="flowId")


class ForEachNode(BaseNodeExecutor):
    """Runs a sub-flow once per array item with ``{item, index}`` and collects the last outputs."""

    data_model = ForEachData

    async def run(self, node, data, input, ctx):
        flow_id = resolve_input(input, data, "flowId", "flow_id")
        items = input.get("array")
        if not flow_id:
            raise ValueError("Flow to run is required.")
        if not isinstance(items, list):
            raise ValueError('The "array" input must be a valid array.')

        results = []
        for index, item in enumerate(items):
            report = await ctx.run_sub_flow(flow_id, {"item": item, "index": index})
            if report.error:
                raise RuntimeError(
                    f"Sub-flow in ForEach loop failed on item {index}: {report.error.message}"
                )
            results.append(report.last_output)
        return {"results": results}


# ---------------------------------------------------------------------------
# Host operations
# ---------------------------------------------------------------------------


class LLMRequestData(NodeData):
    profile_id: str = Field(default="", alias="profileId")
    schema_name: str = Field(default="response", alias="schemaName")
    prompt_engineering_mode: str = Field(default="native", alias="promptEngineeringMode")
    max_response_token: int = Field(default=1000, alias="maxResponseToken")
    stream: bool = False
    on_stream_flow_id: str | None = Field(default=None, alias="onStreamFlowId")


class LLMRequestNode(BaseNodeExecutor):
    """
    Simple or structured LLM request through the host.

    With ``stream`` enabled, each chunk optionally updates a chat message
    and runs the ``onStreamFlowId`` flow as a nested call that shares this
    run's id.
    """

    data_model = LLMRequestData

    async def run(self, node, data, input, ctx):
        profile_id = resolve_input(input, data, "profileId", "profile_id")
        max_tokens = resolve_input(input, data, "maxResponseToken", "max_response_token")
        messages = input.get("messages")
        if not profile_id or not messages or max_tokens is None:
            raise ValueError("Missing required inputs: profileId, messages, and maxResponseToken.")

        schema = input.get("schema")
        if schema:
            result = await ctx.capabilities.make_structured_request(
                profile_id,
                messages,
                schema,
                resolve_input(input, data, "schemaName", "schema_name") or "response",
                resolve_input(input, data, "promptEngineeringMode", "prompt_engineering_mode"),
                max_tokens,
                signal=ctx.cancellation,
            )
            return {**result, "result": result}

        stream = resolve_input(input, data, "stream")
        message_id = input.get("messageIdToUpdate")
        stream_flow_id = data.on_stream_flow_id
        on_stream = None
        if stream and (isinstance(message_id, int) or stream_flow_id):

            async def on_stream(chunk: str, full_text: str) -> None:
                if isinstance(message_id, int):
                    await ctx.capabilities.update_message_block(message_id, {"mes": full_text})
                if stream_flow_id:
                    report = await ctx.run_sub_flow(
                        stream_flow_id, {"chunk": chunk, "full_text": full_text}, streaming=True
                    )
                    if report.error:
                        raise RuntimeError(f"On-stream flow failed: {report.error.message}")

        result = await ctx.capabilities.make_simple_request(
            profile_id, messages, max_tokens, on_stream=on_stream, signal=ctx.cancellation
        )

        if on_stream is not None and isinstance(message_id, int):
            await ctx.capabilities.update_message_block(message_id, {"mes": result})
            await ctx.capabilities.save_chat()
        return {"result": result}


class SlashCommandData(NodeData):
    command: str = ""


class RunSlashCommandNode(BaseNodeExecutor):
    data_model = SlashCommandData

    async def run(self, node, data, input, ctx):
        command = resolve_input(input, data, "command")
        if not command or not isinstance(command, str):
            raise ValueError("Command input must be a valid string.")

        result = await ctx.capabilities.execute_slash_command(command)
        if result.get("is_error"):
            raise RuntimeError(f"Slash command failed: {result.get('error_message')}")
        if result.get("is_aborted"):
            raise RuntimeError(f"Slash command aborted: {result.get('abort_reason')}")
        return {"result": result.get("pipe") or ""}


class HttpRequestData(NodeData):
    url: str | None = None
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "GET"
    headers: str = "{}"
    body: str = "{}"
    timeout: float = 30.0


class HttpRequestNode(BaseNodeExecutor):
    """Outbound HTTP request. Needs the flow's dangerous-execution permission."""

    data_model = HttpRequestData
    dangerous = True

    async def run(self, node, data, input, ctx):
        url = resolve_input(input, data, "url")
        if not url:
            raise ValueError("URL is required.")
        method = resolve_input(input, data, "method")

        headers = _parse_json(resolve_input(input, data, "headers"), "headers")
        if not isinstance(headers, dict):
            raise ValueError("Headers must be a JSON object.")
        headers = {str(k): str(v) for k, v in headers.items()}

        content: str | None = None
        if method != "GET":
            body = input.get("body")
            if body is not None:
                content = json.dumps(body) if isinstance(body, (dict, list)) else str(body)
                headers.setdefault("Content-Type", "application/json")
            else:
                content = data.body
                try:
                    json.loads(content)
                    headers.setdefault("Content-Type", "application/json")
                except json.JSONDecodeError:
                    pass  # sent as plain text

        try:
            async with httpx.AsyncClient(timeout=data.timeout) as client:
                response = await client.request(method, url, headers=headers, content=content)
        except httpx.HTTPError as e:
            raise RuntimeError(f"HTTP request failed: {e}") from e

        if "application/json" in response.headers.get("content-type", ""):
            response_body = response.json()
        else:
            response_body = response.text

        if response.is_error:
            raise RuntimeError(
                f"Request failed with status {response.status_code}: {json.dumps(response_body)}"
            )
        return {
            "response_body": response_body,
            "status_code": response.status_code,
            "headers": dict(response.headers),
        }


BUILTIN_NODES: dict[str, type[BaseNodeExecutor]] = {
    "triggerNode": TriggerNode,
    "manualTriggerNode": ManualTriggerNode,
    "onStreamTriggerNode": OnStreamTriggerNode,
    "stringNode": StringNode,
    "numberNode": NumberNode,
    "logNode": LogNode,
    "customMessageNode": CustomMessageNode,
    "mergeMessagesNode": MergeMessagesNode,
    "mergeObjectsNode": MergeObjectsNode,
    "ifNode": IfNode,
    "confirmUserNode": ConfirmUserNode,
    "endNode": EndNode,
    "setFlowVariableNode": SetFlowVariableNode,
    "getFlowVariableNode": GetFlowVariableNode,
    "runFlowNode": RunFlowNode,
    "forEachNode": ForEachNode,
    "llmRequestNode": LLMRequestNode,
    "runSlashCommandNode": RunSlashCommandNode,
    "httpRequestNode": HttpRequestNode,
}


def default_registry() -> NodeExecutorRegistry:
    """A fresh registry holding every built-in node kind."""
    return NodeExecutorRegistry({name: cls() for name, cls in BUILTIN_NODES.items()})
