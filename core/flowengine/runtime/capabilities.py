"""
CapabilityBag - The host operations node executors may call.

The engine never implements these; the embedding chat application
injects an object satisfying this protocol. Every method may be async and
may fail; failures surface as node execution errors.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Literal, Protocol, runtime_checkable

StreamCallback = Callable[[str, str], Awaitable[None]]
"""Called once per streamed chunk with ``(chunk, full_text_so_far)``."""

logger = logging.getLogger(__name__)

NotifyLevel = Literal["info", "success", "warning", "error"]


@runtime_checkable
class CapabilityBag(Protocol):
    # --- Prompt construction and LLM requests ---

    async def get_base_messages(
        self, profile_id: str, last_message_id: int | None = None
    ) -> list[dict[str, Any]]: ...

    async def make_simple_request(
        self,
        profile_id: str,
        messages: list[dict[str, Any]],
        max_response_token: int,
        on_stream: StreamCallback | None = None,
        signal: asyncio.Event | None = None,
    ) -> str: ...

    async def make_structured_request(
        self,
        profile_id: str,
        messages: list[dict[str, Any]],
        schema: dict[str, Any],
        schema_name: str,
        prompt_engineering_mode: str,
        max_response_token: int,
        signal: asyncio.Event | None = None,
    ) -> dict[str, Any]: ...

    # --- Characters ---

    async def get_characters(self) -> list[dict[str, Any]]: ...

    async def create_character(self, data: dict[str, Any]) -> None: ...

    async def save_character(self, data: dict[str, Any]) -> None: ...

    # --- Lorebooks / world info ---

    async def create_world_info(self, world_name: str) -> bool: ...

    async def get_world_infos(self, include: list[str]) -> dict[str, list[dict[str, Any]]]: ...

    async def apply_world_info_entry(
        self,
        entry: dict[str, Any],
        world_name: str,
        operation: Literal["add", "update", "auto"] = "auto",
    ) -> dict[str, Any]: ...

    # --- Chat ---

    async def send_chat_message(
        self, message: str, role: str, name: str | None = None
    ) -> None: ...

    async def update_message_block(self, message_id: int, message: dict[str, Any]) -> None: ...

    async def delete_message(self, message_id: int) -> None: ...

    async def hide_chat_message_range(self, start: int, end: int, unhide: bool = False) -> None: ...

    async def save_chat(self) -> None: ...

    async def get_chat_input_value(self) -> str: ...

    async def update_chat_input_value(self, value: str) -> None: ...

    # --- Slash commands ---

    async def execute_slash_command(self, command: str) -> dict[str, Any]:
        """Returns ``{"pipe": str, "is_error": bool, "error_message": str, "is_aborted": bool, "abort_reason": str}``."""
        ...

    # --- Variables ---

    def get_local_variable(self, name: str) -> Any: ...

    def set_local_variable(self, name: str, value: Any) -> None: ...

    def get_global_variable(self, name: str) -> Any: ...

    def set_global_variable(self, name: str, value: Any) -> None: ...

    # --- User interaction ---

    async def prompt_user(self, message: str, default: str = "") -> str | None: ...

    async def confirm_user(self, message: str) -> bool: ...

    def notify(self, level: NotifyLevel, message: str) -> None: ...


class NullCapabilityBag:
    """
    Offline capability bag for the CLI.

    Host-only operations raise; notifications are logged; variables live
    in memory.
    """

    def __init__(self) -> None:
        self._local: dict[str, Any] = {}
        self._global: dict[str, Any] = {}

    def __getattr__(self, name: str) -> Any:
        async def unavailable(*args: Any, **kwargs: Any) -> Any:
            raise RuntimeError(f"Host capability '{name}' is not available outside the chat host")

        return unavailable

    def get_local_variable(self, name: str) -> Any:
        return self._local.get(name)

    def set_local_variable(self, name: str, value: Any) -> None:
        self._local[name] = value

    def get_global_variable(self, name: str) -> Any:
        return self._global.get(name)

    def set_global_variable(self, name: str, value: Any) -> None:
        self._global[name] = value

    async def confirm_user(self, message: str) -> bool:
        return True

    def notify(self, level: str, message: str) -> None:
        logger.log(logging.ERROR if level == "error" else logging.INFO, message)
