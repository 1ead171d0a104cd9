"""Shared flowengine configuration utilities.

Reads ~/.flowengine/configuration.json (or the file named by
FLOWENGINE_CONFIG) so the orchestrator, history store and CLI share one
implementation.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FLOWENGINE_HOME = Path.home() / ".flowengine"
FLOWENGINE_CONFIG_FILE = FLOWENGINE_HOME / "configuration.json"

DEFAULT_MAX_SUB_FLOW_DEPTH = 10
DEFAULT_MAX_HISTORY_LENGTH = 50
DEFAULT_HISTORY_STORAGE_KEY = "flowchart_execution_history"
DEFAULT_MAX_STRING_LENGTH = 1000
TRUNCATION_SUFFIX = "... [truncated]"


def _config_path() -> Path:
    override = os.environ.get("FLOWENGINE_CONFIG")
    return Path(override) if override else FLOWENGINE_CONFIG_FILE


def get_engine_config_file() -> dict[str, Any]:
    """Load the raw configuration dict. Missing or unreadable files yield {}."""
    path = _config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def _section(name: str) -> dict[str, Any]:
    value = get_engine_config_file().get(name, {})
    return value if isinstance(value, dict) else {}


def get_max_sub_flow_depth() -> int:
    return int(_section("execution").get("max_sub_flow_depth", DEFAULT_MAX_SUB_FLOW_DEPTH))


def get_show_notifications() -> bool:
    return bool(_section("execution").get("show_execution_notifications", True))


def get_max_history_length() -> int:
    return int(_section("history").get("max_length", DEFAULT_MAX_HISTORY_LENGTH))


def get_history_storage_key() -> str:
    return str(_section("history").get("storage_key", DEFAULT_HISTORY_STORAGE_KEY))


def get_max_string_length() -> int:
    return int(_section("history").get("max_string_length", DEFAULT_MAX_STRING_LENGTH))


def get_storage_path() -> Path:
    configured = _section("storage").get("path")
    return Path(configured).expanduser() if configured else FLOWENGINE_HOME / "storage"


# ---------------------------------------------------------------------------
# EngineConfig – shared by the orchestrator, history store and CLI
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Engine configuration loaded from ~/.flowengine/configuration.json."""

    max_sub_flow_depth: int = field(default_factory=get_max_sub_flow_depth)
    show_execution_notifications: bool = field(default_factory=get_show_notifications)
    max_history_length: int = field(default_factory=get_max_history_length)
    history_storage_key: str = field(default_factory=get_history_storage_key)
    history_max_string_length: int = field(default_factory=get_max_string_length)
    storage_path: Path = field(default_factory=get_storage_path)


def get_engine_config() -> EngineConfig:
    """Build an EngineConfig from the current configuration file."""
    return EngineConfig()
