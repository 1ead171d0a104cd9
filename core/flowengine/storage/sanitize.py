"""
Sanitization of execution reports before they are persisted.

History entries hold whatever nodes produced: whole characters, long LLM
responses, occasionally an API key. ``sanitize`` is a pure recursive
visitor over JSON-like values (str, number, bool, None, dict, list) that:

- truncates strings past a maximum length, appending a marker suffix
- reduces character-shaped objects to an allow-listed subset of fields
- redacts values under sensitive-looking keys
- stringifies anything that is not JSON-like

The input is never mutated.
"""

import re
from typing import Any

from flowengine.config import DEFAULT_MAX_STRING_LENGTH, TRUNCATION_SUFFIX

SENSITIVE_PATTERNS = [
    re.compile(r"^.*password.*$", re.IGNORECASE),
    re.compile(r"^(.*[_-])?(access|api|auth|bearer|refresh|session)?[_-]?token$", re.IGNORECASE),
    re.compile(r"^.*api[_-]?key.*$", re.IGNORECASE),
    re.compile(r"^.*secret.*$", re.IGNORECASE),
    re.compile(r"^.*credential.*$", re.IGNORECASE),
    re.compile(r"^.*authorization.*$", re.IGNORECASE),
    re.compile(r"^.*private[_-]?key.*$", re.IGNORECASE),
]

REDACTION_PLACEHOLDER = "***REDACTED***"

# A dict with all of these keys is treated as a character card
CHARACTER_SHAPE = frozenset({"name", "avatar", "first_mes"})
CHARACTER_ALLOWED_FIELDS = ("name", "avatar", "description", "tags")
SANITIZED_MARKER = "_sanitized"

MAX_DEPTH = 32


def _is_sensitive_key(key: str) -> bool:
    return any(pattern.match(key) for pattern in SENSITIVE_PATTERNS)


def is_character_like(value: Any) -> bool:
    return isinstance(value, dict) and CHARACTER_SHAPE.issubset(value.keys())


def truncate(value: str, max_length: int = DEFAULT_MAX_STRING_LENGTH) -> str:
    if len(value) <= max_length:
        return value
    return value[:max_length] + TRUNCATION_SUFFIX


def sanitize(
    value: Any,
    max_length: int = DEFAULT_MAX_STRING_LENGTH,
    _depth: int = 0,
) -> Any:
    """Return a JSON-safe, size-bounded copy of ``value``."""
    if _depth > MAX_DEPTH:
        return "[max depth exceeded]"

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, str):
        return truncate(value, max_length)

    if isinstance(value, dict):
        if is_character_like(value):
            reduced = {
                key: sanitize(value[key], max_length, _depth + 1)
                for key in CHARACTER_ALLOWED_FIELDS
                if key in value
            }
            reduced[SANITIZED_MARKER] = True
            return reduced
        result = {}
        for key, item in value.items():
            key = str(key)
            if _is_sensitive_key(key):
                result[key] = REDACTION_PLACEHOLDER
            else:
                result[key] = sanitize(item, max_length, _depth + 1)
        return result

    if isinstance(value, (list, tuple)):
        return [sanitize(item, max_length, _depth + 1) for item in value]

    if hasattr(value, "to_dict"):
        return sanitize(value.to_dict(), max_length, _depth + 1)

    return truncate(repr(value), max_length)
