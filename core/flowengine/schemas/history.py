"""
History Schema - One finished top-level run, as persisted.

Entries hold a sanitized copy of the ExecutionReport plus who ran and when.
Timestamps serialize as ISO-8601.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from flowengine.config import DEFAULT_MAX_STRING_LENGTH
from flowengine.storage.sanitize import sanitize


class RunStatus(StrEnum):
    """Lifecycle of a top-level run."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


class HistoryEntry(BaseModel):
    """A sanitized execution report with run metadata."""

    run_id: str
    flow_id: str
    flow_name: str
    status: RunStatus
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    executed_nodes: list[dict[str, Any]] = Field(default_factory=list)
    error: dict[str, Any] | None = None
    last_output: Any = None

    model_config = {"extra": "allow"}

    @classmethod
    def from_report(
        cls,
        report: Any,
        run_id: str,
        flow_id: str,
        flow_name: str,
        max_string_length: int = DEFAULT_MAX_STRING_LENGTH,
    ) -> "HistoryEntry":
        if report.error is None:
            status = RunStatus.COMPLETED
        elif report.aborted:
            status = RunStatus.ABORTED
        else:
            status = RunStatus.FAILED
        data = sanitize(report.to_dict(), max_string_length)
        return cls(
            run_id=run_id,
            flow_id=flow_id,
            flow_name=flow_name,
            status=status,
            executed_nodes=data["executed_nodes"],
            error=data["error"],
            last_output=data["last_output"],
        )
