"""Record models persisted in the ClawTrace partitions.

Field names are snake_case in Python and camelCase on disk, so that partitions
written by other ClawTrace clients (``skillName``, ``startTime``...) load
unchanged.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

TraceStatus = Literal["running", "success", "failed"]
TERMINAL_STATUSES: frozenset[str] = frozenset({"success", "failed"})
CRON_TAG = "cron"


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class RecordModel(BaseModel):
    """Base for every persisted record: camelCase on disk, unknown keys preserved."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_json_line(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class ToolCall(RecordModel):
    """How many times a tool was invoked during one skill run."""

    tool: str
    count: int = Field(ge=0)
    details: str | None = None


class SubAgentCall(RecordModel):
    """One node of a sub-agent call tree."""

    agent_name: str
    start_time: datetime
    end_time: datetime | None = None
    duration_ms: int | None = Field(default=None, ge=0)
    status: TraceStatus
    children: list[SubAgentCall] | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None


class _TimedRecord(RecordModel):
    id: str
    start_time: datetime
    end_time: datetime | None = None
    duration_ms: int | None = Field(default=None, ge=0)
    status: TraceStatus
    error: str | None = None

    @field_validator("id")
    @classmethod
    def _require_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Record id must not be empty")
        return value

    @field_validator("start_time", "end_time")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _running_has_no_end(self):
        if self.status == "running" and (self.end_time is not None or self.duration_ms is not None):
            raise ValueError("A running record cannot carry an end time or duration")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class SkillTrace(_TimedRecord):
    """One skill or agent execution."""

    skill_name: str
    session_label: str | None = None
    cost: float | None = None
    tool_calls: list[ToolCall] | None = None
    sub_agents: list[SubAgentCall] | None = None
    parent_id: str | None = None


class CronRecord(_TimedRecord):
    """One cron job invocation entry; start and completion are separate lines."""

    record_type: Literal["cron"] = Field(default=CRON_TAG, alias="_type")
    job_name: str
    cron_expr: str | None = None


class MemoryChange(RecordModel):
    """An observed edit to a memory file. Never updated after it is written."""

    id: str
    time: datetime
    agent: str
    file: str
    lines_added: int = Field(ge=0)
    lines_removed: int = Field(ge=0)
    description: str | None = None

    @field_validator("time")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


def _trace_line_kind(value: Any) -> str:
    if isinstance(value, dict):
        return "cron" if value.get("_type") == CRON_TAG else "trace"
    return "cron" if isinstance(value, CronRecord) else "trace"


TraceLine = Annotated[
    Union[Annotated[SkillTrace, Tag("trace")], Annotated[CronRecord, Tag("cron")]],
    Discriminator(_trace_line_kind),
]
TRACE_LINE_ADAPTER: TypeAdapter[SkillTrace | CronRecord] = TypeAdapter(TraceLine)
MEMORY_CHANGE_ADAPTER: TypeAdapter[MemoryChange] = TypeAdapter(MemoryChange)


__all__ = [
    "CRON_TAG",
    "CronRecord",
    "MEMORY_CHANGE_ADAPTER",
    "MemoryChange",
    "RecordModel",
    "SkillTrace",
    "SubAgentCall",
    "TERMINAL_STATUSES",
    "TRACE_LINE_ADAPTER",
    "ToolCall",
    "TraceLine",
    "TraceStatus",
    "ensure_utc",
]
