"""Daily-partitioned JSONL trace store."""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from .backends import InMemoryPartitionBackend, JsonlPartitionBackend, PartitionBackend
from .models import (
    MEMORY_CHANGE_ADAPTER,
    TRACE_LINE_ADAPTER,
    CronRecord,
    MemoryChange,
    SkillTrace,
    ensure_utc,
)

logger = logging.getLogger(__name__)

_PARTITION_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MAX_RECENT_WINDOW_HOURS = 24

PartitionDate = date | datetime | str | None
_T = TypeVar("_T")


class CorruptPartitionError(RuntimeError):
    """Raised when a partition contains a line that is not a valid record."""

    def __init__(self, location: str, line_number: int, reason: str) -> None:
        super().__init__(f"{location}:{line_number}: {reason}")
        self.location = location
        self.line_number = line_number


def partition_key(value: date | datetime | str) -> str:
    """Return the ``YYYY-MM-DD`` partition key for a timestamp or calendar date."""

    if isinstance(value, datetime):
        return ensure_utc(value).date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str) and _PARTITION_KEY_RE.match(value):
        return value
    raise ValueError(f"Not a partition date: {value!r}")


class TraceStore:
    """Append, read and update records in daily partitions.

    Skill traces and cron records share the traces namespace (cron lines carry
    ``"_type": "cron"``); memory changes live in their own namespace. The store
    assumes a single writer: ``update_trace`` reads and rewrites a whole
    partition without locking.
    """

    def __init__(
        self,
        traces_dir: Path | None = None,
        memory_changes_dir: Path | None = None,
        *,
        traces_backend: PartitionBackend | None = None,
        memory_backend: PartitionBackend | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if traces_backend is None:
            if traces_dir is None:
                raise ValueError("traces_dir or traces_backend is required")
            traces_backend = JsonlPartitionBackend(Path(traces_dir))
        if memory_backend is None:
            if memory_changes_dir is None:
                raise ValueError("memory_changes_dir or memory_backend is required")
            memory_backend = JsonlPartitionBackend(Path(memory_changes_dir))
        self._traces = traces_backend
        self._memory = memory_backend
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def in_memory(cls, *, clock: Callable[[], datetime] | None = None) -> TraceStore:
        return cls(
            traces_backend=InMemoryPartitionBackend(),
            memory_backend=InMemoryPartitionBackend(),
            clock=clock,
        )

    def now(self) -> datetime:
        return ensure_utc(self._clock())

    def _key(self, value: PartitionDate, fallback: datetime | None = None) -> str:
        if value is not None:
            return partition_key(value)
        return partition_key(fallback if fallback is not None else self.now())

    # ------------------------------------------------------------------
    # Line helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse(
        backend: PartitionBackend, key: str, adapter: TypeAdapter[_T]
    ) -> list[tuple[str, _T]]:
        parsed: list[tuple[str, _T]] = []
        for number, line in enumerate(backend.read_lines(key), start=1):
            try:
                parsed.append((line, adapter.validate_json(line)))
            except ValidationError as exc:
                reason = exc.errors()[0]["msg"] if exc.error_count() else str(exc)
                raise CorruptPartitionError(backend.location(key), number, reason) from exc
        return parsed

    def _keys_between(self, backend: PartitionBackend, start: PartitionDate, end: PartitionDate) -> list[str]:
        first = self._key(start)
        last = self._key(end)
        return [
            key
            for key in backend.keys()
            if _PARTITION_KEY_RE.match(key) and first <= key <= last
        ]

    # ------------------------------------------------------------------
    # Skill traces
    # ------------------------------------------------------------------

    def append_trace(self, trace: SkillTrace, date: PartitionDate = None) -> str:
        """Append a trace; the partition defaults to the trace's start date."""

        key = self._key(date, trace.start_time)
        self._traces.append_line(key, trace.to_json_line())
        return key

    def read_trace_lines(self, date: PartitionDate = None) -> list[SkillTrace | CronRecord]:
        """Every record of the traces namespace for one day, cron entries included."""

        key = self._key(date)
        return [record for _, record in self._parse(self._traces, key, TRACE_LINE_ADAPTER)]

    def read_traces(self, date: PartitionDate = None) -> list[SkillTrace]:
        return [record for record in self.read_trace_lines(date) if isinstance(record, SkillTrace)]

    def read_traces_range(self, start: PartitionDate, end: PartitionDate = None) -> list[SkillTrace]:
        """Traces from every partition in ``[start, end]``, oldest partition first."""

        traces: list[SkillTrace] = []
        for key in self._keys_between(self._traces, start, end):
            traces.extend(
                record
                for _, record in self._parse(self._traces, key, TRACE_LINE_ADAPTER)
                if isinstance(record, SkillTrace)
            )
        return traces

    def update_trace(self, trace_id: str, updates: Mapping[str, Any], date: PartitionDate = None) -> bool:
        """Merge ``updates`` over the trace with ``trace_id`` and rewrite the partition.

        Returns ``False`` when no trace with that id exists in the partition; the
        partition is then left untouched.
        """

        fields = _normalize_fields(SkillTrace, updates)
        if fields.get("id", trace_id) != trace_id:
            raise ValueError("The id of a trace cannot be changed")

        key = self._key(date)
        entries = self._parse(self._traces, key, TRACE_LINE_ADAPTER)
        for index, (_, record) in enumerate(entries):
            if isinstance(record, SkillTrace) and record.id == trace_id:
                break
        else:
            return False

        merged = record.model_dump()
        merged.update(fields)
        updated = SkillTrace.model_validate(merged)
        if record.is_terminal and (
            not updated.is_terminal
            or (record.end_time is not None and updated.end_time is None)
            or (record.duration_ms is not None and updated.duration_ms is None)
        ):
            raise ValueError(f"Trace {trace_id} is finished; its end time and duration cannot be cleared")

        lines = [line for line, _ in entries]
        lines[index] = updated.to_json_line()
        self._traces.replace_lines(key, lines)
        logger.debug("Updated trace %s in partition %s", trace_id, key)
        return True

    # ------------------------------------------------------------------
    # Cron records
    # ------------------------------------------------------------------

    def append_cron_record(self, record: CronRecord, date: PartitionDate = None) -> str:
        key = self._key(date, record.start_time)
        self._traces.append_line(key, record.to_json_line())
        return key

    def read_cron_records(self, date: PartitionDate = None) -> list[CronRecord]:
        return [record for record in self.read_trace_lines(date) if isinstance(record, CronRecord)]

    # ------------------------------------------------------------------
    # Memory changes
    # ------------------------------------------------------------------

    def append_memory_change(self, change: MemoryChange, date: PartitionDate = None) -> str:
        key = self._key(date, change.time)
        self._memory.append_line(key, change.to_json_line())
        return key

    def read_memory_changes(self, date: PartitionDate = None) -> list[MemoryChange]:
        key = self._key(date)
        return [record for _, record in self._parse(self._memory, key, MEMORY_CHANGE_ADAPTER)]

    def read_memory_changes_range(self, start: PartitionDate, end: PartitionDate = None) -> list[MemoryChange]:
        changes: list[MemoryChange] = []
        for key in self._keys_between(self._memory, start, end):
            changes.extend(record for _, record in self._parse(self._memory, key, MEMORY_CHANGE_ADAPTER))
        return changes

    def read_memory_changes_last_hours(self, hours: float) -> list[MemoryChange]:
        """Memory changes newer than ``now - hours``, oldest first.

        Only today's and yesterday's partitions are scanned, so windows longer
        than 24 hours are rejected; use ``read_memory_changes_range`` for those.
        """

        if hours <= 0 or hours > MAX_RECENT_WINDOW_HOURS:
            raise ValueError(f"hours must be in (0, {MAX_RECENT_WINDOW_HOURS}], got {hours}")
        now = self.now()
        cutoff = now - timedelta(hours=hours)
        results: list[MemoryChange] = []
        for day in (now - timedelta(days=1), now):
            results.extend(change for change in self.read_memory_changes(day) if change.time >= cutoff)
        results.sort(key=lambda change: change.time)
        return results


def _normalize_fields(model: type[BaseModel], updates: Mapping[str, Any]) -> dict[str, Any]:
    """Map camelCase or snake_case keys onto the model's field names."""

    by_alias = {info.alias: name for name, info in model.model_fields.items() if info.alias}
    fields: dict[str, Any] = {}
    for key, value in updates.items():
        name = key if key in model.model_fields else by_alias.get(key)
        if name is None:
            raise ValueError(f"Unknown {model.__name__} field: {key}")
        fields[name] = value
    return fields


__all__ = [
    "CorruptPartitionError",
    "MAX_RECENT_WINDOW_HOURS",
    "PartitionDate",
    "TraceStore",
    "partition_key",
]
