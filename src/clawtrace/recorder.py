"""Trace recorder: wraps units of work with start/finish bookkeeping."""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Iterable, TypeVar

from .storage import CronRecord, MemoryChange, SkillTrace, SubAgentCall, ToolCall, TraceStatus, TraceStore
from .storage.models import TERMINAL_STATUSES, ensure_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")
CRON_DONE_SUFFIX = "-done"


def generate_id() -> str:
    return uuid.uuid4().hex


def _error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _note_unrecorded(exc: BaseException, store_exc: Exception, record_id: str) -> None:
    # The caller sees the work's exception; the store error is attached as a note.
    logger.error("Could not record the failure of %s: %s", record_id, store_exc)
    exc.add_note(f"clawtrace could not record this failure ({record_id}): {store_exc!r}")


class TraceRecorder:
    """Record skill runs, cron runs and memory changes into a ``TraceStore``.

    The recorder never changes the outcome of the work it wraps: results are
    returned as-is and exceptions are re-raised after the failure is written.
    """

    def __init__(
        self,
        store: TraceStore,
        *,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
        timer: Callable[[], float] | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or generate_id
        self._timer = timer or time.perf_counter

    @property
    def store(self) -> TraceStore:
        return self._store

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    def _elapsed_ms(self, started: float) -> int:
        return max(0, round((self._timer() - started) * 1000))

    async def wrap(
        self,
        skill_name: str,
        work: Callable[[], Awaitable[T]],
        *,
        session_label: str | None = None,
        tool_calls: Iterable[ToolCall] | None = None,
        sub_agents: Iterable[SubAgentCall] | None = None,
        cost: float | None = None,
        parent_id: str | None = None,
    ) -> T:
        """Run ``work`` and record it as a skill trace.

        A ``running`` trace is appended before ``work`` is awaited and updated in
        place to ``success`` or ``failed`` once it settles. Cancellation and
        other ``BaseException``s are recorded as failures too.
        """

        trace = SkillTrace(
            id=self._id_factory(),
            skill_name=skill_name,
            session_label=session_label,
            start_time=self._now(),
            status="running",
            tool_calls=list(tool_calls) if tool_calls is not None else None,
            sub_agents=list(sub_agents) if sub_agents is not None else None,
            cost=cost,
            parent_id=parent_id,
        )
        partition = self._store.append_trace(trace)

        started = self._timer()
        try:
            result = await work()
        except BaseException as exc:
            try:
                self._store.update_trace(
                    trace.id,
                    {
                        "end_time": self._now(),
                        "duration_ms": self._elapsed_ms(started),
                        "status": "failed",
                        "error": _error_message(exc),
                    },
                    partition,
                )
            except Exception as store_exc:
                _note_unrecorded(exc, store_exc, trace.id)
            logger.debug("Skill %s failed (trace %s)", skill_name, trace.id)
            raise

        self._store.update_trace(
            trace.id,
            {"end_time": self._now(), "duration_ms": self._elapsed_ms(started), "status": "success"},
            partition,
        )
        return result

    def record_trace(
        self,
        *,
        skill_name: str,
        status: TraceStatus,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        duration_ms: int | None = None,
        session_label: str | None = None,
        error: str | None = None,
        cost: float | None = None,
        tool_calls: Iterable[ToolCall] | None = None,
        sub_agents: Iterable[SubAgentCall] | None = None,
        parent_id: str | None = None,
    ) -> str:
        """Write an already finished trace and return its id.

        Missing timing is filled in so the trace is complete: the end defaults
        to start + duration (or now), the duration to end - start.
        """

        if status not in TERMINAL_STATUSES:
            raise ValueError(f"record_trace needs a terminal status, got {status!r}")

        now = self._now()
        if start_time is None:
            start_time = now - timedelta(milliseconds=duration_ms or 0)
        start_time = ensure_utc(start_time)
        if end_time is None:
            end_time = start_time + timedelta(milliseconds=duration_ms) if duration_ms is not None else now
        end_time = ensure_utc(end_time)
        if duration_ms is None:
            duration_ms = max(0, round((end_time - start_time).total_seconds() * 1000))

        trace = SkillTrace(
            id=self._id_factory(),
            skill_name=skill_name,
            session_label=session_label,
            start_time=start_time,
            end_time=end_time,
            duration_ms=duration_ms,
            status=status,
            error=error,
            cost=cost,
            tool_calls=list(tool_calls) if tool_calls is not None else None,
            sub_agents=list(sub_agents) if sub_agents is not None else None,
            parent_id=parent_id,
        )
        self._store.append_trace(trace)
        return trace.id

    def record_memory_change(
        self,
        *,
        agent: str,
        file: str,
        lines_added: int,
        lines_removed: int,
        description: str | None = None,
    ) -> str:
        change = MemoryChange(
            id=self._id_factory(),
            time=self._now(),
            agent=agent,
            file=file,
            lines_added=lines_added,
            lines_removed=lines_removed,
            description=description,
        )
        self._store.append_memory_change(change)
        return change.id

    async def wrap_cron(
        self,
        job_name: str,
        work: Callable[[], Awaitable[T]],
        cron_expr: str | None = None,
    ) -> T:
        """Run a cron job, appending a start record and a separate completion record.

        The completion record's id is the start id plus ``-done``; the start
        record is never modified.
        """

        record = CronRecord(
            id=self._id_factory(),
            job_name=job_name,
            cron_expr=cron_expr,
            start_time=self._now(),
            status="running",
        )
        partition = self._store.append_cron_record(record)

        started = self._timer()
        try:
            result = await work()
        except BaseException as exc:
            try:
                self._store.append_cron_record(
                    self._completion(record, started, "failed", _error_message(exc)), partition
                )
            except Exception as store_exc:
                _note_unrecorded(exc, store_exc, record.id)
            raise

        self._store.append_cron_record(self._completion(record, started, "success"), partition)
        return result

    def _completion(
        self, record: CronRecord, started: float, status: TraceStatus, error: str | None = None
    ) -> CronRecord:
        data = record.model_dump()
        data.update(
            id=record.id + CRON_DONE_SUFFIX,
            end_time=self._now(),
            duration_ms=self._elapsed_ms(started),
            status=status,
            error=error,
        )
        return CronRecord.model_validate(data)


__all__ = ["CRON_DONE_SUFFIX", "TraceRecorder", "generate_id"]
