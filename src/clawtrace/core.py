"""ClawTrace coordinator: the public API combining store, recorder and queries."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Awaitable, Callable, Iterable, TypeVar

from .config import ClawTraceSettings, get_settings
from .importer import import_session_logs
from .recorder import CRON_DONE_SUFFIX, TraceRecorder
from .skills.preferences import read_init_config
from .storage import (
    CronRecord,
    MemoryChange,
    SkillTrace,
    SubAgentCall,
    ToolCall,
    TraceStatus,
    TraceStore,
)
from .storage.store import MAX_RECENT_WINDOW_HOURS, PartitionDate, partition_key

T = TypeVar("T")
DEFAULT_SESSION = "default"


@dataclass(slots=True)
class DailySummary:
    date: str
    traces: list[SkillTrace]
    total_skills: int
    success_count: int
    failed_count: int
    running_count: int
    total_cost: float


@dataclass(slots=True)
class TraceSession:
    """Traces of one day sharing a session label (``label`` is None for the catch-all)."""

    id: str
    label: str | None
    start_time: datetime | None
    end_time: datetime | None
    skills: list[SkillTrace] = field(default_factory=list)


@dataclass(slots=True)
class SkillRankEntry:
    skill_name: str
    call_count: int
    success_count: int
    success_rate: int
    avg_duration_ms: int | None


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def summarize(traces: list[SkillTrace], label: str) -> DailySummary:
    """Fold traces into status counts and a cost total (missing cost counts as 0)."""

    return DailySummary(
        date=label,
        traces=traces,
        total_skills=len(traces),
        success_count=sum(1 for trace in traces if trace.status == "success"),
        failed_count=sum(1 for trace in traces if trace.status == "failed"),
        running_count=sum(1 for trace in traces if trace.status == "running"),
        total_cost=sum(trace.cost or 0 for trace in traces),
    )


def rank_skills(traces: Iterable[SkillTrace]) -> list[SkillRankEntry]:
    """Per-skill call counts, success rate and mean duration, most called first."""

    calls: dict[str, int] = {}
    successes: dict[str, int] = {}
    durations: dict[str, list[int]] = {}
    for trace in traces:
        name = trace.skill_name
        calls[name] = calls.get(name, 0) + 1
        successes[name] = successes.get(name, 0) + (1 if trace.status == "success" else 0)
        bucket = durations.setdefault(name, [])
        if trace.duration_ms is not None:
            bucket.append(trace.duration_ms)

    entries = [
        SkillRankEntry(
            skill_name=name,
            call_count=count,
            success_count=successes[name],
            success_rate=_round_half_up(successes[name] / count * 100),
            avg_duration_ms=(
                _round_half_up(sum(durations[name]) / len(durations[name])) if durations[name] else None
            ),
        )
        for name, count in calls.items()
    ]
    entries.sort(key=lambda entry: entry.call_count, reverse=True)
    return entries


def build_trace_tree(root_id: str, traces: list[SkillTrace]) -> list[SubAgentCall]:
    """Sub-agent tree under ``root_id``.

    The root's embedded ``sub_agents`` win when non-empty; otherwise children
    are found through ``parent_id``. Each trace is expanded at most once, so
    cyclic parent chains terminate.
    """

    root = next((trace for trace in traces if trace.id == root_id), None)
    if root is not None and root.sub_agents:
        return root.sub_agents

    children_of: dict[str, list[SkillTrace]] = {}
    for trace in traces:
        if trace.parent_id is not None:
            children_of.setdefault(trace.parent_id, []).append(trace)

    visited = {root_id}

    def expand(parent_id: str) -> list[SubAgentCall]:
        nodes: list[SubAgentCall] = []
        for child in children_of.get(parent_id, []):
            if child.id in visited:
                continue
            visited.add(child.id)
            nodes.append(
                SubAgentCall(
                    agent_name=child.skill_name,
                    start_time=child.start_time,
                    end_time=child.end_time,
                    duration_ms=child.duration_ms,
                    status=child.status,
                    children=expand(child.id),
                )
            )
        return nodes

    return expand(root_id)


class ClawTrace:
    """Record skill/cron/memory events and answer queries over them."""

    def __init__(
        self,
        settings: ClawTraceSettings | None = None,
        *,
        store: TraceStore | None = None,
        recorder: TraceRecorder | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.store = store or TraceStore(self._settings.traces_dir, self._settings.memory_changes_dir)
        self.recorder = recorder or TraceRecorder(self.store, clock=self.store.now)

    @property
    def settings(self) -> ClawTraceSettings:
        return self._settings

    def _date_label(self, value: PartitionDate) -> str:
        return partition_key(value if value is not None else self.store.now())

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

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
        return await self.recorder.wrap(
            skill_name,
            work,
            session_label=session_label,
            tool_calls=tool_calls,
            sub_agents=sub_agents,
            cost=cost,
            parent_id=parent_id,
        )

    def record_trace(self, *, skill_name: str, status: TraceStatus, **fields) -> str:
        return self.recorder.record_trace(skill_name=skill_name, status=status, **fields)

    def record_memory_change(
        self,
        *,
        agent: str,
        file: str,
        lines_added: int,
        lines_removed: int,
        description: str | None = None,
    ) -> str:
        return self.recorder.record_memory_change(
            agent=agent,
            file=file,
            lines_added=lines_added,
            lines_removed=lines_removed,
            description=description,
        )

    async def wrap_cron(
        self, job_name: str, work: Callable[[], Awaitable[T]], cron_expr: str | None = None
    ) -> T:
        return await self.recorder.wrap_cron(job_name, work, cron_expr)

    def import_from_sessions(self, sessions_dir: Path, since: datetime | None = None) -> int:
        return import_session_logs(Path(sessions_dir), self.store, since, clock=self.store.now)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def daily_summary(self, date: PartitionDate = None) -> DailySummary:
        return summarize(self.store.read_traces(date), self._date_label(date))

    def sessions(self, date: PartitionDate = None) -> list[TraceSession]:
        """Group one day's traces by session label, in order of first appearance.

        Unlabeled traces share the ``"default"`` group with traces labelled
        ``"default"``.
        """

        groups: dict[str, list[SkillTrace]] = {}
        for trace in self.store.read_traces(date):
            key = trace.session_label if trace.session_label is not None else DEFAULT_SESSION
            groups.setdefault(key, []).append(trace)

        sessions: list[TraceSession] = []
        for key, traces in groups.items():
            ordered = sorted(traces, key=lambda trace: trace.start_time)
            sessions.append(
                TraceSession(
                    id=key,
                    label=None if key == DEFAULT_SESSION else key,
                    start_time=ordered[0].start_time,
                    end_time=ordered[-1].end_time,
                    skills=ordered,
                )
            )
        return sessions

    def session(self, label: str, date: PartitionDate = None) -> TraceSession | None:
        """Look up one session; ``"default"`` names the unlabeled group."""

        for session in self.sessions(date):
            if session.id == label:
                return session
        return None

    def skill_traces(self, skill_name: str, date: PartitionDate = None) -> list[SkillTrace]:
        traces = [trace for trace in self.store.read_traces(date) if trace.skill_name == skill_name]
        traces.sort(key=lambda trace: trace.start_time, reverse=True)
        return traces

    def last_skill_trace(self, skill_name: str, date: PartitionDate = None) -> SkillTrace | None:
        traces = self.skill_traces(skill_name, date)
        return traces[0] if traces else None

    def trace_tree(self, trace_id: str, date: PartitionDate = None) -> list[SubAgentCall]:
        return build_trace_tree(trace_id, self.store.read_traces(date))

    def recent_memory_changes(self, hours: float = 24) -> list[MemoryChange]:
        if hours <= MAX_RECENT_WINDOW_HOURS:
            return self.store.read_memory_changes_last_hours(hours)
        now = self.store.now()
        cutoff = now - timedelta(hours=hours)
        changes = [
            change
            for change in self.store.read_memory_changes_range(cutoff, now)
            if change.time >= cutoff
        ]
        changes.sort(key=lambda change: change.time)
        return changes

    def cron_history(self, date: PartitionDate = None) -> list[CronRecord]:
        return self.store.read_cron_records(date)

    def cron_runs(self, date: PartitionDate = None) -> list[CronRecord]:
        """One record per cron run: its completion record if written, else its start."""

        records = self.store.read_cron_records(date)
        completions = {
            record.id[: -len(CRON_DONE_SUFFIX)]: record
            for record in records
            if record.id.endswith(CRON_DONE_SUFFIX)
        }
        start_ids = {record.id for record in records if not record.id.endswith(CRON_DONE_SUFFIX)}
        runs: list[CronRecord] = []
        for record in records:
            if record.id.endswith(CRON_DONE_SUFFIX):
                # Completions are reported at their start's position.
                if record.id[: -len(CRON_DONE_SUFFIX)] not in start_ids:
                    runs.append(record)
                continue
            runs.append(completions.get(record.id, record))
        return runs

    def stats_range(self, since: PartitionDate, until: PartitionDate = None) -> DailySummary:
        traces = self.store.read_traces_range(since, until)
        label = f"{self._date_label(since)} → {self._date_label(until)}"
        return summarize(traces, label)

    def rankings(self, since: PartitionDate, until: PartitionDate = None) -> list[SkillRankEntry]:
        return rank_skills(self.store.read_traces_range(since, until))

    # ------------------------------------------------------------------
    # Init preferences
    # ------------------------------------------------------------------

    def should_wrap(self, skill_name: str, root_dir: Path | None = None) -> bool:
        """Whether ``skill_name`` should be traced, per the project's ``.clawtrace.json``.

        Without a config (or before init completed) every skill is wrapped.
        """

        config = read_init_config(root_dir or self._settings.project_root)
        if config is None or not config.initialized:
            return True
        return skill_name in config.wrapped_skills


__all__ = [
    "ClawTrace",
    "DEFAULT_SESSION",
    "DailySummary",
    "SkillRankEntry",
    "TraceSession",
    "build_trace_tree",
    "rank_skills",
    "summarize",
]
