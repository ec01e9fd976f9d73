from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from clawtrace import ClawTrace
from clawtrace.config import ClawTraceSettings
from clawtrace.core import DEFAULT_SESSION, rank_skills
from clawtrace.storage import CronRecord, MemoryChange, SkillTrace, SubAgentCall, TraceStore


@pytest.fixture
def app(settings: ClawTraceSettings, store: TraceStore) -> ClawTrace:
    return ClawTrace(settings, store=store)


def add(store: TraceStore, trace_id: str, start: datetime, **fields) -> SkillTrace:
    fields.setdefault("skill_name", "weather")
    fields.setdefault("status", "success")
    if fields["status"] != "running":
        fields.setdefault("end_time", start + timedelta(seconds=1))
    trace = SkillTrace(id=trace_id, start_time=start, **fields)
    store.append_trace(trace)
    return trace


def test_daily_summary_of_empty_day(app: ClawTrace) -> None:
    summary = app.daily_summary()

    assert summary.date == "2025-01-02"
    assert summary.traces == []
    assert (summary.total_skills, summary.success_count, summary.failed_count, summary.running_count) == (0, 0, 0, 0)
    assert summary.total_cost == 0


def test_daily_summary_counts_and_cost(app: ClawTrace, store: TraceStore, now: datetime) -> None:
    add(store, "a", now, cost=0.5)
    add(store, "b", now, status="failed", cost=0.25)
    add(store, "c", now, status="running")
    add(store, "d", now - timedelta(days=1), cost=10)

    summary = app.daily_summary()

    assert summary.total_skills == 3
    assert (summary.success_count, summary.failed_count, summary.running_count) == (1, 1, 1)
    assert summary.total_cost == pytest.approx(0.75)


def test_sessions_group_by_label(app: ClawTrace, store: TraceStore, now: datetime) -> None:
    add(store, "m2", now + timedelta(minutes=5), session_label="morning")
    add(store, "x1", now)
    add(store, "m1", now, session_label="morning")
    add(store, "m3", now + timedelta(minutes=1), session_label="morning", status="running")
    add(store, "x2", now + timedelta(minutes=2))

    sessions = app.sessions()

    assert len(sessions) == 2
    morning, default = sessions
    assert morning.label == "morning"
    assert [t.id for t in morning.skills] == ["m1", "m3", "m2"]
    assert morning.start_time == now
    assert morning.end_time == now + timedelta(minutes=5, seconds=1)
    assert default.label is None
    assert default.id == DEFAULT_SESSION
    assert [t.id for t in default.skills] == ["x1", "x2"]


def test_session_end_is_absent_while_last_member_runs(app: ClawTrace, store: TraceStore, now: datetime) -> None:
    add(store, "a", now, session_label="evening")
    add(store, "b", now + timedelta(minutes=1), session_label="evening", status="running")

    session = app.session("evening")

    assert session is not None
    assert session.end_time is None


def test_session_lookup(app: ClawTrace, store: TraceStore, now: datetime) -> None:
    add(store, "a", now)

    assert app.session("missing") is None
    assert app.session(DEFAULT_SESSION).skills[0].id == "a"


def test_default_label_joins_unlabeled_group(app: ClawTrace, store: TraceStore, now: datetime) -> None:
    add(store, "unlabeled", now)
    add(store, "explicit", now + timedelta(minutes=1), session_label=DEFAULT_SESSION)

    sessions = app.sessions()

    assert [(s.id, s.label, [t.id for t in s.skills]) for s in sessions] == [
        (DEFAULT_SESSION, None, ["unlabeled", "explicit"])
    ]
    assert len(app.session(DEFAULT_SESSION).skills) == 2


def test_skill_traces_most_recent_first(app: ClawTrace, store: TraceStore, now: datetime) -> None:
    add(store, "early", now - timedelta(hours=2))
    add(store, "late", now)
    add(store, "other", now, skill_name="news")

    assert [t.id for t in app.skill_traces("weather")] == ["late", "early"]
    assert app.last_skill_trace("weather").id == "late"
    assert app.last_skill_trace("unknown") is None


def test_trace_tree_from_parent_ids(app: ClawTrace, store: TraceStore, now: datetime) -> None:
    add(store, "root", now, skill_name="orchestrator")
    add(store, "mid", now + timedelta(seconds=1), skill_name="planner", parent_id="root")
    add(store, "side", now + timedelta(seconds=2), skill_name="writer", parent_id="root")
    add(store, "leaf", now + timedelta(seconds=3), skill_name="fetcher", parent_id="mid")

    tree = app.trace_tree("root")

    assert [node.agent_name for node in tree] == ["planner", "writer"]
    planner, writer = tree
    assert [child.agent_name for child in planner.children] == ["fetcher"]
    assert planner.children[0].children == []
    assert writer.children == []


def test_trace_tree_prefers_embedded_sub_agents(app: ClawTrace, store: TraceStore, now: datetime) -> None:
    embedded = [SubAgentCall(agent_name="embedded", start_time=now, status="success")]
    add(store, "root", now, sub_agents=embedded)
    add(store, "child", now, parent_id="root")

    assert app.trace_tree("root") == embedded


def test_trace_tree_terminates_on_cycles(app: ClawTrace, store: TraceStore, now: datetime) -> None:
    add(store, "a", now, parent_id="b")
    add(store, "b", now, parent_id="a")

    tree = app.trace_tree("a")

    assert [node.agent_name for node in tree] == ["weather"]
    assert tree[0].children == []


def test_trace_tree_of_unknown_id_is_empty(app: ClawTrace) -> None:
    assert app.trace_tree("nope") == []


def test_rankings(app: ClawTrace, store: TraceStore, now: datetime) -> None:
    add(store, "b1", now, skill_name="B", duration_ms=100)
    add(store, "a1", now - timedelta(days=2), skill_name="A", duration_ms=1000)
    add(store, "a2", now - timedelta(days=1), skill_name="A", duration_ms=2001)
    add(store, "a3", now, skill_name="A", status="failed")
    add(store, "old", now - timedelta(days=30), skill_name="B")

    ranking = app.rankings(now - timedelta(days=6), now)

    assert [entry.skill_name for entry in ranking] == ["A", "B"]
    a, b = ranking
    assert (a.call_count, a.success_count, a.success_rate, a.avg_duration_ms) == (3, 2, 67, 1501)
    assert (b.call_count, b.success_rate, b.avg_duration_ms) == (1, 100, 100)


def test_rank_without_durations() -> None:
    now = datetime(2025, 1, 1)
    traces = [SkillTrace(id="x", skill_name="solo", start_time=now, status="running")]

    (entry,) = rank_skills(traces)

    assert entry.avg_duration_ms is None
    assert entry.success_rate == 0


def test_stats_range(app: ClawTrace, store: TraceStore, now: datetime) -> None:
    add(store, "a", now - timedelta(days=3), cost=1.0)
    add(store, "b", now, status="failed", cost=2.0)
    add(store, "c", now - timedelta(days=10), cost=100.0)

    summary = app.stats_range(now - timedelta(days=6))

    assert summary.date == "2024-12-27 → 2025-01-02"
    assert summary.total_skills == 2
    assert summary.failed_count == 1
    assert summary.total_cost == pytest.approx(3.0)


def test_recent_memory_changes_beyond_a_day(app: ClawTrace, store: TraceStore, now: datetime) -> None:
    for ident, hours_ago in (("a", 2), ("b", 40), ("c", 80)):
        store.append_memory_change(
            MemoryChange(
                id=ident,
                time=now - timedelta(hours=hours_ago),
                agent="diary",
                file="MEMORY.md",
                lines_added=1,
                lines_removed=0,
            )
        )

    assert [c.id for c in app.recent_memory_changes()] == ["a"]
    assert [c.id for c in app.recent_memory_changes(48)] == ["b", "a"]


def test_cron_history_and_runs(app: ClawTrace, store: TraceStore, now: datetime) -> None:
    store.append_cron_record(CronRecord(id="r1", job_name="digest", start_time=now, status="running"))
    store.append_cron_record(CronRecord(id="r2", job_name="backup", start_time=now, status="running"))
    store.append_cron_record(
        CronRecord(
            id="r1-done",
            job_name="digest",
            start_time=now,
            end_time=now + timedelta(seconds=3),
            duration_ms=3000,
            status="success",
        )
    )

    assert [r.id for r in app.cron_history()] == ["r1", "r2", "r1-done"]
    runs = app.cron_runs()
    assert [(r.id, r.status) for r in runs] == [("r1-done", "success"), ("r2", "running")]


def test_wrap_via_coordinator(app: ClawTrace, store: TraceStore) -> None:
    import asyncio

    async def work() -> int:
        return 42

    assert asyncio.run(app.wrap("weather", work)) == 42
    assert store.read_traces()[0].status == "success"


def test_should_wrap(app: ClawTrace, tmp_path: Path) -> None:
    assert app.should_wrap("anything") is True

    config = tmp_path / ".clawtrace.json"
    config.write_text(
        json.dumps({"wrappedSkills": ["weather"], "excludedSkills": ["news"], "initialized": True}),
        encoding="utf-8",
    )
    assert app.should_wrap("weather") is True
    assert app.should_wrap("news") is False
    assert app.should_wrap("unlisted") is False

    config.write_text(json.dumps({"wrappedSkills": [], "excludedSkills": [], "initialized": False}), encoding="utf-8")
    assert app.should_wrap("unlisted") is True

    config.write_text("{oops", encoding="utf-8")
    assert app.should_wrap("unlisted") is True
