from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

from clawtrace import ClawTrace, cli
from clawtrace.config import ClawTraceSettings
from clawtrace.storage import CronRecord, SkillTrace, TraceStore

NOW = datetime(2025, 1, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def app(settings: ClawTraceSettings, store: TraceStore, monkeypatch: pytest.MonkeyPatch) -> ClawTrace:
    instance = ClawTrace(settings, store=store)
    monkeypatch.setattr(cli, "load_app", lambda _settings: instance)
    return instance


def add(app: ClawTrace, trace_id: str, start: datetime, **fields) -> None:
    fields.setdefault("skill_name", "weather")
    fields.setdefault("status", "success")
    fields.setdefault("end_time", start + timedelta(seconds=2))
    fields.setdefault("duration_ms", 2000)
    app.store.append_trace(SkillTrace(id=trace_id, start_time=start, **fields))


def write_skill(root: Path, name: str) -> Path:
    path = root / "skills" / name / "SKILL.md"
    path.parent.mkdir(parents=True)
    path.write_text(f"# {name}\n", encoding="utf-8")
    return path


def test_record_prints_trace_id(app: ClawTrace, capsys) -> None:
    cli.main(["record", "--skill", "weather", "--status", "failed", "--duration", "1500", "--error", "timeout"])

    trace_id = capsys.readouterr().out.strip()
    (trace,) = app.store.read_traces()
    assert trace.id == trace_id
    assert trace.status == "failed"
    assert trace.duration_ms == 1500
    assert trace.error == "timeout"


def test_record_rejects_running_status(app: ClawTrace, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["record", "--skill", "weather", "--status", "running"])

    assert excinfo.value.code == 1
    assert 'Invalid status "running"' in capsys.readouterr().out
    assert app.store.read_traces() == []


def test_today_json(app: ClawTrace, capsys) -> None:
    add(app, "a", NOW, cost=0.5)
    add(app, "b", NOW, status="failed")

    cli.main(["today", "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["date"] == "2025-01-02"
    assert payload["total_skills"] == 2
    assert payload["failed_count"] == 1
    assert payload["traces"][0]["skillName"] == "weather"


def test_today_table(app: ClawTrace, capsys) -> None:
    add(app, "a", NOW, cost=0.5)

    cli.main(["today"])

    out = capsys.readouterr().out
    assert "2025-01-02 Skill Execution Summary" in out
    assert "$0.50" in out
    assert "Total: 1 skill(s), 1 success, 0 failed | Cost: $0.50" in out


def test_today_rejects_bad_date(app: ClawTrace) -> None:
    with pytest.raises(SystemExit):
        cli.main(["today", "--date", "02/01/2025"])


def test_session_output(app: ClawTrace, capsys) -> None:
    add(app, "a", NOW, session_label="morning", error=None)

    cli.main(["session"])

    out = capsys.readouterr().out
    assert "🌅 morning (12:00-12:00)" in out
    assert "[12:00] weather" in out


def test_detail_shows_discovered_sub_agents(app: ClawTrace, capsys) -> None:
    add(app, "root", NOW, skill_name="orchestrator")
    add(app, "child", NOW, skill_name="planner", parent_id="root")

    cli.main(["detail", "--skill", "orchestrator"])

    out = capsys.readouterr().out
    assert "ID:       root" in out
    assert "Sub-agents (auto-discovered):" in out
    assert "planner (2s)" in out


def test_detail_unknown_skill(app: ClawTrace, capsys) -> None:
    cli.main(["detail", "--skill", "missing", "--last"])

    assert 'No trace found for skill "missing".' in capsys.readouterr().out


def test_memory_output(app: ClawTrace, capsys) -> None:
    app.record_memory_change(agent="diary", file="MEMORY.md", lines_added=3, lines_removed=1, description="notes")

    cli.main(["memory"])

    assert '[diary] MEMORY.md (+3/-1 lines) "notes"' in capsys.readouterr().out


def test_memory_rejects_non_positive_window(app: ClawTrace) -> None:
    with pytest.raises(SystemExit):
        cli.main(["memory", "--last", "0"])


def test_cron_runs_json(app: ClawTrace, capsys) -> None:
    app.store.append_cron_record(CronRecord(id="r1", job_name="digest", start_time=NOW, status="running"))
    app.store.append_cron_record(
        CronRecord(
            id="r1-done",
            job_name="digest",
            start_time=NOW,
            end_time=NOW + timedelta(seconds=1),
            duration_ms=1000,
            status="success",
        )
    )

    cli.main(["cron", "--runs", "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert [(record["id"], record["status"], record["_type"]) for record in payload] == [
        ("r1-done", "success", "cron")
    ]


def test_rank_json(app: ClawTrace, capsys) -> None:
    add(app, "a1", NOW, skill_name="A")
    add(app, "a2", NOW - timedelta(days=2), skill_name="A", status="failed")
    add(app, "b1", NOW, skill_name="B")
    add(app, "old", NOW - timedelta(days=60), skill_name="B")

    cli.main(["rank", "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert [(entry["skill_name"], entry["call_count"], entry["success_rate"]) for entry in payload] == [
        ("A", 2, 50),
        ("B", 1, 100),
    ]


def test_stats_all_time(app: ClawTrace, capsys) -> None:
    add(app, "old", NOW - timedelta(days=60), cost=1.0)
    add(app, "new", NOW, cost=2.0)

    cli.main(["stats", "--range", "all", "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["total_skills"] == 2
    assert payload["total_cost"] == pytest.approx(3.0)


def test_stats_rejects_bad_range(app: ClawTrace, capsys) -> None:
    with pytest.raises(SystemExit):
        cli.main(["stats", "--range", "week"])

    assert 'Invalid range "week"' in capsys.readouterr().out


def test_parse_range() -> None:
    assert cli.parse_range("7d", NOW) == datetime(2024, 12, 27, tzinfo=timezone.utc)
    assert cli.parse_range("1d", NOW) == datetime(2025, 1, 2, tzinfo=timezone.utc)
    assert cli.parse_range("all", NOW) == datetime(2015, 1, 1, tzinfo=timezone.utc)
    for bad in ("0d", "7", "d7", "month"):
        with pytest.raises(ValueError):
            cli.parse_range(bad, NOW)


def test_import_command(app: ClawTrace, tmp_path: Path, capsys) -> None:
    logs = tmp_path / "sessions"
    logs.mkdir()
    (logs / "sess-1.jsonl").write_text(
        json.dumps({"timestamp": "2025-01-01T08:00:00Z", "path": "skills/weather/SKILL.md"}) + "\n",
        encoding="utf-8",
    )

    cli.main(["import", "--sessions", str(logs)])
    assert "Imported 1 new trace(s)." in capsys.readouterr().out

    cli.main(["import", "--sessions", str(logs)])
    assert "No new traces found" in capsys.readouterr().out

    (trace,) = app.store.read_traces(date(2025, 1, 1))
    assert trace.session_label == "sess-1"


def test_import_requires_a_directory(app: ClawTrace, capsys) -> None:
    with pytest.raises(SystemExit):
        cli.main(["import"])

    assert "CLAWTRACE_SESSIONS_DIR" in capsys.readouterr().out


def test_init_yes_wraps_everything(app: ClawTrace, tmp_path: Path, capsys) -> None:
    write_skill(tmp_path, "weather")
    write_skill(tmp_path, "news")

    cli.main(["init", "--yes"])

    config = json.loads((tmp_path / ".clawtrace.json").read_text(encoding="utf-8"))
    assert config == {"wrappedSkills": ["news", "weather"], "excludedSkills": [], "initialized": True}
    assert "Found 2 skill(s)" in capsys.readouterr().out
    assert app.should_wrap("weather")


def test_init_asks_per_skill(settings: ClawTraceSettings, tmp_path: Path) -> None:
    write_skill(tmp_path, "weather")
    write_skill(tmp_path, "news")
    args = cli.build_parser().parse_args(["init"])

    cli.cmd_init(args, ask=lambda prompt: "n" if "news" in prompt else "")

    config = json.loads((tmp_path / ".clawtrace.json").read_text(encoding="utf-8"))
    assert config["wrappedSkills"] == ["weather"]
    assert config["excludedSkills"] == ["news"]


def test_init_without_skills(settings: ClawTraceSettings, tmp_path: Path, capsys) -> None:
    cli.main(["init", "--yes"])

    assert "No skill files found." in capsys.readouterr().out
    assert not (tmp_path / ".clawtrace.json").exists()


def test_inject_command(app: ClawTrace, tmp_path: Path, capsys) -> None:
    weather = write_skill(tmp_path, "weather")
    news = write_skill(tmp_path, "news")
    add(app, "a", NOW)

    cli.main(["inject", "--skill", "weather"])

    assert "| Runs today | 1 |" in weather.read_text(encoding="utf-8")
    assert news.read_text(encoding="utf-8") == "# news\n"
    assert "Updated 1 skill file(s)" in capsys.readouterr().out


def test_corrupt_partition_exits(settings: ClawTraceSettings, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    store = TraceStore(settings.traces_dir, settings.memory_changes_dir, clock=lambda: NOW)
    monkeypatch.setattr(cli, "load_app", lambda s: ClawTrace(s, store=store))
    settings.traces_dir.mkdir(parents=True)
    (settings.traces_dir / "2025-01-02.jsonl").write_text("{oops}\n", encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["today"])

    assert excinfo.value.code == 1
    assert "Corrupt trace data" in capsys.readouterr().err


def test_no_command_prints_help(capsys) -> None:
    cli.main([])

    assert "usage: clawtrace" in capsys.readouterr().out
