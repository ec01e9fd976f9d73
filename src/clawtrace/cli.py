"""ClawTrace command line."""

from __future__ import annotations

import argparse
import dataclasses
import json
import re
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from . import __version__
from .config import ClawTraceSettings, configure_logging, get_settings
from .core import ClawTrace, DailySummary, TraceSession
from .skills import InitConfig, SkillScanError, detect_skills, inject_skill_stats, write_init_config
from .skills.injector import format_duration, status_icon
from .storage import CorruptPartitionError, SkillTrace, SubAgentCall

RECORD_STATUSES = ("success", "failed")
ALL_TIME_YEARS = 10
_RANGE_RE = re.compile(r"^(\d+)d$")


def load_app(settings: ClawTraceSettings) -> ClawTrace:
    return ClawTrace(settings)


def _fail(message: str) -> None:
    print(f"❌ {message}")
    raise SystemExit(1)


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {item.name: _jsonable(getattr(value, item.name)) for item in dataclasses.fields(value)}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _print_json(value: Any) -> None:
    print(json.dumps(_jsonable(value), indent=2, ensure_ascii=False))


def format_cost(cost: float | None) -> str:
    return "-" if cost is None else f"${cost:.2f}"


def format_time(value: datetime | None) -> str:
    return "-" if value is None else f"{value:%H:%M}"


def parse_range(value: str, now: datetime) -> datetime:
    """``Nd`` is the last N calendar days including today; ``all`` reaches back ten years."""

    if value == "all":
        return datetime(now.year - ALL_TIME_YEARS, 1, 1, tzinfo=timezone.utc)
    match = _RANGE_RE.match(value)
    if match is None or int(match.group(1)) < 1:
        raise ValueError(f'Invalid range "{value}". Use: 7d, 30d, all')
    start = now - timedelta(days=int(match.group(1)) - 1)
    return start.replace(hour=0, minute=0, second=0, microsecond=0)


def _parse_day(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        _fail(f'Invalid date "{value}". Use YYYY-MM-DD format.')


def print_trace_table(traces: list[SkillTrace]) -> None:
    if not traces:
        print("No skill executions found.")
        return
    width = max(30, *(len(trace.skill_name) for trace in traces)) + 2
    header = "Skill".ljust(width) + "Status".ljust(10) + "Duration".ljust(12) + "Cost"
    print(header)
    print("─" * (len(header) + 4))
    for trace in traces:
        print(
            trace.skill_name.ljust(width)
            + f"{status_icon(trace.status)}  ".ljust(10)
            + format_duration(trace.duration_ms).ljust(12)
            + format_cost(trace.cost)
        )
    print()


def _totals_line(summary: DailySummary, noun: str) -> str:
    running = f", {summary.running_count} running" if summary.running_count else ""
    return (
        f"Total: {summary.total_skills} {noun}, {summary.success_count} success, "
        f"{summary.failed_count} failed{running} | Cost: {format_cost(summary.total_cost)}"
    )


def print_sub_agent_tree(nodes: list[SubAgentCall], indent: str) -> None:
    for node in nodes:
        print(f"{indent}{status_icon(node.status)} {node.agent_name} ({format_duration(node.duration_ms)})")
        if node.children:
            print_sub_agent_tree(node.children, indent + "  ")


def print_session(session: TraceSession) -> None:
    start = format_time(session.start_time)
    end = format_time(session.end_time)
    span = f"{start}-{end}" if end != "-" else f"{start}-…"
    print(f"\n🌅 {session.id} ({span})")
    for trace in session.skills:
        print(
            f"├─ [{format_time(trace.start_time)}] {trace.skill_name} "
            f"({format_duration(trace.duration_ms)}, {format_cost(trace.cost)}) {status_icon(trace.status)}"
        )
        for call in trace.tool_calls or []:
            print(f"│  ├─ {call.tool} × {call.count} calls")
        if trace.error:
            print(f"│  └─ Error: {trace.error}")


def cmd_today(args: argparse.Namespace) -> None:
    app = load_app(get_settings())
    summary = app.daily_summary(_parse_day(args.date))
    if args.json:
        _print_json(summary)
        return
    print(f"\n📊 {summary.date} Skill Execution Summary\n")
    print_trace_table(summary.traces)
    print(_totals_line(summary, "skill(s)"))


def cmd_memory(args: argparse.Namespace) -> None:
    if args.last <= 0:
        _fail("--last must be a positive number of hours")
    app = load_app(get_settings())
    changes = app.recent_memory_changes(args.last)
    if args.json:
        _print_json(changes)
        return
    print(f"\n📝 Memory Change History (last {args.last:g}h)\n")
    if not changes:
        print("No memory changes found.")
        return
    for change in changes:
        diff = "/".join(
            part
            for part in (
                f"+{change.lines_added}" if change.lines_added else "",
                f"-{change.lines_removed}" if change.lines_removed else "",
            )
            if part
        ) or "no changes"
        description = f' "{change.description}"' if change.description else ""
        print(f"• {format_time(change.time)} [{change.agent}] {change.file} ({diff} lines){description}")


def cmd_session(args: argparse.Namespace) -> None:
    app = load_app(get_settings())
    if args.label:
        session = app.session(args.label)
        if session is None:
            print(f'No session found with label "{args.label}".')
            return
        sessions = [session]
    else:
        sessions = app.sessions()
        if not sessions:
            print("No sessions found for today.")
            return
    if args.json:
        _print_json(sessions)
        return
    for session in sessions:
        print_session(session)
    print()


def cmd_detail(args: argparse.Namespace) -> None:
    app = load_app(get_settings())
    if args.last:
        last = app.last_skill_trace(args.skill)
        traces = [last] if last is not None else []
    else:
        traces = app.skill_traces(args.skill)
    if not traces:
        print(f'No trace found for skill "{args.skill}".')
        return

    trees = {trace.id: app.trace_tree(trace.id, trace.start_time) for trace in traces}
    if args.json:
        _print_json([{"trace": trace, "tree": trees[trace.id]} for trace in traces])
        return

    print(f"\n🔍 Skill Detail: {args.skill}\n")
    for trace in traces:
        print(f"{status_icon(trace.status)} [{format_time(trace.start_time)}] {trace.skill_name}")
        print(f"  ID:       {trace.id}")
        print(f"  Status:   {trace.status}")
        print(f"  Duration: {format_duration(trace.duration_ms)}")
        print(f"  Cost:     {format_cost(trace.cost)}")
        if trace.session_label:
            print(f"  Session:  {trace.session_label}")
        if trace.error:
            print(f"  Error:    {trace.error}")
        if trace.tool_calls:
            print("  Tool calls:")
            for call in trace.tool_calls:
                print(f"    • {call.tool} × {call.count}")
        tree = trees[trace.id]
        if tree:
            print("  Sub-agents:" if trace.sub_agents else "  Sub-agents (auto-discovered):")
            print_sub_agent_tree(tree, "    ")
        print()


def cmd_cron(args: argparse.Namespace) -> None:
    app = load_app(get_settings())
    records = app.cron_runs() if args.runs else app.cron_history()
    if args.json:
        _print_json(records)
        return
    print("\n⏰ Cron Execution History\n")
    if not records:
        print("No cron records found for today.")
        return
    width = max(25, *(len(record.job_name) for record in records)) + 2
    print("Job".ljust(width) + "Status".ljust(10) + "Duration".ljust(12) + "Cron")
    print("─" * 60)
    for record in records:
        print(
            record.job_name.ljust(width)
            + f"{status_icon(record.status)}  ".ljust(10)
            + format_duration(record.duration_ms).ljust(12)
            + (record.cron_expr or "-")
        )


def cmd_record(args: argparse.Namespace) -> None:
    if args.status not in RECORD_STATUSES:
        _fail(f'Invalid status "{args.status}". Use: {" | ".join(RECORD_STATUSES)}')
    app = load_app(get_settings())
    try:
        trace_id = app.record_trace(
            skill_name=args.skill,
            status=args.status,
            duration_ms=args.duration,
            cost=args.cost,
            session_label=args.session,
            error=args.error,
            parent_id=args.parent,
        )
    except (ValidationError, ValueError) as exc:
        _fail(f"Could not record trace: {exc}")
    print(trace_id)


def cmd_init(args: argparse.Namespace, *, ask: Callable[[str], str] = input) -> None:
    settings = get_settings()
    root = Path(args.root) if args.root else settings.project_root
    print("\n🔍 Scanning for skills in the project...\n")
    try:
        skills = detect_skills(root)
    except SkillScanError as exc:
        _fail(str(exc))
    if not skills:
        print("No skill files found.")
        print("ClawTrace looks for SKILL.md files in: skills/, src/skills/, skill/, src/skill/")
        return

    print(f"Found {len(skills)} skill(s):\n")
    for skill in skills:
        print(f"  • {skill.name.ljust(35)} {_relative(skill.path, root)}")
    print()

    wrapped: list[str] = []
    excluded: list[str] = []
    for skill in skills:
        answer = "y" if args.yes else _ask(ask, f"Wrap {skill.name}? (Y/n): ")
        if answer.strip().lower() == "n":
            excluded.append(skill.name)
        else:
            wrapped.append(skill.name)

    path = write_init_config(
        InitConfig(wrapped_skills=wrapped, excluded_skills=excluded, initialized=True), root
    )
    print(f"\n✅ Configuration saved to {path.name}\n")
    if wrapped:
        print(f"  Wrapped:  {', '.join(wrapped)}")
    if excluded:
        print(f"  Skipped:  {', '.join(excluded)}")


def _ask(ask: Callable[[str], str], prompt: str) -> str:
    try:
        return ask(prompt)
    except EOFError:
        return ""


def _relative(path: Path, root: Path) -> str:
    try:
        return str(path.relative_to(root))
    except ValueError:
        return str(path)


def cmd_inject(args: argparse.Namespace) -> None:
    settings = get_settings()
    root = Path(args.root) if args.root else settings.project_root
    app = load_app(settings)
    try:
        skills = detect_skills(root)
    except SkillScanError as exc:
        _fail(str(exc))
    if not skills:
        print("\nNo skill files found to update.")
        return

    targets = [skill for skill in skills if skill.name == args.skill] if args.skill else skills
    if not targets:
        print(f'\nSkill "{args.skill}" not found.')
        return

    print("\n📝 Injecting ClawTrace statistics into SKILL.md files...\n")
    updated = 0
    for skill in targets:
        if inject_skill_stats(skill.path, skill.name, app.skill_traces(skill.name), now=app.store.now()):
            updated += 1
            print(f"  ✅ {skill.name.ljust(35)} {_relative(skill.path, root)}")
    print(f"\nUpdated {updated} skill file(s) with today's statistics.")


def cmd_import(args: argparse.Namespace) -> None:
    settings = get_settings()
    sessions_dir = Path(args.sessions) if args.sessions else settings.sessions_dir
    if sessions_dir is None:
        _fail("No session directory given. Pass --sessions or set CLAWTRACE_SESSIONS_DIR.")
    since_day = _parse_day(args.since)
    since = datetime(since_day.year, since_day.month, since_day.day, tzinfo=timezone.utc) if since_day else None

    app = load_app(settings)
    print("\n📥 Importing from agent session logs...\n")
    print(f"  Directory: {sessions_dir}")
    if since is not None:
        print(f"  Since:     {since.date().isoformat()}")
    imported = app.import_from_sessions(sessions_dir, since)
    if imported == 0:
        print("\nNo new traces found (all entries already imported or directory empty).")
    else:
        print(f"\n✅ Imported {imported} new trace(s).")


def cmd_stats(args: argparse.Namespace) -> None:
    app = load_app(get_settings())
    try:
        since = parse_range(args.range, app.store.now())
    except ValueError as exc:
        _fail(str(exc))
    summary = app.stats_range(since)
    if args.json:
        _print_json(summary)
        return
    print(f"\n📊 Skill Statistics ({summary.date})\n")
    print_trace_table(summary.traces)
    print(_totals_line(summary, "execution(s)"))


def cmd_rank(args: argparse.Namespace) -> None:
    app = load_app(get_settings())
    try:
        since = parse_range(args.range, app.store.now())
    except ValueError as exc:
        _fail(str(exc))
    rankings = app.rankings(since)
    if args.json:
        _print_json(rankings)
        return
    label = "all time" if args.range == "all" else f"last {args.range}"
    print(f"\n📊 Skill Usage Ranking ({label})\n")
    if not rankings:
        print("No skill executions found in the selected range.")
        return
    width = max(30, *(len(entry.skill_name) for entry in rankings)) + 2
    header = "Rank".ljust(6) + "Skill".ljust(width) + "Calls".ljust(8) + "Success".ljust(10) + "Avg duration"
    print(header)
    print("─" * (len(header) + 4))
    for position, entry in enumerate(rankings, start=1):
        print(
            str(position).ljust(6)
            + entry.skill_name.ljust(width)
            + str(entry.call_count).ljust(8)
            + f"{entry.success_rate}%".ljust(10)
            + format_duration(entry.avg_duration_ms)
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clawtrace",
        description="Skill tracing, memory changes and cron history for agents",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="cmd")

    p_today = sub.add_parser("today", help="Show today's skill execution summary")
    p_today.add_argument("--date", help="Day to show (YYYY-MM-DD, default today)")
    p_today.add_argument("--json", action="store_true", help="Output JSON")
    p_today.set_defaults(func=cmd_today)

    p_memory = sub.add_parser("memory", help="Show memory file change history")
    p_memory.add_argument("--last", type=float, default=24, help="Hours to look back (default: 24)")
    p_memory.add_argument("--json", action="store_true", help="Output JSON")
    p_memory.set_defaults(func=cmd_memory)

    p_session = sub.add_parser("session", help="Show skill executions grouped by session")
    p_session.add_argument("--label", help="Only this session label")
    p_session.add_argument("--json", action="store_true", help="Output JSON")
    p_session.set_defaults(func=cmd_session)

    p_detail = sub.add_parser("detail", help="Show detail for a skill")
    p_detail.add_argument("--skill", required=True, help="Skill name to inspect")
    p_detail.add_argument("--last", action="store_true", help="Only the most recent trace")
    p_detail.add_argument("--json", action="store_true", help="Output JSON")
    p_detail.set_defaults(func=cmd_detail)

    p_cron = sub.add_parser("cron", help="Show today's cron job history")
    p_cron.add_argument("--runs", action="store_true", help="One line per run instead of raw records")
    p_cron.add_argument("--json", action="store_true", help="Output JSON")
    p_cron.set_defaults(func=cmd_cron)

    p_record = sub.add_parser("record", help="Record a completed skill trace")
    p_record.add_argument("--skill", required=True, help="Skill name")
    p_record.add_argument("--status", required=True, help="success | failed")
    p_record.add_argument("--duration", type=int, help="Duration in milliseconds")
    p_record.add_argument("--cost", type=float, help="Estimated cost in USD")
    p_record.add_argument("--session", help="Session label")
    p_record.add_argument("--error", help="Error message for failed runs")
    p_record.add_argument("--parent", help="Parent trace id, links the sub-agent tree")
    p_record.set_defaults(func=cmd_record)

    p_init = sub.add_parser("init", help="Detect skills and choose which ones to wrap")
    p_init.add_argument("--root", help="Project root (default: CLAWTRACE_PROJECT_ROOT or cwd)")
    p_init.add_argument("--yes", action="store_true", help="Wrap every detected skill without asking")
    p_init.set_defaults(func=cmd_init)

    p_inject = sub.add_parser("inject", help="Inject today's run statistics into SKILL.md files")
    p_inject.add_argument("--skill", help="Only this skill")
    p_inject.add_argument("--root", help="Project root (default: CLAWTRACE_PROJECT_ROOT or cwd)")
    p_inject.set_defaults(func=cmd_inject)

    p_import = sub.add_parser("import", help="Import skill calls from agent session logs")
    p_import.add_argument("--sessions", help="Directory of *.jsonl session files")
    p_import.add_argument("--since", help="Only entries on or after this date (YYYY-MM-DD)")
    p_import.set_defaults(func=cmd_import)

    p_stats = sub.add_parser("stats", help="Aggregate statistics across a date range")
    p_stats.add_argument("--range", default="7d", help="7d, 30d, all (default: 7d)")
    p_stats.add_argument("--json", action="store_true", help="Output JSON")
    p_stats.set_defaults(func=cmd_stats)

    p_rank = sub.add_parser("rank", help="Skill usage ranking by call count")
    p_rank.add_argument("--range", default="30d", help="7d, 30d, all (default: 30d)")
    p_rank.add_argument("--json", action="store_true", help="Output JSON")
    p_rank.set_defaults(func=cmd_rank)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    configure_logging(get_settings().log_level)
    try:
        args.func(args)
    except CorruptPartitionError as exc:
        print(f"❌ Corrupt trace data: {exc}", file=sys.stderr)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
