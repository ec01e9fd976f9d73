"""Inject a run-statistics block into a skill document.

The block sits between HTML comment markers so later runs replace it instead
of appending a second copy.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from ..storage import SkillTrace
from ..storage.models import ensure_utc

logger = logging.getLogger(__name__)

STATS_START_MARKER = "<!-- clawtrace:stats:start -->"
STATS_END_MARKER = "<!-- clawtrace:stats:end -->"

STATUS_ICONS = {"success": "✅", "failed": "❌", "running": "🔄"}


def status_icon(status: str) -> str:
    return STATUS_ICONS.get(status, STATUS_ICONS["running"])


def format_duration(duration_ms: int | None) -> str:
    if duration_ms is None:
        return "-"
    seconds = duration_ms // 1000
    minutes, remainder = divmod(seconds, 60)
    return f"{minutes}m {remainder}s" if minutes else f"{seconds}s"


def build_stats_block(
    traces: Sequence[SkillTrace],
    skill_name: str = "SKILL_NAME",
    *,
    now: datetime | None = None,
) -> str:
    now = ensure_utc(now or datetime.now(timezone.utc))
    success_count = sum(1 for trace in traces if trace.status == "success")
    failed_count = sum(1 for trace in traces if trace.status == "failed")

    durations = [trace.duration_ms for trace in traces if trace.duration_ms is not None]
    avg_duration = int(sum(durations) / len(durations) + 0.5) if durations else None

    last = max(traces, key=lambda trace: trace.start_time, default=None)
    last_run = f"{last.start_time:%H:%M} UTC {status_icon(last.status)}" if last else "-"

    return "\n".join(
        [
            STATS_START_MARKER,
            "## 📊 ClawTrace Statistics",
            "",
            f"_Last updated: {now:%Y-%m-%d %H:%M} UTC_",
            "",
            "### ⚠️ Report every run (MANDATORY)",
            "",
            "> When this skill finishes, successfully or not, run:",
            "> ```bash",
            f"> clawtrace record --skill {skill_name} --status <success|failed> --duration <ms>",
            "> ```",
            '> On failure add `--error "<message>"`.',
            "> When a parent skill triggered this one, add `--parent <parentTraceId>` to link the call tree.",
            "",
            "| Metric | Value |",
            "|--------|-------|",
            f"| Runs today | {len(traces)} |",
            f"| ✅ Success | {success_count} |",
            f"| ❌ Failed | {failed_count} |",
            f"| ⏱ Avg duration | {format_duration(avg_duration)} |",
            f"| 🕐 Last run | {last_run} |",
            STATS_END_MARKER,
        ]
    )


def inject_skill_stats(
    document: Path,
    skill_name: str,
    traces: Sequence[SkillTrace],
    *,
    now: datetime | None = None,
) -> bool:
    """Replace or append the stats block in ``document``.

    Returns ``False`` without touching anything when the document does not exist.
    """

    document = Path(document)
    if not document.exists():
        return False

    block = build_stats_block(traces, skill_name, now=now)
    content = document.read_text(encoding="utf-8")

    start = content.find(STATS_START_MARKER)
    end = content.find(STATS_END_MARKER)
    if start != -1 and end > start:
        content = content[:start] + block + content[end + len(STATS_END_MARKER) :]
    else:
        if content.endswith("\n\n") or not content:
            separator = ""
        elif content.endswith("\n"):
            separator = "\n"
        else:
            separator = "\n\n"
        content = content + separator + block + "\n"

    document.write_text(content, encoding="utf-8")
    logger.info("Injected stats for %s into %s", skill_name, document)
    return True


__all__ = [
    "STATS_END_MARKER",
    "STATS_START_MARKER",
    "build_stats_block",
    "format_duration",
    "inject_skill_stats",
    "status_icon",
]
