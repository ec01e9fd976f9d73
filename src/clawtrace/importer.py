"""Backfill skill traces from agent session logs.

Session logs are JSONL files written by the agent runtime. A skill call shows
up as a line that reads ``skills/<name>/SKILL.md``. Each detected call becomes
a ``success`` trace whose id is derived from its content, so importing the same
logs again writes nothing new.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from .storage import SkillTrace, TraceStore
from .storage.models import ensure_utc

logger = logging.getLogger(__name__)

SKILL_DOC_RE = re.compile(r"skills/([^/\s\"']+)/SKILL\.md")
_ISO_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T")
TIMESTAMP_FIELDS = ("timestamp", "time", "created_at", "start_time", "ts")
NESTED_FIELDS = ("message", "event")
IMPORT_ID_PREFIX = "import-"


@dataclass(slots=True)
class ImportedSkillCall:
    """A skill call found in a session log line.

    ``raw_timestamp`` is the timestamp text as it appeared in the log; the
    stable id is derived from it so that ids match across importers.
    """

    skill_name: str
    timestamp: datetime
    session_id: str
    raw_timestamp: str | None = None


def iso_millis(value: datetime) -> str:
    """``2025-01-01T08:00:00.000Z`` form of a timestamp."""

    value = ensure_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _parse_timestamp(value: Any) -> tuple[str, datetime] | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str) and _ISO_PREFIX_RE.match(value):
        try:
            return value, ensure_utc(datetime.fromisoformat(value))
        except ValueError:
            return None
    if isinstance(value, (int, float)):
        # Numeric timestamps are epoch milliseconds.
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
        return iso_millis(parsed), parsed
    return None


def pick_timestamp(obj: Any, *, depth: int = 1) -> tuple[str, datetime] | None:
    """Find a timestamp in the common fields, then one level into message/event.

    Returns the timestamp text (numbers rendered as ``iso_millis``) with its
    parsed value.
    """

    if not isinstance(obj, dict):
        return None
    for field in TIMESTAMP_FIELDS:
        found = _parse_timestamp(obj.get(field))
        if found is not None:
            return found
    if depth > 0:
        for field in NESTED_FIELDS:
            found = pick_timestamp(obj.get(field), depth=depth - 1)
            if found is not None:
                return found
    return None


def extract_skill_call(
    line: str,
    session_id: str,
    *,
    clock: Callable[[], datetime] | None = None,
) -> ImportedSkillCall | None:
    """Return the skill call referenced by a log line, or ``None``."""

    stripped = line.strip()
    if not stripped or stripped.startswith("#") or "SKILL.md" not in stripped:
        return None
    try:
        obj = json.loads(stripped)
    except json.JSONDecodeError:
        return None

    match = SKILL_DOC_RE.search(stripped)
    if match is None:
        return None

    found = pick_timestamp(obj)
    if found is None:
        timestamp = ensure_utc((clock or (lambda: datetime.now(timezone.utc)))())
        raw = iso_millis(timestamp)
    else:
        raw, timestamp = found
    return ImportedSkillCall(
        skill_name=match.group(1), timestamp=timestamp, session_id=session_id, raw_timestamp=raw
    )


def scan_session_logs(
    sessions_dir: Path,
    since: datetime | None = None,
    *,
    clock: Callable[[], datetime] | None = None,
) -> list[ImportedSkillCall]:
    """Collect skill calls from every ``*.jsonl`` file directly inside ``sessions_dir``."""

    sessions_dir = Path(sessions_dir)
    if not sessions_dir.is_dir():
        return []
    cutoff = ensure_utc(since) if since is not None else None

    calls: list[ImportedSkillCall] = []
    for path in sorted(sessions_dir.glob("*.jsonl")):
        if not path.is_file():
            continue
        with path.open("r", encoding="utf-8", errors="replace") as handle:
            for line in handle:
                call = extract_skill_call(line, path.stem, clock=clock)
                if call is None:
                    continue
                if cutoff is not None and call.timestamp < cutoff:
                    continue
                calls.append(call)
    return calls


def stable_id(call: ImportedSkillCall) -> str:
    """Deterministic id for a call: same session, timestamp text and skill give the same id."""

    timestamp = call.raw_timestamp if call.raw_timestamp is not None else iso_millis(call.timestamp)
    digest = hashlib.sha1(f"{call.session_id}:{timestamp}:{call.skill_name}".encode("utf-8"))
    return IMPORT_ID_PREFIX + digest.hexdigest()[:16]


def import_session_logs(
    sessions_dir: Path,
    store: TraceStore,
    since: datetime | None = None,
    *,
    clock: Callable[[], datetime] | None = None,
) -> int:
    """Write traces for calls not imported yet and return how many were written."""

    calls = scan_session_logs(sessions_dir, since, clock=clock)
    if not calls:
        logger.info("No skill calls found in %s", sessions_dir)
        return 0

    earliest = min(call.timestamp for call in calls)
    latest = max(max(call.timestamp for call in calls), store.now())
    start = ensure_utc(since) if since is not None else earliest
    existing = {trace.id for trace in store.read_traces_range(start, latest)}

    written = 0
    for call in calls:
        trace_id = stable_id(call)
        if trace_id in existing:
            continue
        store.append_trace(
            SkillTrace(
                id=trace_id,
                skill_name=call.skill_name,
                session_label=call.session_id,
                start_time=call.timestamp,
                status="success",
            )
        )
        existing.add(trace_id)
        written += 1

    logger.info(
        "Imported %d new trace(s) from %d skill call(s) in %s", written, len(calls), sessions_dir
    )
    return written


__all__ = [
    "ImportedSkillCall",
    "extract_skill_call",
    "import_session_logs",
    "iso_millis",
    "pick_timestamp",
    "scan_session_logs",
    "stable_id",
]
