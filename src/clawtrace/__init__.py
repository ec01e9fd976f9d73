"""ClawTrace: skill tracing, cron history and memory-change records for agents."""

from __future__ import annotations

__version__ = "1.1.0"

from .core import ClawTrace, DailySummary, SkillRankEntry, TraceSession
from .recorder import TraceRecorder
from .storage import (
    CronRecord,
    CorruptPartitionError,
    MemoryChange,
    SkillTrace,
    SubAgentCall,
    ToolCall,
    TraceStore,
)

__all__ = [
    "__version__",
    "ClawTrace",
    "CronRecord",
    "CorruptPartitionError",
    "DailySummary",
    "MemoryChange",
    "SkillRankEntry",
    "SkillTrace",
    "SubAgentCall",
    "ToolCall",
    "TraceRecorder",
    "TraceSession",
    "TraceStore",
]
