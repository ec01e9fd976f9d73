"""Storage abstractions for ClawTrace."""

from .backends import InMemoryPartitionBackend, JsonlPartitionBackend, PartitionBackend
from .models import CronRecord, MemoryChange, SkillTrace, SubAgentCall, ToolCall, TraceStatus
from .store import CorruptPartitionError, TraceStore, partition_key

__all__ = [
    "CorruptPartitionError",
    "CronRecord",
    "InMemoryPartitionBackend",
    "JsonlPartitionBackend",
    "MemoryChange",
    "PartitionBackend",
    "SkillTrace",
    "SubAgentCall",
    "ToolCall",
    "TraceStatus",
    "TraceStore",
    "partition_key",
]
