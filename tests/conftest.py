from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import pytest

from clawtrace.config import ClawTraceSettings, get_settings
from clawtrace.storage import TraceStore

NOW = datetime(2025, 1, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> TraceStore:
    return TraceStore.in_memory(clock=lambda: NOW)


@pytest.fixture
def file_store(tmp_path: Path) -> TraceStore:
    return TraceStore(tmp_path / "traces", tmp_path / "memory-changes", clock=lambda: NOW)


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[ClawTraceSettings]:
    monkeypatch.setenv("CLAWTRACE_TRACES_DIR", str(tmp_path / "memory" / "traces"))
    monkeypatch.setenv("CLAWTRACE_MEMORY_CHANGES_DIR", str(tmp_path / "memory" / "memory-changes"))
    monkeypatch.setenv("CLAWTRACE_PROJECT_ROOT", str(tmp_path))
    monkeypatch.delenv("CLAWTRACE_SESSIONS_DIR", raising=False)
    monkeypatch.delenv("CLAWTRACE_LOG_LEVEL", raising=False)
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()
