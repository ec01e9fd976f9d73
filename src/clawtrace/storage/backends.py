"""Partition backends: where the daily JSONL lines physically live."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections import defaultdict
from pathlib import Path
from typing import Iterable, Protocol

logger = logging.getLogger(__name__)

PARTITION_SUFFIX = ".jsonl"


def _is_complete_line(line: str) -> bool:
    try:
        json.loads(line)
    except ValueError:
        return False
    return True


class PartitionBackend(Protocol):
    """Minimal line-storage API the trace store depends on.

    Partitions are addressed by a ``YYYY-MM-DD`` key. Lines are stored without
    their trailing newline.
    """

    def append_line(self, key: str, line: str) -> None:
        ...

    def read_lines(self, key: str) -> list[str]:
        ...

    def replace_lines(self, key: str, lines: Iterable[str]) -> None:
        ...

    def keys(self) -> list[str]:
        ...

    def location(self, key: str) -> str:
        ...


class JsonlPartitionBackend:
    """One ``<key>.jsonl`` file per partition inside ``directory``."""

    def __init__(self, directory: Path, *, suffix: str = PARTITION_SUFFIX) -> None:
        self._directory = Path(directory)
        self._suffix = suffix

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, key: str) -> Path:
        return self._directory / f"{key}{self._suffix}"

    def location(self, key: str) -> str:
        return str(self.path_for(key))

    def append_line(self, key: str, line: str) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._repair_tail(path)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
        logger.debug("Appended record to %s", path)

    def read_lines(self, key: str) -> list[str]:
        path = self.path_for(key)
        if not path.exists():
            return []
        content = path.read_text(encoding="utf-8")
        lines = content.split("\n")
        tail = lines.pop()
        if tail.strip():
            # An unterminated tail is only a torn append when it is not valid JSON.
            if _is_complete_line(tail):
                lines.append(tail)
            else:
                logger.warning("Ignoring truncated last line in %s", path)
        return [line for line in lines if line.strip()]

    def replace_lines(self, key: str, lines: Iterable[str]) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = "".join(f"{line}\n" for line in lines)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Rewrote partition %s", path)

    def keys(self) -> list[str]:
        if not self._directory.is_dir():
            return []
        return sorted(
            path.name[: -len(self._suffix)]
            for path in self._directory.glob(f"*{self._suffix}")
            if path.is_file()
        )

    @staticmethod
    def _repair_tail(path: Path) -> None:
        """Make sure the next append starts on a fresh line.

        A complete record missing its newline is terminated; a torn one is cut off.
        """

        if not path.exists():
            return
        with path.open("rb+") as handle:
            handle.seek(0, os.SEEK_END)
            size = handle.tell()
            if size == 0:
                return
            handle.seek(size - 1)
            if handle.read(1) == b"\n":
                return
            handle.seek(0)
            data = handle.read()
            keep = data.rfind(b"\n") + 1
            tail = data[keep:].decode("utf-8", errors="replace")
            if not tail.strip() or _is_complete_line(tail):
                handle.seek(0, os.SEEK_END)
                handle.write(b"\n")
                return
            handle.truncate(keep)
        logger.warning("Discarded %d bytes of truncated output at the end of %s", size - keep, path)


class InMemoryPartitionBackend:
    """Dictionary-backed partitions, used by tests and dry runs."""

    def __init__(self) -> None:
        self._partitions: dict[str, list[str]] = defaultdict(list)

    def location(self, key: str) -> str:
        return f"memory://{key}"

    def append_line(self, key: str, line: str) -> None:
        self._partitions[key].append(line)

    def read_lines(self, key: str) -> list[str]:
        return list(self._partitions.get(key, []))

    def replace_lines(self, key: str, lines: Iterable[str]) -> None:
        self._partitions[key] = list(lines)

    def keys(self) -> list[str]:
        return sorted(key for key, lines in self._partitions.items() if lines)


__all__ = [
    "InMemoryPartitionBackend",
    "JsonlPartitionBackend",
    "PARTITION_SUFFIX",
    "PartitionBackend",
]
