"""Filesystem NDJSON event sink with concurrency-safe appends.

Events are appended as one JSON line per event.  Two log destinations:

- ``logs/events.ndjson``  -- global event log
- ``logs/calculators/<calculator_id>.ndjson`` -- per-calculator log, used
  when the event context carries a ``calculator_id``

Writes use ``json.dumps(sort_keys=True)`` for deterministic output.

Concurrency safety:

- Each append acquires an exclusive ``fcntl.flock`` on the target file.
- Reads acquire a shared lock.
- On platforms without ``fcntl`` (Windows), locking is skipped.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any

from calcblocks.logging.events import CalcEvent

try:
    import fcntl

    _HAS_FCNTL = True
except ImportError:
    _HAS_FCNTL = False

# Path-component validation: reject anything that could escape the logs dir
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")

# Default tail-read size (2 MB)
_DEFAULT_TAIL_BYTES = 2 * 1024 * 1024


class EventSink:
    """Append-only NDJSON log writer with file locking."""

    def __init__(self, project_dir: Path, *, fsync: bool = False, tail_bytes: int | None = None) -> None:
        self.logs_dir = project_dir / "logs"
        self._fsync = fsync
        self._tail_bytes = tail_bytes if tail_bytes is not None else _DEFAULT_TAIL_BYTES

        self.logs_dir.mkdir(parents=True, exist_ok=True)
        (self.logs_dir / "calculators").mkdir(exist_ok=True)

    def write(self, event: CalcEvent) -> None:
        """Append *event* to the global log and, if attributed, a calculator log."""
        line = json.dumps(event.model_dump(mode="json"), sort_keys=True, default=str) + "\n"

        self._append(self.logs_dir / "events.ndjson", line)

        calculator_id = event.context.get("calculator_id")
        if isinstance(calculator_id, str) and _SAFE_ID_RE.match(calculator_id):
            self._append(self.logs_dir / "calculators" / f"{calculator_id}.ndjson", line)

    # ------------------------------------------------------------------
    # Query helpers (used by the CLI)
    # ------------------------------------------------------------------

    def read_events(
        self,
        *,
        level: str | None = None,
        event_type: str | None = None,
        calculator_id: str | None = None,
        limit: int = 200,
    ) -> list[dict[str, Any]]:
        """Read events from the global log, most-recent-first, with filters.

        Uses tail-style reading to bound memory usage on large log files.
        """
        limit = min(limit, 2000)

        events = self._read_ndjson(self.logs_dir / "events.ndjson")

        if level:
            events = [e for e in events if e.get("level") == level]
        if event_type:
            events = [e for e in events if e.get("event_type") == event_type]
        if calculator_id:
            events = [
                e for e in events
                if e.get("context", {}).get("calculator_id") == calculator_id
            ]

        events.reverse()
        return events[:limit]

    def read_calculator_log(self, calculator_id: str) -> list[dict[str, Any]]:
        """Read all events for a specific calculator."""
        if not _SAFE_ID_RE.match(calculator_id):
            return []
        return self._read_ndjson(self.logs_dir / "calculators" / f"{calculator_id}.ndjson")

    def trim_global_log(self, max_bytes: int) -> int:
        """Rewrite ``events.ndjson`` keeping the newest lines within *max_bytes*.

        Uses atomic write-to-tmp + os.replace under exclusive lock.

        Returns:
            The number of lines dropped.
        """
        global_path = self.logs_dir / "events.ndjson"
        if not global_path.exists() or global_path.stat().st_size <= max_bytes:
            return 0

        lines = [
            line for line in global_path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]
        kept: list[str] = []
        total = 0
        for line in reversed(lines):
            total += len(line.encode("utf-8")) + 1
            if total > max_bytes:
                break
            kept.append(line)
        kept.reverse()

        tmp = global_path.with_suffix(".ndjson.tmp")
        tmp.write_text("".join(f"{line}\n" for line in kept), encoding="utf-8")
        if _HAS_FCNTL:
            fd = os.open(str(global_path), os.O_RDWR | os.O_CREAT)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
                os.replace(str(tmp), str(global_path))
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
                os.close(fd)
        else:
            os.replace(str(tmp), str(global_path))
        return len(lines) - len(kept)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _append(self, path: Path, line: str) -> None:
        """Append a single line to *path* under exclusive file lock."""
        path.parent.mkdir(parents=True, exist_ok=True)

        if _HAS_FCNTL:
            fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_APPEND)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
                os.write(fd, line.encode("utf-8"))
                if self._fsync:
                    os.fsync(fd)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
                os.close(fd)
        else:
            with open(path, "a", encoding="utf-8") as f:
                f.write(line)
                if self._fsync:
                    f.flush()
                    os.fsync(f.fileno())

    def _read_ndjson(self, path: Path) -> list[dict[str, Any]]:
        """Read an NDJSON file, skipping blank and corrupt lines."""
        if not path.exists():
            return []

        events: list[dict[str, Any]] = []
        for line in self._read_tail(path).splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return events

    def _read_tail(self, path: Path) -> str:
        """Read up to the last ``self._tail_bytes`` of a file under shared lock."""
        with open(path, "rb") as f:
            if _HAS_FCNTL:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
            try:
                file_size = os.fstat(f.fileno()).st_size
                if file_size <= self._tail_bytes:
                    data = f.read()
                else:
                    f.seek(file_size - self._tail_bytes)
                    data = f.read()
                    # Drop the first (likely partial) line
                    idx = data.find(b"\n")
                    if idx >= 0:
                        data = data[idx + 1:]
            finally:
                if _HAS_FCNTL:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        return data.decode("utf-8", errors="replace")
