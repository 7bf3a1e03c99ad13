"""JSON-file backed raffle state store.

Layout inside ``base_dir``::

    state.json                          current state
    state-<YYYYMMDDHHMMSSmmm>-<id>.json one immutable snapshot per revision

Every file is written to a temporary sibling, fsynced and then moved into
place with :func:`os.replace`, so readers never observe a partial file.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Mapping

from .models import SnapshotInfo, parse_formatted_timestamp
from .store import Clock, StateStore

logger = logging.getLogger(__name__)

STATE_FILENAME = "state.json"
_TEMP_PREFIX = ".state-"
_TEMP_SUFFIX = ".tmp"
_SNAPSHOT_RE = re.compile(r"^state-(?P<stamp>\d{17})-(?P<suffix>[0-9a-z]+)\.json$")


class FileStateStore(StateStore):
    """State store persisting JSON documents in a local directory."""

    backend_name = "file"
    supports_cleanup = False

    def __init__(self, base_dir: str | os.PathLike[str], *, clock: Clock | None = None) -> None:
        super().__init__(clock=clock)
        self._base_dir = Path(base_dir)
        self._state_path = self._base_dir / STATE_FILENAME

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    async def open(self) -> None:
        removed = await asyncio.to_thread(self._remove_stale_temp_files)
        if removed:
            logger.warning("Removed %d stale temporary state files from %s", removed, self._base_dir)
        await super().open()

    # -- blocking helpers (run in a worker thread) --------------------------

    def _ensure_dir(self) -> None:
        self._base_dir.mkdir(parents=True, exist_ok=True)

    def _remove_stale_temp_files(self) -> int:
        if not self._base_dir.is_dir():
            return 0
        removed = 0
        for path in self._base_dir.glob(f"{_TEMP_PREFIX}*{_TEMP_SUFFIX}"):
            path.unlink(missing_ok=True)
            removed += 1
        return removed

    def _fsync_dir(self) -> None:
        # directories cannot be opened for fsync on Windows
        if not hasattr(os, "O_DIRECTORY"):
            return
        fd = os.open(self._base_dir, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    def _write_atomic(self, target: Path, text: str) -> None:
        fd, temp_name = tempfile.mkstemp(dir=self._base_dir, prefix=_TEMP_PREFIX, suffix=_TEMP_SUFFIX)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_name, target)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise

    def _write_files(self, payload: Mapping[str, Any], snapshot_id: str) -> None:
        self._ensure_dir()
        text = json.dumps(payload, indent=2)
        self._write_atomic(self._base_dir / snapshot_id, text)
        self._write_atomic(self._state_path, text)
        self._fsync_dir()

    def _read_json(self, path: Path) -> Mapping[str, Any] | None:
        try:
            contents = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError:
            logger.warning("Ignoring state file %s that is not valid UTF-8", path.name)
            return None
        try:
            parsed = json.loads(contents)
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt state file %s", path.name)
            return None
        if not isinstance(parsed, dict):
            logger.warning("Ignoring state file %s with unexpected shape", path.name)
            return None
        return parsed

    def _scan_snapshots(self) -> list[SnapshotInfo]:
        if not self._base_dir.is_dir():
            return []
        snapshots: list[SnapshotInfo] = []
        for path in self._base_dir.iterdir():
            match = _SNAPSHOT_RE.match(path.name)
            if match is None:
                continue
            snapshots.append(
                SnapshotInfo(
                    id=path.name,
                    timestamp=parse_formatted_timestamp(match.group("stamp")),
                    path=str(path),
                )
            )
        snapshots.sort(key=lambda info: (info.timestamp, info.id), reverse=True)
        return snapshots

    # -- storage primitives -------------------------------------------------

    async def _read_current_payload(self) -> Mapping[str, Any] | None:
        return await asyncio.to_thread(self._read_json, self._state_path)

    async def _write(self, payload: Mapping[str, Any], snapshot_id: str) -> None:
        await asyncio.to_thread(self._write_files, payload, snapshot_id)

    async def _list_snapshot_records(self) -> list[SnapshotInfo]:
        return await asyncio.to_thread(self._scan_snapshots)

    async def _read_snapshot_payload(self, snapshot_id: str) -> Mapping[str, Any] | None:
        # only bare snapshot file names are addressable
        if not _SNAPSHOT_RE.match(snapshot_id):
            return None
        return await asyncio.to_thread(self._read_json, self._base_dir / snapshot_id)
