"""Snapshot store: writes collected objects and logs, reads the tree back.

``SnapshotStore`` is the write side used during collection.  Each blob is
written atomically (temp file in the target directory, then ``os.replace``)
so a crashed or cancelled run never leaves a truncated document behind.

``SnapshotTree`` is the read side used by the emulator and by tests: an
ordered view of path key -> blob for one snapshot root.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog

from kubesnap.models.resources import CollectedObject, LogEntry
from kubesnap.snapshot.paths import log_entry_path, object_path

_log = structlog.get_logger(component="snapshot.store")


class SnapshotReadError(Exception):
    """A stored blob is missing, unreadable or not valid JSON."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


def encode_document(document: Any) -> bytes:
    return (json.dumps(document, indent=2, sort_keys=True, ensure_ascii=False) + "\n").encode("utf-8")


class SnapshotStore:
    """Write side of a snapshot rooted at *root*."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._written = 0

    @property
    def root(self) -> Path:
        return self._root

    @property
    def written(self) -> int:
        return self._written

    def write_object(self, obj: CollectedObject) -> str:
        path = object_path(obj.resource_type, obj.namespace, obj.name)
        self._write(path, encode_document(obj.document))
        return path

    def write_log(self, entry: LogEntry) -> str:
        path = log_entry_path(entry)
        self._write(path, entry.content.encode("utf-8"))
        return path

    def write_document(self, path: str, document: Any) -> str:
        """Write a capture metadata document such as ``catalog.json``."""
        self._write(path, encode_document(document))
        return path

    def tree(self) -> SnapshotTree:
        return SnapshotTree(self._root)

    def _write(self, path: str, data: bytes) -> None:
        target = self._root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self._written += 1
        _log.debug("blob_written", path=path, bytes=len(data))


class SnapshotTree:
    """Read side of a snapshot: an ordered mapping of path key -> blob.

    Path keys are POSIX-style and relative to the root.  Temp files left by an
    interrupted writer are not part of the tree.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def paths(self) -> list[str]:
        if not self._root.is_dir():
            return []
        keys = [
            p.relative_to(self._root).as_posix()
            for p in self._root.rglob("*")
            if p.is_file() and not p.name.startswith(".")
        ]
        return sorted(keys)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and self._resolve(path).is_file()

    def read_bytes(self, path: str) -> bytes:
        try:
            return self._resolve(path).read_bytes()
        except OSError as exc:
            raise SnapshotReadError(path, exc.strerror or str(exc)) from exc

    def read_text(self, path: str) -> str:
        return self.read_bytes(path).decode("utf-8", errors="replace")

    def read_document(self, path: str) -> Any:
        raw = self.read_bytes(path)
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise SnapshotReadError(path, f"invalid JSON: {exc}") from exc

    def _resolve(self, path: str) -> Path:
        resolved = (self._root / path).resolve()
        root = self._root.resolve()
        if resolved != root and root not in resolved.parents:
            raise SnapshotReadError(path, "path escapes the snapshot root")
        return resolved
