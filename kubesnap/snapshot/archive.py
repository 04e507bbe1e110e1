"""Gzip tarball transport for snapshot trees."""

from __future__ import annotations

import tarfile
from pathlib import Path

import structlog

from kubesnap.snapshot.store import SnapshotTree

_log = structlog.get_logger(component="snapshot.archive")

ARCHIVE_SUFFIXES = (".tar.gz", ".tgz")


def is_archive(path: str | Path) -> bool:
    return str(path).endswith(ARCHIVE_SUFFIXES) and Path(path).is_file()


def pack(root: str | Path, dest: str | Path) -> Path:
    """Write every blob under *root* into the gzip tarball *dest*.

    Members are added in path-key order with paths relative to *root*.
    """
    tree = SnapshotTree(root)
    dest_path = Path(dest)
    dest_path.parent.mkdir(parents=True, exist_ok=True)
    keys = tree.paths()
    with tarfile.open(dest_path, "w:gz") as tar:
        for key in keys:
            tar.add(tree.root / key, arcname=key, recursive=False)
    _log.info("snapshot_packed", root=str(root), archive=str(dest_path), files=len(keys))
    return dest_path


def unpack(archive: str | Path, dest: str | Path) -> Path:
    """Extract *archive* into *dest*, refusing members that would escape it."""
    dest_path = Path(dest)
    dest_path.mkdir(parents=True, exist_ok=True)
    with tarfile.open(archive, "r:*") as tar:
        tar.extractall(dest_path, filter="data")
    _log.info("snapshot_unpacked", archive=str(archive), dest=str(dest_path))
    return dest_path
