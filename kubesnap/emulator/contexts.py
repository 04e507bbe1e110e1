"""Serve contexts: loaded snapshots addressable by name.

A ``ServeContext`` indexes one snapshot tree at load time (paths only, no
documents) and is read-only afterwards.  Documents are read on demand, so a
single corrupt blob fails only the requests that touch it.

``ContextRegistry`` maps context names to contexts.  It never merges
contexts or falls back from one to another.
"""

from __future__ import annotations

import os
import re
import shutil
import tarfile
import tempfile
from collections.abc import Iterable, Iterator
from pathlib import Path, PurePosixPath
from typing import Any

import structlog

from kubesnap.models.catalog import ResourceCatalog
from kubesnap.models.resources import OwnerKind, ResourceType, Scope, default_plural
from kubesnap.snapshot.archive import is_archive, unpack
from kubesnap.snapshot.paths import (
    CATALOG_FILE,
    CURRENT_LOG,
    NAMESPACES_DIR,
    PREVIOUS_LOG,
    VERSION_FILE,
    log_path,
    object_path,
    parse_object_path,
)
from kubesnap.snapshot.store import SnapshotReadError, SnapshotTree

_log = structlog.get_logger(component="emulator.contexts")

MARKER_FILES = (CATALOG_FILE, VERSION_FILE)
_MAX_SEARCH_DEPTH = 5

_DEFAULT_VERSION: dict[str, Any] = {
    "major": "1",
    "minor": "0",
    "gitVersion": "v1.0.0-kubesnap",
    "platform": "snapshot",
}

_RE_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")

_IndexKey = tuple[tuple[str, str, str], str | None]


class SnapshotLoadError(Exception):
    """A snapshot could not be loaded at serve startup or attach time."""


class UnknownContextError(LookupError):
    """The requested context is not served by this process."""

    def __init__(self, name: str) -> None:
        super().__init__(f"context {name!r} is not served")
        self.name = name


def context_name(path: str | Path) -> str:
    """Derive a URL-safe context name from a snapshot root or archive path."""
    name = Path(path).name
    for suffix in (".tar.gz", ".tgz"):
        if name.endswith(suffix):
            name = name[: -len(suffix)]
    return _RE_UNSAFE_NAME.sub("-", name).strip("-") or "snapshot"


def find_snapshot_roots(search_path: str | Path, max_depth: int = _MAX_SEARCH_DEPTH) -> list[Path]:
    """Directories under *search_path* that hold a snapshot marker file.

    The search does not descend into a found root.
    """
    base = Path(search_path)
    roots: list[Path] = []
    for current, dirs, files in os.walk(base):
        current_path = Path(current)
        depth = len(current_path.relative_to(base).parts)
        if any(marker in files for marker in MARKER_FILES):
            roots.append(current_path)
            dirs.clear()
            continue
        if depth >= max_depth:
            dirs.clear()
        dirs.sort()
    return sorted(roots)


class ServeContext:
    """One loaded snapshot."""

    def __init__(
        self,
        name: str,
        tree: SnapshotTree,
        catalog: ResourceCatalog,
        index: dict[_IndexKey, list[str]],
        logs: dict[tuple[str, str], list[str]],
        version: dict[str, Any],
    ) -> None:
        self._name = name
        self._tree = tree
        self._catalog = catalog
        self._index = index
        self._paths = frozenset(p for paths in index.values() for p in paths)
        self._logs = logs
        self._version = version

    @classmethod
    def load(cls, name: str, root: str | Path) -> ServeContext:
        """Index the snapshot at *root*.

        Raises:
            SnapshotLoadError: root missing or capture metadata unreadable.
        """
        tree = SnapshotTree(root)
        if not tree.root.is_dir():
            raise SnapshotLoadError(f"snapshot root {root} is not a directory")

        keys = tree.paths()
        index: dict[_IndexKey, list[str]] = {}
        logs: dict[tuple[str, str], list[str]] = {}
        inferred: list[ResourceType] = []
        for key in keys:
            location = parse_object_path(key)
            if location is not None:
                gvk = (location.group, location.version, location.kind)
                bucket = index.setdefault((gvk, location.namespace), [])
                if not bucket:
                    inferred.append(
                        ResourceType(
                            group=location.group,
                            version=location.version,
                            kind=location.kind,
                            plural=default_plural(location.kind),
                            scope=Scope.NAMESPACED if location.namespace else Scope.CLUSTER,
                        )
                    )
                bucket.append(key)
                continue
            _index_log(key, logs)

        try:
            recorded = ResourceCatalog.from_list(tree.read_document(CATALOG_FILE)) if CATALOG_FILE in tree else None
            version = tree.read_document(VERSION_FILE) if VERSION_FILE in tree else dict(_DEFAULT_VERSION)
        except (SnapshotReadError, KeyError, TypeError, ValueError) as exc:
            raise SnapshotLoadError(f"snapshot {root}: invalid capture metadata: {exc}") from exc

        catalog = recorded.merged(inferred) if recorded is not None else ResourceCatalog(inferred)
        context = cls(name, tree, catalog, index, logs, version)
        _log.info(
            "context_loaded",
            context=name,
            root=str(tree.root),
            types=len(catalog),
            objects=len(context._paths),
        )
        return context

    @property
    def name(self) -> str:
        return self._name

    @property
    def root(self) -> Path:
        return self._tree.root

    @property
    def catalog(self) -> ResourceCatalog:
        return self._catalog

    def server_version(self) -> dict[str, Any]:
        return dict(self._version)

    def object_paths(self, resource_type: ResourceType, namespace: str | None) -> list[str]:
        """Stored paths for *resource_type*; ``namespace=None`` spans every namespace."""
        if namespace is not None and resource_type.namespaced:
            return list(self._index.get((resource_type.identity, namespace), []))
        return [
            path
            for (gvk, _), paths in sorted(self._index.items(), key=lambda kv: (kv[0][0], kv[0][1] or ""))
            if gvk == resource_type.identity
            for path in paths
        ]

    def object_path(self, resource_type: ResourceType, namespace: str | None, name: str) -> str | None:
        path = object_path(resource_type, namespace if resource_type.namespaced else None, name)
        return path if path in self._paths else None

    def read_document(self, path: str) -> dict[str, Any]:
        document = self._tree.read_document(path)
        if not isinstance(document, dict):
            raise SnapshotReadError(path, "stored document is not an object")
        return document

    def log_containers(self, namespace: str, pod: str) -> list[str]:
        return list(self._logs.get((namespace, pod), []))

    def read_log(
        self, namespace: str, pod: str, container: str | None = None, previous: bool = False
    ) -> str | None:
        """Captured log text, or None if nothing was captured.

        Without a container the first captured one is used.
        """
        if not container:
            containers = self.log_containers(namespace, pod)
            if not containers:
                return None
            container = containers[0]
        path = log_path(OwnerKind.POD, namespace, pod, container, previous)
        if path not in self._tree:
            return None
        return self._tree.read_text(path)


def _index_log(key: str, logs: dict[tuple[str, str], list[str]]) -> None:
    parts = PurePosixPath(key).parts
    # namespaces/<ns>/core/v1/Pod/<pod>/<container>/<current|previous>.log
    if len(parts) != 8 or parts[0] != NAMESPACES_DIR or parts[2:5] != ("core", "v1", "Pod"):
        return
    if parts[7] not in (CURRENT_LOG, PREVIOUS_LOG):
        return
    containers = logs.setdefault((parts[1], parts[5]), [])
    if parts[6] not in containers:
        containers.append(parts[6])


class ContextRegistry:
    """Name -> ServeContext map shared by every request."""

    def __init__(self, contexts: Iterable[ServeContext] = ()) -> None:
        self._contexts: dict[str, ServeContext] = {}
        self._temp_dirs: list[Path] = []
        for context in contexts:
            self.add(context)

    @classmethod
    def from_search_paths(cls, search_paths: Iterable[str | Path]) -> ContextRegistry:
        """Load every snapshot found under *search_paths* (directories or archives).

        Raises:
            SnapshotLoadError: a path does not exist or holds no snapshot at all.
        """
        registry = cls()
        for search_path in search_paths:
            if is_archive(search_path):
                registry.attach_archive(search_path)
                continue
            if not Path(search_path).is_dir():
                raise SnapshotLoadError(f"snapshot path {search_path} does not exist")
            roots = find_snapshot_roots(search_path)
            if not roots:
                raise SnapshotLoadError(f"no snapshot found under {search_path}")
            for root in roots:
                registry.add(ServeContext.load(registry._unique_name(context_name(root)), root))
        return registry

    def add(self, context: ServeContext) -> ServeContext:
        if context.name in self._contexts:
            raise SnapshotLoadError(f"context {context.name!r} is already served")
        self._contexts[context.name] = context
        return context

    def attach_archive(self, archive: str | Path, name: str | None = None) -> ServeContext:
        """Unpack a snapshot tarball and serve it as a new context."""
        workdir = Path(tempfile.mkdtemp(prefix="kubesnap-"))
        self._temp_dirs.append(workdir)
        try:
            unpack(archive, workdir)
        except (OSError, EOFError, tarfile.TarError) as exc:
            raise SnapshotLoadError(f"cannot unpack {archive}: {exc}") from exc

        roots = find_snapshot_roots(workdir)
        if not roots:
            raise SnapshotLoadError(f"archive {archive} holds no snapshot")
        context = ServeContext.load(self._unique_name(name or context_name(archive)), roots[0])
        _log.info("archive_attached", archive=str(archive), context=context.name)
        return self.add(context)

    def get(self, name: str) -> ServeContext:
        try:
            return self._contexts[name]
        except KeyError:
            raise UnknownContextError(name) from None

    def names(self) -> list[str]:
        return sorted(self._contexts)

    def __contains__(self, name: object) -> bool:
        return name in self._contexts

    def __iter__(self) -> Iterator[ServeContext]:
        return iter(self._contexts[name] for name in self.names())

    def __len__(self) -> int:
        return len(self._contexts)

    def close(self) -> None:
        for workdir in self._temp_dirs:
            shutil.rmtree(workdir, ignore_errors=True)
        self._temp_dirs.clear()

    def _unique_name(self, base: str) -> str:
        name, counter = base, 2
        while name in self._contexts:
            name = f"{base}-{counter}"
            counter += 1
        return name
