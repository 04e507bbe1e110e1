"""Deterministic snapshot path layout.

Every stored blob lives at a path derived purely from its identity, so two
runs that see the same objects produce the same tree:

    namespaces/<ns>/<group|core>/<version>/<Kind>/<name>.json
    cluster/<group|core>/<version>/<Kind>/<name>.json
    namespaces/<ns>/core/v1/Pod/<name>/<container>/current.log
    namespaces/<ns>/core/v1/Pod/<name>/<container>/previous.log
    cluster/core/v1/Node/<name>/kubelet.log

Capture metadata sits at the root: version.json, catalog.json,
collected.json and app-versions.json.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath

from kubesnap.models.resources import LogEntry, OwnerKind, ResourceType

NAMESPACES_DIR = "namespaces"
CLUSTER_DIR = "cluster"
CORE_GROUP_DIR = "core"
OBJECT_SUFFIX = ".json"

VERSION_FILE = "version.json"
CATALOG_FILE = "catalog.json"
COLLECTED_FILE = "collected.json"
APP_VERSIONS_FILE = "app-versions.json"
METADATA_FILES = frozenset({VERSION_FILE, CATALOG_FILE, COLLECTED_FILE, APP_VERSIONS_FILE})

CURRENT_LOG = "current.log"
PREVIOUS_LOG = "previous.log"
KUBELET_LOG = "kubelet.log"

# Characters that are unsafe in file names on at least one supported platform.
_UNSAFE = re.compile(r"[:*?|/\\]")


def sanitize(segment: str) -> str:
    """Make one path segment filesystem-safe."""
    cleaned = _UNSAFE.sub("-", segment)
    if cleaned in ("", ".", ".."):
        return cleaned.replace(".", "-") or "-"
    return cleaned


def type_dir(resource_type: ResourceType, namespace: str | None) -> PurePosixPath:
    """Directory holding every object of *resource_type* in *namespace*."""
    group = resource_type.group or CORE_GROUP_DIR
    if namespace and resource_type.namespaced:
        base = PurePosixPath(NAMESPACES_DIR, sanitize(namespace))
    else:
        base = PurePosixPath(CLUSTER_DIR)
    return base / sanitize(group) / resource_type.version / resource_type.kind


def object_path(resource_type: ResourceType, namespace: str | None, name: str) -> str:
    return str(type_dir(resource_type, namespace) / f"{sanitize(name)}{OBJECT_SUFFIX}")


_POD_TYPE = ResourceType(group="", version="v1", kind="Pod")
_NODE_TYPE = ResourceType(group="", version="v1", kind="Node")


def log_path(
    owner_kind: OwnerKind,
    namespace: str | None,
    name: str,
    container: str | None = None,
    previous: bool = False,
) -> str:
    if owner_kind == OwnerKind.NODE:
        return str(type_dir(_NODE_TYPE, None) / sanitize(name) / KUBELET_LOG)
    leaf = PREVIOUS_LOG if previous else CURRENT_LOG
    return str(type_dir(_POD_TYPE, namespace) / sanitize(name) / sanitize(container or "default") / leaf)


def log_entry_path(entry: LogEntry) -> str:
    return log_path(entry.owner_kind, entry.owner_namespace, entry.owner_name, entry.container, entry.previous)


@dataclass(frozen=True)
class ObjectLocation:
    """Identity recovered from an object path.  ``name`` is the sanitized file stem."""

    group: str
    version: str
    kind: str
    namespace: str | None
    name: str


def parse_object_path(path: str) -> ObjectLocation | None:
    """Invert ``object_path``; returns None for logs, metadata and stray files."""
    parts = PurePosixPath(path).parts
    if not parts or not parts[-1].endswith(OBJECT_SUFFIX):
        return None
    if parts[0] == NAMESPACES_DIR and len(parts) == 6:
        namespace: str | None = parts[1]
        group, version, kind, filename = parts[2:]
    elif parts[0] == CLUSTER_DIR and len(parts) == 5:
        namespace = None
        group, version, kind, filename = parts[1:]
    else:
        return None
    return ObjectLocation(
        group="" if group == CORE_GROUP_DIR else group,
        version=version,
        kind=kind,
        namespace=namespace,
        name=filename[: -len(OBJECT_SUFFIX)],
    )
