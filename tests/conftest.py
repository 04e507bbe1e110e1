"""Shared fixtures for kubesnap tests.

Provides an in-memory ``FakeClusterClient`` implementing the ClusterClient
protocol, object factories, and helpers that write small snapshots to disk
so the collector and the emulator can be exercised without a real cluster.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import pytest

from kubesnap.cluster.client import ListPage, PermanentClusterError
from kubesnap.models.resources import CollectedObject, LogEntry, OwnerKind, ResourceType, Scope
from kubesnap.snapshot.paths import CATALOG_FILE, VERSION_FILE
from kubesnap.snapshot.store import SnapshotStore

# ---------------------------------------------------------------------------
# Resource types
# ---------------------------------------------------------------------------

NAMESPACE_TYPE = ResourceType("", "v1", "Namespace", plural="namespaces", scope=Scope.CLUSTER)
POD_TYPE = ResourceType("", "v1", "Pod", plural="pods")
NODE_TYPE = ResourceType("", "v1", "Node", plural="nodes", scope=Scope.CLUSTER)
CONFIGMAP_TYPE = ResourceType("", "v1", "ConfigMap", plural="configmaps")
DEPLOYMENT_TYPE = ResourceType("apps", "v1", "Deployment", plural="deployments")
CRD_TYPE = ResourceType(
    "apiextensions.k8s.io",
    "v1",
    "CustomResourceDefinition",
    plural="customresourcedefinitions",
    scope=Scope.CLUSTER,
)

SERVER_VERSION = {"major": "1", "minor": "30", "gitVersion": "v1.30.2"}


# ---------------------------------------------------------------------------
# Object factories
# ---------------------------------------------------------------------------


def make_namespace(name: str) -> dict[str, Any]:
    return {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name}}


def make_node(name: str) -> dict[str, Any]:
    return {"apiVersion": "v1", "kind": "Node", "metadata": {"name": name, "resourceVersion": "10"}}


def make_pod(
    name: str,
    namespace: str = "default",
    labels: dict[str, str] | None = None,
    containers: Iterable[str] = ("app",),
    restarts: int = 0,
    resource_version: str = "100",
) -> dict[str, Any]:
    """A Pod as returned by a list call (no apiVersion/kind on items)."""
    names = list(containers)
    return {
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": dict(labels or {}),
            "resourceVersion": resource_version,
            "creationTimestamp": "2024-01-15T10:30:00Z",
        },
        "spec": {"containers": [{"name": c, "image": f"registry.local/{c}:1.0"} for c in names]},
        "status": {"containerStatuses": [{"name": c, "restartCount": restarts} for c in names]},
    }


def make_configmap(name: str, namespace: str = "default", data: dict[str, str] | None = None) -> dict[str, Any]:
    return {"metadata": {"name": name, "namespace": namespace}, "data": dict(data or {})}


def make_deployment(name: str, namespace: str = "default") -> dict[str, Any]:
    return {
        "metadata": {"name": name, "namespace": namespace, "labels": {"app": name}},
        "spec": {"replicas": 1},
    }


# ---------------------------------------------------------------------------
# Fake cluster client
# ---------------------------------------------------------------------------


class FakeClusterClient:
    """In-memory ClusterClient.

    ``objects`` maps a resource type to the items a list call returns;
    namespaced lists are filtered by ``metadata.namespace``.  Failures are
    scripted per (kind, namespace) as a queue of exceptions consumed one per
    call.  A failure registered with ``always=True`` never runs out.
    """

    def __init__(
        self,
        types: Iterable[ResourceType] = (),
        objects: dict[ResourceType, list[dict[str, Any]]] | None = None,
        logs: dict[tuple[str | None, str, str | None, bool], str] | None = None,
        page_size: int = 2,
    ) -> None:
        self.types = list(types)
        self.objects = objects or {}
        self.logs = logs or {}
        self.page_size = page_size
        self.discover_errors: list[Exception] = []
        self.version_error: Exception | None = None
        self.calls: list[tuple[Any, ...]] = []
        self._list_failures: dict[tuple[str, str | None], list[Exception]] = {}
        self._always: dict[tuple[str, str | None], Exception] = {}

    def fail_list(self, kind: str, namespace: str | None, *errors: Exception, always: bool = False) -> None:
        if always:
            self._always[(kind, namespace)] = errors[0]
        else:
            self._list_failures.setdefault((kind, namespace), []).extend(errors)

    async def discover_types(self) -> list[ResourceType]:
        self.calls.append(("discover",))
        if self.discover_errors:
            raise self.discover_errors.pop(0)
        return list(self.types)

    async def list(
        self,
        resource_type: ResourceType,
        namespace: str | None,
        continue_token: str | None = None,
    ) -> ListPage:
        self.calls.append(("list", resource_type.kind, namespace, continue_token))
        key = (resource_type.kind, namespace)
        if key in self._always:
            raise self._always[key]
        queued = self._list_failures.get(key)
        if queued:
            raise queued.pop(0)

        items = [
            item
            for item in self.objects.get(resource_type, [])
            if namespace is None or (item.get("metadata") or {}).get("namespace") == namespace
        ]
        start = int(continue_token or 0)
        end = start + self.page_size
        return ListPage(
            items=items[start:end],
            continue_token=str(end) if end < len(items) else None,
            resource_version="1000",
        )

    async def get(self, resource_type: ResourceType, namespace: str | None, name: str) -> dict[str, Any]:
        for item in self.objects.get(resource_type, []):
            metadata = item.get("metadata") or {}
            if metadata.get("name") == name and metadata.get("namespace") == namespace:
                return item
        raise PermanentClusterError(f"{resource_type.plural} {name} not found", status=404)

    async def stream_logs(
        self,
        owner_kind: OwnerKind,
        namespace: str | None,
        name: str,
        container: str | None = None,
        previous: bool = False,
    ) -> str:
        self.calls.append(("logs", owner_kind.value, namespace, name, container, previous))
        try:
            return self.logs[(namespace, name, container, previous)]
        except KeyError:
            raise PermanentClusterError("previous terminated container not found", status=400) from None

    async def server_version(self) -> dict[str, Any]:
        if self.version_error is not None:
            raise self.version_error
        return dict(SERVER_VERSION)

    def list_calls(self, kind: str, namespace: str | None = None) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == "list" and c[1] == kind and c[2] == namespace]


# ---------------------------------------------------------------------------
# Snapshot helpers
# ---------------------------------------------------------------------------


def write_snapshot(
    root: Path,
    objects: Iterable[tuple[ResourceType, dict[str, Any]]],
    logs: Iterable[LogEntry] = (),
    catalog: Iterable[ResourceType] | None = None,
) -> Path:
    """Write a snapshot tree the way a collection run would."""
    store = SnapshotStore(root)
    entries = list(objects)
    for resource_type, document in entries:
        metadata = document.get("metadata") or {}
        store.write_object(
            CollectedObject(
                resource_type=resource_type,
                namespace=metadata.get("namespace") if resource_type.namespaced else None,
                name=metadata["name"],
                document={"apiVersion": resource_type.api_version, "kind": resource_type.kind, **document},
            )
        )
    for entry in logs:
        store.write_log(entry)
    types = list(catalog) if catalog is not None else list(dict.fromkeys(t for t, _ in entries))
    store.write_document(CATALOG_FILE, [t.to_dict() for t in types])
    store.write_document(VERSION_FILE, SERVER_VERSION)
    return root


def read_json(path: Path) -> Any:
    return json.loads(path.read_text())


@pytest.fixture
def pod_snapshot(tmp_path: Path) -> Path:
    """Snapshot with default/Pod/p1 (logs included), kube-system/Pod/p2 and a Node."""
    return write_snapshot(
        tmp_path / "snap",
        [
            (NAMESPACE_TYPE, make_namespace("default")),
            (NAMESPACE_TYPE, make_namespace("kube-system")),
            (POD_TYPE, make_pod("p1", "default", labels={"app": "web", "tier": "frontend"})),
            (POD_TYPE, make_pod("p2", "kube-system", labels={"app": "dns"}, resource_version="200")),
            (NODE_TYPE, make_node("node-1")),
        ],
        logs=[
            LogEntry(OwnerKind.POD, "default", "p1", "hello from p1\n", container="app"),
            LogEntry(OwnerKind.POD, "default", "p1", "before restart\n", container="app", previous=True),
        ],
        catalog=[NAMESPACE_TYPE, POD_TYPE, NODE_TYPE, CONFIGMAP_TYPE],
    )
