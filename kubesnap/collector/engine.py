"""Collection engine: concurrent fan-out from a live cluster into a snapshot.

A run is:

1. discovery (fatal on failure, nothing written);
2. one object task per admitted (resource type, namespace) pair, plus log
   tasks enqueued as Pods and Nodes are accepted;
3. a fixed pool of workers draining a shared ``asyncio.Queue``, every cluster
   call wrapped in ``retry_call``;
4. each accepted object redacted and written straight to the store.

Task failures never escape ``collect()``.  They are recorded as
``CollectionError`` values on the result, next to whatever was collected.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import partial
from typing import Any

import structlog

from kubesnap.cluster.client import ClusterClient, ClusterClientError
from kubesnap.collector.discovery import discover
from kubesnap.collector.retry import RetryExhaustedError, RetrySchedule, retry_call
from kubesnap.filters.engine import Filter, ObjectDescriptor
from kubesnap.models.catalog import ResourceCatalog
from kubesnap.models.resources import CollectedObject, LogEntry, OwnerKind, ResourceType
from kubesnap.observability.metrics import (
    collection_errors_total,
    logs_collected_total,
    objects_collected_total,
)
from kubesnap.snapshot.paths import APP_VERSIONS_FILE, CATALOG_FILE, COLLECTED_FILE, VERSION_FILE
from kubesnap.snapshot.redaction import SecretSet, redact, redact_text
from kubesnap.snapshot.store import SnapshotStore, SnapshotTree

_log = structlog.get_logger(component="collector.engine")

RUN_DEADLINE_EXCEEDED = "run deadline exceeded"


@dataclass(frozen=True)
class CollectionError:
    """A failure recorded against one task scope.  Never raised."""

    scope: str
    reason: str
    resource_type: ResourceType | None = None
    namespace: str | None = None
    status: int | None = None
    transient: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope,
            "reason": self.reason,
            "resourceType": str(self.resource_type) if self.resource_type else None,
            "namespace": self.namespace,
            "status": self.status,
            "transient": self.transient,
        }


@dataclass
class CollectionResult:
    """Best-effort outcome of a run: the tree written so far and every recorded error."""

    tree: SnapshotTree
    errors: list[CollectionError] = field(default_factory=list)
    objects: int = 0
    logs: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class _ObjectTask:
    resource_type: ResourceType
    namespace: str | None

    @property
    def scope(self) -> str:
        return f"{self.resource_type} ns={self.namespace}" if self.namespace else str(self.resource_type)


@dataclass(frozen=True)
class _LogTask:
    owner_kind: OwnerKind
    namespace: str | None
    name: str
    container: str | None = None
    previous: bool = False

    @property
    def scope(self) -> str:
        owner = f"{self.namespace}/{self.name}" if self.namespace else self.name
        scope = f"logs {self.owner_kind} {owner}"
        if self.container:
            scope += f" container={self.container}"
        return scope + (" previous" if self.previous else "")


_Task = _ObjectTask | _LogTask


class CollectionEngine:
    """Collects one snapshot from *client* into *store*."""

    def __init__(
        self,
        client: ClusterClient,
        store: SnapshotStore,
        filter_: Filter | None = None,
        schedule: RetrySchedule | None = None,
        concurrency: int = 8,
        secrets: SecretSet | None = None,
        collect_logs: bool = True,
        run_timeout: float | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._client = client
        self._store = store
        self._filter = filter_ or Filter()
        self._schedule = schedule or RetrySchedule()
        self._concurrency = concurrency
        self._secrets = secrets or SecretSet()
        self._collect_logs = collect_logs
        self._run_timeout = run_timeout if run_timeout and run_timeout > 0 else None

        self._queue: asyncio.Queue[_Task] = asyncio.Queue()
        self._result = CollectionResult(tree=store.tree())
        self._app_versions: list[dict[str, str]] = []

    async def collect(self) -> CollectionResult:
        """Run discovery and the worker pool.

        Raises:
            DiscoveryError: the resource catalog could not be retrieved.
        """
        started = datetime.now(tz=UTC)
        catalog = await discover(self._client, self._schedule)

        admitted = ResourceCatalog(t for t in catalog if t.supports("list") and self._filter.admit_type(t))
        self._store.write_document(CATALOG_FILE, admitted.to_list())
        await self._record_server_version()

        namespaces: list[str] = []
        if any(t.namespaced for t in admitted):
            namespaces = await self._list_namespaces(catalog)

        for resource_type in admitted:
            if not resource_type.namespaced:
                self._queue.put_nowait(_ObjectTask(resource_type, None))
                continue
            for namespace in namespaces:
                self._queue.put_nowait(_ObjectTask(resource_type, namespace))

        _log.info(
            "collection_started",
            types=len(admitted),
            namespaces=len(namespaces),
            tasks=self._queue.qsize(),
            concurrency=self._concurrency,
        )

        workers = [asyncio.create_task(self._worker(i)) for i in range(self._concurrency)]
        try:
            async with asyncio.timeout(self._run_timeout):
                await self._queue.join()
        except TimeoutError:
            self._record(
                CollectionError(scope="run", reason=RUN_DEADLINE_EXCEEDED, transient=True),
                error_class="RunDeadlineExceeded",
            )
            _log.warning("run_deadline_exceeded", timeout=self._run_timeout, pending=self._queue.qsize())
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        self._store.write_document(APP_VERSIONS_FILE, sorted(self._app_versions, key=_app_version_key))
        self._store.write_document(
            COLLECTED_FILE,
            {
                "collectedAt": started.isoformat(),
                "finishedAt": datetime.now(tz=UTC).isoformat(),
                "objects": self._result.objects,
                "logs": self._result.logs,
                "errors": [e.to_dict() for e in self._result.errors],
            },
        )
        _log.info(
            "collection_finished",
            objects=self._result.objects,
            logs=self._result.logs,
            errors=len(self._result.errors),
            root=str(self._store.root),
        )
        return self._result

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def _record_server_version(self) -> None:
        try:
            version = await retry_call(self._client.server_version, self._schedule, description="server version")
        except (ClusterClientError, RetryExhaustedError) as exc:
            self._record_failure("version", exc)
            return
        self._store.write_document(VERSION_FILE, version)

    async def _list_namespaces(self, catalog: ResourceCatalog) -> list[str]:
        namespace_type = catalog.by_kind("Namespace")
        if namespace_type is None:
            self._record(
                CollectionError(scope="namespaces", reason="Namespace resource type not discovered"),
                error_class="DiscoveryError",
            )
            return []
        try:
            items = await self._list_all(namespace_type, None)
        except (ClusterClientError, RetryExhaustedError) as exc:
            self._record_failure("namespaces", exc, namespace_type)
            return []

        names = sorted({str((item.get("metadata") or {}).get("name", "")) for item in items} - {""})
        admitted = [ns for ns in names if self._filter.admit_namespace(ns)]
        _log.debug("namespaces_listed", total=len(names), admitted=len(admitted))
        return admitted

    async def _list_all(self, resource_type: ResourceType, namespace: str | None) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        async for page in self._pages(resource_type, namespace):
            items.extend(page)
        return items

    async def _pages(self, resource_type: ResourceType, namespace: str | None) -> AsyncIterator[list[dict[str, Any]]]:
        token: str | None = None
        scope = _ObjectTask(resource_type, namespace).scope
        while True:
            page = await retry_call(
                partial(self._client.list, resource_type, namespace, token),
                self._schedule,
                description=f"list {scope}",
            )
            yield page.items
            token = page.continue_token
            if not token:
                return

    # ------------------------------------------------------------------
    # Worker pool
    # ------------------------------------------------------------------

    async def _worker(self, index: int) -> None:
        while True:
            task = await self._queue.get()
            try:
                if isinstance(task, _ObjectTask):
                    await self._collect_objects(task)
                else:
                    await self._collect_log(task)
            except (ClusterClientError, RetryExhaustedError) as exc:
                self._record_failure(
                    task.scope,
                    exc,
                    task.resource_type if isinstance(task, _ObjectTask) else None,
                    task.namespace,
                )
            except Exception as exc:
                _log.exception("collection_task_crashed", scope=task.scope, worker=index)
                self._record_failure(task.scope, exc, None, task.namespace)
            finally:
                self._queue.task_done()

    async def _collect_objects(self, task: _ObjectTask) -> None:
        resource_type = task.resource_type
        accepted = 0
        async for items in self._pages(resource_type, task.namespace):
            for item in items:
                if self._accept(resource_type, task.namespace, item):
                    accepted += 1
        _log.debug("objects_collected", scope=task.scope, count=accepted)

    def _accept(self, resource_type: ResourceType, namespace: str | None, item: dict[str, Any]) -> bool:
        document = dict(item)
        document.setdefault("apiVersion", resource_type.api_version)
        document.setdefault("kind", resource_type.kind)
        metadata = document.get("metadata") or {}
        name = str(metadata.get("name", ""))
        if not name:
            _log.warning("object_without_name", resource_type=str(resource_type), namespace=namespace)
            return False
        if resource_type.namespaced:
            namespace = str(metadata.get("namespace") or namespace or "") or None
        else:
            namespace = None

        if not self._filter.admit(ObjectDescriptor.for_document(resource_type, document)):
            return False

        obj = CollectedObject(
            resource_type=resource_type,
            namespace=namespace,
            name=name,
            document=redact(document, self._secrets),
        )
        self._store.write_object(obj)
        self._result.objects += 1
        objects_collected_total.labels(kind=resource_type.kind).inc()

        if resource_type.group == "" and resource_type.kind == OwnerKind.POD:
            self._on_pod(obj)
        elif resource_type.group == "" and resource_type.kind == OwnerKind.NODE and self._collect_logs:
            self._queue.put_nowait(_LogTask(OwnerKind.NODE, None, name))
        return True

    def _on_pod(self, pod: CollectedObject) -> None:
        spec = pod.document.get("spec") or {}
        status = pod.document.get("status") or {}
        restarts = {
            str(s.get("name")): int(s.get("restartCount") or 0)
            for s in [*(status.get("initContainerStatuses") or []), *(status.get("containerStatuses") or [])]
        }
        for container in [*(spec.get("initContainers") or []), *(spec.get("containers") or [])]:
            container_name = str(container.get("name", ""))
            if not container_name:
                continue
            self._app_versions.append(
                {
                    "namespace": pod.namespace or "",
                    "pod": pod.name,
                    "container": container_name,
                    "image": str(container.get("image", "")),
                }
            )
            if not self._collect_logs:
                continue
            self._queue.put_nowait(_LogTask(OwnerKind.POD, pod.namespace, pod.name, container_name))
            if restarts.get(container_name, 0) > 0:
                self._queue.put_nowait(_LogTask(OwnerKind.POD, pod.namespace, pod.name, container_name, True))

    async def _collect_log(self, task: _LogTask) -> None:
        content = await retry_call(
            partial(
                self._client.stream_logs,
                task.owner_kind,
                task.namespace,
                task.name,
                task.container,
                task.previous,
            ),
            self._schedule,
            description=task.scope,
        )
        entry = LogEntry(
            owner_kind=task.owner_kind,
            owner_namespace=task.namespace,
            owner_name=task.name,
            content=redact_text(content, self._secrets),
            container=task.container,
            previous=task.previous,
        )
        self._store.write_log(entry)
        self._result.logs += 1
        logs_collected_total.labels(owner_kind=task.owner_kind.value).inc()

    # ------------------------------------------------------------------
    # Error bookkeeping
    # ------------------------------------------------------------------

    def _record_failure(
        self,
        scope: str,
        exc: BaseException,
        resource_type: ResourceType | None = None,
        namespace: str | None = None,
    ) -> None:
        self._record(
            CollectionError(
                scope=scope,
                reason=str(exc),
                resource_type=resource_type,
                namespace=namespace,
                status=getattr(exc, "status", None),
                transient=isinstance(exc, RetryExhaustedError),
            ),
            error_class=type(exc).__name__,
        )

    def _record(self, error: CollectionError, error_class: str) -> None:
        self._result.errors.append(error)
        collection_errors_total.labels(error_class=error_class).inc()
        _log.warning(
            "collection_error",
            scope=error.scope,
            reason=error.reason,
            status=error.status,
            transient=error.transient,
        )


def _app_version_key(entry: dict[str, str]) -> tuple[str, str, str]:
    return (entry["namespace"], entry["pod"], entry["container"])


async def collect(
    client: ClusterClient,
    filter_: Filter,
    schedule: RetrySchedule,
    concurrency: int,
    *,
    store: SnapshotStore,
    secrets: SecretSet | None = None,
    collect_logs: bool = True,
    run_timeout: float | None = None,
) -> CollectionResult:
    """Collect a snapshot of *client*'s cluster into *store*.

    Returns the best-effort result; only discovery failure raises.
    """
    engine = CollectionEngine(
        client,
        store,
        filter_=filter_,
        schedule=schedule,
        concurrency=concurrency,
        secrets=secrets,
        collect_logs=collect_logs,
        run_timeout=run_timeout,
    )
    return await engine.collect()
