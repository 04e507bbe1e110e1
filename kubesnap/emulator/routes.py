"""Kubernetes REST routes served from loaded snapshots.

Every route starts with the context name, so one process can serve several
snapshots side by side: ``/<ctx>/api/v1/namespaces/default/pods``.  Only
read verbs are served.  Anything else answers 405 through the catch-all.

Handlers that read stored blobs are plain functions so FastAPI runs them in
its threadpool; a long list never holds up other requests or open watches.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse

from kubesnap.emulator.contexts import ContextRegistry, ServeContext
from kubesnap.emulator.schemas import (
    StatusError,
    api_group,
    api_group_list,
    api_resource_list,
    api_versions,
    bad_request,
    list_document,
    not_found,
    table_document,
)
from kubesnap.emulator.watch import WatchSubscription, parse_cursor
from kubesnap.filters.selector import parse_field_selector, parse_selector
from kubesnap.models.resources import ResourceType

router = APIRouter()

_TRUE = frozenset({"true", "1"})
_FALSE = frozenset({"false", "0", ""})


@dataclass(frozen=True)
class ListQuery:
    label_selector: str | None
    field_selector: str | None
    watch: bool
    resource_version: str | None
    timeout_seconds: int | None


def list_query(
    label_selector: str | None = Query(None, alias="labelSelector"),
    field_selector: str | None = Query(None, alias="fieldSelector"),
    watch: str | None = Query(None),
    resource_version: str | None = Query(None, alias="resourceVersion"),
    timeout_seconds: int | None = Query(None, alias="timeoutSeconds", ge=0),
) -> ListQuery:
    flag = (watch or "").lower()
    if flag not in _TRUE | _FALSE:
        raise bad_request(f"invalid watch parameter {watch!r}")
    return ListQuery(label_selector, field_selector, flag in _TRUE, resource_version, timeout_seconds)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _context(request: Request, ctx: str) -> ServeContext:
    registry: ContextRegistry = request.app.state.registry
    return registry.get(ctx)


def _resolve(context: ServeContext, group: str, version: str, resource: str) -> ResourceType:
    resource_type = context.catalog.find(group, version, resource)
    if resource_type is None:
        gv = f"{group}/{version}" if group else version
        raise not_found(f"the server could not find the requested resource {resource} in {gv}")
    return resource_type


def _as_table(request: Request) -> bool:
    return "as=Table" in request.headers.get("accept", "")


def _sort_key(document: dict[str, Any]) -> tuple[str, str]:
    metadata = document.get("metadata") or {}
    return (str(metadata.get("name", "")), str(metadata.get("namespace", "")))


def _list(
    request: Request,
    ctx: str,
    group: str,
    version: str,
    resource: str,
    namespace: str | None,
    query: ListQuery,
) -> Response:
    context = _context(request, ctx)
    resource_type = _resolve(context, group, version, resource)
    if namespace is not None and not resource_type.namespaced:
        raise not_found(f"{resource_type.plural} is not a namespaced resource", resource_type)

    labels = parse_selector(query.label_selector)
    fields = parse_field_selector(query.field_selector)
    documents = [
        document
        for document in (context.read_document(p) for p in context.object_paths(resource_type, namespace))
        if labels.matches((document.get("metadata") or {}).get("labels")) and fields.matches(document)
    ]
    documents.sort(key=_sort_key)

    if query.watch:
        request.state.verb = "watch"
        subscription = WatchSubscription(
            context=context.name,
            resource_type=resource_type,
            namespace=namespace,
            cursor=parse_cursor(query.resource_version),
        )
        idle = request.app.state.config.watch_idle_timeout
        if query.timeout_seconds is not None:
            idle = min(idle, float(query.timeout_seconds))
        return StreamingResponse(
            subscription.replay(documents, idle, as_table=_as_table(request)),
            media_type="application/json",
        )

    request.state.verb = "list"
    if _as_table(request):
        return JSONResponse(table_document(documents))
    return JSONResponse(list_document(resource_type, documents))


def _get(
    request: Request,
    ctx: str,
    group: str,
    version: str,
    resource: str,
    namespace: str | None,
    name: str,
) -> Response:
    request.state.verb = "get"
    context = _context(request, ctx)
    resource_type = _resolve(context, group, version, resource)
    missing = not_found(f'{resource_type.plural} "{name}" not found', resource_type, name)
    if (namespace is None) == resource_type.namespaced:
        raise missing

    path = context.object_path(resource_type, namespace, name)
    if path is None:
        raise missing
    document = context.read_document(path)
    if (document.get("metadata") or {}).get("name") != name:
        raise missing
    if _as_table(request):
        return JSONResponse(table_document([document]))
    return JSONResponse(document)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


@router.get("/{ctx}/version")
async def version(request: Request, ctx: str) -> JSONResponse:
    request.state.verb = "discovery"
    return JSONResponse(_context(request, ctx).server_version())


@router.get("/{ctx}/api")
async def core_versions(request: Request, ctx: str) -> JSONResponse:
    request.state.verb = "discovery"
    return JSONResponse(api_versions(_context(request, ctx).catalog))


@router.get("/{ctx}/apis")
async def group_list(request: Request, ctx: str) -> JSONResponse:
    request.state.verb = "discovery"
    return JSONResponse(api_group_list(_context(request, ctx).catalog))


@router.get("/{ctx}/apis/{group}")
async def group_versions(request: Request, ctx: str, group: str) -> JSONResponse:
    request.state.verb = "discovery"
    document = api_group(_context(request, ctx).catalog, group)
    if document is None:
        raise not_found(f"the server could not find the requested resource {group}")
    return JSONResponse(document)


@router.get("/{ctx}/api/{version}")
async def core_resources(request: Request, ctx: str, version: str) -> JSONResponse:
    return _resource_list(request, ctx, "", version)


@router.get("/{ctx}/apis/{group}/{version}")
async def group_resources(request: Request, ctx: str, group: str, version: str) -> JSONResponse:
    return _resource_list(request, ctx, group, version)


def _resource_list(request: Request, ctx: str, group: str, version: str) -> JSONResponse:
    request.state.verb = "discovery"
    document = api_resource_list(_context(request, ctx).catalog, group, version)
    if document is None:
        gv = f"{group}/{version}" if group else version
        raise not_found(f"the server could not find the requested resource {gv}")
    return JSONResponse(document)


@router.post("/{ctx}/apis/authorization.k8s.io/v1/selfsubjectaccessreviews")
async def self_subject_access_review(request: Request, ctx: str) -> JSONResponse:
    """Every read is allowed against a snapshot."""
    request.state.verb = "create"
    _context(request, ctx)
    try:
        body = await request.json()
    except ValueError:
        body = {}
    spec = body.get("spec") if isinstance(body, dict) else None
    return JSONResponse(
        {
            "kind": "SelfSubjectAccessReview",
            "apiVersion": "authorization.k8s.io/v1",
            "metadata": {},
            "spec": spec or {"resourceAttributes": {"verb": "*", "resource": "*"}},
            "status": {"allowed": True},
        },
        status_code=201,
    )


# ---------------------------------------------------------------------------
# Objects
# ---------------------------------------------------------------------------


@router.get("/{ctx}/api/{version}/{resource}")
def list_core(
    request: Request, ctx: str, version: str, resource: str, query: ListQuery = Depends(list_query)
) -> Response:
    return _list(request, ctx, "", version, resource, None, query)


@router.get("/{ctx}/apis/{group}/{version}/{resource}")
def list_group(
    request: Request, ctx: str, group: str, version: str, resource: str, query: ListQuery = Depends(list_query)
) -> Response:
    return _list(request, ctx, group, version, resource, None, query)


@router.get("/{ctx}/api/{version}/{resource}/{name}")
def get_core_cluster(request: Request, ctx: str, version: str, resource: str, name: str) -> Response:
    return _get(request, ctx, "", version, resource, None, name)


@router.get("/{ctx}/apis/{group}/{version}/{resource}/{name}")
def get_group_cluster(
    request: Request, ctx: str, group: str, version: str, resource: str, name: str
) -> Response:
    return _get(request, ctx, group, version, resource, None, name)


@router.get("/{ctx}/api/{version}/namespaces/{namespace}/{resource}")
def list_core_namespaced(
    request: Request,
    ctx: str,
    version: str,
    namespace: str,
    resource: str,
    query: ListQuery = Depends(list_query),
) -> Response:
    return _list(request, ctx, "", version, resource, namespace, query)


@router.get("/{ctx}/apis/{group}/{version}/namespaces/{namespace}/{resource}")
def list_group_namespaced(
    request: Request,
    ctx: str,
    group: str,
    version: str,
    namespace: str,
    resource: str,
    query: ListQuery = Depends(list_query),
) -> Response:
    return _list(request, ctx, group, version, resource, namespace, query)


@router.get("/{ctx}/api/{version}/namespaces/{namespace}/{resource}/{name}")
def get_core_namespaced(
    request: Request, ctx: str, version: str, namespace: str, resource: str, name: str
) -> Response:
    return _get(request, ctx, "", version, resource, namespace, name)


@router.get("/{ctx}/apis/{group}/{version}/namespaces/{namespace}/{resource}/{name}")
def get_group_namespaced(
    request: Request, ctx: str, group: str, version: str, namespace: str, resource: str, name: str
) -> Response:
    return _get(request, ctx, group, version, resource, namespace, name)


@router.get("/{ctx}/api/{version}/namespaces/{namespace}/pods/{name}/log")
def pod_log(
    request: Request,
    ctx: str,
    version: str,
    namespace: str,
    name: str,
    container: str | None = Query(None),
    previous: bool = Query(False),
) -> PlainTextResponse:
    request.state.verb = "log"
    context = _context(request, ctx)
    content = context.read_log(namespace, name, container, previous)
    if content is None:
        pod_type = context.catalog.by_kind("Pod")
        raise not_found(f'logs for pod "{name}" were not captured', pod_type, name)
    return PlainTextResponse(content)


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------


@router.api_route(
    "/{path:path}",
    methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    include_in_schema=False,
)
async def fallback(request: Request, path: str) -> Response:
    """Unmatched paths are 404, and any write verb is 405."""
    request.state.verb = request.method.lower()
    if request.method not in ("GET", "HEAD"):
        raise StatusError(405, "MethodNotAllowed", f"the server does not allow this method on {request.url.path}")
    ctx = path.split("/", 1)[0]
    _context(request, ctx)
    raise not_found(f"the server could not find the requested resource {request.url.path}")
