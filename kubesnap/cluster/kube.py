"""ClusterClient implementation backed by kubernetes-asyncio.

Talks to the API server through the generic ``ApiClient.call_api`` so that
any discovered resource type, built-in or custom, can be listed without a
typed API class.  Every failure is translated into the transient/permanent
taxonomy of ``kubesnap.cluster.client``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import aiohttp
import structlog
from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
from kubernetes_asyncio import config as k8s_config  # type: ignore[import-untyped]
from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

from kubesnap.cluster.client import (
    ClusterClientError,
    ListPage,
    TransientClusterError,
    classify_status,
)
from kubesnap.models.resources import SUPPORTED_VERBS, OwnerKind, ResourceType, Scope

_log = structlog.get_logger(component="cluster.kube")

_T = TypeVar("_T")

_PAGE_SIZE = 500
_REQUEST_TIMEOUT = 30
_KUBELET_LOG_PATH = "logs/kubelet.log"


def resource_path(resource_type: ResourceType, namespace: str | None) -> str:
    """REST collection path for a resource type, e.g. ``/apis/apps/v1/namespaces/ns/deployments``."""
    if resource_type.group:
        base = f"/apis/{resource_type.group}/{resource_type.version}"
    else:
        base = f"/api/{resource_type.version}"
    if namespace and resource_type.namespaced:
        return f"{base}/namespaces/{namespace}/{resource_type.plural}"
    return f"{base}/{resource_type.plural}"


def parse_resource_list(group: str, version: str, document: dict[str, Any]) -> list[ResourceType]:
    """Turn an ``APIResourceList`` document into ResourceTypes, skipping subresources."""
    types: list[ResourceType] = []
    for entry in document.get("resources") or []:
        name = str(entry.get("name", ""))
        if not name or "/" in name:
            continue
        types.append(
            ResourceType(
                group=group,
                version=version,
                kind=str(entry.get("kind", "")),
                plural=name,
                scope=Scope.NAMESPACED if entry.get("namespaced") else Scope.CLUSTER,
                verbs=frozenset(v for v in entry.get("verbs") or () if v in SUPPORTED_VERBS),
            )
        )
    return types


class KubernetesClusterClient:
    """Cluster client over a kubernetes-asyncio ``ApiClient``."""

    def __init__(self, api_client: Any, request_timeout: float = _REQUEST_TIMEOUT) -> None:
        self._api = api_client
        self._core = k8s_client.CoreV1Api(api_client)
        self._timeout = request_timeout

    @classmethod
    async def from_config(cls, kubeconfig: str = "", context: str = "") -> KubernetesClusterClient:
        """Load in-cluster config, falling back to a kubeconfig file."""
        try:
            k8s_config.load_incluster_config()
            _log.info("k8s client configured from in-cluster service account")
        except k8s_config.ConfigException:
            await k8s_config.load_kube_config(
                config_file=kubeconfig or None,
                context=context or None,
            )
            _log.info("k8s client configured from kubeconfig", context=context or "<current>")
        return cls(k8s_client.ApiClient())

    async def close(self) -> None:
        await self._api.close()

    async def _call(self, fn: Callable[[], Awaitable[_T]]) -> _T:
        try:
            return await fn()
        except ApiException as exc:
            raise classify_status(int(exc.status or 0), f"{exc.status} {exc.reason}") from exc
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise TransientClusterError(f"network error: {exc!r}") from exc

    async def _get_json(self, path: str, query: list[tuple[str, Any]] | None = None) -> dict[str, Any]:
        async def request() -> dict[str, Any]:
            data = await self._api.call_api(
                path,
                "GET",
                query_params=query or [],
                header_params={"Accept": "application/json"},
                response_types_map={200: "object"},
                auth_settings=["BearerToken"],
                _return_http_data_only=True,
                _request_timeout=self._timeout,
            )
            if not isinstance(data, dict):
                raise TransientClusterError(f"unexpected response body for {path}")
            return data

        return await self._call(request)

    # ------------------------------------------------------------------
    # ClusterClient protocol
    # ------------------------------------------------------------------

    async def discover_types(self) -> list[ResourceType]:
        types: list[ResourceType] = []

        core = await self._get_json("/api")
        for version in core.get("versions") or []:
            resources = await self._get_json(f"/api/{version}")
            types.extend(parse_resource_list("", str(version), resources))

        groups = await self._get_json("/apis")
        for group in groups.get("groups") or []:
            preferred = group.get("preferredVersion") or (group.get("versions") or [{}])[0]
            group_version = str(preferred.get("groupVersion", ""))
            if not group_version:
                continue
            name, _, version = group_version.partition("/")
            resources = await self._get_json(f"/apis/{group_version}")
            types.extend(parse_resource_list(name, version, resources))

        _log.debug("discovered resource types", count=len(types))
        return types

    async def list(
        self,
        resource_type: ResourceType,
        namespace: str | None,
        continue_token: str | None = None,
    ) -> ListPage:
        query: list[tuple[str, Any]] = [("limit", _PAGE_SIZE)]
        if continue_token:
            query.append(("continue", continue_token))
        data = await self._get_json(resource_path(resource_type, namespace), query)
        metadata = data.get("metadata") or {}
        return ListPage(
            items=list(data.get("items") or []),
            continue_token=metadata.get("continue") or None,
            resource_version=str(metadata.get("resourceVersion", "")),
        )

    async def get(self, resource_type: ResourceType, namespace: str | None, name: str) -> dict[str, Any]:
        return await self._get_json(f"{resource_path(resource_type, namespace)}/{name}")

    async def stream_logs(
        self,
        owner_kind: OwnerKind,
        namespace: str | None,
        name: str,
        container: str | None = None,
        previous: bool = False,
    ) -> str:
        if owner_kind == OwnerKind.NODE:
            return str(
                await self._call(
                    lambda: self._core.connect_get_node_proxy_with_path(
                        name,
                        _KUBELET_LOG_PATH,
                        _request_timeout=self._timeout,
                    )
                )
            )
        if not namespace:
            raise ClusterClientError(f"pod log request for {name} is missing a namespace")
        kwargs: dict[str, Any] = {"previous": previous, "_request_timeout": self._timeout}
        if container:
            kwargs["container"] = container
        return str(await self._call(lambda: self._core.read_namespaced_pod_log(name, namespace, **kwargs)))

    async def server_version(self) -> dict[str, Any]:
        return await self._get_json("/version")
