"""Cluster client capability consumed by discovery and the collection engine.

Everything the collector needs from a live cluster goes through the
``ClusterClient`` protocol, so the engine never touches transport, TLS or
credentials.  Implementations must raise ``TransientClusterError`` or
``PermanentClusterError``.  Only the former is retried.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from kubesnap.models.resources import OwnerKind, ResourceType

# 408 Request Timeout and 429 Too Many Requests are the only retryable 4xx.
_TRANSIENT_4XX = frozenset({408, 429})


class ClusterClientError(Exception):
    """Base class for classified cluster client failures."""

    transient: bool = False

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TransientClusterError(ClusterClientError):
    """Network failure, timeout, 5xx or rate limiting.  Safe to retry."""

    transient = True


class PermanentClusterError(ClusterClientError):
    """403, 404 and other client errors.  Retrying cannot help."""


def classify_status(status: int, message: str = "") -> ClusterClientError:
    """Map an HTTP status code onto the transient/permanent taxonomy."""
    text = message or f"HTTP {status}"
    if status >= 500 or status in _TRANSIENT_4XX:
        return TransientClusterError(text, status=status)
    return PermanentClusterError(text, status=status)


@dataclass
class ListPage:
    """One page of a paginated list call."""

    items: list[dict[str, Any]] = field(default_factory=list)
    continue_token: str | None = None
    resource_version: str = ""


class ClusterClient(Protocol):
    """What the collection engine needs from a cluster."""

    async def discover_types(self) -> list[ResourceType]:
        """Return the full resource type catalog."""
        ...

    async def list(
        self,
        resource_type: ResourceType,
        namespace: str | None,
        continue_token: str | None = None,
    ) -> ListPage:
        """Return one page of objects of *resource_type* in *namespace* (None: cluster scope)."""
        ...

    async def get(self, resource_type: ResourceType, namespace: str | None, name: str) -> dict[str, Any]:
        ...

    async def stream_logs(
        self,
        owner_kind: OwnerKind,
        namespace: str | None,
        name: str,
        container: str | None = None,
        previous: bool = False,
    ) -> str:
        """Return the log text of a Pod container or a Node's kubelet."""
        ...

    async def server_version(self) -> dict[str, Any]:
        ...
