"""Cluster access for the collection engine.

Submodules:
    client -- ClusterClient protocol, ListPage and the transient/permanent
              error taxonomy.
    kube   -- KubernetesClusterClient: the kubernetes-asyncio implementation.
"""

from kubesnap.cluster.client import (
    ClusterClient,
    ClusterClientError,
    ListPage,
    PermanentClusterError,
    TransientClusterError,
    classify_status,
)

__all__ = [
    "ClusterClient",
    "ClusterClientError",
    "ListPage",
    "PermanentClusterError",
    "TransientClusterError",
    "classify_status",
]
