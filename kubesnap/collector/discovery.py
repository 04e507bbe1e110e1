"""Resource discovery: the catalog of types a cluster can list.

Discovery is all-or-nothing.  Transient failures are retried under the run's
RetrySchedule; anything left over aborts the collection run with
``DiscoveryError`` before a single object is written.
"""

from __future__ import annotations

import structlog

from kubesnap.cluster.client import ClusterClient, ClusterClientError
from kubesnap.collector.retry import RetryExhaustedError, RetrySchedule, retry_call
from kubesnap.models.catalog import ResourceCatalog

_log = structlog.get_logger(component="collector.discovery")


class DiscoveryError(Exception):
    """The resource type catalog could not be retrieved.  Fatal for a run."""


async def discover(client: ClusterClient, schedule: RetrySchedule) -> ResourceCatalog:
    """Return the full ResourceCatalog of *client*'s cluster."""
    try:
        types = await retry_call(client.discover_types, schedule, description="discovery")
    except (ClusterClientError, RetryExhaustedError) as exc:
        _log.error("discovery_failed", error=str(exc))
        raise DiscoveryError(f"resource discovery failed: {exc}") from exc

    if not types:
        raise DiscoveryError("resource discovery returned no resource types")

    catalog = ResourceCatalog(types)
    _log.info(
        "discovery_complete",
        types=len(catalog),
        groups=len(catalog.group_versions()),
    )
    return catalog
