"""Collection pipeline for kubesnap.

Submodules:
    retry      -- RetrySchedule and retry_call(): exponential back-off for
                  transient cluster errors.
    discovery  -- discover(): the cluster's ResourceCatalog, fatal on failure.
    engine     -- CollectionEngine / collect(): worker-pool fan-out into a
                  SnapshotStore.
"""

from kubesnap.collector.discovery import DiscoveryError, discover
from kubesnap.collector.engine import CollectionEngine, CollectionError, CollectionResult, collect
from kubesnap.collector.retry import RetryExhaustedError, RetrySchedule, retry_call

__all__ = [
    "CollectionEngine",
    "CollectionError",
    "CollectionResult",
    "DiscoveryError",
    "RetryExhaustedError",
    "RetrySchedule",
    "collect",
    "discover",
    "retry_call",
]
