"""Prometheus metrics for collection runs and the serving emulator.

Metrics are process-global and exposed to whoever mounts
``prometheus_client``'s registry; kubesnap itself only records them.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

objects_collected_total = Counter(
    "kubesnap_objects_collected_total",
    "Objects written to the snapshot, by kind.",
    ["kind"],
)

logs_collected_total = Counter(
    "kubesnap_logs_collected_total",
    "Log blobs written to the snapshot, by owner kind.",
    ["owner_kind"],
)

collection_errors_total = Counter(
    "kubesnap_collection_errors_total",
    "Collection tasks that ended in a recorded error.",
    ["error_class"],
)

retries_total = Counter(
    "kubesnap_retries_total",
    "Retries performed after transient cluster errors.",
)

requests_total = Counter(
    "kubesnap_requests_total",
    "Emulator requests served, by verb and status code.",
    ["verb", "code"],
)

watch_streams_active = Gauge(
    "kubesnap_watch_streams_active",
    "Watch streams currently held open by the emulator.",
)
