"""Snapshot-serving emulator.

Replays collected snapshots as read-only Kubernetes API endpoints, one
context per snapshot.

Submodules:
    contexts    -- ServeContext / ContextRegistry: loading and lookup.
    schemas     -- Status envelope and discovery/list/table documents.
    watch       -- WatchSubscription: finite-then-idle watch replay.
    routes      -- the REST surface.
    app         -- create_app() FastAPI factory.
    kubeconfig  -- merge/remove kubeconfig entries for served contexts.
"""

from kubesnap.emulator.contexts import (
    ContextRegistry,
    ServeContext,
    SnapshotLoadError,
    UnknownContextError,
)

__all__ = [
    "ContextRegistry",
    "ServeContext",
    "SnapshotLoadError",
    "UnknownContextError",
]
