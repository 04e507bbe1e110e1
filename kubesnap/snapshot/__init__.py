"""On-disk snapshot representation.

Submodules:
    paths      -- deterministic identity -> path layout.
    store      -- SnapshotStore (atomic writer) and SnapshotTree (reader).
    redaction  -- SecretSet, redact() and redact_text().
    archive    -- gzip tarball pack/unpack.
"""

from kubesnap.snapshot.redaction import REDACTED, SecretSet, redact, redact_text
from kubesnap.snapshot.store import SnapshotReadError, SnapshotStore, SnapshotTree

__all__ = [
    "REDACTED",
    "SecretSet",
    "SnapshotReadError",
    "SnapshotStore",
    "SnapshotTree",
    "redact",
    "redact_text",
]
