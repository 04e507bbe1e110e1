"""Core data structures for kubesnap."""

from kubesnap.models.config import KubesnapConfig
from kubesnap.models.resources import (
    CollectedObject,
    LogEntry,
    OwnerKind,
    ResourceType,
    Scope,
)

__all__ = [
    "CollectedObject",
    "KubesnapConfig",
    "LogEntry",
    "OwnerKind",
    "ResourceType",
    "Scope",
]
