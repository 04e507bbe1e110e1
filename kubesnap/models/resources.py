"""Resource type and collected object data structures."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

SUPPORTED_VERBS = frozenset({"get", "list", "watch"})

_RE_KUBE_VERSION = re.compile(r"^v([0-9]+)(?:(alpha|beta)([0-9]+))?$")
_STABILITY_RANK: dict[str | None, int] = {None: 0, "beta": 1, "alpha": 2}


class Scope(StrEnum):
    """Whether a resource type lives inside a namespace."""

    NAMESPACED = "Namespaced"
    CLUSTER = "Cluster"


class OwnerKind(StrEnum):
    """Kinds of object that own a collected log."""

    POD = "Pod"
    NODE = "Node"


@dataclass(frozen=True)
class ResourceType:
    """A discovered API resource type.

    Identity is (group, version, kind); plural, scope and verbs ride along
    but do not take part in equality or hashing.  The core group is the
    empty string.
    """

    group: str
    version: str
    kind: str
    plural: str = field(default="", compare=False)
    scope: Scope = field(default=Scope.NAMESPACED, compare=False)
    verbs: frozenset[str] = field(default=SUPPORTED_VERBS, compare=False)

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    @property
    def namespaced(self) -> bool:
        return self.scope == Scope.NAMESPACED

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.group, self.version, self.kind)

    def supports(self, verb: str) -> bool:
        return verb in self.verbs

    def __str__(self) -> str:
        return f"{self.api_version}/{self.kind}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "group": self.group,
            "version": self.version,
            "kind": self.kind,
            "plural": self.plural,
            "scope": self.scope.value,
            "verbs": sorted(self.verbs),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResourceType:
        verbs = frozenset(str(v) for v in data.get("verbs", ()) if v in SUPPORTED_VERBS)
        return cls(
            group=str(data.get("group", "")),
            version=str(data["version"]),
            kind=str(data["kind"]),
            plural=str(data.get("plural") or default_plural(str(data["kind"]))),
            scope=Scope(data.get("scope", Scope.NAMESPACED.value)),
            verbs=verbs,
        )


def default_plural(kind: str) -> str:
    """Best-effort plural resource name for a kind, used when none was recorded."""
    lower = kind.lower()
    if lower.endswith(("s", "x", "z", "ch", "sh")):
        return lower + "es"
    if lower.endswith("y") and len(lower) > 1 and lower[-2] not in "aeiou":
        return lower[:-1] + "ies"
    return lower + "s"


def version_priority(version: str) -> tuple[int, int, int, int, str]:
    """Sort key putting versions in Kubernetes discovery order.

    GA before beta before alpha, higher major and minor first within each
    level.  Versions that do not follow the vN[alpha|betaM] form sort last,
    alphabetically.
    """
    match = _RE_KUBE_VERSION.match(version)
    if match is None:
        return (1, 0, 0, 0, version)
    major, stability, minor = match.groups()
    return (0, _STABILITY_RANK[stability], -int(major), -int(minor or 0), version)


def split_api_version(api_version: str) -> tuple[str, str]:
    """Split ``apps/v1`` into ``("apps", "v1")`` and ``v1`` into ``("", "v1")``."""
    group, _, version = api_version.rpartition("/")
    return group, version


@dataclass(frozen=True)
class CollectedObject:
    """One object retrieved from the cluster.

    Produced by the collection engine, consumed by the redactor and then the
    snapshot store.  Immutable: redaction produces a copy via ``with_document``.
    """

    resource_type: ResourceType
    namespace: str | None
    name: str
    document: dict[str, Any]
    collected_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @property
    def identity(self) -> tuple[tuple[str, str, str], str | None, str]:
        return (self.resource_type.identity, self.namespace, self.name)

    @property
    def labels(self) -> dict[str, str]:
        metadata = self.document.get("metadata") or {}
        return dict(metadata.get("labels") or {})

    def with_document(self, document: dict[str, Any]) -> CollectedObject:
        return replace(self, document=document)


@dataclass(frozen=True)
class LogEntry:
    """Log content captured for a Pod container or a Node."""

    owner_kind: OwnerKind
    owner_namespace: str | None
    owner_name: str
    content: str
    container: str | None = None
    previous: bool = False

    def with_content(self, content: str) -> LogEntry:
        return replace(self, content=content)
