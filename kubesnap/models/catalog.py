"""Resource type catalog shared by discovery, collection and the emulator."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

from kubesnap.models.resources import ResourceType, version_priority


class ResourceCatalog:
    """An ordered, de-duplicated set of ResourceTypes.

    Types are kept sorted by (group, version, kind) so anything derived from
    the catalog (task order, discovery documents, catalog.json) is stable.
    The first occurrence of an identity wins.
    """

    def __init__(self, types: Iterable[ResourceType] = ()) -> None:
        by_identity: dict[tuple[str, str, str], ResourceType] = {}
        for resource_type in types:
            by_identity.setdefault(resource_type.identity, resource_type)
        self._types = sorted(by_identity.values(), key=lambda t: t.identity)
        self._by_identity = by_identity

    def __iter__(self) -> Iterator[ResourceType]:
        return iter(self._types)

    def __len__(self) -> int:
        return len(self._types)

    def __contains__(self, resource_type: object) -> bool:
        return isinstance(resource_type, ResourceType) and resource_type.identity in self._by_identity

    def get(self, group: str, version: str, kind: str) -> ResourceType | None:
        return self._by_identity.get((group, version, kind))

    def find(self, group: str, version: str, resource: str) -> ResourceType | None:
        """Resolve a URL resource segment (plural, or kind in any case) within a group version."""
        lowered = resource.lower()
        for resource_type in self._types:
            if resource_type.group != group or resource_type.version != version:
                continue
            if resource_type.plural == resource or resource_type.kind.lower() == lowered:
                return resource_type
        return None

    def by_kind(self, kind: str, group: str = "") -> ResourceType | None:
        for resource_type in self._types:
            if resource_type.kind == kind and resource_type.group == group:
                return resource_type
        return None

    def group_versions(self) -> dict[str, list[str]]:
        """Map each group ("" for core) to its versions, preferred version first."""
        groups: dict[str, set[str]] = {}
        for resource_type in self._types:
            groups.setdefault(resource_type.group, set()).add(resource_type.version)
        return {group: sorted(versions, key=version_priority) for group, versions in sorted(groups.items())}

    def merged(self, other: Iterable[ResourceType]) -> ResourceCatalog:
        return ResourceCatalog([*self._types, *other])

    def to_list(self) -> list[dict[str, Any]]:
        return [t.to_dict() for t in self._types]

    @classmethod
    def from_list(cls, data: Iterable[dict[str, Any]]) -> ResourceCatalog:
        return cls(ResourceType.from_dict(item) for item in data)
