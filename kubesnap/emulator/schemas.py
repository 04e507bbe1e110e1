"""Kubernetes wire documents produced by the emulator.

``Status`` is the error envelope every failure response uses.  The remaining
helpers build discovery, list, table and watch documents from a context's
catalog and stored objects.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, Field

from kubesnap.models.catalog import ResourceCatalog
from kubesnap.models.resources import ResourceType

READ_VERBS = ["get", "list", "watch"]


class StatusDetails(BaseModel):
    name: str | None = None
    group: str | None = None
    kind: str | None = None


class Status(BaseModel):
    """Kubernetes ``meta/v1`` Status, failure form."""

    kind: str = "Status"
    apiVersion: str = "v1"
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: str = "Failure"
    message: str
    reason: str
    details: StatusDetails | None = None
    code: int


class StatusError(Exception):
    """Raised by route handlers; rendered as a Status response."""

    def __init__(self, code: int, reason: str, message: str, details: StatusDetails | None = None) -> None:
        super().__init__(message)
        self.status = Status(message=message, reason=reason, details=details, code=code)

    @property
    def code(self) -> int:
        return self.status.code


def bad_request(message: str) -> StatusError:
    return StatusError(400, "BadRequest", message)


def not_found(message: str, resource_type: ResourceType | None = None, name: str | None = None) -> StatusError:
    details = None
    if resource_type is not None:
        details = StatusDetails(name=name, group=resource_type.group, kind=resource_type.plural)
    return StatusError(404, "NotFound", message, details)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def api_versions(catalog: ResourceCatalog) -> dict[str, Any]:
    return {
        "kind": "APIVersions",
        "versions": catalog.group_versions().get("", []),
        "serverAddressByClientCIDRs": [{"clientCIDR": "0.0.0.0/0", "serverAddress": ""}],
    }


def _resource_entry(resource_type: ResourceType) -> dict[str, Any]:
    return {
        "name": resource_type.plural,
        "singularName": resource_type.kind.lower(),
        "namespaced": resource_type.namespaced,
        "kind": resource_type.kind,
        "verbs": READ_VERBS,
    }


def api_resource_list(catalog: ResourceCatalog, group: str, version: str) -> dict[str, Any] | None:
    """APIResourceList for one group version, or None if the group version is unknown."""
    types = [t for t in catalog if t.group == group and t.version == version]
    if not types:
        return None
    resources = [_resource_entry(t) for t in types]
    if group == "" and any(t.kind == "Pod" for t in types):
        resources.append(
            {"name": "pods/log", "singularName": "", "namespaced": True, "kind": "Pod", "verbs": ["get"]}
        )
    return {
        "kind": "APIResourceList",
        "apiVersion": "v1",
        "groupVersion": f"{group}/{version}" if group else version,
        "resources": resources,
    }


def _group_entry(group: str, versions: list[str]) -> dict[str, Any]:
    entries = [{"groupVersion": f"{group}/{v}", "version": v} for v in versions]
    return {"name": group, "versions": entries, "preferredVersion": entries[0]}


def api_group_list(catalog: ResourceCatalog) -> dict[str, Any]:
    groups = [_group_entry(group, versions) for group, versions in catalog.group_versions().items() if group]
    return {"kind": "APIGroupList", "apiVersion": "v1", "groups": groups}


def api_group(catalog: ResourceCatalog, group: str) -> dict[str, Any] | None:
    """APIGroup for one named group, or None if the snapshot holds no such group."""
    versions = catalog.group_versions().get(group) if group else None
    if not versions:
        return None
    return {"kind": "APIGroup", "apiVersion": "v1", **_group_entry(group, versions)}


# ---------------------------------------------------------------------------
# Lists, tables and watch events
# ---------------------------------------------------------------------------


def resource_version(document: dict[str, Any]) -> int | None:
    """Numeric metadata.resourceVersion, or None when absent or opaque."""
    value = (document.get("metadata") or {}).get("resourceVersion")
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _list_resource_version(documents: Iterable[dict[str, Any]]) -> str:
    versions = [rv for rv in (resource_version(d) for d in documents) if rv is not None]
    return str(max(versions)) if versions else ""


def list_document(resource_type: ResourceType, documents: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "apiVersion": resource_type.api_version,
        "kind": f"{resource_type.kind}List",
        "metadata": {"resourceVersion": _list_resource_version(documents)},
        "items": documents,
    }


_TABLE_COLUMNS = [
    {
        "name": "Name",
        "type": "string",
        "format": "name",
        "description": "Name must be unique within a namespace.",
        "priority": 0,
    },
    {
        "name": "Created At",
        "type": "date",
        "format": "",
        "description": "CreationTimestamp of the object.",
        "priority": 0,
    },
]


def _table_row(document: dict[str, Any]) -> dict[str, Any]:
    metadata = document.get("metadata") or {}
    return {
        "cells": [metadata.get("name", ""), metadata.get("creationTimestamp", "")],
        "object": {
            "kind": "PartialObjectMetadata",
            "apiVersion": "meta.k8s.io/v1",
            "metadata": metadata,
        },
    }


def table_document(documents: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "kind": "Table",
        "apiVersion": "meta.k8s.io/v1",
        "metadata": {"resourceVersion": _list_resource_version(documents)},
        "columnDefinitions": _TABLE_COLUMNS,
        "rows": [_table_row(d) for d in documents],
    }


def watch_event(document: dict[str, Any], as_table: bool = False) -> bytes:
    obj = table_document([document]) if as_table else document
    return (json.dumps({"type": "ADDED", "object": obj}, separators=(",", ":")) + "\n").encode("utf-8")
