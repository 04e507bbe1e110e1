"""Unit tests for the deterministic snapshot path layout."""

from __future__ import annotations

import pytest

from kubesnap.models.resources import LogEntry, OwnerKind, ResourceType
from kubesnap.snapshot.paths import (
    ObjectLocation,
    log_entry_path,
    log_path,
    object_path,
    parse_object_path,
    sanitize,
)

from ..conftest import CRD_TYPE, DEPLOYMENT_TYPE, NAMESPACE_TYPE, POD_TYPE


class TestObjectPath:
    def test_namespaced_core(self) -> None:
        assert object_path(POD_TYPE, "default", "p1") == "namespaces/default/core/v1/Pod/p1.json"

    def test_namespaced_group(self) -> None:
        assert object_path(DEPLOYMENT_TYPE, "prod", "web") == "namespaces/prod/apps/v1/Deployment/web.json"

    def test_cluster_scoped(self) -> None:
        assert object_path(NAMESPACE_TYPE, None, "default") == "cluster/core/v1/Namespace/default.json"
        assert (
            object_path(CRD_TYPE, None, "widgets.example.com")
            == "cluster/apiextensions.k8s.io/v1/CustomResourceDefinition/widgets.example.com.json"
        )

    def test_cluster_scoped_ignores_namespace(self) -> None:
        assert object_path(NAMESPACE_TYPE, "default", "x") == object_path(NAMESPACE_TYPE, None, "x")

    def test_same_identity_same_path(self) -> None:
        assert object_path(POD_TYPE, "default", "p1") == object_path(POD_TYPE, "default", "p1")
        assert object_path(POD_TYPE, "default", "p1") != object_path(POD_TYPE, "prod", "p1")

    @pytest.mark.parametrize(
        ("segment", "expected"),
        [
            ("system:node:worker-1", "system-node-worker-1"),
            ("a/b\\c", "a-b-c"),
            ("what?*|", "what---"),
            ("", "-"),
            (".", "-"),
            ("..", "--"),
            ("plain-name.v1", "plain-name.v1"),
        ],
    )
    def test_sanitize(self, segment: str, expected: str) -> None:
        assert sanitize(segment) == expected

    def test_unsafe_name_cannot_escape_type_dir(self) -> None:
        path = object_path(POD_TYPE, "..", "../../etc/passwd")
        assert ".." not in path.split("/")


class TestLogPath:
    def test_current_and_previous(self) -> None:
        assert log_path(OwnerKind.POD, "default", "p1", "app") == "namespaces/default/core/v1/Pod/p1/app/current.log"
        assert (
            log_path(OwnerKind.POD, "default", "p1", "app", previous=True)
            == "namespaces/default/core/v1/Pod/p1/app/previous.log"
        )

    def test_missing_container_uses_default(self) -> None:
        assert log_path(OwnerKind.POD, "default", "p1") == "namespaces/default/core/v1/Pod/p1/default/current.log"

    def test_node_kubelet_log(self) -> None:
        assert log_path(OwnerKind.NODE, None, "node-1") == "cluster/core/v1/Node/node-1/kubelet.log"

    def test_log_entry_path(self) -> None:
        entry = LogEntry(OwnerKind.POD, "default", "p1", "text", container="app", previous=True)
        assert log_entry_path(entry) == log_path(OwnerKind.POD, "default", "p1", "app", True)


class TestParseObjectPath:
    @pytest.mark.parametrize(
        ("resource_type", "namespace", "name"),
        [
            (POD_TYPE, "default", "p1"),
            (DEPLOYMENT_TYPE, "prod", "web"),
            (NAMESPACE_TYPE, None, "kube-system"),
            (CRD_TYPE, None, "widgets.example.com"),
        ],
    )
    def test_inverts_object_path(self, resource_type: ResourceType, namespace: str | None, name: str) -> None:
        location = parse_object_path(object_path(resource_type, namespace, name))
        assert location == ObjectLocation(
            group=resource_type.group,
            version=resource_type.version,
            kind=resource_type.kind,
            namespace=namespace,
            name=name,
        )

    @pytest.mark.parametrize(
        "path",
        [
            "catalog.json",
            "version.json",
            "namespaces/default/core/v1/Pod/p1/app/current.log",
            "cluster/core/v1/Node/node-1/kubelet.log",
            "namespaces/default/core/v1/Pod/p1.yaml",
            "elsewhere/core/v1/Pod/p1.json",
        ],
    )
    def test_non_objects_return_none(self, path: str) -> None:
        assert parse_object_path(path) is None
