"""Integration tests: snapshot on disk -> ContextRegistry -> FastAPI emulator.

Exercises the read-only Kubernetes surface through FastAPI's TestClient:
discovery documents, list/get with selectors and tables, logs, the Status
error envelope for every failure class, and isolation of a corrupt blob.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from kubesnap.emulator.app import create_app
from kubesnap.emulator.contexts import ContextRegistry, ServeContext
from kubesnap.models.config import ServeConfig
from kubesnap.models.resources import ResourceType

from ..conftest import (
    CRD_TYPE,
    DEPLOYMENT_TYPE,
    NAMESPACE_TYPE,
    POD_TYPE,
    SERVER_VERSION,
    make_deployment,
    make_namespace,
    make_pod,
    write_snapshot,
)

pytestmark = pytest.mark.integration

_TABLE_ACCEPT = "application/json;as=Table;v=v1;g=meta.k8s.io,application/json"


def _client_for(*roots: Path) -> tuple[TestClient, ContextRegistry]:
    registry = ContextRegistry.from_search_paths(roots)
    app = create_app(registry=registry, config=ServeConfig(watch_idle_timeout=0.05))
    return TestClient(app, raise_server_exceptions=False), registry


@pytest.fixture
def client(pod_snapshot: Path) -> Iterator[TestClient]:
    test_client, registry = _client_for(pod_snapshot)
    with test_client:
        yield test_client
    registry.close()


def _assert_status(response: Any, code: int, reason: str) -> dict[str, Any]:
    assert response.status_code == code
    body = response.json()
    assert body["kind"] == "Status"
    assert body["apiVersion"] == "v1"
    assert body["status"] == "Failure"
    assert body["code"] == code
    assert body["reason"] == reason
    assert body["message"]
    return body


def _names(body: dict[str, Any]) -> list[str]:
    return [item["metadata"]["name"] for item in body["items"]]


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class TestDiscovery:
    def test_version(self, client: TestClient) -> None:
        response = client.get("/snap/version")
        assert response.status_code == 200
        assert response.json() == SERVER_VERSION

    def test_core_versions(self, client: TestClient) -> None:
        body = client.get("/snap/api").json()
        assert body["kind"] == "APIVersions"
        assert body["versions"] == ["v1"]

    def test_core_resource_list(self, client: TestClient) -> None:
        body = client.get("/snap/api/v1").json()
        assert body["kind"] == "APIResourceList"
        assert body["groupVersion"] == "v1"
        resources = {r["name"]: r for r in body["resources"]}
        assert set(resources) == {"namespaces", "nodes", "pods", "configmaps", "pods/log"}
        assert resources["pods"]["namespaced"] is True
        assert resources["nodes"]["namespaced"] is False
        assert resources["pods"]["verbs"] == ["get", "list", "watch"]

    def test_group_list_and_resources(self, tmp_path: Path) -> None:
        root = write_snapshot(
            tmp_path / "apps-snap",
            [(NAMESPACE_TYPE, make_namespace("default")), (DEPLOYMENT_TYPE, make_deployment("web"))],
            catalog=[NAMESPACE_TYPE, DEPLOYMENT_TYPE, CRD_TYPE],
        )
        test_client, registry = _client_for(root)
        with test_client:
            groups = test_client.get("/apps-snap/apis").json()
            assert groups["kind"] == "APIGroupList"
            assert [g["name"] for g in groups["groups"]] == ["apiextensions.k8s.io", "apps"]
            assert groups["groups"][1]["preferredVersion"] == {"groupVersion": "apps/v1", "version": "v1"}

            resources = test_client.get("/apps-snap/apis/apps/v1").json()
            assert [r["name"] for r in resources["resources"]] == ["deployments"]

            listed = test_client.get("/apps-snap/apis/apps/v1/namespaces/default/deployments").json()
            assert listed["kind"] == "DeploymentList"
            assert listed["apiVersion"] == "apps/v1"
            assert _names(listed) == ["web"]

            got = test_client.get("/apps-snap/apis/apps/v1/namespaces/default/deployments/web")
            assert got.status_code == 200
            assert got.json()["kind"] == "Deployment"
        registry.close()

    def test_preferred_version_follows_version_priority(self, tmp_path: Path) -> None:
        beta = ResourceType("apps", "v1beta1", "Deployment", plural="deployments")
        root = write_snapshot(
            tmp_path / "apps-snap",
            [(DEPLOYMENT_TYPE, make_deployment("web"))],
            catalog=[beta, DEPLOYMENT_TYPE],
        )
        test_client, registry = _client_for(root)
        with test_client:
            (apps,) = test_client.get("/apps-snap/apis").json()["groups"]
            assert [v["version"] for v in apps["versions"]] == ["v1", "v1beta1"]
            assert apps["preferredVersion"] == {"groupVersion": "apps/v1", "version": "v1"}
        registry.close()

    def test_single_group_document(self, tmp_path: Path) -> None:
        root = write_snapshot(
            tmp_path / "apps-snap",
            [(DEPLOYMENT_TYPE, make_deployment("web"))],
            catalog=[DEPLOYMENT_TYPE, CRD_TYPE],
        )
        test_client, registry = _client_for(root)
        with test_client:
            response = test_client.get("/apps-snap/apis/apps")
            assert response.status_code == 200
            assert response.json() == {
                "kind": "APIGroup",
                "apiVersion": "v1",
                "name": "apps",
                "versions": [{"groupVersion": "apps/v1", "version": "v1"}],
                "preferredVersion": {"groupVersion": "apps/v1", "version": "v1"},
            }
            _assert_status(test_client.get("/apps-snap/apis/batch"), 404, "NotFound")
        registry.close()

    def test_unknown_group_version(self, client: TestClient) -> None:
        _assert_status(client.get("/snap/apis/apps/v1"), 404, "NotFound")
        _assert_status(client.get("/snap/api/v2"), 404, "NotFound")


# ---------------------------------------------------------------------------
# List and Get
# ---------------------------------------------------------------------------


class TestListGet:
    def test_namespaced_list(self, client: TestClient) -> None:
        response = client.get("/snap/api/v1/namespaces/default/pods")
        assert response.status_code == 200
        body = response.json()
        assert body["kind"] == "PodList"
        assert body["apiVersion"] == "v1"
        assert body["metadata"]["resourceVersion"] == "100"
        assert _names(body) == ["p1"]

    def test_list_across_namespaces_is_sorted(self, client: TestClient) -> None:
        body = client.get("/snap/api/v1/pods").json()
        assert _names(body) == ["p1", "p2"]
        assert body["metadata"]["resourceVersion"] == "200"

    def test_get_returns_stored_document(self, client: TestClient, pod_snapshot: Path) -> None:
        response = client.get("/snap/api/v1/namespaces/default/pods/p1")
        assert response.status_code == 200
        stored = (pod_snapshot / "namespaces/default/core/v1/Pod/p1.json").read_text()
        assert response.json() == json.loads(stored)

    def test_get_cluster_scoped(self, client: TestClient) -> None:
        assert client.get("/snap/api/v1/nodes/node-1").json()["metadata"]["name"] == "node-1"
        assert client.get("/snap/api/v1/namespaces/kube-system").json()["kind"] == "Namespace"

    def test_empty_type_lists_nothing(self, client: TestClient) -> None:
        body = client.get("/snap/api/v1/namespaces/default/configmaps").json()
        assert body["kind"] == "ConfigMapList"
        assert body["items"] == []
        assert body["metadata"]["resourceVersion"] == ""

    def test_resource_may_be_named_by_kind(self, client: TestClient) -> None:
        assert _names(client.get("/snap/api/v1/namespaces/default/pod").json()) == ["p1"]

    def test_label_selector(self, client: TestClient) -> None:
        assert _names(client.get("/snap/api/v1/pods", params={"labelSelector": "app=web"}).json()) == ["p1"]
        assert _names(client.get("/snap/api/v1/pods", params={"labelSelector": "app in (web,dns)"}).json()) == [
            "p1",
            "p2",
        ]
        assert _names(client.get("/snap/api/v1/pods", params={"labelSelector": "!tier"}).json()) == ["p2"]

    def test_field_selector(self, client: TestClient) -> None:
        body = client.get("/snap/api/v1/pods", params={"fieldSelector": "metadata.namespace=kube-system"}).json()
        assert _names(body) == ["p2"]

    def test_table_output(self, client: TestClient) -> None:
        body = client.get("/snap/api/v1/pods", headers={"Accept": _TABLE_ACCEPT}).json()
        assert body["kind"] == "Table"
        assert body["apiVersion"] == "meta.k8s.io/v1"
        assert [c["name"] for c in body["columnDefinitions"]] == ["Name", "Created At"]
        assert [row["cells"][0] for row in body["rows"]] == ["p1", "p2"]
        assert body["rows"][0]["object"]["kind"] == "PartialObjectMetadata"

    def test_table_output_for_get(self, client: TestClient) -> None:
        body = client.get("/snap/api/v1/namespaces/default/pods/p1", headers={"Accept": _TABLE_ACCEPT}).json()
        assert body["kind"] == "Table"
        assert len(body["rows"]) == 1

    def test_contexts_are_isolated(self, pod_snapshot: Path, tmp_path: Path) -> None:
        other = write_snapshot(tmp_path / "other", [(POD_TYPE, make_pod("only-here", "default"))])
        test_client, registry = _client_for(pod_snapshot, other)
        with test_client:
            assert _names(test_client.get("/other/api/v1/pods").json()) == ["only-here"]
            assert _names(test_client.get("/snap/api/v1/pods").json()) == ["p1", "p2"]
            _assert_status(test_client.get("/snap/api/v1/namespaces/default/pods/only-here"), 404, "NotFound")
        registry.close()


# ---------------------------------------------------------------------------
# Logs and access review
# ---------------------------------------------------------------------------


class TestLogs:
    def test_current_log(self, client: TestClient) -> None:
        response = client.get("/snap/api/v1/namespaces/default/pods/p1/log")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "hello from p1\n"

    def test_previous_log_by_container(self, client: TestClient) -> None:
        response = client.get(
            "/snap/api/v1/namespaces/default/pods/p1/log", params={"container": "app", "previous": "true"}
        )
        assert response.text == "before restart\n"

    def test_missing_log(self, client: TestClient) -> None:
        _assert_status(client.get("/snap/api/v1/namespaces/kube-system/pods/p2/log"), 404, "NotFound")
        _assert_status(
            client.get("/snap/api/v1/namespaces/default/pods/p1/log", params={"container": "sidecar"}),
            404,
            "NotFound",
        )

    def test_self_subject_access_review_allows(self, client: TestClient) -> None:
        spec = {"resourceAttributes": {"verb": "list", "resource": "pods"}}
        response = client.post(
            "/snap/apis/authorization.k8s.io/v1/selfsubjectaccessreviews",
            json={"kind": "SelfSubjectAccessReview", "spec": spec},
        )
        assert response.status_code == 201
        assert response.json()["status"] == {"allowed": True}
        assert response.json()["spec"] == spec


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


class TestErrors:
    def test_missing_object(self, client: TestClient) -> None:
        body = _assert_status(client.get("/snap/api/v1/namespaces/default/pods/ghost"), 404, "NotFound")
        assert body["details"] == {"name": "ghost", "group": "", "kind": "pods"}

    def test_object_in_other_namespace(self, client: TestClient) -> None:
        _assert_status(client.get("/snap/api/v1/namespaces/kube-system/pods/p1"), 404, "NotFound")

    def test_unknown_resource(self, client: TestClient) -> None:
        _assert_status(client.get("/snap/api/v1/namespaces/default/widgets"), 404, "NotFound")

    def test_scope_mismatch(self, client: TestClient) -> None:
        _assert_status(client.get("/snap/api/v1/namespaces/default/nodes"), 404, "NotFound")
        _assert_status(client.get("/snap/api/v1/pods/p1"), 404, "NotFound")

    def test_unknown_context(self, client: TestClient) -> None:
        body = _assert_status(client.get("/nope/api/v1/pods"), 404, "UnknownContext")
        assert "nope" in body["message"]
        _assert_status(client.get("/nope/some/where"), 404, "UnknownContext")

    def test_unmatched_path_in_known_context(self, client: TestClient) -> None:
        _assert_status(client.get("/snap/not/a/route/at/all/really"), 404, "NotFound")

    @pytest.mark.parametrize(
        ("method", "path"),
        [
            ("POST", "/snap/api/v1/namespaces/default/pods"),
            ("PUT", "/snap/api/v1/namespaces/default/pods/p1"),
            ("PATCH", "/snap/api/v1/namespaces/default/pods/p1"),
            ("DELETE", "/snap/api/v1/namespaces/default/pods/p1"),
            ("DELETE", "/nope/anything"),
        ],
    )
    def test_write_verbs_are_rejected(self, client: TestClient, method: str, path: str) -> None:
        _assert_status(client.request(method, path, json={}), 405, "MethodNotAllowed")

    @pytest.mark.parametrize(
        "params",
        [
            {"labelSelector": "app in (web"},
            {"labelSelector": "app=we b"},
            {"fieldSelector": "status.phase=Running"},
            {"watch": "sometimes"},
            {"timeoutSeconds": "soon"},
            {"timeoutSeconds": "-1"},
        ],
    )
    def test_malformed_queries(self, client: TestClient, params: dict[str, str]) -> None:
        _assert_status(client.get("/snap/api/v1/pods", params=params), 400, "BadRequest")

    def test_corrupt_blob_fails_only_its_requests(self, client: TestClient, pod_snapshot: Path) -> None:
        (pod_snapshot / "namespaces/default/core/v1/Pod/p1.json").write_text("{truncated")

        _assert_status(client.get("/snap/api/v1/namespaces/default/pods/p1"), 500, "InternalError")
        _assert_status(client.get("/snap/api/v1/namespaces/default/pods"), 500, "InternalError")

        assert client.get("/snap/api/v1/namespaces/kube-system/pods/p2").status_code == 200
        assert _names(client.get("/snap/api/v1/namespaces/kube-system/pods").json()) == ["p2"]
        assert client.get("/snap/version").status_code == 200


# ---------------------------------------------------------------------------
# Operational endpoints
# ---------------------------------------------------------------------------


class TestOperational:
    def test_healthz(self, client: TestClient) -> None:
        assert client.get("/healthz").json() == {"status": "ok", "contexts": ["snap"]}

    def test_metrics_count_requests(self, client: TestClient) -> None:
        def sample(verb: str, code: str) -> float:
            return REGISTRY.get_sample_value("kubesnap_requests_total", {"verb": verb, "code": code}) or 0.0

        lists, misses = sample("list", "200"), sample("get", "404")
        client.get("/snap/api/v1/pods")
        client.get("/snap/api/v1/namespaces/default/pods/ghost")

        assert sample("list", "200") == lists + 1
        assert sample("get", "404") == misses + 1
        assert "kubesnap_requests_total" in client.get("/metrics").text

    async def test_slow_list_does_not_hold_up_other_requests(
        self, pod_snapshot: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        original = ServeContext.read_document

        def slow_read(self: ServeContext, path: str) -> dict[str, Any]:
            time.sleep(0.3)
            return original(self, path)

        monkeypatch.setattr(ServeContext, "read_document", slow_read)
        registry = ContextRegistry.from_search_paths([pod_snapshot])
        app = create_app(registry=registry, config=ServeConfig(watch_idle_timeout=0.05))
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://emulator") as http:
            listing = asyncio.create_task(http.get("/snap/api/v1/namespaces/default/pods"))
            await asyncio.sleep(0.05)
            started = time.monotonic()
            health = await http.get("/healthz")
            elapsed = time.monotonic() - started
            listed = await listing

        registry.close()
        assert health.status_code == 200
        assert elapsed < 0.25
        assert listed.status_code == 200
        assert _names(listed.json()) == ["p1"]
