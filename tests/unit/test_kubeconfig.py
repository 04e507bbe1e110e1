"""Unit tests for merging served contexts into a kubeconfig file."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import yaml

from kubesnap.emulator.kubeconfig import KubeconfigBinding, client_host, default_kubeconfig_path

_EXISTING = {
    "apiVersion": "v1",
    "kind": "Config",
    "clusters": [{"name": "prod", "cluster": {"server": "https://prod.example.com"}}],
    "users": [{"name": "prod", "user": {"token": "abc"}}],
    "contexts": [{"name": "prod", "context": {"cluster": "prod", "user": "prod"}}],
    "current-context": "prod",
}


def _read(path: Path) -> dict[str, Any]:
    return yaml.safe_load(path.read_text())


def _names(config: dict[str, Any], section: str) -> list[str]:
    return [entry["name"] for entry in config.get(section) or []]


class TestKubeconfigBinding:
    def test_install_adds_entries_and_switches_context(self, tmp_path: Path) -> None:
        path = tmp_path / "config"
        path.write_text(yaml.safe_dump(_EXISTING))

        binding = KubeconfigBinding(path, "http://127.0.0.1:9095/", ["snap-a", "snap-b"])
        binding.install()

        config = _read(path)
        assert _names(config, "contexts") == ["prod", "snap-a", "snap-b"]
        assert _names(config, "clusters") == ["prod", "snap-a", "snap-b"]
        assert config["current-context"] == "snap-a"
        servers = {c["name"]: c["cluster"]["server"] for c in config["clusters"]}
        assert servers["snap-b"] == "http://127.0.0.1:9095/snap-b"
        assert binding.previous_context == "prod"

    def test_remove_restores_previous_context(self, tmp_path: Path) -> None:
        path = tmp_path / "config"
        path.write_text(yaml.safe_dump(_EXISTING))
        binding = KubeconfigBinding(path, "http://127.0.0.1:9095", ["snap-a"])
        binding.install()

        binding.remove()

        config = _read(path)
        assert config["current-context"] == "prod"
        assert _names(config, "contexts") == ["prod"]
        assert config["users"] == _EXISTING["users"]

    def test_install_creates_missing_file_and_remove_clears_context(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "config"
        binding = KubeconfigBinding(path, "http://localhost:9095", ["snap"])
        binding.install()
        assert _read(path)["current-context"] == "snap"

        binding.remove()
        config = _read(path)
        assert "current-context" not in config
        assert config["contexts"] == []

    def test_reinstall_replaces_stale_entries(self, tmp_path: Path) -> None:
        path = tmp_path / "config"
        KubeconfigBinding(path, "http://127.0.0.1:1111", ["snap"]).install()
        KubeconfigBinding(path, "http://127.0.0.1:2222", ["snap"]).install()
        config = _read(path)
        assert _names(config, "clusters") == ["snap"]
        assert config["clusters"][0]["cluster"]["server"] == "http://127.0.0.1:2222/snap"

    def test_remove_without_install_is_noop(self, tmp_path: Path) -> None:
        path = tmp_path / "config"
        KubeconfigBinding(path, "http://127.0.0.1:9095", ["snap"]).remove()
        assert not path.exists()

    def test_rejects_non_mapping_file(self, tmp_path: Path) -> None:
        path = tmp_path / "config"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            KubeconfigBinding(path, "http://127.0.0.1:9095", ["snap"]).install()


class TestHelpers:
    @pytest.mark.parametrize(
        ("host", "expected"),
        [("0.0.0.0", "127.0.0.1"), ("::", "127.0.0.1"), ("10.0.0.5", "10.0.0.5")],
    )
    def test_client_host(self, host: str, expected: str) -> None:
        assert client_host(host) == expected

    def test_default_path_prefers_env(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("KUBECONFIG", f"{tmp_path / 'a'}:{tmp_path / 'b'}")
        assert default_kubeconfig_path() == tmp_path / "a"

    def test_default_path_falls_back_to_home(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("KUBECONFIG", raising=False)
        assert default_kubeconfig_path() == Path.home() / ".kube" / "config"
