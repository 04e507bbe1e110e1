"""Kubeconfig integration for ``kubesnap serve``.

On startup one cluster/user/context entry per served snapshot is merged into
a kubeconfig file, pointing at ``http://<host>:<port>/<context>``, and the
current-context is switched to the first of them.  On shutdown the entries
are removed again and the previous current-context is restored when it
still exists.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import structlog
import yaml

_log = structlog.get_logger(component="emulator.kubeconfig")

_SECTIONS = ("clusters", "users", "contexts")


def default_kubeconfig_path() -> Path:
    """First entry of ``$KUBECONFIG``, else ``~/.kube/config``."""
    env = os.environ.get("KUBECONFIG", "")
    first = next((p for p in env.split(os.pathsep) if p), "")
    return Path(first) if first else Path.home() / ".kube" / "config"


def client_host(host: str) -> str:
    """Address a local client should dial for a bind address."""
    return "127.0.0.1" if host in ("", "0.0.0.0", "::") else host


def _load(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {"apiVersion": "v1", "kind": "Config", "preferences": {}}
    with path.open() as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} is not a kubeconfig mapping")
    return data


def _dump(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".kubeconfig-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _without(entries: list[dict[str, Any]] | None, names: set[str]) -> list[dict[str, Any]]:
    return [e for e in entries or [] if e.get("name") not in names]


class KubeconfigBinding:
    """Entries this process added to a kubeconfig file."""

    def __init__(self, path: str | Path, server: str, names: Iterable[str]) -> None:
        self.path = Path(path)
        self.server = server.rstrip("/")
        self.names = list(names)
        self.previous_context: str | None = None
        self._installed = False

    def install(self) -> None:
        config = _load(self.path)
        self.previous_context = config.get("current-context") or None
        added = set(self.names)

        for section in _SECTIONS:
            config[section] = _without(config.get(section), added)
        for name in self.names:
            config["clusters"].append({"name": name, "cluster": {"server": f"{self.server}/{name}"}})
            config["users"].append({"name": name, "user": {}})
            config["contexts"].append({"name": name, "context": {"cluster": name, "user": name}})
        if self.names:
            config["current-context"] = self.names[0]

        _dump(self.path, config)
        self._installed = True
        _log.info(
            "kubeconfig_updated",
            path=str(self.path),
            contexts=self.names,
            current_context=config.get("current-context"),
        )

    def remove(self) -> None:
        if not self._installed:
            return
        config = _load(self.path)
        removed = set(self.names)
        for section in _SECTIONS:
            config[section] = _without(config.get(section), removed)

        remaining = [c.get("name") for c in config["contexts"]]
        if self.previous_context in remaining:
            config["current-context"] = self.previous_context
        elif remaining:
            config["current-context"] = remaining[0]
        else:
            config.pop("current-context", None)

        _dump(self.path, config)
        self._installed = False
        _log.info("kubeconfig_restored", path=str(self.path), current_context=config.get("current-context"))
