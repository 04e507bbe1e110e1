"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class RetryConfig:
    """Retry/backoff settings for calls to the source cluster."""

    max_attempts: int = 5
    base_delay: float = 0.1
    backoff_multiplier: float = 2.0
    max_delay: float = 10.0
    max_timeout: float = 60.0


@dataclass
class CollectConfig:
    """Collection run configuration."""

    output: str = "kubesnap"
    archive: str = ""
    concurrency: int = 8
    collect_logs: bool = True
    run_timeout: float = 600.0
    filters: list[str] = field(default_factory=list)
    secret_keys: list[str] = field(default_factory=list)
    secret_env: list[str] = field(default_factory=list)
    kubeconfig: str = ""
    context: str = ""


@dataclass
class ServeConfig:
    """Snapshot-serving emulator configuration."""

    host: str = "0.0.0.0"
    port: int = 9095
    archives: list[str] = field(default_factory=lambda: ["kubesnap"])
    watch_idle_timeout: float = 1800.0
    kubeconfig: str = ""


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    format: str = "json"


@dataclass
class KubesnapConfig:
    """Top-level kubesnap configuration."""

    collect: CollectConfig = field(default_factory=CollectConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    serve: ServeConfig = field(default_factory=ServeConfig)
    log: LogConfig = field(default_factory=LogConfig)
