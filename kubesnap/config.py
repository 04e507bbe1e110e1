"""Configuration loading from environment variables."""

from __future__ import annotations

import os
import re

from kubesnap.models.config import (
    CollectConfig,
    KubesnapConfig,
    LogConfig,
    RetryConfig,
    ServeConfig,
)

_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_RE_DURATION = re.compile(r"^([0-9]+(?:\.[0-9]+)?)(ms|s|m|h)?$")


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBESNAP_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    return val


def _env_list(key: str, default: list[str] | None = None) -> list[str]:
    raw = _env(key, "")
    if not raw:
        return list(default or [])
    return [item.strip() for item in raw.split(",") if item.strip()]


def parse_duration(value: str) -> float:
    """Parse ``500ms``, ``30s``, ``5m``, ``1h`` or a bare number of seconds."""
    match = _RE_DURATION.match(value.strip())
    if not match:
        raise ValueError(f"Invalid duration format: {value}")
    amount, unit = match.groups()
    return float(amount) * _DURATION_UNITS[unit or "s"]


def _env_duration(key: str, default: str) -> float:
    return parse_duration(_env(key, default))


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_log_format(value: str) -> str:
    if value.lower() not in ("json", "console"):
        raise ValueError(f"Invalid log format: {value}. Must be json or console")
    return value.lower()


def _validate_retry(config: RetryConfig) -> RetryConfig:
    if config.backoff_multiplier < 1.0:
        raise ValueError(f"Retry backoff multiplier must be >= 1.0, got {config.backoff_multiplier}")
    if config.max_timeout <= 0:
        raise ValueError(f"Retry max timeout must be positive, got {config.max_timeout}")
    return config


def load_config() -> KubesnapConfig:
    """Load configuration from KUBESNAP_* environment variables."""
    return KubesnapConfig(
        collect=CollectConfig(
            output=_env("COLLECT_OUTPUT", "kubesnap"),
            archive=_env("COLLECT_ARCHIVE", ""),
            concurrency=_env_int("COLLECT_CONCURRENCY", 8, min_val=1, max_val=64),
            collect_logs=_env_bool("COLLECT_LOGS", True),
            run_timeout=_env_duration("COLLECT_RUN_TIMEOUT", "10m"),
            filters=_env_list("FILTERS"),
            secret_keys=_env_list("SECRET_KEYS"),
            secret_env=_env_list("SECRET_ENV"),
            kubeconfig=_env("KUBECONFIG", ""),
            context=_env("CONTEXT", ""),
        ),
        retry=_validate_retry(
            RetryConfig(
                max_attempts=_env_int("RETRY_MAX_ATTEMPTS", 5, min_val=1, max_val=20),
                base_delay=_env_duration("RETRY_BASE_DELAY", "100ms"),
                backoff_multiplier=_env_float("RETRY_MULTIPLIER", 2.0),
                max_delay=_env_duration("RETRY_MAX_DELAY", "10s"),
                max_timeout=_env_duration("RETRY_MAX_TIMEOUT", "60s"),
            )
        ),
        serve=ServeConfig(
            host=_env("SERVE_HOST", "0.0.0.0"),
            port=_env_int("SERVE_PORT", 9095, min_val=1024, max_val=65535),
            archives=_env_list("SERVE_ARCHIVES", ["kubesnap"]),
            watch_idle_timeout=_env_duration("SERVE_WATCH_IDLE_TIMEOUT", "30m"),
            kubeconfig=_env("SERVE_KUBECONFIG", ""),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
            format=_validate_log_format(_env("LOG_FORMAT", "json")),
        ),
    )
