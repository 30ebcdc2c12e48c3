"""Environment driven configuration for the capability gate service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class EngineConfig:
    """Settings for telemetry dispatch, persistence and the operator surface."""

    telemetry_enabled: bool
    queue_maxsize: int
    batch_size: int
    db_config: Dict[str, Any] = field(default_factory=dict)
    db_connect_timeout: float = 5.0
    catalog_path: Optional[str] = None
    operator_token: Optional[str] = None
    log_level: str = "INFO"
    app_version: Optional[str] = None


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_engine_config(env: Optional[Mapping[str, str]] = None) -> EngineConfig:
    """Load :class:`EngineConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    db_config: Dict[str, Any] = {
        "host": env_mapping.get("DB_HOST", "127.0.0.1"),
        "port": _to_int(env_mapping.get("DB_PORT"), default=5432),
        "database": env_mapping.get("DB_NAME", "capgate"),
        "user": env_mapping.get("DB_USER", "capgate"),
        "password": env_mapping.get("DB_PASSWORD", "capgate"),
    }

    return EngineConfig(
        telemetry_enabled=_to_bool(env_mapping.get("USAGE_TELEMETRY_ENABLED"), default=False),
        queue_maxsize=max(1, _to_int(env_mapping.get("USAGE_QUEUE_MAXSIZE"), default=10_000)),
        batch_size=max(1, _to_int(env_mapping.get("USAGE_BATCH_SIZE"), default=200)),
        db_config=db_config,
        db_connect_timeout=max(0.1, _to_float(env_mapping.get("DB_CONNECT_TIMEOUT"), default=5.0)),
        catalog_path=env_mapping.get("CAPGATE_CATALOG_PATH") or None,
        operator_token=env_mapping.get("CAPGATE_OPERATOR_TOKEN") or None,
        log_level=(env_mapping.get("CAPGATE_LOG_LEVEL") or "INFO").strip().upper(),
        app_version=env_mapping.get("APP_VERSION") or None,
    )
