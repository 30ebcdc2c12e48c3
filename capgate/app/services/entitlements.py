"""Application wiring for the entitlement engine."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from ...config import EngineConfig, load_engine_config
from ..capabilities.catalog import CAPABILITY_CATALOG, CapabilityCatalog, load_catalog_file
from ..capabilities.repository import (
    PostgresOverrideStore,
    PostgresTenantDirectory,
    PostgresUsageEventRepository,
)
from ..capabilities.service import EntitlementEngine
from ..usage.recorder import UsageDispatcher, UsageRecorder

logger = logging.getLogger("entitlements")


@lru_cache(maxsize=1)
def get_engine_config() -> EngineConfig:
    return load_engine_config()


@lru_cache(maxsize=1)
def get_usage_recorder() -> UsageRecorder:
    return UsageRecorder()


def bind_usage_dispatcher(dispatcher: Optional[UsageDispatcher]) -> None:
    """Route recorded usage events to ``dispatcher`` (``None`` drops them)."""

    get_usage_recorder().bind(dispatcher)
    logger.info("Usage dispatcher %s", "bound" if dispatcher is not None else "unbound")


def _load_catalog(config: EngineConfig) -> CapabilityCatalog:
    if not config.catalog_path:
        return CAPABILITY_CATALOG
    return load_catalog_file(config.catalog_path)


@lru_cache(maxsize=1)
def get_entitlement_engine() -> EntitlementEngine:
    config = get_engine_config()
    return EntitlementEngine(
        catalog=_load_catalog(config),
        override_store=PostgresOverrideStore(),
        tenant_directory=PostgresTenantDirectory(),
        recorder=get_usage_recorder(),
        usage_source=PostgresUsageEventRepository(),
    )


__all__ = ["bind_usage_dispatcher", "get_engine_config", "get_entitlement_engine", "get_usage_recorder"]
