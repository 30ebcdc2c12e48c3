"""Capability catalog, overrides and entitlement resolution."""

from .models import (
    DEFAULT_TIER_ORDER,
    CapabilityDefinition,
    CapabilityState,
    CapabilityStates,
    DenialReason,
    EntitlementDecision,
    OverrideWriteResult,
    TenantOverride,
    TenantRecord,
    Tier,
    UsageDecision,
    UsageEvent,
)
from .catalog import CAPABILITY_CATALOG, CapabilityCatalog, load_catalog_file
from .overrides import InMemoryOverrideStore, InMemoryTenantDirectory, OverrideStore, TenantDirectory
from .reconciler import TierChangeDiff, reconcile
from .resolver import EntitlementResolver

__all__ = [
    "CAPABILITY_CATALOG",
    "DEFAULT_TIER_ORDER",
    "CapabilityCatalog",
    "CapabilityDefinition",
    "CapabilityState",
    "CapabilityStates",
    "DenialReason",
    "EntitlementDecision",
    "EntitlementResolver",
    "InMemoryOverrideStore",
    "InMemoryTenantDirectory",
    "OverrideStore",
    "OverrideWriteResult",
    "TenantDirectory",
    "TenantOverride",
    "TenantRecord",
    "Tier",
    "TierChangeDiff",
    "UsageDecision",
    "UsageEvent",
    "load_catalog_file",
    "reconcile",
]
