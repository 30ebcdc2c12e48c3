"""Resolution of a tenant's entitlement to catalog capabilities."""
from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional

from ..feature_gates.exceptions import UnknownCapability
from .catalog import CapabilityCatalog
from .models import (
    CapabilityDefinition,
    CapabilityState,
    CapabilityStates,
    DenialReason,
    EntitlementDecision,
    TenantOverride,
    TenantRecord,
)
from .overrides import OverrideStore

OverrideLookup = Callable[[str], Optional[TenantOverride]]


class EntitlementResolver:
    """Applies the precedence chain: override, then tier availability, else deny.

    The resolver holds no state beyond the read-only catalog and the store
    handle, so a single instance is safe to share between threads.
    """

    def __init__(self, catalog: CapabilityCatalog, override_store: OverrideStore) -> None:
        self._catalog = catalog
        self._override_store = override_store

    @property
    def catalog(self) -> CapabilityCatalog:
        return self._catalog

    def resolve(self, tenant: TenantRecord, capability_key: str) -> EntitlementDecision:
        """Decide whether ``tenant`` may use ``capability_key``."""

        return self._decide(
            tenant,
            capability_key,
            lambda key: self._override_store.get_override(tenant.tenant_id, key),
        )

    def resolve_many(self, tenant: TenantRecord, capability_keys: Iterable[str]) -> Dict[str, bool]:
        overrides = self._override_store.list_overrides(tenant.tenant_id)
        return {
            key: self._decide(tenant, key, overrides.get).allowed
            for key in capability_keys
        }

    def resolve_all(self, tenant: TenantRecord) -> Dict[str, EntitlementDecision]:
        overrides = self._override_store.list_overrides(tenant.tenant_id)
        return {
            definition.key: self._decide(tenant, definition.key, overrides.get)
            for definition in self._catalog
        }

    def enabled_capabilities(
        self,
        tenant: TenantRecord,
        group: Optional[str] = None,
    ) -> Dict[str, List[str]]:
        """Group the allowed capability keys by catalog group."""

        decisions = self.resolve_all(tenant)
        groups = [group] if group is not None else self._catalog.groups()
        enabled: Dict[str, List[str]] = {name: [] for name in groups}
        for definition in self._catalog:
            if definition.group not in enabled:
                continue
            if decisions[definition.key].allowed:
                enabled[definition.group].append(definition.key)
        return enabled

    def capability_states(self, tenant: TenantRecord) -> CapabilityStates:
        decisions = self.resolve_all(tenant)
        states = [
            CapabilityState(
                key=definition.key,
                display_name=definition.display_name,
                group=definition.group,
                category=definition.category,
                description=definition.description,
                enabled=decisions[definition.key].allowed,
                overridden=decisions[definition.key].overridden,
                available_in_tier=definition.is_available_in(tenant.tier),
                quota_limit=definition.quota_limit,
            )
            for definition in self._catalog
        ]
        return CapabilityStates(
            tenant_id=tenant.tenant_id,
            tier=tenant.tier,
            capabilities=states,
            total=len(states),
            enabled_count=sum(1 for state in states if state.enabled),
            overridden_count=sum(1 for state in states if state.overridden),
        )

    def _decide(
        self,
        tenant: TenantRecord,
        capability_key: str,
        lookup_override: OverrideLookup,
    ) -> EntitlementDecision:
        try:
            definition = self._catalog.require(capability_key)
        except UnknownCapability:
            return EntitlementDecision(
                capability_key=capability_key,
                allowed=False,
                reason=DenialReason.UNKNOWN_CAPABILITY.value,
                reason_code=DenialReason.UNKNOWN_CAPABILITY,
            )

        override = lookup_override(capability_key)
        if override is not None:
            if override.enabled:
                return EntitlementDecision(capability_key=capability_key, allowed=True, overridden=True)
            return EntitlementDecision(
                capability_key=capability_key,
                allowed=False,
                reason=DenialReason.OVERRIDE_DISABLED.value,
                reason_code=DenialReason.OVERRIDE_DISABLED,
                overridden=True,
            )

        if definition.is_available_in(tenant.tier):
            return EntitlementDecision(capability_key=capability_key, allowed=True)
        return self._tier_denial(definition)

    def _tier_denial(self, definition: CapabilityDefinition) -> EntitlementDecision:
        required_tier = self._catalog.minimum_tier(definition)
        if required_tier is None:
            reason = f"{DenialReason.TIER_RESTRICTION.value}: not offered on any tier"
        else:
            reason = f"{DenialReason.TIER_RESTRICTION.value}: requires {required_tier}"
        return EntitlementDecision(
            capability_key=definition.key,
            allowed=False,
            reason=reason,
            reason_code=DenialReason.TIER_RESTRICTION,
            required_tier=required_tier,
        )
