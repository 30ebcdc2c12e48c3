from __future__ import annotations

from typing import Mapping, Optional

import pytest

from capgate.app.capabilities import (
    CapabilityCatalog,
    CapabilityDefinition,
    DenialReason,
    EntitlementResolver,
    InMemoryOverrideStore,
    TenantOverride,
    TenantRecord,
)
from capgate.app.feature_gates import OverrideStoreUnavailable


@pytest.fixture
def catalog() -> CapabilityCatalog:
    return CapabilityCatalog(
        [
            CapabilityDefinition(
                key="reports.view",
                display_name="View Reports",
                group="reports",
                category="analytics",
                availability={"base": True, "mid": True, "top": True},
            ),
            CapabilityDefinition(
                key="reports.export",
                display_name="Export Reports",
                group="reports",
                category="analytics",
                availability={"base": False, "mid": True, "top": True},
            ),
            CapabilityDefinition(
                key="labs.beta",
                display_name="Beta Lab",
                group="labs",
                category="general",
                availability={},
            ),
        ],
        ("base", "mid", "top"),
    )


@pytest.fixture
def store() -> InMemoryOverrideStore:
    return InMemoryOverrideStore()


@pytest.fixture
def resolver(catalog: CapabilityCatalog, store: InMemoryOverrideStore) -> EntitlementResolver:
    return EntitlementResolver(catalog, store)


BASE_TENANT = TenantRecord(tenant_id="t-base", tier="base")
TOP_TENANT = TenantRecord(tenant_id="t-top", tier="top")


def test_tier_grants_capability(resolver: EntitlementResolver) -> None:
    decision = resolver.resolve(TOP_TENANT, "reports.export")

    assert decision.allowed is True
    assert decision.reason is None
    assert decision.overridden is False


def test_tier_restriction_names_minimum_tier(resolver: EntitlementResolver) -> None:
    decision = resolver.resolve(BASE_TENANT, "reports.export")

    assert decision.allowed is False
    assert decision.reason == "tier restriction: requires mid"
    assert decision.reason_code is DenialReason.TIER_RESTRICTION
    assert decision.required_tier == "mid"
    assert decision.message == "requires Mid plan"


def test_capability_offered_nowhere(resolver: EntitlementResolver) -> None:
    decision = resolver.resolve(TOP_TENANT, "labs.beta")

    assert decision.allowed is False
    assert decision.reason == "tier restriction: not offered on any tier"
    assert decision.required_tier is None


def test_unknown_capability_fails_closed(resolver: EntitlementResolver) -> None:
    decision = resolver.resolve(TOP_TENANT, "reports.nonexistent")

    assert decision.allowed is False
    assert decision.reason == "unknown capability"
    assert decision.reason_code is DenialReason.UNKNOWN_CAPABILITY
    assert decision.message == "capability not recognized"


def test_enabling_override_beats_tier(resolver: EntitlementResolver, store: InMemoryOverrideStore) -> None:
    store.upsert_override("t-base", "reports.export", True)

    decision = resolver.resolve(BASE_TENANT, "reports.export")

    assert decision.allowed is True
    assert decision.overridden is True


def test_disabling_override_beats_tier(resolver: EntitlementResolver, store: InMemoryOverrideStore) -> None:
    store.upsert_override("t-top", "reports.view", False)

    decision = resolver.resolve(TOP_TENANT, "reports.view")

    assert decision.allowed is False
    assert decision.reason == "disabled by administrator"
    assert decision.reason_code is DenialReason.OVERRIDE_DISABLED
    assert decision.overridden is True


def test_override_cannot_resurrect_unknown_key(resolver: EntitlementResolver, store: InMemoryOverrideStore) -> None:
    store.upsert_override("t-top", "reports.ghost", True)

    assert resolver.resolve(TOP_TENANT, "reports.ghost").reason == "unknown capability"


def test_resolution_is_idempotent(resolver: EntitlementResolver) -> None:
    first = resolver.resolve(BASE_TENANT, "reports.export")
    second = resolver.resolve(BASE_TENANT, "reports.export")

    assert first == second


def test_resolve_many_matches_single_resolution(resolver: EntitlementResolver, store: InMemoryOverrideStore) -> None:
    store.upsert_override("t-base", "reports.view", False)
    keys = ["reports.view", "reports.export", "labs.beta", "reports.unknown"]

    batch = resolver.resolve_many(BASE_TENANT, keys)

    assert batch == {key: resolver.resolve(BASE_TENANT, key).allowed for key in keys}


def test_enabled_capabilities_grouped(resolver: EntitlementResolver) -> None:
    assert resolver.enabled_capabilities(TOP_TENANT) == {
        "reports": ["reports.view", "reports.export"],
        "labs": [],
    }
    assert resolver.enabled_capabilities(BASE_TENANT, group="reports") == {"reports": ["reports.view"]}


def test_capability_states_report_overrides(resolver: EntitlementResolver, store: InMemoryOverrideStore) -> None:
    store.upsert_override("t-base", "labs.beta", True)

    states = resolver.capability_states(BASE_TENANT)

    assert states.total == 3
    assert states.enabled_count == 2
    assert states.overridden_count == 1
    beta = next(state for state in states.capabilities if state.key == "labs.beta")
    assert beta.enabled is True
    assert beta.available_in_tier is False


class UnavailableOverrideStore(InMemoryOverrideStore):
    def get_override(self, tenant_id: str, capability_key: str) -> Optional[TenantOverride]:
        raise OverrideStoreUnavailable(tenant_id, "connection refused")

    def list_overrides(self, tenant_id: str) -> Mapping[str, TenantOverride]:
        raise OverrideStoreUnavailable(tenant_id, "connection refused")


def test_store_outage_is_a_hard_failure(catalog: CapabilityCatalog) -> None:
    resolver = EntitlementResolver(catalog, UnavailableOverrideStore())

    with pytest.raises(OverrideStoreUnavailable) as exc:
        resolver.resolve(TOP_TENANT, "reports.view")
    assert exc.value.status_code == 503

    with pytest.raises(OverrideStoreUnavailable):
        resolver.resolve_many(TOP_TENANT, ["reports.view"])
