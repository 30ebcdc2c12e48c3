from __future__ import annotations

import pytest

from capgate.app.capabilities import CapabilityCatalog, CapabilityDefinition, reconcile


@pytest.fixture
def catalog() -> CapabilityCatalog:
    return CapabilityCatalog(
        [
            CapabilityDefinition(
                key="reports.view",
                display_name="View",
                group="reports",
                category="analytics",
                availability={"base": True, "mid": True, "top": True},
            ),
            CapabilityDefinition(
                key="reports.x",
                display_name="X",
                group="reports",
                category="analytics",
                availability={"base": False, "mid": True, "top": True},
            ),
            CapabilityDefinition(
                key="labs.y",
                display_name="Y",
                group="labs",
                category="general",
                availability={"top": True},
            ),
        ],
        ("base", "mid", "top"),
    )


def test_upgrade_allows_new_capabilities(catalog: CapabilityCatalog) -> None:
    diff = reconcile(catalog, "t-1", "base", "top")

    assert diff.newly_allowed == ["reports.x", "labs.y"]
    assert diff.newly_denied == []
    assert diff.total_capabilities == 3
    assert diff.changed is True


def test_downgrade_denies_capabilities(catalog: CapabilityCatalog) -> None:
    diff = reconcile(catalog, "t-1", "top", "base")

    assert diff.newly_allowed == []
    assert diff.newly_denied == ["reports.x", "labs.y"]


def test_lateral_change(catalog: CapabilityCatalog) -> None:
    diff = reconcile(catalog, "t-1", "mid", "top")

    assert diff.newly_allowed == ["labs.y"]
    assert "reports.x" not in diff.newly_allowed + diff.newly_denied


def test_same_tier_is_a_noop(catalog: CapabilityCatalog) -> None:
    diff = reconcile(catalog, "t-1", "Mid", "mid")

    assert diff.old_tier == diff.new_tier == "mid"
    assert diff.changed is False


def test_unknown_tier_grants_nothing(catalog: CapabilityCatalog) -> None:
    diff = reconcile(catalog, "t-1", "legacy", "base")

    assert diff.newly_allowed == ["reports.view"]
