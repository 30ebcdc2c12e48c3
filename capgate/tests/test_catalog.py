from __future__ import annotations

import json

import pytest

from capgate.app.capabilities import (
    CAPABILITY_CATALOG,
    CapabilityCatalog,
    CapabilityDefinition,
    Tier,
    load_catalog_file,
)
from capgate.app.feature_gates import UnknownCapability


def _definition(key: str, **availability: bool) -> CapabilityDefinition:
    group = key.split(".", 1)[0]
    return CapabilityDefinition(
        key=key,
        display_name=key.title(),
        group=group,
        category="analytics" if group == "reports" else "general",
        availability=availability,
    )


@pytest.fixture
def catalog() -> CapabilityCatalog:
    return CapabilityCatalog(
        [
            _definition("reports.view", base=True, mid=True, top=True),
            _definition("reports.export", base=False, mid=True, top=True),
            _definition("labs.beta", base=False, mid=False, top=False),
        ],
        ("base", "mid", "top"),
    )


def test_duplicate_keys_rejected() -> None:
    with pytest.raises(ValueError):
        CapabilityCatalog(
            [_definition("reports.view", base=True), _definition("reports.view", mid=True)],
            ("base", "mid"),
        )


def test_keys_must_be_namespaced() -> None:
    with pytest.raises(ValueError):
        _definition("export", base=True)


def test_lookup_helpers(catalog: CapabilityCatalog) -> None:
    assert catalog.get("reports.view") is not None
    assert catalog.get("reports.missing") is None
    assert catalog.exists("labs.beta") is True
    assert "labs.beta" in catalog
    assert len(catalog) == 3
    assert catalog.keys() == ["reports.view", "reports.export", "labs.beta"]

    with pytest.raises(UnknownCapability) as exc:
        catalog.require("reports.missing")
    assert isinstance(exc.value, KeyError)
    assert exc.value.capability_key == "reports.missing"


def test_grouping_and_tiers(catalog: CapabilityCatalog) -> None:
    assert catalog.tiers == ("base", "mid", "top")
    assert catalog.groups() == ["reports", "labs"]
    assert [d.key for d in catalog.by_group("reports")] == ["reports.view", "reports.export"]
    assert [d.key for d in catalog.by_category("general")] == ["labs.beta"]
    assert [d.key for d in catalog.available_in("base")] == ["reports.view"]


def test_minimum_tier(catalog: CapabilityCatalog) -> None:
    assert catalog.minimum_tier(catalog.require("reports.view")) == "base"
    assert catalog.minimum_tier(catalog.require("reports.export")) == "mid"
    assert catalog.minimum_tier(catalog.require("labs.beta")) is None


def test_availability_is_read_only(catalog: CapabilityCatalog) -> None:
    definition = catalog.require("reports.export")

    with pytest.raises(TypeError):
        definition.availability["base"] = True  # type: ignore[index]
    assert definition.is_available_in("unknown-tier") is False


def test_builtin_catalog_shape() -> None:
    assert CAPABILITY_CATALOG.tiers == ("free", "hobby", "pro")
    assert set(CAPABILITY_CATALOG.groups()) == {"aegis", "eclipse", "mitre", "core"}
    assert all("." in key for key in CAPABILITY_CATALOG.keys())

    incident = CAPABILITY_CATALOG.require("aegis.incident_management")
    assert CAPABILITY_CATALOG.minimum_tier(incident) == "hobby"
    assert incident.quota_limit == "max_incidents_per_month"
    assert CAPABILITY_CATALOG.minimum_tier(CAPABILITY_CATALOG.require("core.sso_integration")) == "pro"


def test_load_catalog_file(tmp_path) -> None:
    path = tmp_path / "catalog.json"
    path.write_text(
        json.dumps(
            {
                "tiers": ["Base", "Top"],
                "capabilities": [
                    {"key": "reports.view", "name": "View", "availability": {"BASE": True, "top": True}},
                    {"key": "reports.export", "name": "Export", "category": "analytics",
                     "availability": {"top": True}, "quota_limit": "exports_per_day"},
                ],
            }
        ),
        encoding="utf-8",
    )

    catalog = load_catalog_file(path)

    assert catalog.tiers == ("base", "top")
    export = catalog.require("reports.export")
    assert export.display_name == "Export"
    assert export.group == "reports"
    assert export.quota_limit == "exports_per_day"
    assert catalog.require("reports.view").is_available_in("base") is True


def test_load_catalog_file_rejects_invalid_document(tmp_path) -> None:
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"capabilities": [{"name": "missing key"}]}), encoding="utf-8")

    with pytest.raises(ValueError):
        load_catalog_file(path)


def test_availability_tiers_are_case_insensitive(catalog: CapabilityCatalog) -> None:
    definition = CapabilityDefinition(
        key="reports.schedule",
        display_name="Scheduled Reports",
        group="reports",
        category="analytics",
        availability={" Mid ": True, "TOP": True},
    )

    assert dict(definition.availability) == {"mid": True, "top": True}
    assert definition.is_available_in("MID") is True
    assert definition.is_available_in("base") is False
    assert catalog.minimum_tier(definition) == "mid"


def test_enum_tiers_normalise_to_their_value() -> None:
    definition = CapabilityDefinition(
        key="core.audit",
        display_name="Audit Log",
        group="core",
        category="general",
        availability={Tier.PRO: True},
    )

    assert definition.is_available_in("pro") is True
    assert CapabilityCatalog([definition], (Tier.FREE, Tier.PRO)).tiers == ("free", "pro")
