from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional

import pytest
from pydantic import ValidationError

from capgate.app.analytics import (
    TimeWindow,
    UsageTrend,
    adoption,
    adoption_trends,
    capability_stats,
    high_denial_capabilities,
    most_used_capabilities,
    tenant_usage_stats,
    tier_funnel,
    usage_dashboard,
    usage_heatmap,
)
from capgate.app.capabilities import (
    CapabilityCatalog,
    CapabilityDefinition,
    TenantOverride,
    TenantRecord,
    UsageDecision,
    UsageEvent,
)
from capgate.app.feature_gates import UnknownCapability

NOW = datetime(2024, 5, 31, 12, 0, tzinfo=timezone.utc)
WINDOW = TimeWindow.last_days(30, now=NOW)


def _event(
    key: str,
    *,
    tenant_id: str = "t-1",
    reason: Optional[str] = None,
    at: datetime = NOW - timedelta(days=1),
    tier: str = "base",
) -> UsageEvent:
    return UsageEvent(
        tenant_id=tenant_id,
        capability_key=key,
        decision=UsageDecision.DENIED if reason else UsageDecision.ALLOWED,
        reason=reason,
        timestamp=at,
        metadata={"tier": tier},
    )


def test_denial_rate_example() -> None:
    events = [_event("reports.export") for _ in range(7)]
    events += [
        _event("reports.export", reason="tier restriction"),
        _event("reports.export", reason="tier restriction"),
        _event("reports.export", reason="disabled by administrator"),
    ]

    stats = capability_stats(events, "reports.export", WINDOW)

    assert stats.total_attempts == 10
    assert stats.successes == 7
    assert stats.denials == 3
    assert stats.denial_rate == 30
    assert stats.top_denial_reasons[0] == ("tier restriction", 2)
    assert stats.top_denial_reasons == [("tier restriction", 2), ("disabled by administrator", 1)]


def test_no_attempts_yields_zero_rate() -> None:
    stats = capability_stats([_event("reports.view")], "reports.export", WINDOW)

    assert stats.total_attempts == 0
    assert stats.denial_rate == 0
    assert stats.top_denial_reasons == []


def test_reason_ties_break_alphabetically() -> None:
    events = [
        _event("reports.export", reason="tier restriction"),
        _event("reports.export", reason="disabled by administrator"),
        _event("reports.export", reason="quota exceeded"),
    ]

    stats = capability_stats(events, "reports.export", WINDOW, top_n=2)

    assert stats.top_denial_reasons == [("disabled by administrator", 1), ("quota exceeded", 1)]


def test_window_bounds_are_inclusive_and_order_free() -> None:
    events = [
        _event("reports.view", at=WINDOW.end),
        _event("reports.view", at=WINDOW.start - timedelta(seconds=1)),
        _event("reports.view", at=WINDOW.start),
        _event("reports.view", at=NOW - timedelta(days=10)),
    ]

    stats = capability_stats(list(reversed(events)), "reports.view", WINDOW)

    assert stats.total_attempts == 3


def test_by_tier_breakdown() -> None:
    events = [
        _event("reports.view", tier="base"),
        _event("reports.view", tier="top"),
        _event("reports.view", tier="base", reason="disabled by administrator"),
    ]

    stats = capability_stats(events, "reports.view", WINDOW)

    assert stats.by_tier["base"].attempts == 2
    assert stats.by_tier["base"].successes == 1
    assert stats.by_tier["top"].successes == 1


def test_time_window_validation() -> None:
    with pytest.raises(ValidationError):
        TimeWindow(start=NOW, end=NOW - timedelta(days=1))

    window = TimeWindow.last_days(7, now=NOW)
    assert window.end - window.start == timedelta(days=7)
    assert window.contains(NOW.replace(tzinfo=None)) is True


def test_tenant_usage_stats() -> None:
    events = [
        _event("reports.view"),
        _event("reports.export", reason="tier restriction"),
        _event("reports.view", tenant_id="t-2"),
    ]

    stats = tenant_usage_stats(events, "t-1", WINDOW)

    assert stats.total_attempts == 2
    assert stats.total_denials == 1
    assert sorted(stats.capabilities) == ["reports.export", "reports.view"]


@pytest.fixture
def catalog() -> CapabilityCatalog:
    return CapabilityCatalog(
        [
            CapabilityDefinition(
                key="reports.view",
                display_name="View",
                group="reports",
                category="analytics",
                availability={"base": True, "top": True},
            ),
            CapabilityDefinition(
                key="reports.export",
                display_name="Export",
                group="reports",
                category="analytics",
                availability={"top": True},
            ),
        ],
        ("base", "top"),
    )


def test_adoption_uses_current_entitlements(catalog: CapabilityCatalog) -> None:
    tenants = [
        TenantRecord(tenant_id="t-1", tier="base"),
        TenantRecord(tenant_id="t-2", tier="base"),
        TenantRecord(tenant_id="t-3", tier="top"),
        TenantRecord(tenant_id="t-4", tier="top"),
    ]
    overrides = [
        TenantOverride(tenant_id="t-1", capability_key="reports.export", enabled=True),
        TenantOverride(tenant_id="t-3", capability_key="reports.view", enabled=False),
    ]

    result = adoption(catalog, tenants, overrides)

    assert result["reports.export"].enabled_tenant_count == 3
    assert result["reports.export"].adoption_rate == 75
    assert result["reports.view"].enabled_tenant_count == 3
    assert result["reports.view"].total_tenant_count == 4


def test_adoption_with_no_tenants(catalog: CapabilityCatalog) -> None:
    assert adoption(catalog, [], [])["reports.view"].adoption_rate == 0


def test_tier_funnel() -> None:
    tenants = [
        TenantRecord(tenant_id="t-1", tier="base"),
        TenantRecord(tenant_id="t-2", tier="base"),
        TenantRecord(tenant_id="t-3", tier="base"),
        TenantRecord(tenant_id="t-4", tier="top"),
    ]
    events = [
        _event("reports.export", tenant_id="t-1", reason="tier restriction"),
        _event("reports.export", tenant_id="t-2", reason="tier restriction"),
        _event("labs.beta", tenant_id="t-2", reason="tier restriction"),
        _event("reports.view", tenant_id="t-4", tier="top"),
    ]

    funnel = tier_funnel(tenants, ("base", "mid", "top"), events)

    assert funnel.total_tenants == 4
    assert [(stage.tier, stage.count) for stage in funnel.stages] == [("base", 3), ("mid", 0), ("top", 1)]
    assert funnel.stages[0].percentage == 75
    assert funnel.stages[0].most_denied == [("reports.export", 2), ("labs.beta", 1)]
    assert funnel.stages[2].most_denied == []


def test_high_denial_capabilities() -> None:
    events = [_event("reports.export", tenant_id="t-1", reason="tier restriction") for _ in range(6)]
    events += [_event("reports.export", tenant_id="t-2", reason="tier restriction") for _ in range(2)]
    events += [_event("reports.export") for _ in range(2)]
    events += [_event("labs.beta", reason="tier restriction") for _ in range(5)]

    flagged = high_denial_capabilities(events, threshold=50.0, min_attempts=10)

    assert [item.capability_key for item in flagged] == ["reports.export"]
    assert flagged[0].denial_rate == 80
    assert flagged[0].top_tenants == [("t-1", 6), ("t-2", 2)]


def test_most_used_capabilities() -> None:
    events = [_event("reports.view") for _ in range(3)]
    events += [_event("reports.export", tenant_id="t-2"), _event("reports.export", reason="tier restriction")]

    ranked = most_used_capabilities(events, limit=1)

    assert len(ranked) == 1
    assert ranked[0].capability_key == "reports.view"
    assert ranked[0].total_attempts == 3

    both = most_used_capabilities(events)
    assert both[1].unique_tenants == 2
    assert both[1].denials == 1


def test_usage_heatmap_intensity() -> None:
    day_one = datetime(2024, 5, 20, 9, tzinfo=timezone.utc)
    day_two = datetime(2024, 5, 21, 9, tzinfo=timezone.utc)
    events = [
        _event("reports.view", at=day_one),
        _event("reports.view", at=day_one),
        _event("reports.view", at=day_one),
        _event("reports.view", at=day_one),
        _event("reports.view", at=day_two),
        _event("reports.view", at=day_two, reason="disabled by administrator"),
        _event("reports.view", tenant_id="t-2", at=day_two),
    ]

    heatmap = usage_heatmap(events, WINDOW, tenant_id="t-1")

    assert [(cell.day, cell.uses, cell.denials, cell.intensity) for cell in heatmap.cells] == [
        (date(2024, 5, 20), 4, 0, 100),
        (date(2024, 5, 21), 1, 1, 25),
    ]
    assert heatmap.daily_totals == {date(2024, 5, 20): 4, date(2024, 5, 21): 1}


def test_heatmap_intensity_is_relative_to_busiest_cell() -> None:
    day = datetime(2024, 5, 22, 9, tzinfo=timezone.utc)
    events = [_event("reports.view", at=day) for _ in range(2)]
    events += [_event("reports.export", at=day) for _ in range(2)]
    events += [_event("reports.view", at=day + timedelta(days=1))]

    heatmap = usage_heatmap(events, WINDOW)

    intensities = {(cell.day, cell.capability_key): cell.intensity for cell in heatmap.cells}
    assert intensities[(date(2024, 5, 22), "reports.view")] == 100
    assert intensities[(date(2024, 5, 22), "reports.export")] == 100
    assert intensities[(date(2024, 5, 23), "reports.view")] == 50
    assert heatmap.daily_totals[date(2024, 5, 22)] == 4


def test_adoption_trends_follow_tenant_creation(catalog: CapabilityCatalog) -> None:
    window = TimeWindow(start=datetime(2024, 5, 1, tzinfo=timezone.utc), end=datetime(2024, 5, 3, tzinfo=timezone.utc))
    tenants = [
        TenantRecord(tenant_id="t-1", tier="top", created_at=datetime(2024, 4, 1, tzinfo=timezone.utc)),
        TenantRecord(tenant_id="t-2", tier="base", created_at=datetime(2024, 4, 1, tzinfo=timezone.utc)),
        TenantRecord(tenant_id="t-3", tier="top", created_at=datetime(2024, 5, 2)),
    ]

    trends = adoption_trends(catalog, tenants, [], window, capability_keys=["reports.export"])

    assert len(trends) == 1
    trend = trends[0]
    assert [(point.day, point.enabled_tenants, point.total_tenants) for point in trend.timeline] == [
        (date(2024, 5, 1), 1, 2),
        (date(2024, 5, 2), 2, 3),
        (date(2024, 5, 3), 2, 3),
    ]
    assert [point.new_adopters for point in trend.timeline] == [1, 1, 0]
    assert trend.timeline[0].adoption_rate == 50
    assert trend.current_adoption_rate == 66.67
    assert trend.growth_rate == 33.34
    assert trend.projected_adoption_rate == 94.45


def test_adoption_trends_apply_overrides_and_intervals(catalog: CapabilityCatalog) -> None:
    window = TimeWindow.last_days(14, now=NOW)
    tenants = [TenantRecord(tenant_id="t-1", tier="base")]
    overrides = [TenantOverride(tenant_id="t-1", capability_key="reports.export", enabled=True)]

    trends = adoption_trends(catalog, tenants, overrides, window, interval_days=7)

    assert [trend.capability_key for trend in trends] == ["reports.view", "reports.export"]
    assert len(trends[1].timeline) == 3
    assert trends[1].current_adoption_rate == 100
    assert trends[1].growth_rate == 0


def test_adoption_trends_reject_unknown_keys(catalog: CapabilityCatalog) -> None:
    with pytest.raises(UnknownCapability):
        adoption_trends(catalog, [], [], WINDOW, capability_keys=["reports.ghost"])


def test_usage_dashboard() -> None:
    catalog = CapabilityCatalog(
        [
            CapabilityDefinition(
                key="reports.view",
                display_name="View",
                group="reports",
                category="analytics",
                availability={"base": True, "top": True},
            ),
            CapabilityDefinition(
                key="reports.export",
                display_name="Export",
                group="reports",
                category="analytics",
                availability={"top": True},
            ),
            CapabilityDefinition(
                key="labs.beta",
                display_name="Beta",
                group="labs",
                category="general",
                availability={"top": True},
            ),
        ],
        ("base", "top"),
    )
    tenants = [
        TenantRecord(tenant_id="t-1", tier="base"),
        TenantRecord(tenant_id="t-2", tier="top"),
    ]
    previous_day = WINDOW.start - timedelta(days=1)
    events = [_event("reports.view", tenant_id="t-1") for _ in range(3)]
    events += [_event("reports.view", tenant_id="t-2")]
    events += [_event("reports.export", tenant_id="t-2") for _ in range(2)]
    events += [_event("reports.export", tenant_id="t-1", reason="tier restriction")]
    events += [_event("reports.view", tenant_id="t-1", at=previous_day) for _ in range(8)]
    events += [_event("reports.export", tenant_id="t-2", at=previous_day)]

    dashboard = usage_dashboard(catalog, tenants, [], events, WINDOW)

    assert dashboard.previous_window.end == WINDOW.start
    assert [(item.capability_key, item.usage_count, item.trend) for item in dashboard.most_used] == [
        ("reports.view", 4, UsageTrend.DOWN),
        ("reports.export", 2, UsageTrend.UP),
    ]
    assert dashboard.most_used[0].tenants_using == 2
    assert dashboard.most_used[0].avg_usage_per_tenant == 2

    assert [(item.capability_key, item.utilization_rate) for item in dashboard.least_used] == [
        ("labs.beta", 0),
        ("reports.export", 100),
        ("reports.view", 100),
    ]
    assert dashboard.least_used[0].signals == ["value proposition unclear"]

    assert dashboard.group_comparison["reports"].active_capabilities == 2
    assert dashboard.group_comparison["reports"].total_usage == 6
    assert dashboard.group_comparison["labs"].active_capabilities == 0

    top = dashboard.tier_comparison["top"]
    assert top.total_capabilities == 3
    assert top.total_usage == 3
    assert top.top_capabilities == [("reports.export", 2), ("reports.view", 1)]
    assert dashboard.tier_comparison["base"].avg_usage_per_tenant == 3
