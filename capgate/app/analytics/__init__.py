"""Entitlement analytics over usage events and current entitlements."""
from .aggregator import (
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
from .models import (
    DEFAULT_WINDOW_DAYS,
    AdoptionPoint,
    AdoptionStats,
    AdoptionTrend,
    CapabilityUsageCount,
    CapabilityUsageStats,
    DashboardCapability,
    GroupUsage,
    HeatmapCell,
    HighDenialCapability,
    TenantUsageStats,
    TierFunnel,
    TierFunnelStage,
    TierUsage,
    TierUsageSummary,
    TimeWindow,
    UnderusedCapability,
    UsageDashboard,
    UsageHeatmap,
    UsageTrend,
)

__all__ = [
    "DEFAULT_WINDOW_DAYS",
    "AdoptionPoint",
    "AdoptionStats",
    "AdoptionTrend",
    "CapabilityUsageCount",
    "CapabilityUsageStats",
    "DashboardCapability",
    "GroupUsage",
    "HeatmapCell",
    "HighDenialCapability",
    "TenantUsageStats",
    "TierFunnel",
    "TierFunnelStage",
    "TierUsage",
    "TierUsageSummary",
    "TimeWindow",
    "UnderusedCapability",
    "UsageDashboard",
    "UsageHeatmap",
    "UsageTrend",
    "adoption",
    "adoption_trends",
    "capability_stats",
    "high_denial_capabilities",
    "most_used_capabilities",
    "tenant_usage_stats",
    "tier_funnel",
    "usage_dashboard",
    "usage_heatmap",
]
