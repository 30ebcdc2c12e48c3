"""Result types for entitlement analytics."""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

DEFAULT_WINDOW_DAYS = 30


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TimeWindow(BaseModel):
    """Inclusive ``[start, end]`` range over event timestamps."""

    start: datetime
    end: datetime

    model_config = ConfigDict(frozen=True)

    @field_validator("start", "end")
    @classmethod
    def _normalize(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def _ordered(self) -> "TimeWindow":
        if self.start > self.end:
            raise ValueError("window start must not be after its end")
        return self

    @classmethod
    def last_days(cls, days: int = DEFAULT_WINDOW_DAYS, *, now: Optional[datetime] = None) -> "TimeWindow":
        if days < 0:
            raise ValueError("days must be >= 0")
        end = _as_utc(now) if now is not None else datetime.now(timezone.utc)
        return cls(start=end - timedelta(days=days), end=end)

    def contains(self, moment: datetime) -> bool:
        return self.start <= _as_utc(moment) <= self.end

    def preceding(self) -> "TimeWindow":
        """The equally long window ending where this one starts."""

        return TimeWindow(start=self.start - (self.end - self.start), end=self.start)


class TierUsage(BaseModel):
    attempts: int = 0
    successes: int = 0

    model_config = ConfigDict(frozen=True)


class CapabilityUsageStats(BaseModel):
    """Attempts, successes and denials of one capability within a window.

    ``denial_rate`` is a percentage in ``[0, 100]``.
    """

    capability_key: str
    window: TimeWindow
    total_attempts: int
    successes: int
    denials: int
    denial_rate: float
    top_denial_reasons: List[Tuple[str, int]]
    by_tier: Dict[str, TierUsage] = {}

    model_config = ConfigDict(frozen=True)


class TenantUsageStats(BaseModel):
    tenant_id: str
    window: TimeWindow
    total_attempts: int
    total_denials: int
    capabilities: Dict[str, CapabilityUsageStats]

    model_config = ConfigDict(frozen=True)


class AdoptionStats(BaseModel):
    """Share of tenants currently entitled to a capability, as a percentage."""

    capability_key: str
    enabled_tenant_count: int
    total_tenant_count: int
    adoption_rate: float

    model_config = ConfigDict(frozen=True)


class TierFunnelStage(BaseModel):
    tier: str
    count: int
    percentage: float
    most_denied: List[Tuple[str, int]] = []

    model_config = ConfigDict(frozen=True)


class TierFunnel(BaseModel):
    total_tenants: int
    stages: List[TierFunnelStage]

    model_config = ConfigDict(frozen=True)


class HighDenialCapability(BaseModel):
    capability_key: str
    total_attempts: int
    denials: int
    denial_rate: float
    top_tenants: List[Tuple[str, int]]

    model_config = ConfigDict(frozen=True)


class CapabilityUsageCount(BaseModel):
    capability_key: str
    total_attempts: int
    successes: int
    denials: int
    unique_tenants: int

    model_config = ConfigDict(frozen=True)


class HeatmapCell(BaseModel):
    day: date
    capability_key: str
    uses: int
    denials: int
    intensity: int

    model_config = ConfigDict(frozen=True)


class UsageHeatmap(BaseModel):
    """Per-day, per-capability usage; ``intensity`` is scaled 0-100 against the busiest cell."""

    tenant_id: Optional[str]
    window: TimeWindow
    cells: List[HeatmapCell]
    daily_totals: Dict[date, int]

    model_config = ConfigDict(frozen=True)


class AdoptionPoint(BaseModel):
    day: date
    enabled_tenants: int
    total_tenants: int
    adoption_rate: float
    new_adopters: int

    model_config = ConfigDict(frozen=True)


class AdoptionTrend(BaseModel):
    """Adoption of one capability sampled across a window.

    Each point counts the tenants that existed on that day and are entitled
    under today's tiers and overrides. ``growth_rate`` is the percentage change
    between the first and last point; ``projected_adoption_rate`` extends the
    recent average by that growth, capped at 100.
    """

    capability_key: str
    display_name: str
    group: str
    timeline: List[AdoptionPoint]
    current_adoption_rate: float
    growth_rate: float
    projected_adoption_rate: float

    model_config = ConfigDict(frozen=True)


class UsageTrend(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class DashboardCapability(BaseModel):
    capability_key: str
    display_name: str
    group: str
    usage_count: int
    tenants_using: int
    avg_usage_per_tenant: float
    trend: UsageTrend

    model_config = ConfigDict(frozen=True)


class UnderusedCapability(BaseModel):
    """Capability that many tenants hold but few use; ``utilization_rate`` is a percentage."""

    capability_key: str
    display_name: str
    group: str
    usage_count: int
    enabled_tenants: int
    utilization_rate: float
    signals: List[str] = []

    model_config = ConfigDict(frozen=True)


class GroupUsage(BaseModel):
    total_capabilities: int
    active_capabilities: int
    total_usage: int
    avg_usage_per_capability: float

    model_config = ConfigDict(frozen=True)


class TierUsageSummary(BaseModel):
    total_capabilities: int
    tenant_count: int
    total_usage: int
    avg_usage_per_tenant: float
    top_capabilities: List[Tuple[str, int]]

    model_config = ConfigDict(frozen=True)


class UsageDashboard(BaseModel):
    """Most and least used capabilities with group and tier comparisons.

    Usage means allowed events. Trends compare ``window`` with the equally
    long ``previous_window`` immediately before it.
    """

    window: TimeWindow
    previous_window: TimeWindow
    most_used: List[DashboardCapability]
    least_used: List[UnderusedCapability]
    group_comparison: Dict[str, GroupUsage]
    tier_comparison: Dict[str, TierUsageSummary]

    model_config = ConfigDict(frozen=True)
