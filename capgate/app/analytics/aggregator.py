"""Aggregations over usage events and current entitlements.

All functions are pure: they take plain sequences and never assume the
events arrive in timestamp order.
"""
from __future__ import annotations

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..capabilities.catalog import CapabilityCatalog
from ..capabilities.models import TenantOverride, TenantRecord, UsageEvent
from ..capabilities.overrides import InMemoryOverrideStore
from ..capabilities.resolver import EntitlementResolver
from .models import (
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


def _percentage(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part * 100 / whole, 2)


def _ranked(counter: Counter, top_n: Optional[int]) -> List[Tuple[str, int]]:
    ranked = sorted(counter.items(), key=lambda item: (-item[1], item[0]))
    return ranked if top_n is None else ranked[:top_n]


def _in_window(events: Iterable[UsageEvent], window: Optional[TimeWindow]) -> List[UsageEvent]:
    if window is None:
        return list(events)
    return [event for event in events if window.contains(event.timestamp)]


def _entitled_tenants(
    catalog: CapabilityCatalog,
    tenants: Sequence[TenantRecord],
    overrides: Iterable[TenantOverride],
) -> Dict[str, Set[str]]:
    """Tenant ids currently entitled to each capability (override or tier)."""

    resolver = EntitlementResolver(catalog, InMemoryOverrideStore(overrides))
    entitled: Dict[str, Set[str]] = defaultdict(set)
    for tenant in tenants:
        for key, decision in resolver.resolve_all(tenant).items():
            if decision.allowed:
                entitled[key].add(tenant.tenant_id)
    return entitled


def _stats_for(
    capability_key: str,
    events: Sequence[UsageEvent],
    window: TimeWindow,
    top_n: int,
) -> CapabilityUsageStats:
    successes = 0
    reasons: Counter = Counter()
    tiers: Dict[str, List[int]] = defaultdict(lambda: [0, 0])
    for event in events:
        tier_counts = tiers[event.tier or "unknown"]
        tier_counts[0] += 1
        if event.allowed:
            successes += 1
            tier_counts[1] += 1
        else:
            reasons[event.reason or "unspecified"] += 1

    total = len(events)
    denials = total - successes
    return CapabilityUsageStats(
        capability_key=capability_key,
        window=window,
        total_attempts=total,
        successes=successes,
        denials=denials,
        denial_rate=_percentage(denials, total),
        top_denial_reasons=_ranked(reasons, top_n),
        by_tier={
            tier: TierUsage(attempts=counts[0], successes=counts[1])
            for tier, counts in sorted(tiers.items())
        },
    )


def capability_stats(
    events: Iterable[UsageEvent],
    capability_key: str,
    window: TimeWindow,
    *,
    top_n: int = 5,
) -> CapabilityUsageStats:
    """Summarize attempts for one capability inside ``window``.

    Denial reasons are ranked by count descending, ties broken by the reason
    text ascending.
    """

    selected = [
        event
        for event in _in_window(events, window)
        if event.capability_key == capability_key
    ]
    return _stats_for(capability_key, selected, window, top_n)


def tenant_usage_stats(
    events: Iterable[UsageEvent],
    tenant_id: str,
    window: TimeWindow,
    *,
    top_n: int = 5,
) -> TenantUsageStats:
    grouped: Dict[str, List[UsageEvent]] = defaultdict(list)
    for event in _in_window(events, window):
        if event.tenant_id == tenant_id:
            grouped[event.capability_key].append(event)

    per_capability = {
        key: _stats_for(key, grouped[key], window, top_n)
        for key in sorted(grouped)
    }
    return TenantUsageStats(
        tenant_id=tenant_id,
        window=window,
        total_attempts=sum(stats.total_attempts for stats in per_capability.values()),
        total_denials=sum(stats.denials for stats in per_capability.values()),
        capabilities=per_capability,
    )


def adoption(
    catalog: CapabilityCatalog,
    tenants: Sequence[TenantRecord],
    overrides: Iterable[TenantOverride],
) -> Dict[str, AdoptionStats]:
    """Share of tenants currently entitled to each capability.

    Entitlement is resolved from overrides and tier tables as they stand now;
    usage history is not replayed.
    """

    entitled = _entitled_tenants(catalog, tenants, overrides)
    enabled = Counter({key: len(tenant_ids) for key, tenant_ids in entitled.items()})

    total = len(tenants)
    return {
        definition.key: AdoptionStats(
            capability_key=definition.key,
            enabled_tenant_count=enabled[definition.key],
            total_tenant_count=total,
            adoption_rate=_percentage(enabled[definition.key], total),
        )
        for definition in catalog
    }


def tier_funnel(
    tenants: Sequence[TenantRecord],
    tier_order: Sequence[str],
    events: Optional[Iterable[UsageEvent]] = None,
    *,
    top_n: int = 5,
) -> TierFunnel:
    """Tenant distribution across tiers with the most-denied capabilities per tier.

    Tiers outside ``tier_order`` are appended in name order. A denied event is
    attributed to the tier recorded on it, falling back to the tenant's
    current tier.
    """

    counts: Counter = Counter(tenant.tier for tenant in tenants)
    current_tier = {tenant.tenant_id: tenant.tier for tenant in tenants}

    denied: Dict[str, Counter] = defaultdict(Counter)
    for event in events or ():
        if event.allowed:
            continue
        tier = event.tier or current_tier.get(event.tenant_id)
        if tier:
            denied[tier][event.capability_key] += 1

    ordered = list(tier_order)
    ordered.extend(sorted(set(counts) - set(ordered)))
    total = len(tenants)
    stages = [
        TierFunnelStage(
            tier=tier,
            count=counts[tier],
            percentage=_percentage(counts[tier], total),
            most_denied=_ranked(denied[tier], top_n),
        )
        for tier in ordered
    ]
    return TierFunnel(total_tenants=total, stages=stages)


def high_denial_capabilities(
    events: Iterable[UsageEvent],
    *,
    window: Optional[TimeWindow] = None,
    threshold: float = 50.0,
    min_attempts: int = 10,
    top_tenants: int = 5,
) -> List[HighDenialCapability]:
    """Capabilities whose denial rate (percentage) reaches ``threshold``."""

    attempts: Counter = Counter()
    denials: Counter = Counter()
    tenants: Dict[str, Counter] = defaultdict(Counter)
    for event in _in_window(events, window):
        attempts[event.capability_key] += 1
        if not event.allowed:
            denials[event.capability_key] += 1
            tenants[event.capability_key][event.tenant_id] += 1

    flagged = []
    for key, total in attempts.items():
        rate = _percentage(denials[key], total)
        if total < min_attempts or rate < threshold:
            continue
        flagged.append(
            HighDenialCapability(
                capability_key=key,
                total_attempts=total,
                denials=denials[key],
                denial_rate=rate,
                top_tenants=_ranked(tenants[key], top_tenants),
            )
        )
    flagged.sort(key=lambda item: (-item.denial_rate, item.capability_key))
    return flagged


def most_used_capabilities(
    events: Iterable[UsageEvent],
    *,
    window: Optional[TimeWindow] = None,
    limit: int = 20,
) -> List[CapabilityUsageCount]:
    totals: Counter = Counter()
    successes: Counter = Counter()
    tenants: Dict[str, set] = defaultdict(set)
    for event in _in_window(events, window):
        totals[event.capability_key] += 1
        tenants[event.capability_key].add(event.tenant_id)
        if event.allowed:
            successes[event.capability_key] += 1

    return [
        CapabilityUsageCount(
            capability_key=key,
            total_attempts=total,
            successes=successes[key],
            denials=total - successes[key],
            unique_tenants=len(tenants[key]),
        )
        for key, total in _ranked(totals, limit)
    ]


def usage_heatmap(
    events: Iterable[UsageEvent],
    window: TimeWindow,
    *,
    tenant_id: Optional[str] = None,
) -> UsageHeatmap:
    """Bucket events by UTC day and capability."""

    uses: Counter = Counter()
    denials: Counter = Counter()
    daily: Counter = Counter()
    for event in _in_window(events, window):
        if tenant_id is not None and event.tenant_id != tenant_id:
            continue
        cell = (event.timestamp.date(), event.capability_key)
        if event.allowed:
            uses[cell] += 1
            daily[cell[0]] += 1
        else:
            denials[cell] += 1

    busiest = max(uses.values(), default=0)
    cells = [
        HeatmapCell(
            day=day,
            capability_key=key,
            uses=uses[(day, key)],
            denials=denials[(day, key)],
            intensity=round(uses[(day, key)] * 100 / busiest) if busiest else 0,
        )
        for day, key in sorted(set(uses) | set(denials))
    ]
    return UsageHeatmap(
        tenant_id=tenant_id,
        window=window,
        cells=cells,
        daily_totals=dict(sorted(daily.items())),
    )


def adoption_trends(
    catalog: CapabilityCatalog,
    tenants: Sequence[TenantRecord],
    overrides: Iterable[TenantOverride],
    window: TimeWindow,
    *,
    interval_days: int = 1,
    capability_keys: Optional[Sequence[str]] = None,
) -> List[AdoptionTrend]:
    """Adoption timeline per capability, sampled every ``interval_days``.

    Entitlements are resolved as they stand now; a tenant only counts from its
    ``created_at`` onward. Unknown ``capability_keys`` raise ``UnknownCapability``.
    """

    if interval_days < 1:
        raise ValueError("interval_days must be >= 1")
    if capability_keys:
        definitions = [catalog.require(key) for key in capability_keys]
    else:
        definitions = list(catalog)

    step = timedelta(days=interval_days)
    samples: List[Tuple[datetime, List[str]]] = []
    moment = window.start
    while moment <= window.end:
        samples.append((moment, [tenant.tenant_id for tenant in tenants if tenant.existed_at(moment)]))
        moment += step

    entitled = _entitled_tenants(catalog, tenants, overrides)
    trends = []
    for definition in definitions:
        holders = entitled.get(definition.key, set())
        timeline: List[AdoptionPoint] = []
        previous = 0
        for moment, present in samples:
            enabled = sum(1 for tenant_id in present if tenant_id in holders)
            timeline.append(
                AdoptionPoint(
                    day=moment.date(),
                    enabled_tenants=enabled,
                    total_tenants=len(present),
                    adoption_rate=_percentage(enabled, len(present)),
                    new_adopters=max(0, enabled - previous),
                )
            )
            previous = enabled

        first = timeline[0].adoption_rate if timeline else 0.0
        last = timeline[-1].adoption_rate if timeline else 0.0
        growth = round((last - first) * 100 / first, 2) if first > 0 else 0.0
        recent = [point.adoption_rate for point in timeline[-7:]]
        recent_average = sum(recent) / len(recent) if recent else 0.0
        trends.append(
            AdoptionTrend(
                capability_key=definition.key,
                display_name=definition.display_name,
                group=definition.group,
                timeline=timeline,
                current_adoption_rate=last,
                growth_rate=growth,
                projected_adoption_rate=round(min(100.0, max(0.0, recent_average + growth)), 2),
            )
        )
    return trends


def _trend(current: int, previous: int) -> UsageTrend:
    if previous <= 0:
        return UsageTrend.STABLE
    change = (current - previous) * 100 / previous
    if change > 10:
        return UsageTrend.UP
    if change < -10:
        return UsageTrend.DOWN
    return UsageTrend.STABLE


def _underuse_signals(utilization: float, usage_count: int, enabled_tenants: int) -> List[str]:
    signals = []
    if utilization < 20 and enabled_tenants > 10:
        signals.append("low discoverability")
    if usage_count < 5 and enabled_tenants > 20:
        signals.append("complex onboarding")
    if utilization < 10:
        signals.append("value proposition unclear")
    return signals


def usage_dashboard(
    catalog: CapabilityCatalog,
    tenants: Sequence[TenantRecord],
    overrides: Iterable[TenantOverride],
    events: Iterable[UsageEvent],
    window: TimeWindow,
    *,
    limit: int = 20,
    top_n: int = 5,
) -> UsageDashboard:
    """Most/least used capabilities plus group and tier comparisons.

    ``events`` should cover ``window.preceding()`` as well; events from that
    earlier window only feed the trend direction.
    """

    previous_window = window.preceding()
    tier_of = {tenant.tenant_id: tenant.tier for tenant in tenants}
    current: Counter = Counter()
    previous: Counter = Counter()
    users: Dict[str, Set[str]] = defaultdict(set)
    by_tier: Dict[str, Counter] = defaultdict(Counter)
    for event in events:
        if not event.allowed:
            continue
        key = event.capability_key
        if window.contains(event.timestamp):
            current[key] += 1
            users[key].add(event.tenant_id)
            tier = tier_of.get(event.tenant_id)
            if tier:
                by_tier[tier][key] += 1
        elif previous_window.start <= event.timestamp < window.start:
            previous[key] += 1

    most_used = [
        DashboardCapability(
            capability_key=definition.key,
            display_name=definition.display_name,
            group=definition.group,
            usage_count=current[definition.key],
            tenants_using=len(users[definition.key]),
            avg_usage_per_tenant=round(current[definition.key] / len(users[definition.key]), 2),
            trend=_trend(current[definition.key], previous[definition.key]),
        )
        for definition in catalog
        if current[definition.key] > 0
    ]
    most_used.sort(key=lambda item: (-item.usage_count, item.capability_key))

    entitled = _entitled_tenants(catalog, tenants, overrides)
    least_used = []
    for definition in catalog:
        enabled = len(entitled.get(definition.key, ()))
        if not enabled:
            continue
        utilization = _percentage(len(users[definition.key]), enabled)
        least_used.append(
            UnderusedCapability(
                capability_key=definition.key,
                display_name=definition.display_name,
                group=definition.group,
                usage_count=current[definition.key],
                enabled_tenants=enabled,
                utilization_rate=utilization,
                signals=_underuse_signals(utilization, current[definition.key], enabled),
            )
        )
    least_used.sort(key=lambda item: (item.utilization_rate, item.capability_key))

    group_comparison = {}
    for group in catalog.groups():
        members = catalog.by_group(group)
        total_usage = sum(current[definition.key] for definition in members)
        group_comparison[group] = GroupUsage(
            total_capabilities=len(members),
            active_capabilities=sum(1 for definition in members if current[definition.key] > 0),
            total_usage=total_usage,
            avg_usage_per_capability=round(total_usage / len(members), 2),
        )

    tenant_counts: Counter = Counter(tier_of.values())
    tiers = list(catalog.tiers)
    tiers.extend(sorted(set(tenant_counts) - set(tiers)))
    tier_comparison = {}
    for tier in tiers:
        total_usage = sum(by_tier[tier].values())
        count = tenant_counts[tier]
        tier_comparison[tier] = TierUsageSummary(
            total_capabilities=len(catalog.available_in(tier)),
            tenant_count=count,
            total_usage=total_usage,
            avg_usage_per_tenant=round(total_usage / count, 2) if count else 0.0,
            top_capabilities=_ranked(by_tier[tier], top_n),
        )

    return UsageDashboard(
        window=window,
        previous_window=previous_window,
        most_used=most_used[:limit],
        least_used=least_used[:limit],
        group_comparison=group_comparison,
        tier_comparison=tier_comparison,
    )
