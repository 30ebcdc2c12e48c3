"""Entitlement engine: the single inward entry point for gating decisions."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from ..analytics import aggregator
from ..analytics.models import (
    DEFAULT_WINDOW_DAYS,
    AdoptionStats,
    AdoptionTrend,
    CapabilityUsageCount,
    CapabilityUsageStats,
    HighDenialCapability,
    TenantUsageStats,
    TierFunnel,
    TimeWindow,
    UsageDashboard,
    UsageHeatmap,
)
from ..feature_gates.context import TenantEntitlementContext
from ..feature_gates.enforcement import require_decision
from ..feature_gates.exceptions import QuotaExceeded, TenantNotFound
from ..feature_gates.quota import QUOTA_LIMITS, QuotaEvaluation, QuotaTable, check_quota, enforce_quota
from ..usage.recorder import UsageRecorder
from ..usage.store import UsageEventSource
from .catalog import CapabilityCatalog
from .models import CapabilityStates, EntitlementDecision, OverrideWriteResult, TenantRecord, UsageEvent
from .overrides import OverrideStore, TenantDirectory
from .reconciler import TierChangeDiff, reconcile
from .resolver import EntitlementResolver

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EntitlementEngine:
    """Coordinates tenant lookup, resolution, quota checks and usage recording."""

    catalog: CapabilityCatalog
    override_store: OverrideStore
    tenant_directory: TenantDirectory
    quota_table: QuotaTable = QUOTA_LIMITS
    recorder: UsageRecorder = field(default_factory=UsageRecorder)
    usage_source: Optional[UsageEventSource] = None
    clock: Callable[[], datetime] = _utcnow

    def __post_init__(self) -> None:
        self._resolver = EntitlementResolver(self.catalog, self.override_store)
        self.recorder.adopt_clock(self.clock)

    def tenant(self, tenant_id: str) -> TenantRecord:
        record = self.tenant_directory.get_tenant(tenant_id)
        if record is None:
            raise TenantNotFound(tenant_id)
        return record

    def tenant_tier(self, tenant_id: str) -> str:
        return self.tenant(tenant_id).tier

    def context(self, tenant_id: str, *, actor_id: Optional[str] = None) -> TenantEntitlementContext:
        """Bind the engine to one tenant for repeated checks."""

        return TenantEntitlementContext(engine=self, tenant_id=tenant_id, actor_id=actor_id)

    def resolve(
        self,
        tenant_id: str,
        capability_key: str,
        *,
        actor_id: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> EntitlementDecision:
        """Resolve and record exactly one usage event."""

        tenant = self.tenant(tenant_id)
        decision = self._resolver.resolve(tenant, capability_key)
        self.recorder.record_decision(tenant, decision, actor_id=actor_id, metadata=metadata)
        return decision

    def resolve_many(self, tenant_id: str, capability_keys: Iterable[str]) -> Dict[str, bool]:
        return self._resolver.resolve_many(self.tenant(tenant_id), capability_keys)

    def require_capability(
        self,
        tenant_id: str,
        capability_key: str,
        *,
        actor_id: Optional[str] = None,
        current_count: Optional[int] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> EntitlementDecision:
        """Return the allowing decision or raise.

        Raises :class:`EntitlementDenied` when the capability is not granted
        and :class:`QuotaExceeded` when ``current_count`` has reached the
        capability's quota ceiling. Exactly one usage event is recorded.
        """

        tenant = self.tenant(tenant_id)
        decision = self._resolver.resolve(tenant, capability_key)
        definition = self.catalog.get(capability_key)

        quota: Optional[QuotaEvaluation] = None
        if decision.allowed and current_count is not None and definition and definition.quota_limit:
            quota = check_quota(tenant.tier, definition.quota_limit, current_count, table=self.quota_table)

        self.recorder.record_decision(tenant, decision, actor_id=actor_id, quota=quota, metadata=metadata)

        if not decision.allowed:
            logger.info(
                "Capability %s denied for tenant %s: %s",
                capability_key,
                tenant_id,
                decision.reason,
                extra={"tenant_id": tenant_id, "capability_key": capability_key},
            )
            require_decision(decision, display_name=definition.display_name if definition else None)

        if quota is not None and not quota.allowed:
            raise QuotaExceeded(
                limit_name=quota.limit_name,
                ceiling=quota.ceiling,
                current_count=quota.current_count,
                tier=quota.tier,
            )
        return decision

    def check_quota(self, tier: str, limit_name: str, current_count: int) -> QuotaEvaluation:
        return check_quota(tier, limit_name, current_count, table=self.quota_table)

    def enforce_quota(self, tier: str, limit_name: str, current_count: int) -> QuotaEvaluation:
        return enforce_quota(tier, limit_name, current_count, table=self.quota_table)

    def get_enabled_capabilities(self, tenant_id: str, group: Optional[str] = None) -> Dict[str, List[str]]:
        return self._resolver.enabled_capabilities(self.tenant(tenant_id), group=group)

    def get_capability_states(self, tenant_id: str) -> CapabilityStates:
        return self._resolver.capability_states(self.tenant(tenant_id))

    def reconcile_tier_change(self, tenant_id: str, old_tier: str, new_tier: str) -> TierChangeDiff:
        """Diff tier-granted capabilities and flag overrides that keep their value."""

        diff = reconcile(self.catalog, tenant_id, old_tier, new_tier)
        overrides = self.override_store.list_overrides(tenant_id)
        changed = set(diff.newly_allowed) | set(diff.newly_denied)
        sticky = [
            definition.key
            for definition in self.catalog
            if definition.key in changed and definition.key in overrides
        ]
        logger.info(
            "Tier change %s -> %s for tenant %s: +%d -%d",
            diff.old_tier,
            diff.new_tier,
            tenant_id,
            len(diff.newly_allowed),
            len(diff.newly_denied),
            extra={"tenant_id": tenant_id},
        )
        return diff.model_copy(update={"sticky_overrides": sticky})

    def set_override(self, tenant_id: str, capability_key: str, enabled: bool) -> OverrideWriteResult:
        self.catalog.require(capability_key)
        self.tenant(tenant_id)
        result = self.override_store.upsert_override(tenant_id, capability_key, enabled)
        logger.info(
            "Override %s for tenant %s set to %s (created=%s)",
            capability_key,
            tenant_id,
            enabled,
            result.created,
            extra={"tenant_id": tenant_id, "capability_key": capability_key},
        )
        return result

    def clear_override(self, tenant_id: str, capability_key: str) -> bool:
        self.catalog.require(capability_key)
        removed = self.override_store.delete_override(tenant_id, capability_key)
        if removed:
            logger.info(
                "Override %s cleared for tenant %s",
                capability_key,
                tenant_id,
                extra={"tenant_id": tenant_id, "capability_key": capability_key},
            )
        return removed

    def default_window(self) -> TimeWindow:
        return TimeWindow.last_days(DEFAULT_WINDOW_DAYS, now=self.clock())

    def _events(self, window: TimeWindow, **filters: Optional[str]) -> List[UsageEvent]:
        if self.usage_source is None:
            logger.debug("No usage source configured; analytics run over no events")
            return []
        return list(self.usage_source.list_events(start=window.start, end=window.end, **filters))

    def get_capability_stats(self, capability_key: str, window: Optional[TimeWindow] = None) -> CapabilityUsageStats:
        window = window or self.default_window()
        events = self._events(window, capability_key=capability_key)
        return aggregator.capability_stats(events, capability_key, window)

    def get_tenant_usage_stats(self, tenant_id: str, window: Optional[TimeWindow] = None) -> TenantUsageStats:
        window = window or self.default_window()
        return aggregator.tenant_usage_stats(self._events(window, tenant_id=tenant_id), tenant_id, window)

    def get_adoption(self) -> Dict[str, AdoptionStats]:
        return aggregator.adoption(
            self.catalog,
            self.tenant_directory.list_tenants(),
            self.override_store.all_overrides(),
        )

    def get_tier_funnel(self, window: Optional[TimeWindow] = None) -> TierFunnel:
        window = window or self.default_window()
        return aggregator.tier_funnel(
            self.tenant_directory.list_tenants(),
            self.catalog.tiers,
            self._events(window),
        )

    def get_high_denial_capabilities(
        self,
        window: Optional[TimeWindow] = None,
        *,
        threshold: float = 50.0,
        min_attempts: int = 10,
    ) -> List[HighDenialCapability]:
        window = window or self.default_window()
        return aggregator.high_denial_capabilities(
            self._events(window),
            window=window,
            threshold=threshold,
            min_attempts=min_attempts,
        )

    def get_most_used_capabilities(self, window: Optional[TimeWindow] = None, *, limit: int = 20) -> List[CapabilityUsageCount]:
        window = window or self.default_window()
        return aggregator.most_used_capabilities(self._events(window), window=window, limit=limit)

    def get_usage_heatmap(self, window: Optional[TimeWindow] = None, *, tenant_id: Optional[str] = None) -> UsageHeatmap:
        window = window or self.default_window()
        return aggregator.usage_heatmap(self._events(window, tenant_id=tenant_id), window, tenant_id=tenant_id)

    def get_adoption_trends(
        self,
        window: Optional[TimeWindow] = None,
        *,
        interval_days: int = 1,
        capability_keys: Optional[List[str]] = None,
    ) -> List[AdoptionTrend]:
        window = window or self.default_window()
        return aggregator.adoption_trends(
            self.catalog,
            self.tenant_directory.list_tenants(),
            self.override_store.all_overrides(),
            window,
            interval_days=interval_days,
            capability_keys=capability_keys,
        )

    def get_usage_dashboard(self, window: Optional[TimeWindow] = None, *, limit: int = 20) -> UsageDashboard:
        window = window or self.default_window()
        span = TimeWindow(start=window.preceding().start, end=window.end)
        return aggregator.usage_dashboard(
            self.catalog,
            self.tenant_directory.list_tenants(),
            self.override_store.all_overrides(),
            self._events(span),
            window,
            limit=limit,
        )
