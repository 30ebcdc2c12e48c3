"""API routes exposing entitlement decisions, quotas and analytics."""
from __future__ import annotations

import hmac
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

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
from ..capabilities.models import CapabilityStates
from ..capabilities.reconciler import TierChangeDiff
from ..capabilities.service import EntitlementEngine
from ..feature_gates.exceptions import FeatureGateError, UnknownCapability, UnknownQuotaLimit
from ..schemas.entitlements import (
    DecisionResponse,
    EnabledCapabilitiesResponse,
    OverrideDeleteResponse,
    OverrideResponse,
    OverrideUpdateRequest,
    QuotaCheckRequest,
    QuotaCheckResponse,
    RequireCapabilityRequest,
    ResolveManyRequest,
    ResolveManyResponse,
    TierChangeRequest,
)
from ..services.entitlements import get_engine_config, get_entitlement_engine

router = APIRouter(prefix="/api/entitlements", tags=["entitlements"])


def require_operator(x_operator_token: Optional[str] = Header(None, alias="X-Operator-Token")) -> None:
    expected = get_engine_config().operator_token
    if not expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Operator access is not configured")
    if not x_operator_token or not hmac.compare_digest(x_operator_token, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid operator token")


def _window(engine: EntitlementEngine, days: int) -> TimeWindow:
    return TimeWindow.last_days(days, now=engine.clock())


@router.get("/tenants/{tenant_id}/capabilities/{capability_key}", response_model=DecisionResponse)
def resolve_capability(
    tenant_id: str,
    capability_key: str,
    actor_id: Optional[str] = Query(None, alias="actorId"),
) -> DecisionResponse:
    engine = get_entitlement_engine()
    try:
        decision = engine.resolve(tenant_id, capability_key, actor_id=actor_id)
    except FeatureGateError as exc:
        raise exc.to_http_exception() from exc
    return DecisionResponse.from_decision(decision)


@router.post("/tenants/{tenant_id}/capabilities/resolve", response_model=ResolveManyResponse)
def resolve_capabilities(tenant_id: str, payload: ResolveManyRequest) -> ResolveManyResponse:
    engine = get_entitlement_engine()
    try:
        results = engine.resolve_many(tenant_id, payload.capability_keys)
    except FeatureGateError as exc:
        raise exc.to_http_exception() from exc
    return ResolveManyResponse(tenant_id=tenant_id, results=results)


@router.post("/tenants/{tenant_id}/capabilities/{capability_key}/require", response_model=DecisionResponse)
def require_capability(
    tenant_id: str,
    capability_key: str,
    payload: RequireCapabilityRequest,
) -> DecisionResponse:
    engine = get_entitlement_engine()
    try:
        decision = engine.require_capability(
            tenant_id,
            capability_key,
            actor_id=payload.actor_id,
            current_count=payload.current_count,
            metadata=payload.metadata,
        )
    except FeatureGateError as exc:
        raise exc.to_http_exception() from exc
    except UnknownQuotaLimit as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    return DecisionResponse.from_decision(decision)


@router.get("/tenants/{tenant_id}/capabilities", response_model=EnabledCapabilitiesResponse)
def list_enabled_capabilities(
    tenant_id: str,
    group: Optional[str] = Query(None),
) -> EnabledCapabilitiesResponse:
    engine = get_entitlement_engine()
    try:
        groups = engine.get_enabled_capabilities(tenant_id, group=group)
    except FeatureGateError as exc:
        raise exc.to_http_exception() from exc
    return EnabledCapabilitiesResponse(
        tenant_id=tenant_id,
        groups=groups,
        total_enabled=sum(len(keys) for keys in groups.values()),
    )


@router.get("/tenants/{tenant_id}/capability-states", response_model=CapabilityStates)
def get_capability_states(tenant_id: str) -> CapabilityStates:
    engine = get_entitlement_engine()
    try:
        return engine.get_capability_states(tenant_id)
    except FeatureGateError as exc:
        raise exc.to_http_exception() from exc


@router.post("/quotas/check", response_model=QuotaCheckResponse)
def check_quota(payload: QuotaCheckRequest) -> QuotaCheckResponse:
    engine = get_entitlement_engine()
    try:
        evaluation = engine.check_quota(payload.tier, payload.limit_name, payload.current_count)
    except UnknownQuotaLimit as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return QuotaCheckResponse.from_evaluation(evaluation)


@router.post("/tenants/{tenant_id}/tier-change", response_model=TierChangeDiff)
def preview_tier_change(tenant_id: str, payload: TierChangeRequest) -> TierChangeDiff:
    engine = get_entitlement_engine()
    try:
        return engine.reconcile_tier_change(tenant_id, payload.old_tier, payload.new_tier)
    except FeatureGateError as exc:
        raise exc.to_http_exception() from exc


@router.put("/tenants/{tenant_id}/overrides/{capability_key}", response_model=OverrideResponse)
def set_override(
    tenant_id: str,
    capability_key: str,
    payload: OverrideUpdateRequest,
    *,
    _operator: None = Depends(require_operator),
) -> OverrideResponse:
    engine = get_entitlement_engine()
    try:
        result = engine.set_override(tenant_id, capability_key, payload.enabled)
    except UnknownCapability as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except FeatureGateError as exc:
        raise exc.to_http_exception() from exc
    return OverrideResponse.from_result(result)


@router.delete("/tenants/{tenant_id}/overrides/{capability_key}", response_model=OverrideDeleteResponse)
def clear_override(
    tenant_id: str,
    capability_key: str,
    *,
    _operator: None = Depends(require_operator),
) -> OverrideDeleteResponse:
    engine = get_entitlement_engine()
    try:
        removed = engine.clear_override(tenant_id, capability_key)
    except UnknownCapability as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except FeatureGateError as exc:
        raise exc.to_http_exception() from exc
    return OverrideDeleteResponse(tenant_id=tenant_id, capability_key=capability_key, removed=removed)


@router.get("/capabilities/{capability_key}/stats", response_model=CapabilityUsageStats)
def get_capability_stats(
    capability_key: str,
    days: int = Query(DEFAULT_WINDOW_DAYS, ge=1, le=365),
) -> CapabilityUsageStats:
    engine = get_entitlement_engine()
    return engine.get_capability_stats(capability_key, _window(engine, days))


@router.get("/tenants/{tenant_id}/usage-stats", response_model=TenantUsageStats)
def get_tenant_usage_stats(
    tenant_id: str,
    days: int = Query(DEFAULT_WINDOW_DAYS, ge=1, le=365),
) -> TenantUsageStats:
    engine = get_entitlement_engine()
    return engine.get_tenant_usage_stats(tenant_id, _window(engine, days))


@router.get("/tenants/{tenant_id}/heatmap", response_model=UsageHeatmap)
def get_usage_heatmap(
    tenant_id: str,
    days: int = Query(DEFAULT_WINDOW_DAYS, ge=1, le=365),
) -> UsageHeatmap:
    engine = get_entitlement_engine()
    return engine.get_usage_heatmap(_window(engine, days), tenant_id=tenant_id)


@router.get("/adoption", response_model=Dict[str, AdoptionStats])
def get_adoption(*, _operator: None = Depends(require_operator)) -> Dict[str, AdoptionStats]:
    engine = get_entitlement_engine()
    try:
        return engine.get_adoption()
    except FeatureGateError as exc:
        raise exc.to_http_exception() from exc


@router.get("/funnel", response_model=TierFunnel)
def get_tier_funnel(
    days: int = Query(DEFAULT_WINDOW_DAYS, ge=1, le=365),
    *,
    _operator: None = Depends(require_operator),
) -> TierFunnel:
    engine = get_entitlement_engine()
    return engine.get_tier_funnel(_window(engine, days))


@router.get("/high-denial", response_model=List[HighDenialCapability])
def get_high_denial_capabilities(
    days: int = Query(DEFAULT_WINDOW_DAYS, ge=1, le=365),
    threshold: float = Query(50.0, ge=0, le=100),
    min_attempts: int = Query(10, ge=1, alias="minAttempts"),
    *,
    _operator: None = Depends(require_operator),
) -> List[HighDenialCapability]:
    engine = get_entitlement_engine()
    return engine.get_high_denial_capabilities(
        _window(engine, days),
        threshold=threshold,
        min_attempts=min_attempts,
    )


@router.get("/most-used", response_model=List[CapabilityUsageCount])
def get_most_used_capabilities(
    days: int = Query(DEFAULT_WINDOW_DAYS, ge=1, le=365),
    limit: int = Query(20, ge=1, le=100),
    *,
    _operator: None = Depends(require_operator),
) -> List[CapabilityUsageCount]:
    engine = get_entitlement_engine()
    return engine.get_most_used_capabilities(_window(engine, days), limit=limit)


@router.get("/adoption/trends", response_model=List[AdoptionTrend])
def get_adoption_trends(
    days: int = Query(DEFAULT_WINDOW_DAYS, ge=1, le=365),
    interval_days: int = Query(1, ge=1, le=31, alias="intervalDays"),
    capability_keys: Optional[List[str]] = Query(None, alias="capabilityKey"),
    *,
    _operator: None = Depends(require_operator),
) -> List[AdoptionTrend]:
    engine = get_entitlement_engine()
    try:
        return engine.get_adoption_trends(
            _window(engine, days),
            interval_days=interval_days,
            capability_keys=capability_keys,
        )
    except UnknownCapability as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except FeatureGateError as exc:
        raise exc.to_http_exception() from exc


@router.get("/dashboard", response_model=UsageDashboard)
def get_usage_dashboard(
    days: int = Query(DEFAULT_WINDOW_DAYS, ge=1, le=365),
    limit: int = Query(20, ge=1, le=100),
    *,
    _operator: None = Depends(require_operator),
) -> UsageDashboard:
    engine = get_entitlement_engine()
    try:
        return engine.get_usage_dashboard(_window(engine, days), limit=limit)
    except FeatureGateError as exc:
        raise exc.to_http_exception() from exc
