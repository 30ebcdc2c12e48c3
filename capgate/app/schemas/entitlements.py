"""API schemas for entitlement endpoints."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..capabilities.models import EntitlementDecision, OverrideWriteResult, TenantOverride
from ..feature_gates.quota import QuotaEvaluation


class DecisionResponse(BaseModel):
    capability_key: str = Field(alias="capabilityKey")
    allowed: bool
    reason: Optional[str] = None
    reason_code: Optional[str] = Field(alias="reasonCode", default=None)
    required_tier: Optional[str] = Field(alias="requiredTier", default=None)
    overridden: bool = False
    message: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_decision(cls, decision: EntitlementDecision) -> "DecisionResponse":
        return cls(
            capability_key=decision.capability_key,
            allowed=decision.allowed,
            reason=decision.reason,
            reason_code=decision.reason_code.value if decision.reason_code else None,
            required_tier=decision.required_tier,
            overridden=decision.overridden,
            message=decision.message,
        )


class ResolveManyRequest(BaseModel):
    capability_keys: List[str] = Field(alias="capabilityKeys", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class ResolveManyResponse(BaseModel):
    tenant_id: str = Field(alias="tenantId")
    results: Dict[str, bool]

    model_config = ConfigDict(populate_by_name=True)


class RequireCapabilityRequest(BaseModel):
    actor_id: Optional[str] = Field(alias="actorId", default=None)
    current_count: Optional[int] = Field(alias="currentCount", default=None, ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)


class EnabledCapabilitiesResponse(BaseModel):
    tenant_id: str = Field(alias="tenantId")
    groups: Dict[str, List[str]]
    total_enabled: int = Field(alias="totalEnabled")

    model_config = ConfigDict(populate_by_name=True)


class QuotaCheckRequest(BaseModel):
    tier: str
    limit_name: str = Field(alias="limitName")
    current_count: int = Field(alias="currentCount", ge=0)

    model_config = ConfigDict(populate_by_name=True)


class QuotaCheckResponse(BaseModel):
    allowed: bool
    ceiling: int
    limit_name: str = Field(alias="limitName")
    tier: str
    current_count: int = Field(alias="currentCount")
    remaining: Optional[int] = None
    unlimited: bool = False

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_evaluation(cls, evaluation: QuotaEvaluation) -> "QuotaCheckResponse":
        return cls(
            allowed=evaluation.allowed,
            ceiling=evaluation.ceiling,
            limit_name=evaluation.limit_name,
            tier=evaluation.tier,
            current_count=evaluation.current_count,
            remaining=evaluation.remaining,
            unlimited=evaluation.unlimited,
        )


class TierChangeRequest(BaseModel):
    old_tier: str = Field(alias="oldTier")
    new_tier: str = Field(alias="newTier")

    model_config = ConfigDict(populate_by_name=True)


class OverrideUpdateRequest(BaseModel):
    enabled: bool


class OverrideResponse(BaseModel):
    override: TenantOverride
    created: bool

    @classmethod
    def from_result(cls, result: OverrideWriteResult) -> "OverrideResponse":
        return cls(override=result.override, created=result.created)


class OverrideDeleteResponse(BaseModel):
    tenant_id: str = Field(alias="tenantId")
    capability_key: str = Field(alias="capabilityKey")
    removed: bool

    model_config = ConfigDict(populate_by_name=True)
