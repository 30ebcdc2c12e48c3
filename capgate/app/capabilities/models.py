"""Domain models for capabilities, tenants, overrides and decisions."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Tier(str, Enum):
    """Subscription tiers known to the built-in catalog, lowest first."""

    FREE = "free"
    HOBBY = "hobby"
    PRO = "pro"


DEFAULT_TIER_ORDER = (Tier.FREE.value, Tier.HOBBY.value, Tier.PRO.value)


def tier_name(value: Any) -> str:
    """Normalise a tier given as a string or enum member to its lowercase name."""

    if isinstance(value, Enum):
        value = value.value
    return str(value).strip().lower()


class DenialReason(str, Enum):
    """Closed set of reasons a capability can be refused."""

    UNKNOWN_CAPABILITY = "unknown capability"
    TIER_RESTRICTION = "tier restriction"
    OVERRIDE_DISABLED = "disabled by administrator"
    QUOTA_EXCEEDED = "quota exceeded"


class UsageDecision(str, Enum):
    """Outcome stored on a usage event."""

    ALLOWED = "allowed"
    DENIED = "denied"


@dataclass(frozen=True)
class CapabilityDefinition:
    """Describes a gate-able capability and the tiers that include it."""

    key: str
    display_name: str
    group: str
    category: str
    availability: Mapping[str, bool] = field(default_factory=dict)
    description: str = ""
    quota_limit: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.key or "." not in self.key:
            raise ValueError(f"capability key must be namespaced: {self.key!r}")
        object.__setattr__(
            self,
            "availability",
            MappingProxyType({tier_name(tier): bool(flag) for tier, flag in self.availability.items()}),
        )

    def is_available_in(self, tier: str) -> bool:
        return self.availability.get(tier_name(tier), False)


class TenantRecord(BaseModel):
    """Tenant as supplied by the tenant directory."""

    tenant_id: str
    tier: str
    display_name: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("tier", mode="before")
    @classmethod
    def _normalize_tier(cls, value: Any) -> str:
        return tier_name(value)

    @field_validator("created_at")
    @classmethod
    def _created_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None or value.tzinfo is not None:
            return value
        return value.replace(tzinfo=timezone.utc)

    def existed_at(self, moment: datetime) -> bool:
        return self.created_at is None or self.created_at <= moment


class TenantOverride(BaseModel):
    """Administrator supplied per-tenant switch for a single capability."""

    tenant_id: str
    capability_key: str
    enabled: bool
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


class OverrideWriteResult(BaseModel):
    """Outcome of an override upsert, reporting whether the row is new."""

    override: TenantOverride
    created: bool

    model_config = ConfigDict(frozen=True)


class EntitlementDecision(BaseModel):
    """Resolved allow/deny outcome for a tenant and capability."""

    capability_key: str
    allowed: bool
    reason: Optional[str] = None
    reason_code: Optional[DenialReason] = None
    required_tier: Optional[str] = None
    overridden: bool = False

    model_config = ConfigDict(frozen=True)

    @property
    def message(self) -> Optional[str]:
        """Human-readable explanation suitable for end users."""

        if self.allowed or self.reason_code is None:
            return None
        if self.reason_code == DenialReason.UNKNOWN_CAPABILITY:
            return "capability not recognized"
        if self.reason_code == DenialReason.TIER_RESTRICTION:
            if self.required_tier:
                return f"requires {self.required_tier.capitalize()} plan"
            return "not available on any plan"
        if self.reason_code == DenialReason.QUOTA_EXCEEDED:
            return "usage limit reached"
        return "disabled by administrator"


class UsageEvent(BaseModel):
    """Append-only record of a single entitlement decision."""

    event_id: str = Field(default_factory=lambda: uuid4().hex)
    tenant_id: str
    capability_key: str
    actor_id: Optional[str] = None
    decision: UsageDecision
    reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _reason_only_on_denial(self) -> "UsageEvent":
        if self.decision == UsageDecision.ALLOWED and self.reason is not None:
            raise ValueError("reason is only recorded for denied decisions")
        return self

    @property
    def allowed(self) -> bool:
        return self.decision == UsageDecision.ALLOWED

    @property
    def tier(self) -> Optional[str]:
        value = self.metadata.get("tier")
        return str(value) if value else None

    def to_row(self) -> Dict[str, Any]:
        """Flatten the event for persistence."""

        return {
            "event_id": self.event_id,
            "tenant_id": self.tenant_id,
            "capability_key": self.capability_key,
            "actor_id": self.actor_id,
            "decision": self.decision.value,
            "reason": self.reason,
            "ts": self.timestamp,
            "metadata": dict(self.metadata),
        }


class CapabilityState(BaseModel):
    """Effective state of one capability for a tenant."""

    key: str
    display_name: str
    group: str
    category: str
    description: str = ""
    enabled: bool
    overridden: bool
    available_in_tier: bool
    quota_limit: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class CapabilityStates(BaseModel):
    """Per-capability view for a tenant with summary totals."""

    tenant_id: str
    tier: str
    capabilities: List[CapabilityState]
    total: int
    enabled_count: int
    overridden_count: int

    model_config = ConfigDict(frozen=True)
