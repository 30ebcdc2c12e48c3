"""Custom exceptions used for entitlement and quota enforcement."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from fastapi import HTTPException, status

if TYPE_CHECKING:  # pragma: no cover
    from ..capabilities.models import EntitlementDecision


@dataclass
class FeatureGateError(Exception):
    """Represents an actionable gating failure surfaced to API callers."""

    code: str
    message: str
    status_code: int = status.HTTP_403_FORBIDDEN
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        """Convert the domain error into a FastAPI HTTPException."""

        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


class EntitlementDenied(FeatureGateError):
    """Raised by ``require_capability`` when a tenant may not use a capability."""

    def __init__(
        self,
        *,
        capability_key: str,
        display_name: str,
        reason: str,
        reason_code: Optional[str] = None,
        required_tier: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        self.capability_key = capability_key
        self.display_name = display_name
        self.reason = reason
        self.reason_code = reason_code
        self.required_tier = required_tier
        super().__init__(
            code="entitlement_denied",
            message=message or f"Capability '{display_name}' is not available: {reason}",
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "capability": capability_key,
                "capability_name": display_name,
                "reason": reason,
                "reason_code": reason_code,
                "required_tier": required_tier,
            },
        )

    @classmethod
    def for_decision(
        cls,
        decision: "EntitlementDecision",
        *,
        display_name: Optional[str] = None,
    ) -> "EntitlementDenied":
        reason_code = decision.reason_code.value if decision.reason_code else None
        return cls(
            capability_key=decision.capability_key,
            display_name=display_name or decision.capability_key,
            reason=decision.reason or "denied",
            reason_code=reason_code,
            required_tier=decision.required_tier,
        )


class QuotaExceeded(FeatureGateError):
    """Raised by ``enforce_quota`` when a usage counter reached its ceiling."""

    def __init__(
        self,
        *,
        limit_name: str,
        ceiling: int,
        current_count: int,
        tier: Optional[str] = None,
    ) -> None:
        self.limit_name = limit_name
        self.ceiling = ceiling
        self.current_count = current_count
        self.tier = tier
        plan = f"{tier} plan" if tier else "current plan"
        super().__init__(
            code="quota_exceeded",
            message=f"Limit '{limit_name}' reached. Your {plan} allows up to {ceiling}.",
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "limit_name": limit_name,
                "ceiling": ceiling,
                "current_count": current_count,
                "tier": tier,
            },
        )


class EntitlementLookupError(FeatureGateError):
    """Hard failure: a decision cannot be made without the missing data."""


class TenantNotFound(EntitlementLookupError):
    """The tenant directory could not supply a tier for the tenant."""

    def __init__(self, tenant_id: str) -> None:
        self.tenant_id = tenant_id
        super().__init__(
            code="tenant_not_found",
            message=f"Tenant '{tenant_id}' could not be resolved.",
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"tenant_id": tenant_id},
        )


class OverrideStoreUnavailable(EntitlementLookupError):
    """The override store could not be read; absence of a row is unknown."""

    def __init__(self, tenant_id: Optional[str] = None, detail: Optional[str] = None) -> None:
        self.tenant_id = tenant_id
        super().__init__(
            code="override_store_unavailable",
            message="Capability overrides are temporarily unavailable.",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"tenant_id": tenant_id, "cause": detail},
        )


class TenantDirectoryUnavailable(EntitlementLookupError):
    """The tenant directory could not be read, so no tier is known."""

    def __init__(self, tenant_id: Optional[str] = None, detail: Optional[str] = None) -> None:
        self.tenant_id = tenant_id
        super().__init__(
            code="tenant_directory_unavailable",
            message="The tenant directory is temporarily unavailable.",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"tenant_id": tenant_id, "cause": detail},
        )


class UnknownCapability(KeyError):
    """The catalog has no definition for the requested key."""

    def __init__(self, capability_key: str) -> None:
        self.capability_key = capability_key
        super().__init__(capability_key)

    def __str__(self) -> str:
        return f"Unknown capability: {self.capability_key}"


class UnknownQuotaLimit(LookupError):
    """No ceiling is configured for the tier and limit name."""

    def __init__(self, tier: str, limit_name: str) -> None:
        self.tier = tier
        self.limit_name = limit_name
        super().__init__(f"No quota '{limit_name}' configured for tier '{tier}'")


class TelemetryFailure(RuntimeError):
    """Usage telemetry could not be dispatched or persisted."""
