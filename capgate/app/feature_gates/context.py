"""Convenience wrapper binding the entitlement engine to a single tenant."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from .quota import QuotaEvaluation

if TYPE_CHECKING:  # pragma: no cover
    from ..capabilities.models import EntitlementDecision
    from ..capabilities.service import EntitlementEngine


@dataclass(frozen=True)
class TenantEntitlementContext:
    """Facade exposing gating-centric helpers for one tenant and actor."""

    engine: "EntitlementEngine"
    tenant_id: str
    actor_id: Optional[str] = None

    @property
    def tier(self) -> str:
        return self.engine.tenant_tier(self.tenant_id)

    def has(self, capability_key: str) -> bool:
        """Return whether the capability resolves as allowed."""

        return self.engine.resolve(self.tenant_id, capability_key, actor_id=self.actor_id).allowed

    def require(
        self,
        capability_key: str,
        *,
        current_count: Optional[int] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> "EntitlementDecision":
        """Ensure the capability is granted, enforcing its quota when a count is given."""

        return self.engine.require_capability(
            self.tenant_id,
            capability_key,
            actor_id=self.actor_id,
            current_count=current_count,
            metadata=metadata,
        )

    def check_quota(self, limit_name: str, current_count: int) -> QuotaEvaluation:
        return self.engine.check_quota(self.tier, limit_name, current_count)

    def enforce_quota(self, limit_name: str, current_count: int) -> QuotaEvaluation:
        """Raise when the tenant's tier ceiling for ``limit_name`` is reached."""

        return self.engine.enforce_quota(self.tier, limit_name, current_count)

    def enabled_capabilities(self, group: Optional[str] = None) -> Dict[str, List[str]]:
        return self.engine.get_enabled_capabilities(self.tenant_id, group=group)
