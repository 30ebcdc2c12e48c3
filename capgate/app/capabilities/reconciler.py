"""Diff of tier-granted capabilities across a tier change."""
from __future__ import annotations

from typing import List, Tuple

from pydantic import BaseModel, ConfigDict

from .catalog import CapabilityCatalog
from .models import tier_name


class TierChangeDiff(BaseModel):
    """Capabilities gained and lost purely by moving between two tiers."""

    tenant_id: str
    old_tier: str
    new_tier: str
    newly_allowed: List[str]
    newly_denied: List[str]
    total_capabilities: int
    sticky_overrides: List[str] = []

    model_config = ConfigDict(frozen=True)

    @property
    def changed(self) -> bool:
        return bool(self.newly_allowed or self.newly_denied)


def reconcile(
    catalog: CapabilityCatalog,
    tenant_id: str,
    old_tier: str,
    new_tier: str,
) -> TierChangeDiff:
    """Compare tier availability only; overrides are not consulted.

    Keys keep catalog order. A tenant staying on the same tier yields two
    empty lists.
    """

    old_key = tier_name(old_tier)
    new_key = tier_name(new_tier)
    newly_allowed, newly_denied = _partition(catalog, old_key, new_key)
    return TierChangeDiff(
        tenant_id=tenant_id,
        old_tier=old_key,
        new_tier=new_key,
        newly_allowed=newly_allowed,
        newly_denied=newly_denied,
        total_capabilities=len(catalog),
    )


def _partition(catalog: CapabilityCatalog, old_tier: str, new_tier: str) -> Tuple[List[str], List[str]]:
    gained: List[str] = []
    lost: List[str] = []
    for definition in catalog:
        before = definition.is_available_in(old_tier)
        after = definition.is_available_in(new_tier)
        if after and not before:
            gained.append(definition.key)
        elif before and not after:
            lost.append(definition.key)
    return gained, lost
