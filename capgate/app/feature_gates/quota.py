"""Numeric usage ceilings per tier and their evaluation."""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from .exceptions import QuotaExceeded, UnknownQuotaLimit

UNLIMITED = -1


class QuotaTable:
    """Immutable ``(tier, limit_name) -> ceiling`` table.

    A ceiling of ``-1`` means unlimited; every other ceiling is non-negative.
    """

    __slots__ = ("_limits",)

    def __init__(self, limits: Mapping[str, Mapping[str, int]]) -> None:
        frozen: Dict[str, Mapping[str, int]] = {}
        for tier, ceilings in limits.items():
            tier_key = str(tier).strip().lower()
            checked: Dict[str, int] = {}
            for limit_name, ceiling in ceilings.items():
                value = int(ceiling)
                if value < 0 and value != UNLIMITED:
                    raise ValueError(
                        f"ceiling for {tier_key}/{limit_name} must be >= 0 or {UNLIMITED}, got {value}"
                    )
                checked[limit_name] = value
            frozen[tier_key] = MappingProxyType(checked)
        self._limits: Mapping[str, Mapping[str, int]] = MappingProxyType(frozen)

    def __contains__(self, item: object) -> bool:
        if not isinstance(item, tuple) or len(item) != 2:
            return False
        tier, limit_name = item
        return limit_name in self._limits.get(str(tier).strip().lower(), {})

    @property
    def tiers(self) -> Tuple[str, ...]:
        return tuple(self._limits)

    def limits_for(self, tier: str) -> Mapping[str, int]:
        return self._limits.get(str(tier).strip().lower(), MappingProxyType({}))

    def ceiling(self, tier: str, limit_name: str) -> int:
        ceilings = self._limits.get(str(tier).strip().lower())
        if ceilings is None or limit_name not in ceilings:
            raise UnknownQuotaLimit(str(tier), limit_name)
        return ceilings[limit_name]


QUOTA_LIMITS = QuotaTable(
    {
        "free": {
            "max_workspace_members": 3,
            "max_workspaces": 1,
            "max_storage_gb": 1,
            "max_alerts_per_month": 10,
            "max_incidents_per_month": 5,
            "max_cases_per_month": 2,
            "max_evidence_file_size_mb": 10,
            "max_concurrent_tasks": 2,
            "max_trackers_per_workspace": 2,
            "max_detections_per_month": 50,
            "max_data_sources_per_workspace": 1,
            "max_crawls_per_day": 5,
            "max_ttps_per_workspace": 50,
            "api_rate_limit": 100,
        },
        "hobby": {
            "max_workspace_members": 10,
            "max_workspaces": 3,
            "max_storage_gb": 10,
            "max_alerts_per_month": 100,
            "max_incidents_per_month": 50,
            "max_cases_per_month": 20,
            "max_evidence_file_size_mb": 50,
            "max_concurrent_tasks": 5,
            "max_trackers_per_workspace": 10,
            "max_detections_per_month": 500,
            "max_data_sources_per_workspace": 5,
            "max_crawls_per_day": 25,
            "max_ttps_per_workspace": 500,
            "api_rate_limit": 500,
        },
        "pro": {
            "max_workspace_members": UNLIMITED,
            "max_workspaces": UNLIMITED,
            "max_storage_gb": 100,
            "max_alerts_per_month": UNLIMITED,
            "max_incidents_per_month": UNLIMITED,
            "max_cases_per_month": UNLIMITED,
            "max_evidence_file_size_mb": 500,
            "max_concurrent_tasks": 20,
            "max_trackers_per_workspace": UNLIMITED,
            "max_detections_per_month": UNLIMITED,
            "max_data_sources_per_workspace": UNLIMITED,
            "max_crawls_per_day": 100,
            "max_ttps_per_workspace": UNLIMITED,
            "api_rate_limit": 2000,
        },
    }
)


@dataclass(frozen=True)
class QuotaEvaluation:
    """Represents the outcome of a quota check."""

    allowed: bool
    ceiling: int
    limit_name: str
    tier: str
    current_count: int
    remaining: Optional[int]

    @property
    def unlimited(self) -> bool:
        return self.ceiling == UNLIMITED

    def to_dict(self) -> dict[str, object]:
        """Serialize the evaluation for logging or telemetry."""

        return {
            "allowed": self.allowed,
            "ceiling": self.ceiling,
            "limit_name": self.limit_name,
            "tier": self.tier,
            "current_count": self.current_count,
            "remaining": self.remaining,
        }


def check_quota(
    tier: str,
    limit_name: str,
    current_count: int,
    *,
    table: QuotaTable = QUOTA_LIMITS,
) -> QuotaEvaluation:
    """Determine whether one more unit of ``limit_name`` may be consumed."""

    if current_count < 0:
        raise ValueError(f"current_count must be >= 0, got {current_count}")

    ceiling = table.ceiling(tier, limit_name)
    if ceiling == UNLIMITED:
        return QuotaEvaluation(
            allowed=True,
            ceiling=UNLIMITED,
            limit_name=limit_name,
            tier=str(tier),
            current_count=current_count,
            remaining=None,
        )

    return QuotaEvaluation(
        allowed=current_count < ceiling,
        ceiling=ceiling,
        limit_name=limit_name,
        tier=str(tier),
        current_count=current_count,
        remaining=max(ceiling - current_count, 0),
    )


def enforce_quota(
    tier: str,
    limit_name: str,
    current_count: int,
    *,
    table: QuotaTable = QUOTA_LIMITS,
) -> QuotaEvaluation:
    """Raise when ``current_count`` has already reached the tier ceiling."""

    evaluation = check_quota(tier, limit_name, current_count, table=table)
    if not evaluation.allowed:
        raise QuotaExceeded(
            limit_name=limit_name,
            ceiling=evaluation.ceiling,
            current_count=current_count,
            tier=evaluation.tier,
        )
    return evaluation
