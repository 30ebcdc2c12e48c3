"""Static catalog of gate-able capabilities and the tiers that grant them."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..feature_gates.exceptions import UnknownCapability
from .models import DEFAULT_TIER_ORDER, CapabilityDefinition, tier_name

logger = logging.getLogger(__name__)


class CapabilityCatalog:
    """Immutable, ordered registry of capability definitions."""

    __slots__ = ("_definitions", "_tiers")

    def __init__(
        self,
        definitions: Iterable[CapabilityDefinition],
        tier_order: Sequence[str] = DEFAULT_TIER_ORDER,
    ) -> None:
        tiers = tuple(tier_name(tier) for tier in tier_order)
        if not tiers:
            raise ValueError("catalog requires at least one tier")
        if len(set(tiers)) != len(tiers):
            raise ValueError(f"duplicate tier in tier order: {tiers!r}")

        ordered: Dict[str, CapabilityDefinition] = {}
        for definition in definitions:
            if definition.key in ordered:
                raise ValueError(f"duplicate capability key: {definition.key}")
            ordered[definition.key] = definition

        self._definitions: Mapping[str, CapabilityDefinition] = MappingProxyType(ordered)
        self._tiers: Tuple[str, ...] = tiers

    def __iter__(self) -> Iterator[CapabilityDefinition]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, key: object) -> bool:
        return key in self._definitions

    def __repr__(self) -> str:
        return f"CapabilityCatalog(capabilities={len(self)}, tiers={self._tiers!r})"

    @property
    def tiers(self) -> Tuple[str, ...]:
        """Tier names in ascending order."""

        return self._tiers

    def keys(self) -> List[str]:
        return list(self._definitions)

    def get(self, key: str) -> Optional[CapabilityDefinition]:
        return self._definitions.get(key)

    def require(self, key: str) -> CapabilityDefinition:
        definition = self._definitions.get(key)
        if definition is None:
            raise UnknownCapability(key)
        return definition

    def exists(self, key: str) -> bool:
        return key in self._definitions

    def groups(self) -> List[str]:
        """Distinct groups in first-seen catalog order."""

        seen: Dict[str, None] = {}
        for definition in self:
            seen.setdefault(definition.group, None)
        return list(seen)

    def by_group(self, group: str) -> List[CapabilityDefinition]:
        return [definition for definition in self if definition.group == group]

    def by_category(self, category: str) -> List[CapabilityDefinition]:
        return [definition for definition in self if definition.category == category]

    def available_in(self, tier: str) -> List[CapabilityDefinition]:
        return [definition for definition in self if definition.is_available_in(tier)]

    def minimum_tier(self, definition: CapabilityDefinition) -> Optional[str]:
        """Return the lowest tier that grants ``definition``, if any."""

        for tier in self._tiers:
            if definition.is_available_in(tier):
                return tier
        return None


def _capability(
    key: str,
    display_name: str,
    category: str,
    description: str,
    *,
    free: bool,
    hobby: bool,
    pro: bool,
    quota_limit: Optional[str] = None,
) -> CapabilityDefinition:
    return CapabilityDefinition(
        key=key,
        display_name=display_name,
        group=key.split(".", 1)[0],
        category=category,
        description=description,
        availability={"free": free, "hobby": hobby, "pro": pro},
        quota_limit=quota_limit,
    )


_BUILTIN_CAPABILITIES: Tuple[CapabilityDefinition, ...] = (
    # aegis: incident response
    _capability("aegis.alert_creation", "Alert Creation", "security",
                "Raise alerts from monitored sources.",
                free=True, hobby=True, pro=True, quota_limit="max_alerts_per_month"),
    _capability("aegis.alert_management", "Alert Management", "security",
                "Triage, assign and close alerts.",
                free=True, hobby=True, pro=True),
    _capability("aegis.incident_management", "Incident Management", "security",
                "Promote alerts to tracked incidents.",
                free=False, hobby=True, pro=True, quota_limit="max_incidents_per_month"),
    _capability("aegis.case_management", "Case Management", "security",
                "Group incidents into investigation cases.",
                free=False, hobby=True, pro=True, quota_limit="max_cases_per_month"),
    _capability("aegis.sla_tracking", "SLA Tracking", "analytics",
                "Measure response times against service levels.",
                free=False, hobby=True, pro=True),
    _capability("aegis.auto_escalation", "Auto Escalation", "security",
                "Escalate stale incidents automatically.",
                free=False, hobby=False, pro=True),
    _capability("aegis.evidence_management", "Evidence Management", "security",
                "Attach and preserve evidence files.",
                free=False, hobby=True, pro=True),
    _capability("aegis.observables_ioc", "Observables & IOCs", "security",
                "Track indicators of compromise.",
                free=False, hobby=True, pro=True),
    _capability("aegis.task_automation", "Task Automation", "security",
                "Run playbook tasks without manual steps.",
                free=False, hobby=False, pro=True),
    _capability("aegis.advanced_analytics", "Advanced Analytics", "analytics",
                "Trend and performance dashboards for incident response.",
                free=False, hobby=True, pro=True),
    _capability("aegis.timeline_tracking", "Timeline Tracking", "security",
                "Chronological view of investigation activity.",
                free=True, hobby=True, pro=True),
    _capability("aegis.investigation_notes", "Investigation Notes", "security",
                "Shared notes on incidents and cases.",
                free=True, hobby=True, pro=True),
    # eclipse: brand protection
    _capability("eclipse.brand_monitoring", "Brand Monitoring", "security",
                "Watch the web for uses of protected brands.",
                free=True, hobby=True, pro=True, quota_limit="max_trackers_per_workspace"),
    _capability("eclipse.brand_protection", "Brand Protection", "security",
                "Act on detected brand abuse.",
                free=False, hobby=True, pro=True),
    _capability("eclipse.analytics_reports", "Analytics Reports", "analytics",
                "Periodic brand protection reports.",
                free=False, hobby=True, pro=True),
    _capability("eclipse.domain_monitoring", "Domain Monitoring", "security",
                "Detect look-alike domain registrations.",
                free=False, hobby=True, pro=True),
    _capability("eclipse.social_media_monitoring", "Social Media Monitoring", "security",
                "Detect impersonation on social platforms.",
                free=False, hobby=True, pro=True),
    _capability("eclipse.visual_detection", "Visual Detection", "security",
                "Match logos and imagery in crawled content.",
                free=False, hobby=False, pro=True),
    _capability("eclipse.automated_takedowns", "Automated Takedowns", "integration",
                "Submit takedown requests automatically.",
                free=False, hobby=False, pro=True),
    _capability("eclipse.infringement_management", "Infringement Management", "security",
                "Track infringements through resolution.",
                free=False, hobby=True, pro=True),
    _capability("eclipse.yara_rules", "YARA Rules", "security",
                "Custom YARA rules for content matching.",
                free=False, hobby=False, pro=True),
    _capability("eclipse.aegis_integration", "Aegis Integration", "integration",
                "Escalate brand findings into incident response.",
                free=False, hobby=True, pro=True),
    # mitre: ATT&CK knowledge base
    _capability("mitre.attack_mapping", "ATT&CK Mapping", "analytics",
                "Map incidents to ATT&CK techniques.",
                free=False, hobby=True, pro=True),
    _capability("mitre.ttp_tracking", "TTP Tracking", "analytics",
                "Track observed tactics, techniques and procedures.",
                free=False, hobby=True, pro=True, quota_limit="max_ttps_per_workspace"),
    _capability("mitre.threat_intelligence", "Threat Intelligence", "integration",
                "Enrich findings with threat intelligence feeds.",
                free=False, hobby=False, pro=True),
    _capability("mitre.attack_analytics", "ATT&CK Analytics", "analytics",
                "Coverage and frequency analytics over techniques.",
                free=False, hobby=False, pro=True),
    _capability("mitre.technique_recommendations", "Technique Recommendations", "analytics",
                "Suggest likely techniques for an incident.",
                free=False, hobby=False, pro=True),
    _capability("mitre.attack_simulation", "ATT&CK Simulation", "security",
                "Simulate adversary behaviour against defenses.",
                free=False, hobby=False, pro=True),
    # core: platform
    _capability("core.multi_workspace", "Multi-Workspace Support", "workspace",
                "Operate more than one workspace.",
                free=True, hobby=True, pro=True, quota_limit="max_workspaces"),
    _capability("core.team_collaboration", "Team Collaboration", "workspace",
                "Invite members into a workspace.",
                free=True, hobby=True, pro=True, quota_limit="max_workspace_members"),
    _capability("core.advanced_analytics", "Advanced Analytics", "analytics",
                "Cross-module analytics dashboards.",
                free=False, hobby=True, pro=True),
    _capability("core.api_access", "API Access", "integration",
                "Programmatic access through API keys.",
                free=False, hobby=False, pro=True),
    _capability("core.custom_notifications", "Custom Notifications", "notification",
                "Configurable notification rules and channels.",
                free=False, hobby=True, pro=True),
    _capability("core.audit_logging", "Audit Logging", "security",
                "Retained audit trail of workspace activity.",
                free=False, hobby=True, pro=True),
    _capability("core.sso_integration", "SSO Integration", "integration",
                "Single sign-on with enterprise identity providers.",
                free=False, hobby=False, pro=True),
    _capability("core.custom_branding", "Custom Branding", "workspace",
                "White-label workspace branding.",
                free=False, hobby=False, pro=True),
    _capability("core.data_export", "Data Export", "integration",
                "Export workspace data for backup and compliance.",
                free=False, hobby=True, pro=True),
    _capability("core.priority_support", "Priority Support", "support",
                "Priority technical support channels.",
                free=False, hobby=False, pro=True),
)

CAPABILITY_CATALOG = CapabilityCatalog(_BUILTIN_CAPABILITIES, DEFAULT_TIER_ORDER)


class _CapabilityEntry(BaseModel):
    key: str
    display_name: str = Field(alias="name")
    group: Optional[str] = None
    category: str = "general"
    description: str = ""
    availability: Dict[str, bool] = Field(default_factory=dict)
    quota_limit: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("availability", mode="before")
    @classmethod
    def _lowercase_tiers(cls, value: Mapping[str, bool]) -> Dict[str, bool]:
        return {tier_name(tier): flag for tier, flag in dict(value or {}).items()}

    def to_definition(self) -> CapabilityDefinition:
        return CapabilityDefinition(
            key=self.key,
            display_name=self.display_name,
            group=self.group or self.key.split(".", 1)[0],
            category=self.category,
            description=self.description,
            availability=self.availability,
            quota_limit=self.quota_limit,
        )


class _CatalogDocument(BaseModel):
    tiers: List[str] = Field(default_factory=lambda: list(DEFAULT_TIER_ORDER))
    capabilities: List[_CapabilityEntry]


def load_catalog_file(path: Union[str, Path]) -> CapabilityCatalog:
    """Build a catalog from a JSON document.

    The document has a ``tiers`` list (ascending) and a ``capabilities`` list
    whose entries carry ``key``, ``name``, ``category`` and an ``availability``
    mapping of tier to flag. Validation errors surface as ``ValueError``.
    """

    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    document = _CatalogDocument.model_validate(raw)
    catalog = CapabilityCatalog(
        (entry.to_definition() for entry in document.capabilities),
        document.tiers,
    )
    logger.info("Loaded capability catalog from %s", path, extra={"capabilities": len(catalog)})
    return catalog
