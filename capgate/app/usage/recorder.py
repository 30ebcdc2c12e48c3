"""Fire-and-forget recording of entitlement decisions."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from ..capabilities.models import (
    DenialReason,
    EntitlementDecision,
    TenantRecord,
    UsageDecision,
    UsageEvent,
)
from ..feature_gates.quota import QuotaEvaluation

logger = logging.getLogger(__name__)


class UsageDispatcher(Protocol):
    def put_nowait(self, event: UsageEvent) -> None:
        ...


def classify_denial(
    decision: EntitlementDecision,
    quota: Optional[QuotaEvaluation] = None,
) -> Optional[DenialReason]:
    """Return the single reason a call was refused, or ``None`` if it was not.

    An entitlement denial wins over quota because quota is only evaluated once
    the capability itself is granted.
    """

    if not decision.allowed:
        if decision.reason_code is not None:
            return decision.reason_code
        for reason in DenialReason:
            if decision.reason and decision.reason.startswith(reason.value):
                return reason
        return DenialReason.UNKNOWN_CAPABILITY
    if quota is not None and not quota.allowed:
        return DenialReason.QUOTA_EXCEEDED
    return None


class UsageRecorder:
    """Builds usage events and hands them to a dispatcher without blocking."""

    def __init__(
        self,
        dispatcher: Optional[UsageDispatcher] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._clock = clock

    @property
    def bound(self) -> bool:
        return self._dispatcher is not None

    def bind(self, dispatcher: Optional[UsageDispatcher]) -> None:
        """Attach (or detach, with ``None``) the dispatcher used by ``record``."""

        self._dispatcher = dispatcher

    def adopt_clock(self, clock: Callable[[], datetime]) -> None:
        """Use ``clock`` for event timestamps unless one was given explicitly."""

        if self._clock is None:
            self._clock = clock

    def _now(self) -> datetime:
        if self._clock is None:
            return datetime.now(timezone.utc)
        return self._clock()

    def record(self, event: UsageEvent) -> None:
        dispatcher = self._dispatcher
        if dispatcher is None:
            logger.debug("No usage dispatcher bound; dropping event %s", event.event_id)
            return
        try:
            dispatcher.put_nowait(event)
        except Exception:
            logger.exception(
                "Failed to dispatch usage event",
                extra={"tenant_id": event.tenant_id, "capability_key": event.capability_key},
            )

    def record_decision(
        self,
        tenant: TenantRecord,
        decision: EntitlementDecision,
        *,
        actor_id: Optional[str] = None,
        quota: Optional[QuotaEvaluation] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Optional[UsageEvent]:
        """Record one event for ``decision``; returns it, or ``None`` if it could not be built."""

        try:
            event = self._build_event(tenant, decision, actor_id=actor_id, quota=quota, metadata=metadata)
        except Exception:
            logger.exception(
                "Failed to build usage event",
                extra={"tenant_id": tenant.tenant_id, "capability_key": decision.capability_key},
            )
            return None
        self.record(event)
        return event

    def _build_event(
        self,
        tenant: TenantRecord,
        decision: EntitlementDecision,
        *,
        actor_id: Optional[str],
        quota: Optional[QuotaEvaluation],
        metadata: Optional[Mapping[str, Any]],
    ) -> UsageEvent:
        reason = classify_denial(decision, quota)
        details: Dict[str, Any] = dict(metadata or {})
        details["tier"] = tenant.tier
        if decision.overridden:
            details["overridden"] = True
        if quota is not None:
            details["quota"] = quota.to_dict()
        if reason is DenialReason.QUOTA_EXCEEDED and quota is not None:
            details["detail"] = f"{reason.value}: {quota.limit_name} ceiling {quota.ceiling}"
        elif reason is not None:
            details["detail"] = decision.reason or reason.value

        return UsageEvent(
            tenant_id=tenant.tenant_id,
            capability_key=decision.capability_key,
            actor_id=actor_id,
            decision=UsageDecision.DENIED if reason is not None else UsageDecision.ALLOWED,
            reason=reason.value if reason is not None else None,
            timestamp=self._now(),
            metadata=details,
        )
