"""Helpers for enforcing entitlement decisions on API and service layers."""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from .exceptions import EntitlementDenied

if TYPE_CHECKING:  # pragma: no cover
    from ..capabilities.models import EntitlementDecision


def require_decision(
    decision: "EntitlementDecision",
    *,
    display_name: Optional[str] = None,
) -> "EntitlementDecision":
    """Ensure a resolved decision grants access before proceeding.

    Parameters
    ----------
    decision:
        Outcome produced by :class:`EntitlementResolver`.
    display_name:
        Human-friendly capability name surfaced in the error. Defaults to the
        capability key when omitted.

    Returns the decision unchanged when it is allowed and raises
    :class:`EntitlementDenied` otherwise.
    """

    if not decision.allowed:
        raise EntitlementDenied.for_decision(decision, display_name=display_name)
    return decision
