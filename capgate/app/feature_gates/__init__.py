"""Feature gating utilities coordinating entitlement and quota enforcement."""
from .context import TenantEntitlementContext
from .enforcement import require_decision
from .exceptions import (
    EntitlementDenied,
    EntitlementLookupError,
    FeatureGateError,
    OverrideStoreUnavailable,
    QuotaExceeded,
    TelemetryFailure,
    TenantDirectoryUnavailable,
    TenantNotFound,
    UnknownCapability,
    UnknownQuotaLimit,
)
from .quota import QUOTA_LIMITS, UNLIMITED, QuotaEvaluation, QuotaTable, check_quota, enforce_quota

__all__ = [
    "EntitlementDenied",
    "EntitlementLookupError",
    "FeatureGateError",
    "OverrideStoreUnavailable",
    "QUOTA_LIMITS",
    "QuotaEvaluation",
    "QuotaExceeded",
    "QuotaTable",
    "TelemetryFailure",
    "TenantDirectoryUnavailable",
    "TenantEntitlementContext",
    "TenantNotFound",
    "UNLIMITED",
    "UnknownCapability",
    "UnknownQuotaLimit",
    "check_quota",
    "enforce_quota",
    "require_decision",
]
