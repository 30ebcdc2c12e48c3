"""Override store and tenant directory contracts with in-memory implementations."""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from .models import OverrideWriteResult, TenantOverride, TenantRecord


class OverrideStore(Protocol):
    """Per-tenant capability switches.

    Implementations return ``None`` for an absent row and raise
    ``OverrideStoreUnavailable`` when the backing store cannot be read.
    """

    def get_override(self, tenant_id: str, capability_key: str) -> Optional[TenantOverride]:
        ...

    def list_overrides(self, tenant_id: str) -> Mapping[str, TenantOverride]:
        ...

    def all_overrides(self) -> Sequence[TenantOverride]:
        ...

    def upsert_override(self, tenant_id: str, capability_key: str, enabled: bool) -> OverrideWriteResult:
        ...

    def delete_override(self, tenant_id: str, capability_key: str) -> bool:
        ...


class TenantDirectory(Protocol):
    def get_tenant(self, tenant_id: str) -> Optional[TenantRecord]:
        ...

    def list_tenants(self) -> Sequence[TenantRecord]:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryOverrideStore:
    """Thread-safe dictionary backed override store."""

    def __init__(
        self,
        overrides: Iterable[TenantOverride] = (),
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._rows: Dict[Tuple[str, str], TenantOverride] = {
            (override.tenant_id, override.capability_key): override for override in overrides
        }

    def get_override(self, tenant_id: str, capability_key: str) -> Optional[TenantOverride]:
        with self._lock:
            return self._rows.get((tenant_id, capability_key))

    def list_overrides(self, tenant_id: str) -> Mapping[str, TenantOverride]:
        with self._lock:
            return {
                key: override
                for (owner, key), override in self._rows.items()
                if owner == tenant_id
            }

    def all_overrides(self) -> List[TenantOverride]:
        with self._lock:
            return list(self._rows.values())

    def upsert_override(self, tenant_id: str, capability_key: str, enabled: bool) -> OverrideWriteResult:
        now = self._clock()
        with self._lock:
            existing = self._rows.get((tenant_id, capability_key))
            override = TenantOverride(
                tenant_id=tenant_id,
                capability_key=capability_key,
                enabled=enabled,
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )
            self._rows[(tenant_id, capability_key)] = override
        return OverrideWriteResult(override=override, created=existing is None)

    def delete_override(self, tenant_id: str, capability_key: str) -> bool:
        with self._lock:
            return self._rows.pop((tenant_id, capability_key), None) is not None


class InMemoryTenantDirectory:
    def __init__(self, tenants: Iterable[TenantRecord] = ()) -> None:
        self._lock = threading.Lock()
        self._tenants: Dict[str, TenantRecord] = {tenant.tenant_id: tenant for tenant in tenants}

    def get_tenant(self, tenant_id: str) -> Optional[TenantRecord]:
        with self._lock:
            return self._tenants.get(tenant_id)

    def list_tenants(self) -> List[TenantRecord]:
        with self._lock:
            return list(self._tenants.values())

    def put(self, tenant: TenantRecord) -> None:
        """Insert or replace a tenant, e.g. after a tier change."""

        with self._lock:
            self._tenants[tenant.tenant_id] = tenant
