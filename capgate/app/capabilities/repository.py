"""PostgreSQL persistence for overrides, tenants and recorded usage events."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ...app_context import get_conn
from ..feature_gates.exceptions import OverrideStoreUnavailable, TenantDirectoryUnavailable
from .models import OverrideWriteResult, TenantOverride, TenantRecord, UsageDecision, UsageEvent

logger = logging.getLogger(__name__)


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


class _PostgresRepository:
    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()


def _row_to_override(row: dict) -> TenantOverride:
    return TenantOverride(
        tenant_id=row["tenant_id"],
        capability_key=row["capability_key"],
        enabled=bool(row["enabled"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_event(row: dict) -> UsageEvent:
    return UsageEvent(
        event_id=row["event_id"],
        tenant_id=row["tenant_id"],
        capability_key=row["capability_key"],
        actor_id=row.get("actor_id"),
        decision=UsageDecision(row["decision"]),
        reason=row.get("reason"),
        timestamp=row["ts"],
        metadata=row.get("metadata") or {},
    )


class PostgresOverrideStore(_PostgresRepository):
    """Override rows in ``capability_overrides``.

    Driver failures surface as :class:`OverrideStoreUnavailable` so callers
    never confuse an outage with an absent row.
    """

    def get_override(self, tenant_id: str, capability_key: str) -> Optional[TenantOverride]:
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    """
                    SELECT tenant_id, capability_key, enabled, created_at, updated_at
                    FROM capability_overrides
                    WHERE tenant_id = %s AND capability_key = %s
                    """,
                    (tenant_id, capability_key),
                )
                row = cursor.fetchone()
        except psycopg2.Error as exc:
            logger.exception("Override lookup failed", extra={"tenant_id": tenant_id})
            raise OverrideStoreUnavailable(tenant_id, str(exc)) from exc
        return _row_to_override(row) if row else None

    def list_overrides(self, tenant_id: str) -> Dict[str, TenantOverride]:
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    """
                    SELECT tenant_id, capability_key, enabled, created_at, updated_at
                    FROM capability_overrides
                    WHERE tenant_id = %s
                    """,
                    (tenant_id,),
                )
                rows = cursor.fetchall()
        except psycopg2.Error as exc:
            logger.exception("Override listing failed", extra={"tenant_id": tenant_id})
            raise OverrideStoreUnavailable(tenant_id, str(exc)) from exc
        return {row["capability_key"]: _row_to_override(row) for row in rows}

    def all_overrides(self) -> List[TenantOverride]:
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    """
                    SELECT tenant_id, capability_key, enabled, created_at, updated_at
                    FROM capability_overrides
                    ORDER BY tenant_id, capability_key
                    """
                )
                rows = cursor.fetchall()
        except psycopg2.Error as exc:
            logger.exception("Override scan failed")
            raise OverrideStoreUnavailable(None, str(exc)) from exc
        return [_row_to_override(row) for row in rows]

    def upsert_override(self, tenant_id: str, capability_key: str, enabled: bool) -> OverrideWriteResult:
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO capability_overrides (tenant_id, capability_key, enabled)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (tenant_id, capability_key) DO UPDATE SET
                        enabled = EXCLUDED.enabled,
                        updated_at = NOW()
                    RETURNING tenant_id, capability_key, enabled, created_at, updated_at,
                              (xmax = 0) AS created
                    """,
                    (tenant_id, capability_key, enabled),
                )
                row = cursor.fetchone()
        except psycopg2.Error as exc:
            logger.exception("Override write failed", extra={"tenant_id": tenant_id})
            raise OverrideStoreUnavailable(tenant_id, str(exc)) from exc
        if not row:
            raise RuntimeError("Failed to persist capability override")
        return OverrideWriteResult(override=_row_to_override(row), created=bool(row["created"]))

    def delete_override(self, tenant_id: str, capability_key: str) -> bool:
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    "DELETE FROM capability_overrides WHERE tenant_id = %s AND capability_key = %s",
                    (tenant_id, capability_key),
                )
                deleted = cursor.rowcount
        except psycopg2.Error as exc:
            logger.exception("Override delete failed", extra={"tenant_id": tenant_id})
            raise OverrideStoreUnavailable(tenant_id, str(exc)) from exc
        return deleted > 0


class PostgresTenantDirectory(_PostgresRepository):
    """Tenant tiers from ``tenants``; driver failures become :class:`TenantDirectoryUnavailable`."""

    def get_tenant(self, tenant_id: str) -> Optional[TenantRecord]:
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    "SELECT tenant_id, tier, display_name, created_at FROM tenants WHERE tenant_id = %s",
                    (tenant_id,),
                )
                row = cursor.fetchone()
        except psycopg2.Error as exc:
            logger.exception("Tenant lookup failed", extra={"tenant_id": tenant_id})
            raise TenantDirectoryUnavailable(tenant_id, str(exc)) from exc
        return TenantRecord(**row) if row else None

    def list_tenants(self) -> List[TenantRecord]:
        try:
            with self._cursor() as cursor:
                cursor.execute("SELECT tenant_id, tier, display_name, created_at FROM tenants ORDER BY tenant_id")
                rows = cursor.fetchall()
        except psycopg2.Error as exc:
            logger.exception("Tenant listing failed")
            raise TenantDirectoryUnavailable(None, str(exc)) from exc
        return [TenantRecord(**row) for row in rows]


class PostgresUsageEventRepository(_PostgresRepository):
    """Reads events written by the asynchronous usage sink."""

    def list_events(
        self,
        *,
        capability_key: Optional[str] = None,
        tenant_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[UsageEvent]:
        clauses: List[str] = []
        params: List[object] = []
        if capability_key is not None:
            clauses.append("capability_key = %s")
            params.append(capability_key)
        if tenant_id is not None:
            clauses.append("tenant_id = %s")
            params.append(tenant_id)
        if start is not None:
            clauses.append("ts >= %s")
            params.append(start)
        if end is not None:
            clauses.append("ts <= %s")
            params.append(end)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT event_id, ts, tenant_id, capability_key, actor_id, decision, reason, metadata
                FROM capability_usage_events
                {where}
                ORDER BY ts
                """,
                params,
            )
            rows = cursor.fetchall()
        return [_row_to_event(row) for row in rows]
