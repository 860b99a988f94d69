"""
Data source registry and router for per-tenant data stores.

This module provides:
- DataSourceRegistry: tenant_id -> connection pool mapping, safe to mutate
  at runtime while other requests are reading it
- DataSourceRouter: resolves the pool for the tenant in the request context

CRITICAL SECURITY REQUIREMENTS:
- There is NO default or shared fallback store. A request whose tenant has
  no registered pool fails loudly instead of reading another tenant's data.
- The registry is an explicit object owned by the application root and
  passed by reference; there is no module-level singleton.

Concurrency model (copy-on-write):
- Readers take a reference to the current immutable snapshot and never lock
- Writers serialize on a lock, copy the snapshot, apply their change and
  publish the new snapshot with a single attribute assignment
- A reader therefore sees either the old or the new mapping, never a
  partially updated one, and registering tenant A never blocks routing for B
"""

import logging
from threading import Lock
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Protocol

from stockroom.tenancy.context import get_current_tenant
from stockroom.tenancy.errors import TenantContextMissingError, TenantNotProvisionedError

logger = logging.getLogger(__name__)


class PoolHandle(Protocol):
    """A live connection pool. SQLAlchemy's Engine satisfies this."""

    def dispose(self) -> None:
        ...


class DataSourceRegistry:
    """
    Thread-safe tenant_id -> pool mapping.

    Usage:
        registry = DataSourceRegistry()
        previous = registry.register("tenant_a", engine_a)
        if previous is not None:
            previous.dispose()   # caller owns the replaced pool

        engine = registry.get("tenant_a")
    """

    def __init__(self):
        self._pools: Mapping[str, PoolHandle] = MappingProxyType({})
        self._write_lock = Lock()

    def register(self, tenant_id: str, pool: PoolHandle) -> Optional[PoolHandle]:
        """
        Add or replace the pool for a tenant.

        The replaced pool (if any) is returned and is NOT disposed here:
        in-flight requests may still hold connections from it, so draining
        it is the caller's responsibility.

        Returns:
            The previously registered pool, or None

        Raises:
            ValueError: If tenant_id is empty or pool is None
        """
        if not tenant_id:
            raise ValueError("tenant_id cannot be empty")
        if pool is None:
            raise ValueError("pool cannot be None")

        with self._write_lock:
            previous = self._pools.get(tenant_id)
            updated: Dict[str, PoolHandle] = dict(self._pools)
            updated[tenant_id] = pool
            self._pools = MappingProxyType(updated)

        logger.info(
            "Registered tenant data source",
            extra={"tenant_id": tenant_id, "replaced": previous is not None},
        )
        return previous

    def unregister(self, tenant_id: str) -> Optional[PoolHandle]:
        """Remove a tenant's pool and return it (caller disposes)."""
        with self._write_lock:
            if tenant_id not in self._pools:
                return None
            updated = dict(self._pools)
            previous = updated.pop(tenant_id)
            self._pools = MappingProxyType(updated)

        logger.info("Unregistered tenant data source", extra={"tenant_id": tenant_id})
        return previous

    def get(self, tenant_id: str) -> Optional[PoolHandle]:
        """Return the pool for tenant_id, or None. Never blocks."""
        return self._pools.get(tenant_id)

    def snapshot(self) -> Mapping[str, PoolHandle]:
        """Return the current immutable mapping."""
        return self._pools

    def tenant_ids(self) -> List[str]:
        return sorted(self._pools.keys())

    def __contains__(self, tenant_id: object) -> bool:
        return tenant_id in self._pools

    def __len__(self) -> int:
        return len(self._pools)

    def dispose_all(self) -> None:
        """Dispose every registered pool and empty the registry (shutdown)."""
        with self._write_lock:
            pools = self._pools
            self._pools = MappingProxyType({})

        for tenant_id, pool in pools.items():
            try:
                pool.dispose()
            except Exception as e:
                logger.error(
                    "Failed to dispose tenant data source",
                    extra={"tenant_id": tenant_id, "error": str(e)},
                )
        logger.info("Disposed all tenant data sources", extra={"count": len(pools)})


class DataSourceRouter:
    """
    Resolves the data store for the current request.

    The persistence layer calls resolve() after the subscription guard has
    written the tenant context.
    """

    def __init__(self, registry: DataSourceRegistry):
        self._registry = registry

    @property
    def registry(self) -> DataSourceRegistry:
        return self._registry

    def resolve(self) -> PoolHandle:
        """
        Return the pool for the tenant in the request context.

        Raises:
            TenantContextMissingError: No tenant in context
            TenantNotProvisionedError: Tenant has no registered pool
        """
        tenant_id = get_current_tenant()
        if tenant_id is None:
            logger.error("Data source requested without tenant context")
            raise TenantContextMissingError()
        return self.resolve_for(tenant_id)

    def resolve_for(self, tenant_id: str) -> PoolHandle:
        """
        Return the pool for an explicit tenant (background jobs).

        Raises:
            TenantNotProvisionedError: Tenant has no registered pool
        """
        pool = self._registry.get(tenant_id)
        if pool is None:
            # Onboarding bug: the tenant passed billing checks but was never
            # given a data store
            logger.error(
                "Tenant data source not provisioned",
                extra={"tenant_id": tenant_id, "alert_type": "tenant_not_provisioned"},
            )
            raise TenantNotProvisionedError(tenant_id)
        return pool
