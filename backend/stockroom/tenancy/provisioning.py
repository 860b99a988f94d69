"""
Tenant data store provisioning.

Creates a pooled SQLAlchemy engine for a tenant's data store and publishes it
in the DataSourceRegistry. Runs during onboarding (new company) and at
startup, when every tenant with a store_database is registered.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from stockroom.config.settings import TenantStoreDefaults
from stockroom.models.tenant import Tenant
from stockroom.tenancy.router import DataSourceRegistry

logger = logging.getLogger(__name__)

# Per-tenant pools are small; there can be many of them per process
TENANT_POOL_SIZE = 2
TENANT_POOL_MAX_OVERFLOW = 3
TENANT_POOL_RECYCLE_SECONDS = 1800


@dataclass(frozen=True)
class ConnectionParameters:
    """Where a tenant's data store lives."""

    database: str
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    drivername: str = "postgresql"
    sslmode: Optional[str] = None

    @classmethod
    def for_database(cls, database: str, defaults: TenantStoreDefaults) -> "ConnectionParameters":
        """Parameters for a database on the shared tenant store server."""
        return cls(
            database=database,
            host=defaults.host,
            port=defaults.port,
            username=defaults.username,
            password=defaults.password,
            sslmode=defaults.sslmode,
        )

    def to_url(self) -> URL:
        query: Dict[str, str] = {}
        if self.sslmode and not self.drivername.startswith("sqlite"):
            query["sslmode"] = self.sslmode
        return URL.create(
            drivername=self.drivername,
            username=self.username,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
            query=query,
        )


def create_tenant_engine(params: ConnectionParameters) -> Engine:
    """Create a pooled engine for one tenant store."""
    url = params.to_url()
    if params.drivername.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=TENANT_POOL_SIZE,
        max_overflow=TENANT_POOL_MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_recycle=TENANT_POOL_RECYCLE_SECONDS,
    )


class TenantProvisioningService:
    """
    Registers tenant data stores with the router's registry.

    Usage:
        service = TenantProvisioningService(registry, settings.tenant_store)
        service.register_tenant_store(
            tenant.id, ConnectionParameters.for_database("acme", settings.tenant_store)
        )
    """

    def __init__(
        self,
        registry: DataSourceRegistry,
        defaults: Optional[TenantStoreDefaults] = None,
    ):
        self._registry = registry
        self._defaults = defaults or TenantStoreDefaults()

    def register_tenant_store(self, tenant_id: str, params: ConnectionParameters) -> Engine:
        """
        Build a pool for the tenant and make it routable.

        Re-registering a tenant replaces its pool; the replaced pool is
        disposed here so its connections are not leaked.

        Returns:
            The newly registered engine
        """
        engine = create_tenant_engine(params)
        previous = self._registry.register(tenant_id, engine)
        if previous is not None:
            previous.dispose()
            logger.info(
                "Disposed replaced tenant data source",
                extra={"tenant_id": tenant_id},
            )

        logger.info(
            "Tenant data store provisioned",
            extra={
                "tenant_id": tenant_id,
                "database": params.database,
                "host": params.host,
            },
        )
        return engine

    def provision_database(self, tenant_id: str, database: str) -> Engine:
        """Register a tenant store on the shared tenant store server."""
        return self.register_tenant_store(
            tenant_id,
            ConnectionParameters.for_database(database, self._defaults),
        )

    def deprovision(self, tenant_id: str) -> bool:
        """Remove a tenant's pool and dispose it. Returns True if one existed."""
        previous = self._registry.unregister(tenant_id)
        if previous is None:
            return False
        previous.dispose()
        return True

    def load_registered_tenants(self, session_factory: sessionmaker) -> int:
        """
        Register every enabled tenant that has a store_database.

        Called once at startup. Returns the number of tenants registered.
        """
        session = session_factory()
        try:
            rows = (
                session.query(Tenant.id, Tenant.store_database)
                .filter(Tenant.enabled.is_(True))
                .filter(Tenant.store_database.isnot(None))
                .all()
            )
        finally:
            session.close()

        for tenant_id, store_database in rows:
            self.provision_database(tenant_id, store_database)

        logger.info("Loaded tenant data stores", extra={"count": len(rows)})
        return len(rows)
