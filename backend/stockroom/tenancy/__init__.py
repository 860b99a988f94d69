"""
Tenant isolation and data store routing.

- context: request-scoped tenant id (ContextVar)
- router: tenant_id -> pool registry and the router that reads the context
- provisioning: builds and registers tenant pools
- onboarding: registers a company, its admin, its trial and its store
- session: FastAPI dependency for sessions on the routed store
"""

from stockroom.tenancy.context import (
    get_current_tenant,
    set_current_tenant,
    reset_current_tenant,
    tenant_scope,
)
from stockroom.tenancy.errors import (
    TenantRoutingError,
    TenantContextMissingError,
    TenantNotProvisionedError,
    TenantContextConflictError,
)
from stockroom.tenancy.router import DataSourceRegistry, DataSourceRouter
from stockroom.tenancy.provisioning import ConnectionParameters, TenantProvisioningService

__all__ = [
    "get_current_tenant",
    "set_current_tenant",
    "reset_current_tenant",
    "tenant_scope",
    "TenantRoutingError",
    "TenantContextMissingError",
    "TenantNotProvisionedError",
    "TenantContextConflictError",
    "DataSourceRegistry",
    "DataSourceRouter",
    "ConnectionParameters",
    "TenantProvisioningService",
]
