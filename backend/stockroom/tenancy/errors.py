"""
Errors raised while routing a request to its tenant's data store.

All of them indicate a configuration or onboarding bug rather than a client
mistake, so they map to HTTP 500 and are logged at ERROR.
"""

from stockroom.errors import StockroomError


class TenantRoutingError(StockroomError):
    """Base exception for data store routing failures."""

    error_code = "cannot_route"


class TenantContextMissingError(TenantRoutingError):
    """A persistence call was made with no tenant in the request context."""

    error_code = "tenant_context_missing"

    def __init__(self):
        super().__init__("No tenant in request context")


class TenantNotProvisionedError(TenantRoutingError):
    """The tenant in context has no registered data store."""

    error_code = "tenant_not_provisioned"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant '{tenant_id}' has no provisioned data store")


class TenantContextConflictError(TenantRoutingError):
    """Something tried to change the routing key in the middle of a request."""

    error_code = "tenant_context_conflict"

    def __init__(self, current: str, attempted: str):
        self.current = current
        self.attempted = attempted
        super().__init__(
            f"Tenant context already set to '{current}', refusing to switch to '{attempted}'"
        )
