"""
Request-scoped tenant context.

Holds the identifier of the tenant whose data store the current request must
use. Stored in a ContextVar, so every request (thread or asyncio task) sees
only its own value; concurrent requests for different tenants never observe
each other's routing key.

The routing key is written once per request by the subscription guard and
must not change afterwards. set_current_tenant() refuses to overwrite a
different tenant.

Usage:
    token = set_current_tenant("tenant_123")
    try:
        ...
    finally:
        reset_current_tenant(token)

    # or
    with tenant_scope("tenant_123"):
        ...
"""

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator, Optional

from stockroom.tenancy.errors import TenantContextConflictError

_current_tenant: ContextVar[Optional[str]] = ContextVar("stockroom_current_tenant", default=None)


def get_current_tenant() -> Optional[str]:
    """Return the tenant id for the current request, or None."""
    return _current_tenant.get()


def set_current_tenant(tenant_id: str) -> Token:
    """
    Set the routing key for the current request.

    Setting the same tenant twice is allowed; switching to a different
    tenant is not.

    Returns:
        Token for reset_current_tenant()

    Raises:
        ValueError: If tenant_id is empty
        TenantContextConflictError: If a different tenant is already set
    """
    if not tenant_id:
        raise ValueError("tenant_id cannot be empty")

    current = _current_tenant.get()
    if current is not None and current != tenant_id:
        raise TenantContextConflictError(current, tenant_id)

    return _current_tenant.set(tenant_id)


def reset_current_tenant(token: Token) -> None:
    """Restore the tenant context to its value before set_current_tenant()."""
    _current_tenant.reset(token)


@contextmanager
def tenant_scope(tenant_id: str) -> Iterator[str]:
    """Run a block with tenant_id as the routing key (jobs, tests)."""
    token = set_current_tenant(tenant_id)
    try:
        yield tenant_id
    finally:
        reset_current_tenant(token)
