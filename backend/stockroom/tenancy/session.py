"""
Sessions against the current tenant's data store.

Handlers that touch business data depend on get_tenant_db_session. The
engine comes from the DataSourceRouter, which reads the tenant context set
by the subscription guard, so a handler cannot pick a tenant itself.

Usage:
    @router.get("/items")
    async def list_items(db: Session = Depends(get_tenant_db_session)):
        ...
"""

from typing import Generator

from fastapi import HTTPException, Request, status
from sqlalchemy.orm import Session

from stockroom.tenancy.router import DataSourceRouter


def get_data_source_router(request: Request) -> DataSourceRouter:
    router = getattr(request.app.state, "data_source_router", None)
    if router is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Tenant data sources not configured",
        )
    return router


def get_tenant_db_session(request: Request) -> Generator[Session, None, None]:
    """
    FastAPI dependency yielding a session bound to the tenant's store.

    Raises TenantContextMissingError / TenantNotProvisionedError (HTTP 500)
    when the request cannot be routed.
    """
    engine = get_data_source_router(request).resolve()
    session = Session(bind=engine, autoflush=False)
    try:
        yield session
    finally:
        session.close()
