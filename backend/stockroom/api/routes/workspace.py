"""
Tenant workspace endpoints.

Everything under /workspace runs behind the subscription guard and talks to
the caller's own data store through the router.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from stockroom.auth.middleware import require_principal
from stockroom.auth.principal import Principal
from stockroom.tenancy.context import get_current_tenant
from stockroom.tenancy.session import get_tenant_db_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workspace", tags=["workspace"])


@router.get("/ping")
def ping_workspace(
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_tenant_db_session),
):
    """Round-trip to the tenant's data store."""
    result = db.execute(text("SELECT 1")).scalar()
    return {
        "tenantId": get_current_tenant(),
        "database": result == 1,
    }
