"""
Current user endpoint.

Allowlisted so the UI can load the account (and send the user to billing)
even when the subscription has lapsed.
"""

from fastapi import APIRouter, Depends

from stockroom.api.dependencies import get_subscription_resolver
from stockroom.api.routes.billing import describe_subscription
from stockroom.auth.middleware import require_principal
from stockroom.auth.principal import Principal
from stockroom.billing.resolver import SubscriptionStatusResolver

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me")
async def current_user(
    principal: Principal = Depends(require_principal),
    resolver: SubscriptionStatusResolver = Depends(get_subscription_resolver),
):
    return {
        "username": principal.subject,
        "tenantId": principal.tenant_id,
        "role": principal.role,
        "subscription": await describe_subscription(principal, resolver),
    }
