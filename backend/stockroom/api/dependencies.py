"""
FastAPI dependencies for services owned by the application root.

create_app() stores every collaborator on app.state; routes reach them
through these functions so tests can build isolated apps side by side.
"""

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from stockroom.auth.cookies import CookiePolicy
from stockroom.auth.directory import PrincipalDirectory
from stockroom.auth.tokens import TokenService
from stockroom.billing.events import BillingEventService
from stockroom.billing.play import PurchaseVerifier
from stockroom.billing.resolver import SubscriptionStatusResolver
from stockroom.config.settings import Settings
from stockroom.database.session import get_db_session
from stockroom.tenancy.onboarding import TenantOnboardingService
from stockroom.tenancy.provisioning import TenantProvisioningService


def _require_state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not configured",
        )
    return value


def get_app_settings(request: Request) -> Settings:
    return _require_state(request, "settings")


def get_token_service(request: Request) -> TokenService:
    return _require_state(request, "token_service")


def get_cookie_policy(request: Request) -> CookiePolicy:
    return _require_state(request, "cookie_policy")


def get_principal_directory(request: Request) -> PrincipalDirectory:
    return _require_state(request, "principal_directory")


def get_subscription_resolver(request: Request) -> SubscriptionStatusResolver:
    return _require_state(request, "subscription_resolver")


def get_billing_events(
    request: Request,
    db: Session = Depends(get_db_session),
) -> BillingEventService:
    clock = getattr(request.app.state, "clock", None)
    if clock is None:
        return BillingEventService(db)
    return BillingEventService(db, clock=clock)


def get_tenant_provisioning(request: Request) -> TenantProvisioningService:
    return _require_state(request, "tenant_provisioning")


def get_purchase_verifier(request: Request) -> PurchaseVerifier:
    return _require_state(request, "purchase_verifier")


def get_tenant_onboarding(
    request: Request,
    db: Session = Depends(get_db_session),
) -> TenantOnboardingService:
    return TenantOnboardingService(
        db,
        get_tenant_provisioning(request),
        clock=getattr(request.app.state, "clock", None),
    )
