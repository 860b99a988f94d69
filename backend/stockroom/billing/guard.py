"""
Subscription guard middleware.

Blocks requests from tenants whose trial and paid period have both ended,
and writes the tenant routing key for requests that are let through.

Decision order per request:
1. OPTIONS preflight or static asset GET -> pass
2. Allowlisted path (login, billing, health...) -> pass
3. No identity -> pass (the route's own auth dependency decides)
4. Identity without a tenant, or tenant without a billing record -> pass,
   logged at WARNING
5. Subscription expired -> 402 payment_required
6. Otherwise -> tenant context set, handler runs, context reset

If the billing lookup fails or times out the request is refused with 503.
A billing outage must never turn into free access.

Usage:
    app.add_middleware(
        SubscriptionGuardMiddleware,
        resolver=SubscriptionStatusResolver(source),
        policy=load_access_policy(),
    )
"""

import logging
from typing import Callable, Optional

from fastapi import status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from stockroom.auth.principal import get_principal
from stockroom.billing.errors import BillingUnavailableError, SubscriptionExpiredError
from stockroom.billing.resolver import SubscriptionStatusResolver
from stockroom.config.access_policy import AccessPolicy
from stockroom.tenancy.context import reset_current_tenant, set_current_tenant

logger = logging.getLogger(__name__)

SUBSCRIPTION_EXPIRED_HEADER = "X-Subscription-Expired"
BILLING_RETRY_AFTER_SECONDS = "5"


def payment_required_response(tenant_id: str) -> JSONResponse:
    error = SubscriptionExpiredError(tenant_id)
    return JSONResponse(
        status_code=error.http_status,
        content=error.to_dict(),
        headers={SUBSCRIPTION_EXPIRED_HEADER: "true"},
    )


def billing_unavailable_response(error: BillingUnavailableError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=error.to_dict(),
        headers={"Retry-After": BILLING_RETRY_AFTER_SECONDS},
    )


class SubscriptionGuardMiddleware(BaseHTTPMiddleware):
    """
    Enforces trial/subscription access and sets the tenant context.

    Must execute after the authentication middlewares, i.e. be registered
    BEFORE them with app.add_middleware().
    """

    def __init__(
        self,
        app: ASGIApp,
        resolver: SubscriptionStatusResolver,
        policy: Optional[AccessPolicy] = None,
    ):
        super().__init__(app)
        self._resolver = resolver
        self._policy = policy or AccessPolicy()

    def _should_skip(self, request: Request) -> bool:
        path = request.url.path
        if request.method == "OPTIONS":
            return True
        if self._policy.is_static_get(path, request.method):
            return True
        return self._policy.is_allowlisted(path)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        request.state.subscription = None

        if self._should_skip(request):
            return await call_next(request)

        principal = get_principal(request)
        if principal is None:
            return await call_next(request)

        tenant_id = principal.tenant_id
        if not tenant_id:
            logger.warning(
                "Authenticated request without tenant, subscription not enforced",
                extra={"path": path, "subject": principal.subject},
            )
            return await call_next(request)

        try:
            resolved = await self._resolver.resolve(tenant_id)
        except BillingUnavailableError as e:
            # FAIL CLOSED: no billing decision means no access
            logger.critical(
                "Subscription evaluation failed - fail-closed",
                extra={
                    "tenant_id": tenant_id,
                    "path": path,
                    "reason": e.reason,
                    "alert_type": "subscription_eval_failed",
                },
            )
            return billing_unavailable_response(e)

        if resolved is None:
            logger.warning(
                "Tenant has no billing record, subscription not enforced",
                extra={"path": path, "tenant_id": tenant_id},
            )
            return await call_next(request)

        if not resolved.access_allowed:
            logger.info(
                "Request blocked: subscription expired",
                extra={"path": path, "method": request.method, "tenant_id": tenant_id},
            )
            return payment_required_response(tenant_id)

        request.state.subscription = resolved
        token = set_current_tenant(tenant_id)
        try:
            return await call_next(request)
        finally:
            reset_current_tenant(token)
