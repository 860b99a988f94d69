"""
Billing status for the UI, the payment provider webhook and mobile store
purchase verification.

All routes are allowlisted: a tenant whose subscription has lapsed must
still be able to see why and to pay.

SECURITY: the webhook MUST verify its HMAC signature before processing.
The provider signs the raw body with HMAC-SHA256 using the shared secret
and sends the base64 digest in X-Billing-Signature.
"""

import base64
import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from stockroom.api.dependencies import (
    get_app_settings,
    get_billing_events,
    get_purchase_verifier,
    get_subscription_resolver,
)
from stockroom.auth.middleware import get_optional_principal, require_principal
from stockroom.auth.principal import Principal
from stockroom.billing.events import EVENT_SUBSCRIPTION_EXTENDED, BillingEventService
from stockroom.billing.play import PurchaseVerifier
from stockroom.billing.resolver import SubscriptionStatusResolver
from stockroom.config.settings import Settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])

SIGNATURE_HEADER = "X-Billing-Signature"

STATUS_ANON = "ANON"
STATUS_NO_COMPANY = "NO_COMPANY"


class WebhookResponse(BaseModel):
    """Standard webhook response."""
    received: bool = True
    message: str = "Webhook processed"


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


async def describe_subscription(
    principal: Optional[Principal],
    resolver: SubscriptionStatusResolver,
) -> Dict[str, Any]:
    """
    Billing status payload for the caller.

    ANON when there is no identity, NO_COMPANY when the caller has no
    tenant (or the tenant has no billing record), otherwise the computed
    TRIAL / ACTIVE / EXPIRED status.

    Raises:
        BillingUnavailableError: Billing lookup failed (503)
    """
    if principal is None:
        return {"status": STATUS_ANON}

    payload: Dict[str, Any] = {"isAdmin": principal.is_admin}
    if not principal.tenant_id:
        payload["status"] = STATUS_NO_COMPANY
        return payload

    resolved = await resolver.resolve(principal.tenant_id)
    if resolved is None:
        payload["status"] = STATUS_NO_COMPANY
        return payload

    payload.update({
        "status": resolved.result.status.value,
        "trialEnd": _iso(resolved.record.trial_end),
        "currentPeriodEnd": _iso(resolved.record.current_period_end),
        "daysLeft": resolved.result.days_left,
    })
    return payload


@router.get("/status")
async def billing_status(
    principal: Optional[Principal] = Depends(get_optional_principal),
    resolver: SubscriptionStatusResolver = Depends(get_subscription_resolver),
):
    return await describe_subscription(principal, resolver)


def verify_webhook_signature(data: bytes, signature: str, secret: str) -> bool:
    """
    Verify a base64 HMAC-SHA256 signature of the raw body.

    Returns:
        True if signature is valid, False otherwise
    """
    if not signature or not secret:
        return False

    computed = hmac.new(secret.encode("utf-8"), data, hashlib.sha256)
    computed_digest = base64.b64encode(computed.digest()).decode("utf-8")

    # Constant-time comparison to prevent timing attacks
    return hmac.compare_digest(computed_digest, signature)


async def get_verified_webhook_body(request: Request, settings: Settings) -> dict:
    """
    Read and verify the webhook body.

    Raises:
        HTTPException: 401 on missing/invalid signature, 503 if no secret is
            configured, 400 on malformed JSON
    """
    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        logger.warning("Missing signature header in billing webhook")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing webhook signature",
        )

    if not settings.billing_webhook_secret:
        logger.error("BILLING_WEBHOOK_SECRET not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook verification not configured",
        )

    body = await request.body()
    if not verify_webhook_signature(body, signature, settings.billing_webhook_secret):
        logger.warning("Invalid billing webhook signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )

    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        logger.error("Invalid JSON in billing webhook body")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON body",
        )
    if not isinstance(data, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook body must be an object",
        )
    return data


@router.post("/webhook", response_model=WebhookResponse)
async def billing_webhook(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    service: BillingEventService = Depends(get_billing_events),
):
    """
    Apply a payment provider event.

    Handled events:
    - subscription.extended: {"id", "tenant_id" | "customer_id", "days"?}
      extends the paid period (default SUBSCRIPTION_EXTEND_DAYS)

    Providers deliver at least once, so each event id is applied at most
    once; a redelivery is acknowledged without touching the period.

    Unknown event types and unknown tenants are acknowledged with 200 so
    the provider does not retry them forever.
    """
    data = await get_verified_webhook_body(request, settings)
    event_type = data.get("type")

    if event_type != EVENT_SUBSCRIPTION_EXTENDED:
        logger.info("Ignoring billing webhook event", extra={"event_type": event_type})
        return WebhookResponse(message="Event ignored")

    event_id = data.get("id")
    if not isinstance(event_id, str) or not event_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Event id is required",
        )

    tenant_id = service.find_tenant_id(
        tenant_id=data.get("tenant_id"),
        customer_id=data.get("customer_id"),
    )
    if tenant_id is None:
        logger.warning("Billing webhook for unknown tenant", extra={
            "event_id": event_id,
            "tenant_id": data.get("tenant_id"),
            "customer_id": data.get("customer_id"),
        })
        return WebhookResponse(message="Tenant not found")

    days = data.get("days") or settings.subscription_extend_days
    if not isinstance(days, int) or isinstance(days, bool) or days <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="days must be a positive integer",
        )

    if service.extend_subscription(tenant_id, days, event_id=event_id) is None:
        return WebhookResponse(message="Duplicate event ignored")
    return WebhookResponse()


class PlayVerifyRequest(BaseModel):
    product_id: str = Field(..., min_length=1, alias="productId")
    purchase_token: str = Field(..., min_length=1, alias="purchaseToken")
    package_name: Optional[str] = Field(default=None, alias="packageName")

    model_config = ConfigDict(populate_by_name=True)


class PlayVerifyResponse(BaseModel):
    active: bool
    expiryTime: int


@router.post("/play/verify", response_model=PlayVerifyResponse)
def verify_play_purchase(
    body: PlayVerifyRequest,
    principal: Principal = Depends(require_principal),
    settings: Settings = Depends(get_app_settings),
    verifier: PurchaseVerifier = Depends(get_purchase_verifier),
    service: BillingEventService = Depends(get_billing_events),
):
    """
    Activate the caller's company from a Google Play subscription.

    The configured PLAY_PACKAGE_NAME wins over the client-supplied package
    name. 502 when the store cannot confirm the purchase.
    """
    package_name = settings.play_package_name or body.package_name
    if not package_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="packageName is required",
        )

    purchase = verifier.verify(package_name, body.product_id, body.purchase_token)
    service.activate_from_external_purchase(
        principal.subject,
        purchase.product_id,
        purchase.expiry_time_ms,
    )

    expires_at = datetime.fromtimestamp(purchase.expiry_time_ms / 1000, tz=timezone.utc)
    return PlayVerifyResponse(
        active=expires_at > service.now(),
        expiryTime=purchase.expiry_time_ms,
    )
