"""
Structured error classes for subscription enforcement.
"""

from fastapi import status

from stockroom.errors import StockroomError


class SubscriptionExpiredError(StockroomError):
    """
    The caller's tenant has neither an active trial nor a paid period.

    Rendered as HTTP 402 with the X-Subscription-Expired header so the UI
    can send the user to the billing page.
    """

    error_code = "payment_required"
    http_status = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__("subscription_expired")


class BillingUnavailableError(StockroomError):
    """
    Subscription status could not be determined (timeout or lookup failure).

    The guard fails closed on this error: the request is refused with 503
    rather than served without a billing decision.
    """

    error_code = "billing_unavailable"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, tenant_id: str, reason: str):
        self.tenant_id = tenant_id
        self.reason = reason
        super().__init__("subscription_status_unavailable")


class BillingRecordNotFoundError(StockroomError):
    """A billing event referenced a tenant that does not exist."""

    error_code = "tenant_not_found"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant '{tenant_id}' not found")
