"""
Subscription enforcement.

- status: pure TRIAL / ACTIVE / EXPIRED derivation
- sources: SQL and HTTP billing record lookups
- resolver: bounded, fail-closed status resolution
- guard: middleware returning 402 for expired tenants
- events: the writer side (payments, trials, app-store purchases)
- play: Google Play purchase verification
"""

from stockroom.billing.status import (
    BillingRecord,
    SubscriptionStatus,
    SubscriptionStatusResult,
    resolve_subscription_status,
)
from stockroom.billing.errors import (
    SubscriptionExpiredError,
    BillingUnavailableError,
    BillingRecordNotFoundError,
)
from stockroom.billing.sources import (
    BillingRecordSource,
    SqlBillingRecordSource,
    HttpBillingRecordSource,
)
from stockroom.billing.resolver import ResolvedSubscription, SubscriptionStatusResolver
from stockroom.billing.guard import SubscriptionGuardMiddleware
from stockroom.billing.events import BillingEventService

__all__ = [
    "BillingRecord",
    "SubscriptionStatus",
    "SubscriptionStatusResult",
    "resolve_subscription_status",
    "SubscriptionExpiredError",
    "BillingUnavailableError",
    "BillingRecordNotFoundError",
    "BillingRecordSource",
    "SqlBillingRecordSource",
    "HttpBillingRecordSource",
    "ResolvedSubscription",
    "SubscriptionStatusResolver",
    "SubscriptionGuardMiddleware",
    "BillingEventService",
]
