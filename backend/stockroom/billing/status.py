"""
Subscription status: pure derivation from a tenant's billing record.

A tenant has access while either
- its trial has not ended, or
- its subscription flag is set and the paid period has not ended.

Status is computed per request and never cached, so a payment confirmed a
second ago takes effect on the very next request.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from stockroom.models.base import as_utc

SECONDS_PER_DAY = 86400


class SubscriptionStatus(str, Enum):
    TRIAL = "TRIAL"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"


@dataclass(frozen=True)
class BillingRecord:
    """The billing fields of a tenant, as read by the request pipeline."""

    tenant_id: str
    trial_end: Optional[datetime] = None
    subscription_active: bool = False
    current_period_end: Optional[datetime] = None

    @classmethod
    def from_tenant(cls, tenant) -> "BillingRecord":
        return cls(
            tenant_id=tenant.id,
            trial_end=as_utc(tenant.trial_end),
            subscription_active=bool(tenant.subscription_active),
            current_period_end=as_utc(tenant.current_period_end),
        )


@dataclass(frozen=True)
class SubscriptionStatusResult:
    status: SubscriptionStatus
    days_left: int
    access_allowed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "daysLeft": self.days_left,
            "accessAllowed": self.access_allowed,
        }


def _whole_days_until(end: Optional[datetime], now: datetime) -> int:
    if end is None:
        return 0
    seconds = (end - now).total_seconds()
    return max(0, math.floor(seconds / SECONDS_PER_DAY))


def resolve_subscription_status(record: BillingRecord, now: datetime) -> SubscriptionStatusResult:
    """
    Derive TRIAL / ACTIVE / EXPIRED for a billing record at instant now.

    Boundaries are exclusive: at exactly trial_end (or current_period_end)
    access is over.

    days_left counts whole days until the later of trial_end and, when the
    subscription flag is set, current_period_end. A period end on an
    inactive subscription is ignored.

    Args:
        record: Tenant billing record
        now: Timezone-aware current instant

    Returns:
        SubscriptionStatusResult with days_left >= 0
    """
    in_trial = record.trial_end is not None and now < record.trial_end
    paid = (
        record.subscription_active
        and record.current_period_end is not None
        and now < record.current_period_end
    )
    allowed = in_trial or paid

    if in_trial:
        status = SubscriptionStatus.TRIAL
    elif allowed:
        status = SubscriptionStatus.ACTIVE
    else:
        status = SubscriptionStatus.EXPIRED

    candidates = [record.trial_end]
    if record.subscription_active:
        candidates.append(record.current_period_end)
    ends = [end for end in candidates if end is not None]
    end = max(ends) if ends else None

    return SubscriptionStatusResult(
        status=status,
        days_left=_whole_days_until(end, now),
        access_allowed=allowed,
    )
