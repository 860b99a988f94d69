"""
Billing event service.

The only writer of tenant billing columns. Called by:
- the payment webhook (subscription.extended)
- mobile store purchase verification (activate_from_external_purchase)
- company onboarding (start_trial)

The request pipeline reads whatever this service last committed; status is
recomputed on the next request, nothing is cached.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockroom.billing.errors import BillingRecordNotFoundError
from stockroom.models.base import as_utc
from stockroom.models.billing_event import BillingEvent
from stockroom.models.purchase import ExternalPurchase
from stockroom.models.tenant import Tenant
from stockroom.models.user import User

logger = logging.getLogger(__name__)

EVENT_SUBSCRIPTION_EXTENDED = "subscription.extended"

# New companies get a 30 day trial
DEFAULT_TRIAL_DAYS = 30


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BillingEventService:
    """
    Applies billing events to tenant records.

    Usage:
        service = BillingEventService(db_session)
        tenant = service.extend_subscription(tenant_id, additional_days=30)
    """

    def __init__(self, db_session: Session, clock: Callable[[], datetime] = _utcnow):
        """
        Initialize billing event service.

        Args:
            db_session: Control-plane database session
            clock: Source of the current instant
        """
        self.db = db_session
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def _get_tenant(self, tenant_id: str) -> Tenant:
        tenant = self.db.query(Tenant).filter(Tenant.id == tenant_id).first()
        if tenant is None:
            logger.warning("Billing event for unknown tenant", extra={"tenant_id": tenant_id})
            raise BillingRecordNotFoundError(tenant_id)
        return tenant

    def is_duplicate_event(self, provider_event_id: str) -> bool:
        """Check if a provider event has already been applied."""
        existing = self.db.query(BillingEvent.id).filter(
            BillingEvent.provider_event_id == provider_event_id
        ).first()
        return existing is not None

    def extend_subscription(
        self,
        tenant_id: str,
        additional_days: int,
        event_id: Optional[str] = None,
    ) -> Optional[Tenant]:
        """
        Extend a tenant's paid period after a confirmed payment.

        The new period starts at the later of now and the current period end,
        so paying early never loses days. The trial ends as soon as a payment
        is confirmed.

        When event_id is given the extension is applied at most once per
        event: the event is recorded in the same commit as the new period.

        Returns:
            The updated tenant, or None if event_id was already applied

        Raises:
            ValueError: If additional_days is not positive
            BillingRecordNotFoundError: If the tenant does not exist
        """
        if additional_days <= 0:
            raise ValueError("additional_days must be positive")

        tenant = self._get_tenant(tenant_id)
        if event_id is not None and self.is_duplicate_event(event_id):
            logger.info("Duplicate billing event skipped", extra={
                "tenant_id": tenant_id,
                "event_id": event_id,
            })
            return None

        now = self._clock()
        current_end = as_utc(tenant.current_period_end)
        start = current_end if current_end is not None and current_end > now else now
        new_end = start + timedelta(days=additional_days)

        tenant.subscription_active = True
        tenant.current_period_end = new_end
        tenant.trial_end = None
        if event_id is not None:
            self.db.add(BillingEvent(
                provider_event_id=event_id,
                event_type=EVENT_SUBSCRIPTION_EXTENDED,
                tenant_id=tenant_id,
                days=additional_days,
            ))

        try:
            self.db.commit()
        except IntegrityError:
            # Same event applied concurrently by another worker
            self.db.rollback()
            logger.info("Duplicate billing event skipped on commit", extra={
                "tenant_id": tenant_id,
                "event_id": event_id,
            })
            return None

        logger.info("Subscription extended", extra={
            "tenant_id": tenant_id,
            "event_id": event_id,
            "additional_days": additional_days,
            "current_period_end": new_end.isoformat(),
        })
        return tenant

    def activate_from_external_purchase(
        self,
        subject: str,
        product_id: str,
        expiry_timestamp_ms: int,
    ) -> bool:
        """
        Activate access from a verified app-store subscription purchase.

        Idempotent: replaying the same (tenant, product, expiry) purchase is
        a no-op. The period end only moves forward.

        Args:
            subject: Username of the buyer
            product_id: Store product identifier
            expiry_timestamp_ms: Purchase expiry, epoch milliseconds

        Returns:
            True if the purchase changed billing state, False for a replay

        Raises:
            BillingRecordNotFoundError: If the user has no tenant
        """
        user = self.db.query(User).filter(User.username == subject).first()
        if user is None or user.tenant_id is None:
            logger.warning(
                "External purchase for user without tenant",
                extra={"subject": subject, "product_id": product_id},
            )
            raise BillingRecordNotFoundError(subject)

        tenant = self._get_tenant(user.tenant_id)
        expires_at = datetime.fromtimestamp(expiry_timestamp_ms / 1000, tz=timezone.utc)

        existing = self.db.query(ExternalPurchase).filter(
            ExternalPurchase.tenant_id == tenant.id,
            ExternalPurchase.product_id == product_id,
            ExternalPurchase.expires_at == expires_at,
        ).first()
        if existing is not None:
            logger.info("Duplicate external purchase ignored", extra={
                "tenant_id": tenant.id,
                "product_id": product_id,
            })
            return False

        self.db.add(ExternalPurchase(
            tenant_id=tenant.id,
            product_id=product_id,
            expires_at=expires_at,
            purchased_by=subject,
        ))

        current_end = as_utc(tenant.current_period_end)
        if current_end is None or expires_at > current_end:
            tenant.current_period_end = expires_at
        if expires_at > self._clock():
            tenant.subscription_active = True
            tenant.trial_end = None
        self.db.commit()

        logger.info("External purchase activated", extra={
            "tenant_id": tenant.id,
            "product_id": product_id,
            "expires_at": expires_at.isoformat(),
        })
        return True

    def start_trial(self, tenant_id: str, days: int = DEFAULT_TRIAL_DAYS) -> Tenant:
        """Begin a trial of the given length for a new tenant."""
        if days <= 0:
            raise ValueError("days must be positive")

        tenant = self._get_tenant(tenant_id)
        now = self._clock()
        tenant.trial_start = now
        tenant.trial_end = now + timedelta(days=days)
        tenant.subscription_active = False
        self.db.commit()

        logger.info("Trial started", extra={"tenant_id": tenant_id, "days": days})
        return tenant

    def find_tenant_id(self, tenant_id: Optional[str] = None, customer_id: Optional[str] = None) -> Optional[str]:
        """Resolve a tenant by id or payment customer id (webhook payloads carry either)."""
        query = self.db.query(Tenant.id)
        if tenant_id:
            row = query.filter(Tenant.id == tenant_id).first()
        elif customer_id:
            row = query.filter(Tenant.payment_customer_id == customer_id).first()
        else:
            return None
        return row[0] if row else None
