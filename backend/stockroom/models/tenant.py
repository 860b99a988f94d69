"""
Tenant model: a customer company and its billing state.

The Tenant row is the Tenant Billing Record read by the subscription guard.
It is owned by the billing domain: the request pipeline only reads it, and
only BillingEventService mutates the billing columns.

store_database names the tenant's physical data store. Tenants without one
have not been provisioned and cannot run persistence operations.
"""

import uuid

from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship

from stockroom.db_base import Base
from stockroom.models.base import TimestampMixin


class Tenant(Base, TimestampMixin):
    """
    A company using Stockroom.

    Billing lifecycle:
    - start_trial sets trial_start/trial_end
    - a confirmed payment sets subscription_active and pushes
      current_period_end forward, clearing trial_end
    """

    __tablename__ = "tenants"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key - this IS the tenant_id used for routing"
    )

    name = Column(String(255), nullable=False, unique=True, comment="Company name (normalized)")

    enabled = Column(Boolean, nullable=False, default=True)

    # Billing state
    subscription_active = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="Set by billing events when a payment is confirmed"
    )
    trial_start = Column(DateTime(timezone=True), nullable=True)
    trial_end = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="End of the paid period"
    )
    payment_customer_id = Column(
        String(255),
        nullable=True,
        unique=True,
        comment="Payment provider customer ID"
    )
    billing_currency = Column(String(3), nullable=True)

    # Data store routing
    store_database = Column(
        String(255),
        nullable=True,
        comment="Name of the tenant's database; NULL until provisioned"
    )

    users = relationship("User", back_populates="tenant")

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name={self.name})>"
