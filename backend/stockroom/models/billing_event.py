"""
BillingEvent model for tracking applied payment provider events.

Used for idempotency: providers deliver webhooks at least once, and a
redelivered "subscription extended" event must not extend the period again.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey

from stockroom.db_base import Base


class BillingEvent(Base):
    """
    One applied billing event.

    provider_event_id is unique, so a replay is detected by lookup and a
    concurrent replay fails on commit.
    """

    __tablename__ = "billing_events"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    provider_event_id = Column(
        String(255),
        nullable=False,
        unique=True,
        index=True,
        comment="Event id from the payment provider payload"
    )

    event_type = Column(String(100), nullable=False)

    tenant_id = Column(
        String(255),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    days = Column(Integer, nullable=True)

    processed_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="When the event was applied"
    )
