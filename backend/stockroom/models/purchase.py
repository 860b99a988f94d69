"""
External purchase model: subscriptions bought outside the web checkout
(e.g. a mobile app store) and applied to a tenant.

The unique constraint makes activation idempotent: replaying the same
verified purchase does not extend access twice.
"""

from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint

from stockroom.db_base import Base
from stockroom.models.base import TimestampMixin, generate_uuid


class ExternalPurchase(Base, TimestampMixin):
    """A verified purchase applied to a tenant's billing record."""

    __tablename__ = "external_purchases"

    id = Column(String(36), primary_key=True, default=generate_uuid)

    tenant_id = Column(
        String(255),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = Column(String(255), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    purchased_by = Column(String(255), nullable=False, comment="Username that submitted the purchase")
    source = Column(String(50), nullable=False, default="external")

    __table_args__ = (
        UniqueConstraint("tenant_id", "product_id", "expires_at", name="uq_external_purchase"),
    )
