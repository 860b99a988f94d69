"""
User model: login identity belonging to at most one tenant.
"""

from sqlalchemy import Column, String, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from stockroom.db_base import Base
from stockroom.models.base import TimestampMixin, generate_uuid


class User(Base, TimestampMixin):
    """A person who logs in. The username is the token subject."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)

    username = Column(String(255), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=True, unique=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False, default="ROLE_USER")
    enabled = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="False until the email address is confirmed"
    )

    tenant_id = Column(
        String(255),
        ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    tenant = relationship("Tenant", back_populates="users")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username})>"
