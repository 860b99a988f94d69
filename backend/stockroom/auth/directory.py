"""
Principal directory: turns a token subject into a Principal.

The authentication stages validate a token and then ask the directory who
the subject is. A subject that does not exist or whose account is disabled
is an authentication failure, never an anonymous request: the token was
genuine, so the account state changed under it.
"""

import logging
from typing import Protocol

from sqlalchemy.orm import sessionmaker

from stockroom.auth.principal import Principal
from stockroom.models.user import User

logger = logging.getLogger(__name__)


class PrincipalLookupError(Exception):
    """Raised when a validated subject cannot be turned into a Principal."""

    def __init__(self, subject: str, reason: str):
        self.subject = subject
        self.reason = reason
        super().__init__(f"Cannot load principal: {reason}")


class PrincipalDirectory(Protocol):
    """Looks up the Principal for a token subject."""

    def load(self, subject: str) -> Principal:
        """
        Raises:
            PrincipalLookupError: If the subject is unknown or disabled
        """
        ...


class UserDirectory:
    """PrincipalDirectory backed by the control-plane users table."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def load(self, subject: str) -> Principal:
        session = self._session_factory()
        try:
            user = session.query(User).filter(User.username == subject).first()
            if user is None:
                raise PrincipalLookupError(subject, "user_not_found")
            if not user.enabled:
                # Unconfirmed email or administratively disabled
                raise PrincipalLookupError(subject, "user_disabled")
            return Principal(
                subject=user.username,
                tenant_id=user.tenant_id,
                role=user.role,
            )
        finally:
            session.close()
