"""
Caller identity and authentication outcomes.

The pipeline never mutates an ambient "current user". Each stage records an
explicit AuthOutcome on request.state.auth:

- Authenticated(principal, rotated_tokens=None): identity established. When
  the refresh stage minted new tokens they ride along in rotated_tokens so the
  response can carry them back as cookies.
- Unauthenticated(reason): no identity; downstream authorization decides
  whether the route may proceed anonymously.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from starlette.requests import Request

from stockroom.auth.tokens import TokenPair


class Role(str, Enum):
    """User roles. Only used for display; there is no permission matrix."""
    USER = "ROLE_USER"
    ADMIN = "ROLE_ADMIN"


@dataclass(frozen=True)
class Principal:
    """
    Identity of the caller for the duration of one request.

    Reconstructed per request from a validated token; never persisted.
    """

    subject: str
    tenant_id: Optional[str]
    role: str = Role.USER.value

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    def __repr__(self) -> str:
        return f"Principal(subject={self.subject}, tenant_id={self.tenant_id})"


class UnauthenticatedReason(str, Enum):
    """Why a request carries no identity (for logging only)."""
    NO_TOKEN = "no_token"
    INVALID_TOKEN = "invalid_token"
    CLEARED = "cleared"


@dataclass(frozen=True)
class Authenticated:
    """Identity established for this request."""

    principal: Principal
    rotated_tokens: Optional[TokenPair] = None

    @property
    def is_authenticated(self) -> bool:
        return True


@dataclass(frozen=True)
class Unauthenticated:
    """No identity for this request."""

    reason: UnauthenticatedReason = UnauthenticatedReason.NO_TOKEN

    @property
    def is_authenticated(self) -> bool:
        return False


AuthOutcome = Union[Authenticated, Unauthenticated]

ANONYMOUS = Unauthenticated(UnauthenticatedReason.NO_TOKEN)


def get_auth_outcome(request: Request) -> AuthOutcome:
    """Return the outcome recorded by the auth stages, or ANONYMOUS."""
    return getattr(request.state, "auth", ANONYMOUS)


def get_principal(request: Request) -> Optional[Principal]:
    """Return the caller's Principal, or None when unauthenticated."""
    outcome = get_auth_outcome(request)
    if isinstance(outcome, Authenticated):
        return outcome.principal
    return None
