"""
Authentication module for cookie-carried tokens.

This module provides:
- Token issuing and validation (HS256 JWTs)
- Authentication and silent-refresh middleware for FastAPI
- Principal resolution from token subjects

SECURITY NOTES:
- Tokens travel in HttpOnly, Secure cookies
- Invalid tokens are treated as anonymous; unexpected errors fail closed (401)
- Refresh tokens are not revoked after rotation (no revocation list)
"""

from stockroom.auth.tokens import TokenService, TokenPair, TokenType, TokenValidation
from stockroom.auth.principal import (
    Principal,
    Authenticated,
    Unauthenticated,
    get_auth_outcome,
    get_principal,
)
from stockroom.auth.cookies import CookiePolicy
from stockroom.auth.directory import PrincipalDirectory, UserDirectory, PrincipalLookupError
from stockroom.auth.middleware import (
    AuthenticationMiddleware,
    RefreshMiddleware,
    require_principal,
    get_optional_principal,
)

__all__ = [
    # Tokens
    "TokenService",
    "TokenPair",
    "TokenType",
    "TokenValidation",
    # Identity
    "Principal",
    "Authenticated",
    "Unauthenticated",
    "get_auth_outcome",
    "get_principal",
    "PrincipalDirectory",
    "UserDirectory",
    "PrincipalLookupError",
    # Transport
    "CookiePolicy",
    # Middleware
    "AuthenticationMiddleware",
    "RefreshMiddleware",
    "require_principal",
    "get_optional_principal",
]
