"""
Token issuing and validation.

This module provides:
- TokenService: issue/validate/subject_of for signed access and refresh tokens
- TokenPair: the access + refresh token pair handed to a client
- TokenValidation: explicit valid/invalid result of validation

Tokens are HS256 JWTs signed with a process-wide secret. Each token carries:
- sub: subject (username)
- iat: issued at timestamp
- exp: expiration timestamp
- typ: "access" or "refresh"
- jti: random token identifier (two pairs minted in the same second differ)

SECURITY NOTES:
- validate() never raises on bad input and never tells the caller WHY a
  token was rejected. Expired, tampered, malformed and wrong-type tokens all
  produce the same invalid result, so the API offers no oracle.
- There is no server-side revocation list. A refresh token stays valid until
  it expires, even after it has been used to mint a new pair.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

import jwt

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
REQUIRED_CLAIMS = ["sub", "iat", "exp", "typ"]


class TokenType(str, Enum):
    """Kinds of tokens issued by the service."""
    ACCESS = "access"
    REFRESH = "refresh"


class TokenServiceError(Exception):
    """Raised on misuse of the token service (not on bad tokens)."""
    pass


@dataclass(frozen=True)
class TokenPair:
    """
    Access and refresh token minted together.

    Created at login and at every silent refresh; invalidated only by expiry.
    """

    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "accessExpiresAt": self.access_expires_at.isoformat(),
            "refreshExpiresAt": self.refresh_expires_at.isoformat(),
        }


@dataclass(frozen=True)
class TokenValidation:
    """Result of validating a token."""

    valid: bool
    subject: Optional[str] = None
    token_type: Optional[TokenType] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def invalid(cls) -> "TokenValidation":
        return _INVALID

    def __bool__(self) -> bool:
        return self.valid


_INVALID = TokenValidation(valid=False)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """
    Issues and validates signed, time-bounded tokens.

    Usage:
        tokens = TokenService(secret, access_ttl_seconds=1800,
                              refresh_ttl_seconds=604800)

        pair = tokens.issue("alice")

        result = tokens.validate(pair.access_token)
        if result.valid:
            username = result.subject

        # Only after validating:
        username = tokens.subject_of(pair.refresh_token, TokenType.REFRESH)
    """

    def __init__(
        self,
        secret: str,
        access_ttl_seconds: int,
        refresh_ttl_seconds: int,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize token service.

        Args:
            secret: HMAC signing secret
            access_ttl_seconds: Access token lifetime
            refresh_ttl_seconds: Refresh token lifetime (must exceed access)
            clock: Source of "now" (overridable in tests)

        Raises:
            TokenServiceError: If the secret is empty or TTLs are inconsistent
        """
        if not secret:
            raise TokenServiceError("Token signing secret must not be empty")
        if access_ttl_seconds <= 0:
            raise TokenServiceError("Access token TTL must be positive")
        if access_ttl_seconds >= refresh_ttl_seconds:
            raise TokenServiceError("Access token TTL must be shorter than refresh token TTL")

        self._secret = secret
        self._access_ttl = timedelta(seconds=access_ttl_seconds)
        self._refresh_ttl = timedelta(seconds=refresh_ttl_seconds)
        self._clock = clock

    @property
    def access_ttl_seconds(self) -> int:
        return int(self._access_ttl.total_seconds())

    @property
    def refresh_ttl_seconds(self) -> int:
        return int(self._refresh_ttl.total_seconds())

    def _encode(self, subject: str, token_type: TokenType, now: datetime) -> tuple[str, datetime]:
        ttl = self._access_ttl if token_type == TokenType.ACCESS else self._refresh_ttl
        expires_at = now + ttl
        payload = {
            "sub": subject,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "typ": token_type.value,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM), expires_at

    def issue(self, subject: str) -> TokenPair:
        """
        Issue a new access/refresh token pair for a subject.

        Raises:
            TokenServiceError: If subject is empty
        """
        if not subject:
            raise TokenServiceError("Cannot issue tokens for an empty subject")

        now = self._clock()
        access_token, access_expires_at = self._encode(subject, TokenType.ACCESS, now)
        refresh_token, refresh_expires_at = self._encode(subject, TokenType.REFRESH, now)

        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
        )

    def validate(
        self,
        token: Optional[str],
        token_type: TokenType = TokenType.ACCESS,
    ) -> TokenValidation:
        """
        Verify signature, expiry and type of a token.

        Never raises for bad input; returns TokenValidation.invalid() instead.

        Args:
            token: Encoded token (may be None or garbage)
            token_type: Expected token type

        Returns:
            TokenValidation with the subject when valid
        """
        if not token or not isinstance(token, str):
            return TokenValidation.invalid()

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError:
            logger.debug("Token rejected: expired")
            return TokenValidation.invalid()
        except jwt.PyJWTError as e:
            logger.debug("Token rejected: invalid", extra={"error_type": type(e).__name__})
            return TokenValidation.invalid()
        except (ValueError, TypeError) as e:
            logger.debug("Token rejected: malformed", extra={"error_type": type(e).__name__})
            return TokenValidation.invalid()

        if claims.get("typ") != token_type.value:
            logger.debug("Token rejected: wrong type")
            return TokenValidation.invalid()

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            return TokenValidation.invalid()

        return TokenValidation(
            valid=True,
            subject=subject,
            token_type=token_type,
            expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
        )

    def subject_of(self, token: str, token_type: TokenType = TokenType.ACCESS) -> str:
        """
        Get the subject of an already-validated token.

        Raises:
            TokenServiceError: If the token does not validate. Callers must
                call validate() first; reaching this is a programming error.
        """
        result = self.validate(token, token_type)
        if not result.valid:
            raise TokenServiceError("subject_of() called on a token that does not validate")
        return result.subject
